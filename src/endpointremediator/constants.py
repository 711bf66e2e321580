"""Fixed values shared across EndpointRemediator."""

BACKUP_SPACE_FACTOR = 1.1

SERVICE_POLL_TIMEOUT_SECONDS = 30
SERVICE_POLL_INTERVAL_SECONDS = 1.0
INSTALLER_BOUNDED_WAIT_SECONDS = 30
COMMAND_TIMEOUT_SECONDS = 120

INSTALLER_SUCCESS_CODES = (0, 1641, 3010)
INSTALLER_REBOOT_CODES = (1641, 3010)

UNINSTALL_KEY_ROOTS = (
    r"HKLM\SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall",
    r"HKLM\SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall",
)

LOG_DIR_NAME = "EndpointRemediator"
LOG_FILE_PREFIX = "endpointremediator"
DEFAULT_CONFIG_FILE = ".endpointremediator.yml"

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_INSUFFICIENT_PRIVILEGE = 3
EXIT_CANCELLED = 130
