"""Configuration loader for EndpointRemediator."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from endpointremediator.errors import RemediationError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "recipe",
        "plan",
        "dry_run",
        "backup_path",
        "no_backup",
        "no_reboot",
        "silent",
        "folder_policy",
        "log_dir",
        "report_file",
        "verbose",
        "criticality_overrides",
        "recipe_options",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise RemediationError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise RemediationError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise RemediationError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise RemediationError(f"Unknown configuration keys: {unknown_list}")

        for key in ("criticality_overrides", "recipe_options"):
            if key in parsed and not isinstance(parsed[key], dict):
                raise RemediationError(f"Configuration key '{key}' must be a mapping.")

        return parsed
