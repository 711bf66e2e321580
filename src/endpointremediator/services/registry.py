"""Registry access facility backed by ``winreg``."""

from contextlib import contextmanager
from typing import Any, Iterator, Optional, Tuple

from endpointremediator.errors import ActionFailed

try:
    import winreg
except ImportError:  # non-Windows hosts; every call raises ActionFailed instead
    winreg = None

HIVE_ALIASES = {
    "HKLM": "HKEY_LOCAL_MACHINE",
    "HKCU": "HKEY_CURRENT_USER",
    "HKCR": "HKEY_CLASSES_ROOT",
    "HKU": "HKEY_USERS",
    "HKCC": "HKEY_CURRENT_CONFIG",
}

VALUE_TYPES = ("REG_SZ", "REG_EXPAND_SZ", "REG_DWORD", "REG_QWORD", "REG_MULTI_SZ", "REG_BINARY")


def split_key(key: str) -> Tuple[str, str]:
    """Splits ``HKLM\\Software\\X`` into the full hive name and the sub path."""
    normalized = key.replace("/", "\\").strip("\\")
    hive, _, sub_path = normalized.partition("\\")
    hive = hive.upper()
    hive = HIVE_ALIASES.get(hive, hive)
    if hive not in HIVE_ALIASES.values():
        raise ActionFailed(f"Unknown registry hive in `{key}`.", code="registry_set_failed")
    return hive, sub_path


def coerce_value(value_type: str, data: Any) -> Any:
    if value_type not in VALUE_TYPES:
        raise ActionFailed(f"Unsupported registry value type: {value_type}")
    if value_type in ("REG_DWORD", "REG_QWORD"):
        return int(data)
    if value_type == "REG_MULTI_SZ":
        return [str(item) for item in (data if isinstance(data, (list, tuple)) else [data])]
    if value_type == "REG_BINARY":
        return bytes.fromhex(data) if isinstance(data, str) else bytes(data)
    return str(data)


class WindowsRegistry:
    """Reads, writes and deletes registry keys and values."""

    def __init__(self, logger):
        self.logger = logger

    def _root(self, hive: str):
        if winreg is None:
            raise ActionFailed("Windows registry APIs are unavailable on this platform.")
        return getattr(winreg, hive)

    @contextmanager
    def _open(self, key: str, access: Optional[int] = None) -> Iterator[Any]:
        hive, sub_path = split_key(key)
        root = self._root(hive)
        mask = access if access is not None else winreg.KEY_READ
        handle = winreg.OpenKey(root, sub_path, 0, mask)
        try:
            yield handle
        finally:
            winreg.CloseKey(handle)

    def key_exists(self, key: str) -> bool:
        try:
            with self._open(key):
                return True
        except FileNotFoundError:
            return False

    def value_exists(self, key: str, value_name: str) -> bool:
        try:
            with self._open(key) as handle:
                winreg.QueryValueEx(handle, value_name)
                return True
        except FileNotFoundError:
            return False

    def get(self, key: str, value_name: str, default: Any = None) -> Any:
        try:
            with self._open(key) as handle:
                value, _ = winreg.QueryValueEx(handle, value_name)
                return value
        except FileNotFoundError:
            return default

    def set(self, key: str, value_name: str, value_type: str, data: Any):
        hive, sub_path = split_key(key)
        root = self._root(hive)
        coerced = coerce_value(value_type, data)
        try:
            handle = winreg.CreateKeyEx(root, sub_path, 0, winreg.KEY_WRITE)
            try:
                winreg.SetValueEx(handle, value_name, 0, getattr(winreg, value_type), coerced)
            finally:
                winreg.CloseKey(handle)
        except OSError as exc:
            raise ActionFailed(
                f"Could not set {key}\\{value_name}: {exc}",
                code="registry_set_failed",
            ) from exc
        self.logger.debug("Set %s\\%s (%s) = %r", key, value_name, value_type, coerced)

    def delete(self, key: str, value_name: Optional[str] = None):
        self._root(split_key(key)[0])
        try:
            if value_name is not None:
                with self._open(key, winreg.KEY_SET_VALUE) as handle:
                    winreg.DeleteValue(handle, value_name)
            else:
                self._delete_tree(key)
        except FileNotFoundError:
            self.logger.debug("Registry entry already absent: %s", key)
        except OSError as exc:
            raise ActionFailed(
                f"Could not delete {key}: {exc}",
                code="registry_delete_failed",
            ) from exc

    def _delete_tree(self, key: str):
        with self._open(key, winreg.KEY_READ | winreg.KEY_WRITE) as handle:
            subkeys = []
            index = 0
            while True:
                try:
                    subkeys.append(winreg.EnumKey(handle, index))
                except OSError:
                    break
                index += 1
        for subkey in subkeys:
            self._delete_tree(f"{key}\\{subkey}")

        hive, sub_path = split_key(key)
        parent_path, _, leaf = sub_path.rpartition("\\")
        with self._open(f"{hive}\\{parent_path}" if parent_path else hive, winreg.KEY_WRITE) as parent:
            winreg.DeleteKey(parent, leaf)
