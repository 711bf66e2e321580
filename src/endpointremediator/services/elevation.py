"""Administrative-rights detection."""

import ctypes
import os


def is_admin() -> bool:
    """Returns True when the current process token holds administrative rights."""
    if os.name == "nt":
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())
        except (AttributeError, OSError):
            return False
    geteuid = getattr(os, "geteuid", None)
    return bool(geteuid and geteuid() == 0)
