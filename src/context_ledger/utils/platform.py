"""Cross-platform process helpers.

Background summaries are launched as detached children that must outlive
the sync or hook process that started them.
"""

import os
import sys
from typing import Any, Final

# Platform detection
IS_WINDOWS: Final[bool] = sys.platform == "win32"
IS_POSIX: Final[bool] = os.name == "posix"

# Windows process creation flags
_CREATE_NEW_PROCESS_GROUP: Final[int] = 0x00000200
_DETACHED_PROCESS: Final[int] = 0x00000008


def get_process_detach_kwargs() -> dict[str, Any]:
    """Get subprocess.Popen kwargs for detaching a process from the parent.

    Returns:
        ``start_new_session`` on POSIX, detached process-group flags on Windows.
    """
    if IS_WINDOWS:
        return {"creationflags": _CREATE_NEW_PROCESS_GROUP | _DETACHED_PROCESS}
    return {"start_new_session": True}
