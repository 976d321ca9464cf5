from __future__ import annotations

import subprocess
import sys
from typing import List, Optional


class ClipboardError(RuntimeError):
    """Raised when the platform clipboard tool is missing or fails."""


def clipboard_command(platform: Optional[str] = None) -> List[str]:
    plat = platform or sys.platform
    if plat == "darwin":
        return ["pbcopy"]
    if plat == "win32":
        return ["clip"]
    return ["xclip", "-selection", "clipboard"]


def copy_to_clipboard(text: str, platform: Optional[str] = None, timeout: float = 10.0) -> None:
    cmd = clipboard_command(platform)
    try:
        proc = subprocess.run(
            cmd,
            input=text,
            text=True,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise ClipboardError(f"Failed to copy to clipboard: {exc}") from exc
    if proc.returncode != 0:
        raise ClipboardError(f"Failed to copy to clipboard ({cmd[0]} exited with {proc.returncode})")
