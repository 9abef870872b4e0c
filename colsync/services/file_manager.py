"""Reveal a path in the platform's native file browser."""
from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Union


def file_manager_command(path: Union[str, Path], platform: str = sys.platform) -> list[str]:
    target = str(path)
    if platform == "darwin":
        return ["open", target]
    if platform.startswith("win"):
        return ["explorer", target]
    return ["xdg-open", target]


def reveal_in_file_manager(path: Union[str, Path]) -> None:
    """Launch the file browser without waiting for it. Raises OSError if no opener is available."""
    subprocess.Popen(
        file_manager_command(path),
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
