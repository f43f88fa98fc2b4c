"""
Wallpaper setter.

Sets a local image as the desktop wallpaper with the platform's own tools.
"""
import logging
import subprocess
import sys
from pathlib import Path

from pollen_wall.exceptions import ApplyError

logger = logging.getLogger(__name__)

SPI_SETDESKWALLPAPER = 20
SPIF_UPDATEINIFILE = 0x01
SPIF_SENDCHANGE = 0x02


def _run(command: list):
    try:
        subprocess.run(command, check=True, capture_output=True, timeout=10)
    except FileNotFoundError as e:
        raise ApplyError(f"{command[0]} is not available: {e}") from e
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.decode("utf-8", errors="replace").strip() if e.stderr else ""
        raise ApplyError(f"{command[0]} exited with {e.returncode}: {stderr}") from e
    except subprocess.TimeoutExpired as e:
        raise ApplyError(f"{command[0]} timed out") from e


def _set_macos(path: Path):
    script = f'tell application "System Events" to tell every desktop to set picture to "{path}"'
    _run(["osascript", "-e", script])


def _set_linux(path: Path):
    uri = path.as_uri()
    _run(["gsettings", "set", "org.gnome.desktop.background", "picture-uri", uri])
    # Only exists on GNOME 42+
    try:
        _run(["gsettings", "set", "org.gnome.desktop.background", "picture-uri-dark", uri])
    except ApplyError as e:
        logger.debug(f"picture-uri-dark not set: {e}")


def _set_windows(path: Path):
    import ctypes

    ok = ctypes.windll.user32.SystemParametersInfoW(
        SPI_SETDESKWALLPAPER, 0, str(path), SPIF_UPDATEINIFILE | SPIF_SENDCHANGE
    )
    if not ok:
        raise ApplyError(f"SystemParametersInfoW refused {path}")


def set_wallpaper(path: Path):
    """
    Set `path` as the desktop wallpaper.

    Raises:
        ApplyError: The platform tool failed or the platform is not supported
    """
    path = Path(path).resolve()
    if sys.platform == "darwin":
        _set_macos(path)
    elif sys.platform.startswith("linux"):
        _set_linux(path)
    elif sys.platform == "win32":
        _set_windows(path)
    else:
        raise ApplyError(f"Setting the wallpaper is not supported on {sys.platform}")
