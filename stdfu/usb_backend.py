# stdfu/usb_backend.py
import os, sys, platform, ctypes
from pathlib import Path

LIBUSB_PATH_ENV = "STDFU_LIBUSB_PATH"


def _is_win():
    return sys.platform == "win32"


def _base_dir() -> Path:
    # PyInstaller builds unpack next to sys._MEIPASS
    if getattr(sys, "frozen", False) and hasattr(sys, "_MEIPASS"):
        return Path(sys._MEIPASS)
    return Path(__file__).parent


def _vendored_dll() -> Path | None:
    if not _is_win():
        return None
    sub = "x64" if platform.machine().lower() in ("amd64", "x86_64") else "x86"
    for candidate in (
        _base_dir() / "_vendor" / "libusb" / "windows" / sub / "libusb-1.0.dll",
        _base_dir() / "libusb-1.0.dll",
    ):
        if candidate.exists():
            return candidate
    return None


def libusb_library_path() -> Path | None:
    """Explicit libusb-1.0 shared library to load, or None for the system default."""
    override = os.environ.get(LIBUSB_PATH_ENV)
    if override:
        path = Path(override)
        if not path.exists():
            raise FileNotFoundError(f"{LIBUSB_PATH_ENV} points to a missing file: {path}")
        return path
    return _vendored_dll()


def get_libusb1_backend():
    import usb.backend.libusb1 as libusb1

    lib_path = libusb_library_path()
    if lib_path is None:
        return libusb1.get_backend()

    if _is_win():
        try:
            os.add_dll_directory(str(lib_path.parent))
        except (AttributeError, OSError):
            pass
    ctypes.CDLL(str(lib_path))  # preload for clearer errors
    return libusb1.get_backend(find_library=lambda _: str(lib_path))
