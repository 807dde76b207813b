"""Location of the ZWO ASI Camera 2 SDK shared library.

The ``zwoasi`` package is a ctypes binding and must be pointed at the
vendor library before any camera call. The path is resolved in order:

1. An explicit path (``--asi-library`` on the command line)
2. The ``ZWO_ASI_LIB`` environment variable
3. A library bundled next to this module under ``<arch>/``

Usage:
    import zwoasi as asi
    from camera_gateway.drivers.asi_sdk import get_sdk_library_path

    asi.init(get_sdk_library_path())
"""

from __future__ import annotations

import os
import platform
from pathlib import Path

SDK_VERSION = "1.40"
SDK_ENV_VAR = "ZWO_ASI_LIB"

# platform.machine() to bundled library subdirectory
_ARCH_MAP = {
    "x86_64": "x64",
    "AMD64": "x64",
    "aarch64": "armv8",
    "armv7l": "armv7",
}


def get_sdk_library_path(override: str | Path | None = None) -> str:
    """Resolve the ASI SDK library path.

    Args:
        override: Explicit library path. Takes precedence over the
            environment and the bundled copy.

    Returns:
        Absolute path of an existing library file.

    Raises:
        RuntimeError: If the chosen path does not exist, or nothing was
            configured and no bundled library matches this architecture.

    Example:
        >>> get_sdk_library_path("/opt/zwo/lib/libASICamera2.so")
        '/opt/zwo/lib/libASICamera2.so'
    """
    configured = override or os.environ.get(SDK_ENV_VAR)
    if configured:
        lib_path = Path(configured).expanduser()
        if not lib_path.is_file():
            raise RuntimeError(f"ASI SDK library not found at {lib_path}")
        return str(lib_path.resolve())

    machine = platform.machine()
    arch_dir = _ARCH_MAP.get(machine)
    if arch_dir is None:
        raise RuntimeError(
            f"Unsupported architecture: {machine}. "
            f"Set {SDK_ENV_VAR} to the SDK library path."
        )

    lib_path = Path(__file__).parent / arch_dir / f"libASICamera2.so.{SDK_VERSION}"
    if not lib_path.exists():
        raise RuntimeError(
            f"ASI SDK library not found at {lib_path}. "
            f"Set {SDK_ENV_VAR} or pass an explicit library path."
        )

    return str(lib_path)
