"""libclang loader.

bindscrape talks to libclang through ``clang.cindex`` from the ``libclang``
distribution, which ships its own shared library. This package decides
which shared library ``clang.cindex`` loads and caches the configured
module::

    from bindscrape._clang import get_cindex

    cindex = get_cindex()
    index = cindex.Index.create()

Selection order:

1. ``BINDSCRAPE_LIBCLANG`` env var naming a shared library file
2. whatever ``clang.cindex`` finds by itself (the bundled library)
3. system locations from :func:`libclang_search_paths` for the detected
   LLVM version
"""

from __future__ import annotations

import logging
import os
import warnings
from types import ModuleType

from bindscrape._clang._version import detect_llvm_version, libclang_search_paths

logger = logging.getLogger(__name__)

LIBRARY_ENV_VAR = "BINDSCRAPE_LIBCLANG"

_cached_cindex: ModuleType | None = None


def _try_load(cindex: ModuleType) -> bool:
    """Force the shared library to load. Returns False on failure."""
    try:
        cindex.conf.lib  # noqa: B018 (property access loads the library)
    except cindex.LibclangError as e:
        logger.debug("libclang load failed: %s", e)
        return False
    return True


def get_cindex() -> ModuleType:
    """Return ``clang.cindex`` with a working shared library.

    The result is cached.

    :raises RuntimeError: If no usable libclang shared library is found.
    """
    global _cached_cindex  # pylint: disable=global-statement
    if _cached_cindex is not None:
        return _cached_cindex

    from clang import cindex

    override = os.environ.get(LIBRARY_ENV_VAR)
    if override:
        if not cindex.Config.loaded:
            cindex.Config.set_library_file(override)
        if not _try_load(cindex):
            raise RuntimeError(f"{LIBRARY_ENV_VAR}={override!r} could not be loaded as libclang")
        _cached_cindex = cindex
        return cindex

    if not _try_load(cindex):
        version = detect_llvm_version()
        for candidate in libclang_search_paths(version):
            if not os.path.isfile(candidate):
                continue
            cindex.Config.set_library_file(candidate)
            if _try_load(cindex):
                warnings.warn(
                    f"Bundled libclang unavailable, using system library {candidate}",
                    stacklevel=2,
                )
                break
        else:
            if version:
                hint = (
                    f"libclang {version} detected but shared library not found.\n"
                    f"Install: brew install llvm (macOS) or "
                    f"apt install libclang-{version}-dev (Ubuntu), "
                    f"or set {LIBRARY_ENV_VAR}"
                )
            else:
                hint = (
                    "No LLVM/clang installation found.\n"
                    "Install: pip install libclang, brew install llvm (macOS) or "
                    f"apt install libclang-dev (Ubuntu), or set {LIBRARY_ENV_VAR}"
                )
            raise RuntimeError(f"libclang shared library could not be loaded. {hint}")

    _cached_cindex = cindex
    return cindex


def is_libclang_available() -> bool:
    """Check whether libclang can be loaded, without raising."""
    try:
        get_cindex()
    except (ImportError, RuntimeError):
        return False
    return True


__all__ = [
    "LIBRARY_ENV_VAR",
    "detect_llvm_version",
    "get_cindex",
    "is_libclang_available",
    "libclang_search_paths",
]
