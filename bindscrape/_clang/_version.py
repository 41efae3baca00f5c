"""LLVM version detection and libclang search paths.

Detection strategy (in order):
1. BINDSCRAPE_CLANG_VERSION env var (explicit user override)
2. llvm-config --version (tries versioned names like llvm-config-18)
3. clang -dM -E -x c /dev/null to get __clang_major__ (tries clang-18 etc.)
4. /usr/lib/llvm-{N}/ directory presence (Debian/Ubuntu, Linux only)
5. Return None if all methods fail

The detected version only steers where :func:`libclang_search_paths` looks
for a system shared library; the Python bindings themselves come from the
``libclang`` distribution.
"""

from __future__ import annotations

import glob
import logging
import os
import re
import shutil
import subprocess
import sys

logger = logging.getLogger(__name__)

VERSION_ENV_VAR = "BINDSCRAPE_CLANG_VERSION"


def detect_llvm_version() -> str | None:
    """Detect the system LLVM major version.

    Returns the major version as a string (e.g., "18") or None if detection fails.
    """
    env_version = os.environ.get(VERSION_ENV_VAR)
    if env_version:
        stripped = env_version.strip()
        if stripped.isdigit():
            return stripped
        logger.warning("%s=%r is not a valid major version number, ignoring", VERSION_ENV_VAR, env_version)

    for strategy in (_try_llvm_config, _try_clang_preprocessor, _try_llvm_dir):
        version = strategy()
        if version is not None:
            return version

    return None


def _find_versioned_binary(base_name: str) -> str | None:
    """Find a binary by name, trying unversioned first then versioned variants.

    On Debian/Ubuntu, tools are often only available as e.g. llvm-config-18
    or clang-18 without an unversioned symlink.
    """
    path = shutil.which(base_name)
    if path:
        return path

    for suffix in range(30, 13, -1):
        path = shutil.which(f"{base_name}-{suffix}")
        if path:
            return path

    return None


def _major_of(version: str) -> str | None:
    major = version.strip().split(".")[0]
    return major if major.isdigit() else None


def _try_llvm_config() -> str | None:
    llvm_config = _find_versioned_binary("llvm-config")
    if not llvm_config:
        return None

    try:
        result = subprocess.run(
            [llvm_config, "--version"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.SubprocessError, OSError):
        return None
    if result.returncode != 0:
        return None
    return _major_of(result.stdout)


def _try_clang_preprocessor() -> str | None:
    """Read ``__clang_major__`` from the preprocessor's predefined macros.

    Works for both upstream LLVM clang and Apple clang.
    """
    clang = _find_versioned_binary("clang")
    if not clang:
        return None

    null_file = "NUL" if sys.platform == "win32" else "/dev/null"
    try:
        result = subprocess.run(
            [clang, "-dM", "-E", "-x", "c", null_file],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (subprocess.SubprocessError, OSError):
        return None
    if result.returncode != 0:
        return None
    match = re.search(r"#define\s+__clang_major__\s+(\d+)", result.stdout)
    return match.group(1) if match else None


def _try_llvm_dir() -> str | None:
    """Pick the newest ``/usr/lib/llvm-{N}/`` directory (Debian/Ubuntu)."""
    if sys.platform != "linux":
        return None

    versions = []
    for d in glob.glob("/usr/lib/llvm-*/"):
        match = re.search(r"/llvm-(\d+)/", d)
        if match:
            versions.append(int(match.group(1)))
    if not versions:
        return None
    return str(max(versions))


def libclang_search_paths(version: str | None = None) -> list[str]:
    """Candidate libclang shared library paths for this platform.

    :param version: LLVM major version used to build versioned paths. When
        None, only unversioned locations are returned.
    """
    paths: list[str] = []
    if sys.platform == "darwin":
        if version:
            paths.append(f"/opt/homebrew/opt/llvm@{version}/lib/libclang.dylib")
            paths.append(f"/usr/local/opt/llvm@{version}/lib/libclang.dylib")
        paths.extend(
            [
                "/opt/homebrew/opt/llvm/lib/libclang.dylib",
                "/usr/local/opt/llvm/lib/libclang.dylib",
                "/Library/Developer/CommandLineTools/usr/lib/libclang.dylib",
                "/Applications/Xcode.app/Contents/Developer/Toolchains/XcodeDefault.xctoolchain/usr/lib/libclang.dylib",
            ]
        )
    elif sys.platform == "win32":
        for env_var in ("PROGRAMFILES", "PROGRAMFILES(X86)"):
            root = os.environ.get(env_var)
            if root:
                paths.append(os.path.join(root, "LLVM", "bin", "libclang.dll"))
    else:
        if version:
            paths.append(f"/usr/lib/llvm-{version}/lib/libclang.so")
            paths.append(f"/usr/lib/llvm-{version}/lib/libclang.so.1")
            paths.append(f"/usr/lib64/llvm{version}/lib64/libclang.so")
            paths.append(f"/usr/lib/x86_64-linux-gnu/libclang-{version}.so.1")
            paths.append(f"/usr/lib/aarch64-linux-gnu/libclang-{version}.so.1")
        paths.extend(["/usr/lib/libclang.so", "/usr/lib64/libclang.so"])
    return paths
