"""Tests for LLVM version detection logic."""

import os
import subprocess
from unittest.mock import MagicMock, patch

from bindscrape._clang._version import VERSION_ENV_VAR, detect_llvm_version, libclang_search_paths


def _which_only(*names: str) -> object:
    """Return a shutil.which mock that only finds the given binary names."""
    name_set = set(names)

    def side_effect(cmd: str) -> str | None:
        if cmd in name_set:
            return f"/usr/bin/{cmd}"
        return None

    return side_effect


def _result(stdout: str, returncode: int = 0) -> MagicMock:
    mock_result = MagicMock()
    mock_result.returncode = returncode
    mock_result.stdout = stdout
    return mock_result


# Patch glob.glob to disable llvm-dir detection in tests that don't need it.
_no_llvm_dir = patch("bindscrape._clang._version.glob.glob", return_value=[])


class TestEnvVarOverride:
    def test_env_var(self):
        with patch.dict(os.environ, {VERSION_ENV_VAR: "18"}):
            assert detect_llvm_version() == "18"

    def test_env_var_takes_precedence(self):
        """Env var should take precedence over llvm-config."""
        with (
            patch.dict(os.environ, {VERSION_ENV_VAR: "20"}),
            patch("bindscrape._clang._version.shutil.which", return_value="/usr/bin/llvm-config"),
            patch("bindscrape._clang._version.subprocess.run", return_value=_result("19.0.0\n")),
        ):
            assert detect_llvm_version() == "20"

    def test_env_var_with_whitespace_is_stripped(self):
        with patch.dict(os.environ, {VERSION_ENV_VAR: "  19  "}):
            assert detect_llvm_version() == "19"

    def test_invalid_env_var_is_ignored(self, caplog):
        with (
            patch.dict(os.environ, {VERSION_ENV_VAR: "latest"}),
            patch("bindscrape._clang._version.shutil.which", side_effect=_which_only("llvm-config")),
            patch("bindscrape._clang._version.subprocess.run", return_value=_result("17.0.6\n")),
        ):
            assert detect_llvm_version() == "17"
        assert "not a valid major version" in caplog.text


class TestLlvmConfig:
    def test_llvm_config_full_version(self):
        with (
            patch.dict(os.environ, {}, clear=False),
            patch("bindscrape._clang._version.shutil.which", side_effect=_which_only("llvm-config")),
            patch("bindscrape._clang._version.subprocess.run", return_value=_result("18.1.0\n")),
        ):
            os.environ.pop(VERSION_ENV_VAR, None)
            assert detect_llvm_version() == "18"

    def test_llvm_config_versioned_binary(self):
        """When only llvm-config-18 exists (common on Debian/Ubuntu)."""
        with (
            patch.dict(os.environ, {}, clear=False),
            patch("bindscrape._clang._version.shutil.which", side_effect=_which_only("llvm-config-18")),
            patch("bindscrape._clang._version.subprocess.run", return_value=_result("18.1.8\n")) as run,
        ):
            os.environ.pop(VERSION_ENV_VAR, None)
            assert detect_llvm_version() == "18"
        assert run.call_args[0][0][0] == "/usr/bin/llvm-config-18"

    def test_llvm_config_failure_falls_through_to_clang(self):
        outputs = [_result("", returncode=1), _result("#define __clang_major__ 16\n")]
        with (
            patch.dict(os.environ, {}, clear=False),
            patch("bindscrape._clang._version.shutil.which", side_effect=_which_only("llvm-config", "clang")),
            patch("bindscrape._clang._version.subprocess.run", side_effect=outputs),
        ):
            os.environ.pop(VERSION_ENV_VAR, None)
            assert detect_llvm_version() == "16"


class TestClangPreprocessor:
    def test_clang_major_macro(self):
        stdout = "#define __clang__ 1\n#define __clang_major__ 19\n#define __clang_minor__ 1\n"
        with (
            patch.dict(os.environ, {}, clear=False),
            patch("bindscrape._clang._version.shutil.which", side_effect=_which_only("clang")),
            patch("bindscrape._clang._version.subprocess.run", return_value=_result(stdout)),
        ):
            os.environ.pop(VERSION_ENV_VAR, None)
            assert detect_llvm_version() == "19"

    def test_clang_timeout(self):
        with (
            patch.dict(os.environ, {}, clear=False),
            patch("bindscrape._clang._version.shutil.which", side_effect=_which_only("clang")),
            patch("bindscrape._clang._version.subprocess.run", side_effect=subprocess.TimeoutExpired("clang", 5)),
            _no_llvm_dir,
        ):
            os.environ.pop(VERSION_ENV_VAR, None)
            assert detect_llvm_version() is None


class TestLlvmDir:
    def test_picks_newest_directory(self):
        with (
            patch.dict(os.environ, {}, clear=False),
            patch("bindscrape._clang._version.shutil.which", return_value=None),
            patch("bindscrape._clang._version.sys.platform", "linux"),
            patch(
                "bindscrape._clang._version.glob.glob",
                return_value=["/usr/lib/llvm-14/", "/usr/lib/llvm-18/", "/usr/lib/llvm-15/"],
            ),
        ):
            os.environ.pop(VERSION_ENV_VAR, None)
            assert detect_llvm_version() == "18"

    def test_nothing_found(self):
        with (
            patch.dict(os.environ, {}, clear=False),
            patch("bindscrape._clang._version.shutil.which", return_value=None),
            _no_llvm_dir,
        ):
            os.environ.pop(VERSION_ENV_VAR, None)
            assert detect_llvm_version() is None


class TestSearchPaths:
    def test_linux_versioned_paths_first(self):
        with patch("bindscrape._clang._version.sys.platform", "linux"):
            paths = libclang_search_paths("18")
        assert paths[0] == "/usr/lib/llvm-18/lib/libclang.so"
        assert paths[-1] == "/usr/lib64/libclang.so"

    def test_linux_unversioned(self):
        with patch("bindscrape._clang._version.sys.platform", "linux"):
            assert libclang_search_paths() == ["/usr/lib/libclang.so", "/usr/lib64/libclang.so"]

    def test_macos(self):
        with patch("bindscrape._clang._version.sys.platform", "darwin"):
            paths = libclang_search_paths("17")
        assert paths[0] == "/opt/homebrew/opt/llvm@17/lib/libclang.dylib"
        assert all(p.endswith("libclang.dylib") for p in paths)

    def test_windows(self):
        with (
            patch("bindscrape._clang._version.sys.platform", "win32"),
            patch.dict(os.environ, {"PROGRAMFILES": "C:\\Program Files"}),
        ):
            paths = libclang_search_paths()
        assert any(p.endswith("libclang.dll") for p in paths)
