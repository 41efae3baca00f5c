"""Tests for the libclang shared library loader."""

import os
import warnings
from unittest.mock import MagicMock, patch

import pytest

import bindscrape._clang
from bindscrape._clang import LIBRARY_ENV_VAR, get_cindex, is_libclang_available


class _FakeLibclangError(Exception):
    pass


def _fake_cindex(loads: bool | list[bool]) -> MagicMock:
    """A stand-in for ``clang.cindex`` whose ``conf.lib`` loads or fails.

    :param loads: Outcome of each successive load attempt.
    """
    outcomes = list(loads) if isinstance(loads, list) else None
    cindex = MagicMock()
    cindex.LibclangError = _FakeLibclangError
    cindex.Config.loaded = False

    class _Conf:
        @property
        def lib(self):
            ok = outcomes.pop(0) if outcomes is not None else loads
            if not ok:
                raise _FakeLibclangError("cannot load")
            return object()

    cindex.conf = _Conf()
    return cindex


def _patch_clang(cindex: MagicMock):
    clang_pkg = MagicMock()
    clang_pkg.cindex = cindex
    return patch.dict("sys.modules", {"clang": clang_pkg, "clang.cindex": cindex})


class TestGetCindex:
    def setup_method(self):
        """Reset the cached module before each test."""
        bindscrape._clang._cached_cindex = None

    def teardown_method(self):
        bindscrape._clang._cached_cindex = None

    def test_bundled_library(self):
        cindex = _fake_cindex(True)
        with _patch_clang(cindex), patch.dict(os.environ, {}, clear=False):
            os.environ.pop(LIBRARY_ENV_VAR, None)
            assert get_cindex() is cindex
        cindex.Config.set_library_file.assert_not_called()

    def test_caching(self):
        cindex = _fake_cindex(True)
        with _patch_clang(cindex), patch.dict(os.environ, {}, clear=False):
            os.environ.pop(LIBRARY_ENV_VAR, None)
            first = get_cindex()
            second = get_cindex()
        assert first is second

    def test_env_var_override(self):
        cindex = _fake_cindex(True)
        with _patch_clang(cindex), patch.dict(os.environ, {LIBRARY_ENV_VAR: "/opt/libclang.so"}):
            assert get_cindex() is cindex
        cindex.Config.set_library_file.assert_called_once_with("/opt/libclang.so")

    def test_env_var_override_unloadable(self):
        cindex = _fake_cindex(False)
        with _patch_clang(cindex), patch.dict(os.environ, {LIBRARY_ENV_VAR: "/bad/libclang.so"}):
            with pytest.raises(RuntimeError, match="could not be loaded"):
                get_cindex()

    def test_falls_back_to_system_library(self):
        cindex = _fake_cindex([False, True])
        with (
            _patch_clang(cindex),
            patch.dict(os.environ, {}, clear=False),
            patch("bindscrape._clang.detect_llvm_version", return_value="18"),
            patch("bindscrape._clang.libclang_search_paths", return_value=["/missing.so", "/usr/lib/llvm-18/lib/libclang.so"]),
            patch("bindscrape._clang.os.path.isfile", side_effect=lambda p: p != "/missing.so"),
        ):
            os.environ.pop(LIBRARY_ENV_VAR, None)
            with warnings.catch_warnings(record=True) as caught:
                warnings.simplefilter("always")
                assert get_cindex() is cindex
        cindex.Config.set_library_file.assert_called_once_with("/usr/lib/llvm-18/lib/libclang.so")
        assert any("system library" in str(w.message) for w in caught)

    def test_nothing_found_raises_with_hint(self):
        cindex = _fake_cindex(False)
        with (
            _patch_clang(cindex),
            patch.dict(os.environ, {}, clear=False),
            patch("bindscrape._clang.detect_llvm_version", return_value=None),
            patch("bindscrape._clang.libclang_search_paths", return_value=[]),
        ):
            os.environ.pop(LIBRARY_ENV_VAR, None)
            with pytest.raises(RuntimeError, match="pip install libclang"):
                get_cindex()

    def test_version_specific_hint(self):
        cindex = _fake_cindex(False)
        with (
            _patch_clang(cindex),
            patch.dict(os.environ, {}, clear=False),
            patch("bindscrape._clang.detect_llvm_version", return_value="17"),
            patch("bindscrape._clang.libclang_search_paths", return_value=[]),
        ):
            os.environ.pop(LIBRARY_ENV_VAR, None)
            with pytest.raises(RuntimeError, match="libclang-17-dev"):
                get_cindex()


class TestIsLibclangAvailable:
    def test_false_on_runtime_error(self):
        with patch("bindscrape._clang.get_cindex", side_effect=RuntimeError("nope")):
            assert is_libclang_available() is False

    def test_false_on_import_error(self):
        with patch("bindscrape._clang.get_cindex", side_effect=ImportError("no clang")):
            assert is_libclang_available() is False

    def test_true_when_loaded(self):
        with patch("bindscrape._clang.get_cindex", return_value=MagicMock()):
            assert is_libclang_available() is True
