"""Shared fixtures for integration tests that parse real headers with libclang."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from bindscrape._clang import is_libclang_available

# Skip entire module if libclang unavailable
pytestmark = pytest.mark.skipif(
    not is_libclang_available(),
    reason="libclang not available",
)

FIXTURES = Path(__file__).parent.parent / "fixtures"


@pytest.fixture(scope="session")
def fixtures_dir() -> Path:
    return FIXTURES


@pytest.fixture(scope="session")
def clang_index() -> Any:
    """A ``clang.cindex.Index`` for the session."""
    from bindscrape._clang import get_cindex

    return get_cindex().Index.create()


@pytest.fixture()
def write_header(tmp_path: Path):
    """Write a header into the test's temp dir and return its path."""

    def _write(name: str, text: str) -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write
