"""Tests for the writer registry."""

from __future__ import annotations

import json
from collections.abc import Generator
from typing import Any

import pytest

from bindscrape.ir import Constant, Metadata, Partition
from bindscrape.writers import (
    WriterBackend,
    get_default_writer,
    get_writer,
    get_writer_info,
    is_writer_available,
    list_writers,
    register_writer,
)


class MockWriter:
    """A mock writer for testing the registry."""

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs

    def write(self, metadata: Metadata) -> str:
        return metadata.assembly

    @property
    def name(self) -> str:
        return "mock"

    @property
    def format_description(self) -> str:
        return "Mock writer for testing"


class MockWriterWithDocstring:
    """Extract this first line as description.

    This second line should be ignored.
    """

    def write(self, metadata: Metadata) -> str:
        return ""

    @property
    def name(self) -> str:
        return "with-doc"

    @property
    def format_description(self) -> str:
        return ""


@pytest.fixture()
def reset_writer_registry() -> Generator[None, None, None]:
    """Save and restore global writer registry state around each test."""
    import bindscrape.writers as w

    saved_registry = dict(w._WRITER_REGISTRY)
    saved_descriptions = dict(w._WRITER_DESCRIPTIONS)
    saved_default = w._DEFAULT_WRITER
    saved_loaded = w._WRITERS_LOADED

    w._WRITER_REGISTRY.clear()
    w._WRITER_DESCRIPTIONS.clear()
    w._DEFAULT_WRITER = None
    # Treat the registry as loaded so the real writers are not pulled in.
    w._WRITERS_LOADED = True

    yield

    w._WRITER_REGISTRY.clear()
    w._WRITER_REGISTRY.update(saved_registry)
    w._WRITER_DESCRIPTIONS.clear()
    w._WRITER_DESCRIPTIONS.update(saved_descriptions)
    w._DEFAULT_WRITER = saved_default
    w._WRITERS_LOADED = saved_loaded


class TestWriterRegistry:
    """Registry mechanics, exercised with mock writers."""

    @pytest.fixture(autouse=True)
    def _isolate_registry(self, reset_writer_registry: None) -> None:
        """Use the reset fixture for every mock-based test."""

    def test_register_and_get_writer(self) -> None:
        register_writer("mock", MockWriter, is_default=True)
        writer = get_writer("mock")
        assert isinstance(writer, MockWriter)
        assert writer.write(Metadata("Asm")) == "Asm"

    def test_first_registered_is_default(self) -> None:
        register_writer("first", MockWriter)
        register_writer("second", MockWriter)
        assert get_default_writer() == "first"

    def test_explicit_default_wins(self) -> None:
        register_writer("first", MockWriter)
        register_writer("second", MockWriter, is_default=True)
        assert isinstance(get_writer(), MockWriter)
        assert get_default_writer() == "second"

    def test_list_writers(self) -> None:
        register_writer("alpha", MockWriter)
        register_writer("beta", MockWriter)
        assert list_writers() == ["alpha", "beta"]

    def test_duplicate_registration_raises(self) -> None:
        register_writer("mock", MockWriter)
        with pytest.raises(ValueError, match="Writer already registered"):
            register_writer("mock", MockWriter)

    def test_get_nonexistent_writer(self) -> None:
        register_writer("mock", MockWriter)
        with pytest.raises(ValueError, match="Unknown writer: 'nonexistent'. Available: mock"):
            get_writer("nonexistent")

    def test_no_writers_available(self) -> None:
        with pytest.raises(ValueError, match="No writers available"):
            get_writer()
        with pytest.raises(ValueError, match="No writers available"):
            get_default_writer()

    def test_is_writer_available(self) -> None:
        register_writer("mock", MockWriter)
        assert is_writer_available("mock") is True
        assert is_writer_available("nonexistent") is False

    def test_get_writer_info(self) -> None:
        register_writer("mock", MockWriter, description="A test writer")
        info = get_writer_info()
        assert info == [{"name": "mock", "description": "A test writer", "is_default": True}]

    def test_description_from_docstring(self) -> None:
        register_writer("with-doc", MockWriterWithDocstring)
        assert get_writer_info()[0]["description"] == "Extract this first line as description."

    def test_get_writer_passes_kwargs(self) -> None:
        register_writer("mock", MockWriter, is_default=True)
        writer = get_writer("mock", foo=1, bar="hello")
        assert writer.kwargs == {"foo": 1, "bar": "hello"}


class TestWriterRegistryIntegration:
    """Tests against the real registry populated by _ensure_writers_loaded()."""

    def test_builtin_writers_registered(self) -> None:
        names = list_writers()
        assert "json" in names
        assert "ctypes" in names

    def test_json_is_default(self) -> None:
        assert get_default_writer() == "json"

    def test_writers_implement_protocol(self) -> None:
        for name in ("json", "ctypes"):
            assert isinstance(get_writer(name), WriterBackend)

    def test_info_marks_default(self) -> None:
        defaults = [entry["name"] for entry in get_writer_info() if entry["is_default"]]
        assert defaults == ["json"]

    def test_json_roundtrip_through_registry(self) -> None:
        metadata = Metadata("Reg", [Partition("Reg", "reg", constants=[Constant("ANSWER", 42)])])
        parsed = json.loads(get_writer().write(metadata))
        assert parsed["namespaces"][0]["constants"][0]["value"] == 42
