"""Writers that render bindscrape metadata to output formats.

Available Writers
-----------------
json
    Binding metadata document: namespaces, libraries, types with resolved
    cross-namespace references. Readable back with
    :func:`bindscrape.writers.json.load_metadata`.
ctypes
    Importable Python module with ctypes bindings.

Example
-------
::

    from bindscrape.writers import get_writer, list_writers

    # Get the default writer (json)
    writer = get_writer()

    # Get a specific writer with options
    writer = get_writer("ctypes", namespace="MultiTest.Widgets")

    for name in list_writers():
        print(name)
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from bindscrape.ir import Metadata

__all__ = [
    "WriterBackend",
    "get_default_writer",
    "get_writer",
    "get_writer_info",
    "is_writer_available",
    "list_writers",
    "register_writer",
]

# =============================================================================
# Writer Protocol
# =============================================================================


@runtime_checkable
class WriterBackend(Protocol):
    """Protocol defining the interface for output writers.

    Writer-specific options (indent for JSON, namespace filter for ctypes)
    are constructor parameters on the concrete class, not part of the
    write() signature.
    """

    def write(self, metadata: Metadata) -> str:
        """Render metadata to the target output format.

        Writers produce best-effort output and must not raise for valid
        metadata; declarations they cannot represent are skipped or
        replaced by placeholders.
        """
        ...

    @property
    def name(self) -> str:
        """Human-readable name of this writer (e.g., ``"json"``)."""
        ...

    @property
    def format_description(self) -> str:
        """Short description of the output format."""
        ...


# =============================================================================
# Writer Registry
# =============================================================================

# Writers are registered lazily when their modules are first imported.
_WRITER_REGISTRY: dict[str, type[WriterBackend]] = {}
_WRITER_DESCRIPTIONS: dict[str, str] = {}
_DEFAULT_WRITER: str | None = None
_WRITERS_LOADED: bool = False


def register_writer(
    name: str,
    writer_class: type[WriterBackend],
    is_default: bool = False,
    description: str | None = None,
) -> None:
    """Register an output writer.

    Called by writer modules during import to self-register. The first
    registered writer becomes the default unless ``is_default`` is set on a
    later registration.

    :param name: Writer name used in :func:`get_writer` lookups.
    :param writer_class: The writer class implementing :class:`WriterBackend`.
    :param is_default: If True, this writer becomes the default.
    :param description: Optional short description for :func:`get_writer_info`.
        Falls back to the first line of the class docstring.
    :raises ValueError: If the name is already registered.
    """
    global _DEFAULT_WRITER  # pylint: disable=global-statement
    if name in _WRITER_REGISTRY:
        raise ValueError(f"Writer already registered: {name!r}")
    _WRITER_REGISTRY[name] = writer_class
    if description is not None:
        _WRITER_DESCRIPTIONS[name] = description
    elif writer_class.__doc__:
        _WRITER_DESCRIPTIONS[name] = writer_class.__doc__.strip().split("\n")[0]
    if is_default or _DEFAULT_WRITER is None:
        _DEFAULT_WRITER = name


def list_writers() -> list[str]:
    """List names of all registered writers."""
    _ensure_writers_loaded()
    return list(_WRITER_REGISTRY.keys())


def is_writer_available(name: str) -> bool:
    _ensure_writers_loaded()
    return name in _WRITER_REGISTRY


def get_writer_info() -> list[dict[str, str | bool]]:
    """Get information about all registered writers without instantiating them.

    :returns: List of dicts with keys: name, description, is_default.
    """
    _ensure_writers_loaded()

    result: list[dict[str, str | bool]] = []
    for name, writer_class in _WRITER_REGISTRY.items():
        desc = _WRITER_DESCRIPTIONS.get(name, "")
        if not desc and writer_class.__doc__:
            desc = writer_class.__doc__.strip().split("\n")[0]
        result.append(
            {
                "name": name,
                "description": desc,
                "is_default": name == _DEFAULT_WRITER,
            }
        )
    return result


def get_writer(name: str | None = None, **kwargs: object) -> WriterBackend:
    """Get a writer instance.

    Keyword arguments are forwarded to the writer constructor::

        writer = get_writer("json", indent=None)

    :param name: Writer name, or None for the default writer.
    :raises ValueError: If the requested writer is not available.
    """
    _ensure_writers_loaded()
    if name is None:
        if _DEFAULT_WRITER is None:
            raise ValueError("No writers available")
        name = _DEFAULT_WRITER
    if name not in _WRITER_REGISTRY:
        available = ", ".join(_WRITER_REGISTRY.keys()) or "(none)"
        raise ValueError(f"Unknown writer: {name!r}. Available: {available}")
    return _WRITER_REGISTRY[name](**kwargs)


def get_default_writer() -> str:
    """Get the name of the default writer.

    :raises ValueError: If no writers are available.
    """
    _ensure_writers_loaded()
    if _DEFAULT_WRITER is None:
        raise ValueError("No writers available")
    return _DEFAULT_WRITER


def _ensure_writers_loaded() -> None:
    """Lazily import writer modules to populate the registry.

    NOTE: Managed circular import pattern. Writer modules import
    register_writer from here at load time, and this function imports the
    writer modules. Import order decides the default: json first.
    """
    global _WRITERS_LOADED  # pylint: disable=global-statement

    if _WRITERS_LOADED:
        return

    _WRITERS_LOADED = True

    import bindscrape.writers.json  # noqa: F401
    import bindscrape.writers.ctypes  # noqa: F401
