"""Configuration types for ``bindscrape.toml``.

A configuration names the output document and splits the input headers
into partitions. Each partition maps a set of headers to one namespace and
one shared library::

    include_paths = ["include"]

    [output]
    name = "MultiTest"
    file = "multi.json"

    [[partition]]
    namespace = "MultiTest.Types"
    library = "multi"
    headers = ["types.h"]

    [[partition]]
    namespace = "MultiTest.Widgets"
    library = "multi"
    headers = ["widget.h"]
    traverse = ["widget.h"]

Header paths are resolved relative to the directory holding the
configuration file, then against ``include_paths``.
"""

from __future__ import annotations

import logging
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_FILE = "output.json"
DEFAULT_OUTPUT_FORMAT = "json"
WRAPPER_DIR_NAME = "bindscrape_wrappers"


class ConfigError(ValueError):
    """Raised when a configuration file cannot be read or is invalid."""


@dataclass
class OutputConfig:
    """Output settings.

    :param name: Assembly name written into the metadata document.
    :param file: Output path, relative to the configuration directory.
    :param format: Writer used by :func:`bindscrape.run` when no format is
        given explicitly.
    """

    name: str
    file: Path = field(default_factory=lambda: Path(DEFAULT_OUTPUT_FILE))
    format: str = DEFAULT_OUTPUT_FORMAT


@dataclass
class PartitionConfig:
    """A single partition: a set of headers mapped to one namespace."""

    namespace: str
    library: str
    headers: list[Path]
    traverse: list[Path] = field(default_factory=list)
    clang_args: list[str] = field(default_factory=list)

    def traverse_files(self) -> list[Path]:
        """Files to emit declarations from, falling back to ``headers``."""
        return self.traverse if self.traverse else self.headers

    def wrapper_header(self, base_dir: Path, include_paths: list[Path] | None = None) -> Path:
        """Return the translation unit to parse for this partition.

        A single header is parsed directly. Several headers are combined
        into a generated ``.c`` file that ``#include``s each of them by
        absolute path. The wrapper is named after the namespace so repeated
        runs overwrite the same file.
        """
        include_paths = include_paths or []
        if len(self.headers) == 1:
            return resolve_header(self.headers[0], base_dir, include_paths)

        wrapper_dir = Path(tempfile.gettempdir()) / WRAPPER_DIR_NAME
        wrapper_dir.mkdir(parents=True, exist_ok=True)
        safe_name = self.namespace.replace(".", "_")
        wrapper_path = wrapper_dir / f"{safe_name}_wrapper.c"

        lines = []
        for header in self.headers:
            resolved = resolve_header(header, base_dir, include_paths).absolute()
            lines.append(f'#include "{resolved.as_posix()}"')
        wrapper_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        logger.debug("wrote wrapper %s for %d headers", wrapper_path, len(self.headers))
        return wrapper_path


@dataclass
class TypeImportConfig:
    """Types imported from an earlier metadata document.

    :param metadata: Path of a JSON document produced by bindscrape.
    :param namespace: Only types whose namespace starts with this prefix
        are imported.
    """

    metadata: Path
    namespace: str


@dataclass
class Config:
    """Root configuration."""

    output: OutputConfig
    partitions: list[PartitionConfig] = field(default_factory=list)
    namespace_overrides: dict[str, str] = field(default_factory=dict)
    type_imports: list[TypeImportConfig] = field(default_factory=list)
    include_paths: list[Path] = field(default_factory=list)

    def clang_args_for(self, partition: PartitionConfig, base_dir: Path) -> list[str]:
        """Clang arguments for a partition: ``-I`` per include path, then its own."""
        args = [f"-I{_resolve_dir(p, base_dir)}" for p in self.include_paths]
        args.extend(partition.clang_args)
        return args

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: str = "<config>") -> Config:
        """Build a Config from parsed TOML data.

        :raises ConfigError: If a required key is missing or has the wrong type.
        """
        output_data = _require(data, "output", dict, source)
        output = OutputConfig(
            name=_require(output_data, "name", str, f"{source} [output]"),
            file=Path(_optional(output_data, "file", str, DEFAULT_OUTPUT_FILE, f"{source} [output]")),
            format=_optional(output_data, "format", str, DEFAULT_OUTPUT_FORMAT, f"{source} [output]"),
        )

        partitions = []
        for i, part in enumerate(_optional(data, "partition", list, [], source)):
            where = f"{source} [[partition]] #{i + 1}"
            if not isinstance(part, dict):
                raise ConfigError(f"{where}: expected a table")
            headers = _string_list(part, "headers", where, required=True)
            if not headers:
                raise ConfigError(f"{where}: 'headers' must not be empty")
            partitions.append(
                PartitionConfig(
                    namespace=_require(part, "namespace", str, where),
                    library=_require(part, "library", str, where),
                    headers=[Path(h) for h in headers],
                    traverse=[Path(t) for t in _string_list(part, "traverse", where)],
                    clang_args=_string_list(part, "clang_args", where),
                )
            )

        overrides = _optional(data, "namespace_overrides", dict, {}, source)
        for name, namespace in overrides.items():
            if not isinstance(namespace, str):
                raise ConfigError(f"{source} [namespace_overrides]: value for {name!r} must be a string")

        type_imports = []
        for i, imp in enumerate(_optional(data, "type_import", list, [], source)):
            where = f"{source} [[type_import]] #{i + 1}"
            if not isinstance(imp, dict):
                raise ConfigError(f"{where}: expected a table")
            type_imports.append(
                TypeImportConfig(
                    metadata=Path(_require(imp, "metadata", str, where)),
                    namespace=_require(imp, "namespace", str, where),
                )
            )

        include_paths = [Path(p) for p in _string_list(data, "include_paths", source)]

        return cls(
            output=output,
            partitions=partitions,
            namespace_overrides=dict(overrides),
            type_imports=type_imports,
            include_paths=include_paths,
        )


def load_config(path: Path) -> Config:
    """Load and parse a ``bindscrape.toml`` configuration file.

    :raises ConfigError: If the file cannot be read, is not valid TOML, or
        does not describe a valid configuration.
    """
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"failed to read config file {path}: {e}") from e
    try:
        data = tomllib.loads(content)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"failed to parse config file {path}: {e}") from e
    config = Config.from_dict(data, source=str(path))
    logger.debug("loaded config %s with %d partitions", path, len(config.partitions))
    return config


def resolve_header(header: Path, base_dir: Path, include_paths: list[Path]) -> Path:
    """Resolve a header path from the configuration.

    Absolute paths are returned unchanged. Relative paths are tried against
    ``base_dir`` first, then each include path in order. When nothing
    matches, the ``base_dir`` candidate is returned so the eventual error
    names a sensible path.
    """
    header = Path(header)
    if header.is_absolute():
        return header
    candidate = base_dir / header
    if candidate.exists():
        return candidate
    for include in include_paths:
        found = _resolve_dir(include, base_dir) / header
        if found.exists():
            return found
    return candidate


def _resolve_dir(path: Path, base_dir: Path) -> Path:
    path = Path(path)
    return path if path.is_absolute() else base_dir / path


def _require(data: dict[str, Any], key: str, kind: type, where: str) -> Any:
    if key not in data:
        raise ConfigError(f"{where}: missing required key {key!r}")
    value = data[key]
    if not isinstance(value, kind):
        raise ConfigError(f"{where}: {key!r} must be a {kind.__name__}, got {type(value).__name__}")
    return value


def _optional(data: dict[str, Any], key: str, kind: type, default: Any, where: str) -> Any:
    if key not in data:
        return default
    return _require(data, key, kind, where)


def _string_list(data: dict[str, Any], key: str, where: str, required: bool = False) -> list[str]:
    values = _require(data, key, list, where) if required else _optional(data, key, list, [], where)
    for value in values:
        if not isinstance(value, str):
            raise ConfigError(f"{where}: every entry of {key!r} must be a string")
    return list(values)
