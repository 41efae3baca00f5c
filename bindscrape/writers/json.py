"""Serialize bindscrape metadata to a JSON document, and read it back.

The document is the interchange format between runs: downstream configs
import types from it (``[[type_import]]``), and other tools can generate
bindings from it without libclang. Layout::

    {
      "assembly": "MultiTest",
      "format_version": 1,
      "namespaces": [
        {
          "namespace": "MultiTest.Widgets",
          "library": "multi",
          "structs": [...],
          "enums": [...],
          "functions": [...],
          "typedefs": [...],
          "constants": [...]
        }
      ]
    }

Named type references carry the namespace that owns them, resolved through
the type registry when written.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from bindscrape.ir import (
    Array,
    Constant,
    Enum,
    EnumValue,
    Field,
    Function,
    FunctionPointer,
    Metadata,
    Named,
    Parameter,
    Partition,
    Pointer,
    Primitive,
    SourceLocation,
    Struct,
    Typedef,
    TypeExpr,
    TypeRegistry,
)

FORMAT_VERSION = 1

# =============================================================================
# Writing
# =============================================================================


def _type_to_dict(t: TypeExpr, registry: TypeRegistry, namespace: str) -> dict[str, Any]:
    """Convert a TypeExpr to a JSON-serializable dict."""
    if isinstance(t, Primitive):
        return {"kind": "primitive", "name": t.name}
    elif isinstance(t, Pointer):
        d: dict[str, Any] = {"kind": "pointer", "pointee": _type_to_dict(t.pointee, registry, namespace)}
        if t.is_const:
            d["is_const"] = True
        return d
    elif isinstance(t, Array):
        return {
            "kind": "array",
            "element": _type_to_dict(t.element, registry, namespace),
            "length": t.length,
        }
    elif isinstance(t, Named):
        return {"kind": "named", "name": t.name, "namespace": registry.namespace_for(t.name, namespace)}
    elif isinstance(t, FunctionPointer):
        d = {
            "kind": "function_pointer",
            "return_type": _type_to_dict(t.return_type, registry, namespace),
            "params": [_type_to_dict(p, registry, namespace) for p in t.params],
            "calling_convention": t.calling_convention,
        }
        if t.is_variadic:
            d["is_variadic"] = True
        return d
    else:
        return {"kind": "unknown", "repr": repr(t)}


def _location_to_dict(loc: SourceLocation) -> dict[str, Any]:
    d: dict[str, Any] = {"file": loc.file, "line": loc.line}
    if loc.column is not None:
        d["column"] = loc.column
    return d


def _field_to_dict(f: Field, registry: TypeRegistry, namespace: str) -> dict[str, Any]:
    d: dict[str, Any] = {"name": f.name, "type": _type_to_dict(f.type, registry, namespace)}
    if f.bit_width is not None:
        d["bit_width"] = f.bit_width
    if f.bit_offset is not None:
        d["bit_offset"] = f.bit_offset
    return d


def _struct_to_dict(s: Struct, registry: TypeRegistry, namespace: str) -> dict[str, Any]:
    d: dict[str, Any] = {
        "name": s.name,
        "size": s.size,
        "align": s.align,
        "fields": [_field_to_dict(f, registry, namespace) for f in s.fields],
    }
    if s.is_union:
        d["is_union"] = True
    if s.location is not None:
        d["location"] = _location_to_dict(s.location)
    return d


def _enum_to_dict(e: Enum) -> dict[str, Any]:
    d: dict[str, Any] = {
        "name": e.name,
        "underlying_type": e.underlying_type.name,
        "values": [{"name": v.name, "value": v.value} for v in e.values],
    }
    if e.location is not None:
        d["location"] = _location_to_dict(e.location)
    return d


def _function_to_dict(f: Function, registry: TypeRegistry, namespace: str) -> dict[str, Any]:
    d: dict[str, Any] = {
        "name": f.name,
        "return_type": _type_to_dict(f.return_type, registry, namespace),
        "params": [{"name": p.name, "type": _type_to_dict(p.type, registry, namespace)} for p in f.parameters],
        "calling_convention": f.calling_convention,
    }
    if f.is_variadic:
        d["is_variadic"] = True
    if f.location is not None:
        d["location"] = _location_to_dict(f.location)
    return d


def _typedef_to_dict(t: Typedef, registry: TypeRegistry, namespace: str) -> dict[str, Any]:
    d: dict[str, Any] = {"name": t.name, "underlying_type": _type_to_dict(t.underlying_type, registry, namespace)}
    if t.location is not None:
        d["location"] = _location_to_dict(t.location)
    return d


def _constant_to_dict(c: Constant) -> dict[str, Any]:
    d: dict[str, Any] = {"name": c.name, "type": c.value_type, "value": c.value}
    if c.location is not None:
        d["location"] = _location_to_dict(c.location)
    return d


def _partition_to_dict(p: Partition, registry: TypeRegistry) -> dict[str, Any]:
    ns = p.namespace
    return {
        "namespace": ns,
        "library": p.library,
        "structs": [_struct_to_dict(s, registry, ns) for s in p.structs],
        "enums": [_enum_to_dict(e) for e in p.enums],
        "functions": [_function_to_dict(f, registry, ns) for f in p.functions],
        "typedefs": [_typedef_to_dict(t, registry, ns) for t in p.typedefs],
        "constants": [_constant_to_dict(c) for c in p.constants],
    }


def metadata_to_json_dict(metadata: Metadata) -> dict[str, Any]:
    """Convert metadata to a JSON-serializable dict (no string encoding)."""
    return {
        "assembly": metadata.assembly,
        "format_version": FORMAT_VERSION,
        "namespaces": [_partition_to_dict(p, metadata.registry) for p in metadata.partitions],
    }


def metadata_to_json(metadata: Metadata, indent: int | None = 2) -> str:
    """Convert metadata to a JSON string.

    :param indent: JSON indentation level. None for compact output.
    """
    return json.dumps(metadata_to_json_dict(metadata), indent=indent)


# =============================================================================
# Reading
# =============================================================================


def _type_from_dict(d: dict[str, Any], refs: list[tuple[str, str]]) -> TypeExpr:
    """Rebuild a TypeExpr. Named references are appended to ``refs``."""
    if not isinstance(d, dict):
        raise ValueError(f"type node in metadata must be an object, got {type(d).__name__}")
    kind = d.get("kind")
    if kind == "primitive":
        return Primitive(d["name"])
    if kind == "pointer":
        return Pointer(_type_from_dict(d["pointee"], refs), is_const=d.get("is_const", False))
    if kind == "array":
        return Array(_type_from_dict(d["element"], refs), d["length"])
    if kind == "named":
        if "namespace" in d:
            refs.append((d["name"], d["namespace"]))
        return Named(d["name"])
    if kind == "function_pointer":
        return FunctionPointer(
            return_type=_type_from_dict(d["return_type"], refs),
            params=[_type_from_dict(p, refs) for p in d.get("params", [])],
            calling_convention=d.get("calling_convention", "cdecl"),
            is_variadic=d.get("is_variadic", False),
        )
    raise ValueError(f"unknown type kind in metadata: {kind!r}")


def _location_from_dict(d: dict[str, Any] | None) -> SourceLocation | None:
    if d is None:
        return None
    return SourceLocation(d["file"], d["line"], d.get("column"))


def _partition_from_dict(d: dict[str, Any], refs: list[tuple[str, str]]) -> Partition:
    partition = Partition(namespace=d["namespace"], library=d["library"])
    for s in d.get("structs", []):
        partition.structs.append(
            Struct(
                name=s["name"],
                fields=[
                    Field(f["name"], _type_from_dict(f["type"], refs), f.get("bit_width"), f.get("bit_offset"))
                    for f in s.get("fields", [])
                ],
                size=s.get("size", 0),
                align=s.get("align", 0),
                is_union=s.get("is_union", False),
                location=_location_from_dict(s.get("location")),
            )
        )
    for e in d.get("enums", []):
        partition.enums.append(
            Enum(
                name=e["name"],
                underlying_type=Primitive(e.get("underlying_type", "i32")),
                values=[EnumValue(v["name"], v["value"]) for v in e.get("values", [])],
                location=_location_from_dict(e.get("location")),
            )
        )
    for f in d.get("functions", []):
        partition.functions.append(
            Function(
                name=f["name"],
                return_type=_type_from_dict(f["return_type"], refs),
                parameters=[Parameter(p["name"], _type_from_dict(p["type"], refs)) for p in f.get("params", [])],
                calling_convention=f.get("calling_convention", "cdecl"),
                is_variadic=f.get("is_variadic", False),
                location=_location_from_dict(f.get("location")),
            )
        )
    for t in d.get("typedefs", []):
        partition.typedefs.append(
            Typedef(t["name"], _type_from_dict(t["underlying_type"], refs), location=_location_from_dict(t.get("location")))
        )
    for c in d.get("constants", []):
        partition.constants.append(Constant(c["name"], c["value"], location=_location_from_dict(c.get("location"))))
    return partition


def metadata_from_json_dict(data: dict[str, Any]) -> Metadata:
    """Rebuild :class:`~bindscrape.ir.Metadata` from a parsed document.

    The registry is rebuilt from the types each namespace defines, then
    from the namespaces recorded on named references (types imported from
    other documents).

    :raises ValueError: If the document is malformed.
    """
    if not isinstance(data, dict) or "assembly" not in data:
        raise ValueError("metadata document must be an object with an 'assembly' key")
    version = data.get("format_version", FORMAT_VERSION)
    if version != FORMAT_VERSION:
        raise ValueError(f"unsupported metadata format_version: {version!r}")

    refs: list[tuple[str, str]] = []
    try:
        partitions = [_partition_from_dict(ns, refs) for ns in data.get("namespaces", [])]
    except (AttributeError, KeyError, TypeError) as e:
        raise ValueError(f"malformed metadata document: {e!r}") from e

    registry = TypeRegistry()
    for partition in partitions:
        for name in partition.type_names():
            registry.register(name, partition.namespace)
    for name, namespace in refs:
        registry.register(name, namespace)

    return Metadata(assembly=data["assembly"], partitions=partitions, registry=registry)


def load_metadata(path: Path) -> Metadata:
    """Read a metadata document written by :class:`JsonWriter`."""
    with open(path, encoding="utf-8") as f:
        return metadata_from_json_dict(json.load(f))


class JsonWriter:
    """Writer that serializes bindscrape metadata to JSON.

    Options
    -------
    indent : int | None
        JSON indentation level. Defaults to 2. None for compact output.
    """

    def __init__(self, indent: int | None = 2) -> None:
        self._indent = indent

    def write(self, metadata: Metadata) -> str:
        return metadata_to_json(metadata, indent=self._indent)

    @property
    def name(self) -> str:
        return "json"

    @property
    def format_description(self) -> str:
        return "Binding metadata document (JSON)"


# Bottom-of-module self-registration; see _ensure_writers_loaded().
from bindscrape.writers import register_writer  # noqa: E402

register_writer(
    "json",
    JsonWriter,
    is_default=True,
    description="Binding metadata document (JSON)",
)
