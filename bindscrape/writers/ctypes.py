"""Generate Python ctypes binding modules from bindscrape metadata.

The output is one importable Python module. Structure classes are declared
first and their ``_fields_`` assigned afterwards in dependency order, so
self-referential and mutually referential records work, and records held
by value are complete before they are embedded. Functions are bound lazily:
each partition's shared library is loaded on the first call into it, so the
module imports even where the library is absent.
"""

from __future__ import annotations

import keyword
import math
from collections.abc import Iterator

from bindscrape.ir import (
    Array,
    Constant,
    Enum,
    Function,
    FunctionPointer,
    Metadata,
    Named,
    Partition,
    Pointer,
    Primitive,
    Struct,
    Typedef,
    TypeExpr,
)

# Maps primitive names to their ctypes equivalents.
CTYPES_TYPE_MAP: dict[str, str] = {
    "void": "None",
    "bool": "ctypes.c_bool",
    "i8": "ctypes.c_int8",
    "u8": "ctypes.c_uint8",
    "i16": "ctypes.c_int16",
    "u16": "ctypes.c_uint16",
    "i32": "ctypes.c_int32",
    "u32": "ctypes.c_uint32",
    "i64": "ctypes.c_int64",
    "u64": "ctypes.c_uint64",
    "f32": "ctypes.c_float",
    "f64": "ctypes.c_double",
    "isize": "ctypes.c_ssize_t",
    "usize": "ctypes.c_size_t",
}

_PRELUDE = '''\
import ctypes
import ctypes.util

_STDCALL_FUNCTYPE = getattr(ctypes, "WINFUNCTYPE", ctypes.CFUNCTYPE)

_libraries = {}


def _load_library(name, stdcall=False):
    """Load a shared library by short name ("z") or path, once."""
    key = (name, stdcall)
    lib = _libraries.get(key)
    if lib is None:
        path = ctypes.util.find_library(name) or name
        loader = ctypes.WinDLL if stdcall and hasattr(ctypes, "WinDLL") else ctypes.CDLL
        lib = _libraries[key] = loader(path)
    return lib


def _import(library, name, restype, argtypes, stdcall=False):
    """Return a function that binds ``library.name`` on its first call."""
    func = None

    def call(*args):
        nonlocal func
        if func is None:
            func = getattr(_load_library(library, stdcall), name)
            func.restype = restype
            func.argtypes = argtypes
        return func(*args)

    call.__name__ = name
    call.__qualname__ = name
    return call
'''

_Item = tuple[str, str]


def py_name(name: str) -> str:
    """Make a C identifier usable as a Python name."""
    if keyword.iskeyword(name):
        return f"{name}_"
    return name


def _section(title: str) -> list[str]:
    return [f"# {'=' * 60}", f"# {title}", f"# {'=' * 60}", ""]


def _refs(t: TypeExpr, by_value: bool) -> Iterator[tuple[str, bool]]:
    """Yield (name, held_by_value) for every Named inside a type."""
    if isinstance(t, Named):
        yield t.name, by_value
    elif isinstance(t, Pointer):
        yield from _refs(t.pointee, False)
    elif isinstance(t, Array):
        yield from _refs(t.element, by_value)
    elif isinstance(t, FunctionPointer):
        yield from _refs(t.return_type, True)
        for p in t.params:
            yield from _refs(p, True)


class _ModuleBuilder:
    """Renders the selected partitions of one metadata object."""

    def __init__(self, metadata: Metadata, partitions: list[Partition]) -> None:
        self.metadata = metadata
        self.partitions = partitions
        self.structs: dict[str, Struct] = {}
        self.enums: dict[str, Enum] = {}
        self.typedefs: dict[str, Typedef] = {}
        for p in partitions:
            for s in p.structs:
                self.structs.setdefault(s.name, s)
            for e in p.enums:
                self.enums.setdefault(e.name, e)
            for td in p.typedefs:
                self.typedefs.setdefault(td.name, td)
        # Definitions from unselected partitions, keyed by name -> namespace.
        self.imported: dict[str, str] = {}
        self._import_by_value()
        self.type_names = set(self.structs) | set(self.enums) | set(self.typedefs)
        self.opaque: dict[str, str] = {}
        self.emitted: set[_Item] = set()
        self.visiting: set[_Item] = set()
        self.ordered: list[str] = []

    def _import_by_value(self) -> None:
        """Copy in the outside types the selected partitions need a layout for.

        Enums and typedefs from other partitions are always copied; records
        only when something holds them by value. Records reached only
        through pointers stay opaque.
        """
        if len(self.partitions) == len(self.metadata.partitions):
            return
        structs: dict[str, Struct] = {}
        enums: dict[str, Enum] = {}
        typedefs: dict[str, Typedef] = {}
        for p in self.metadata.partitions:
            for s in p.structs:
                structs.setdefault(s.name, s)
            for e in p.enums:
                enums.setdefault(e.name, e)
            for td in p.typedefs:
                typedefs.setdefault(td.name, td)

        owned = set(self.structs) | set(self.enums) | set(self.typedefs)
        pending: list[tuple[TypeExpr, bool]] = []
        for s in self.structs.values():
            pending.extend((f.type, True) for f in s.fields)
        for td in self.typedefs.values():
            pending.append((td.underlying_type, True))
        for p in self.partitions:
            for f in p.functions:
                pending.append((f.return_type, True))
                pending.extend((param.type, True) for param in f.parameters)

        seen: set[tuple[str, bool]] = set()
        while pending:
            t, by_value = pending.pop()
            for name, held in _refs(t, by_value):
                if name in owned or (name, held) in seen:
                    continue
                seen.add((name, held))
                if name in enums:
                    self.enums[name] = enums[name]
                elif name in typedefs:
                    self.typedefs[name] = typedefs[name]
                    pending.append((typedefs[name].underlying_type, held))
                elif held and name in structs:
                    self.structs[name] = structs[name]
                    pending.extend((f.type, True) for f in structs[name].fields)
                else:
                    continue
                self.imported.setdefault(name, self.metadata.registry.namespace_for(name, ""))

    # -- type expressions ---------------------------------------------------

    def type_expr(self, t: TypeExpr) -> str:
        if isinstance(t, Primitive):
            return CTYPES_TYPE_MAP[t.name]
        if isinstance(t, Pointer):
            pointee = t.pointee
            if isinstance(pointee, Primitive):
                if pointee.name == "void":
                    return "ctypes.c_void_p"
                if pointee.name == "i8":
                    return "ctypes.c_char_p"
            if isinstance(pointee, FunctionPointer):
                return self.type_expr(pointee)
            return f"ctypes.POINTER({self.type_expr(pointee)})"
        if isinstance(t, Array):
            return f"({self.type_expr(t.element)} * {t.length})"
        if isinstance(t, Named):
            if t.name not in self.type_names and t.name not in self.opaque:
                namespace = self.metadata.registry.namespace_for(t.name, "")
                self.opaque[t.name] = namespace
            return py_name(t.name)
        if isinstance(t, FunctionPointer):
            factory = "_STDCALL_FUNCTYPE" if t.calling_convention == "stdcall" else "ctypes.CFUNCTYPE"
            args = [self.type_expr(t.return_type)] + [self.type_expr(p) for p in t.params]
            return f"{factory}({', '.join(args)})"
        return "ctypes.c_void_p"

    # -- dependency ordering -----------------------------------------------

    def _alias_target(self, name: str) -> str:
        """Follow plain typedef aliases (``typedef struct Foo Bar``) to the end."""
        seen = set()
        while name in self.typedefs and name not in seen:
            seen.add(name)
            underlying = self.typedefs[name].underlying_type
            if not isinstance(underlying, Named):
                break
            name = underlying.name
        return name

    def _deps(self, t: TypeExpr, by_value: bool) -> list[_Item]:
        deps: list[_Item] = []
        for name, held in _refs(t, by_value):
            if name in self.typedefs:
                deps.append(("typedef", name))
            if held:
                target = self._alias_target(name)
                if target in self.structs:
                    deps.append(("layout", target))
        return deps

    def _item_deps(self, item: _Item) -> list[_Item]:
        kind, name = item
        if kind == "layout":
            deps = []
            for f in self.structs[name].fields:
                deps.extend(self._deps(f.type, True))
            return deps
        underlying = self.typedefs[name].underlying_type
        # A plain alias only needs its target declared, not laid out.
        return self._deps(underlying, not isinstance(underlying, Named))

    def _visit(self, item: _Item) -> None:
        if item in self.emitted or item in self.visiting:
            return
        self.visiting.add(item)
        for dep in self._item_deps(item):
            if dep != item:
                self._visit(dep)
        self.visiting.discard(item)
        self.emitted.add(item)
        self.ordered.append(self._render_item(item))

    def _render_item(self, item: _Item) -> str:
        kind, name = item
        if kind == "layout":
            return self._layout(self.structs[name])
        return self._typedef(self.typedefs[name])

    # -- declarations -------------------------------------------------------

    def _layout(self, s: Struct) -> str:
        lines = [f"{py_name(s.name)}._fields_ = ["]
        for f in s.fields:
            ftype = self.type_expr(f.type)
            if f.bit_width is not None:
                lines.append(f'    ("{f.name}", {ftype}, {f.bit_width}),')
            else:
                lines.append(f'    ("{f.name}", {ftype}),')
        lines.append("]")
        return "\n".join(lines)

    def _typedef(self, td: Typedef) -> str:
        return f"{py_name(td.name)} = {self.type_expr(td.underlying_type)}"

    def _enum(self, e: Enum) -> str:
        lines = [f"# enum {e.name}", f"{py_name(e.name)} = {CTYPES_TYPE_MAP[e.underlying_type.name]}"]
        for v in e.values:
            lines.append(f"{py_name(v.name)} = {v.value}")
        return "\n".join(lines)

    def _enum_alias(self, e: Enum) -> str:
        return f"# enum {e.name} (defined in {self.imported[e.name]})\n{py_name(e.name)} = {CTYPES_TYPE_MAP[e.underlying_type.name]}"

    def _record_decl(self, s: Struct) -> str:
        base = "ctypes.Union" if s.is_union else "ctypes.Structure"
        origin = f", defined in {self.imported[s.name]}" if s.name in self.imported else ""
        return f"class {py_name(s.name)}({base}):\n    pass  # size {s.size}, align {s.align}{origin}"

    def _constant(self, c: Constant) -> str:
        name = py_name(c.name)
        if name in self.type_names:
            name = f"{name}_"
        value = c.value
        if isinstance(value, float) and not math.isfinite(value):
            return f'{name} = float("{value!r}")'
        return f"{name} = {value!r}"

    def _function(self, f: Function, library: str) -> str:
        name = py_name(f.name)
        if name in self.type_names:
            name = f"{name}_"
        restype = self.type_expr(f.return_type)
        argtypes = ", ".join(self.type_expr(p.type) for p in f.parameters)
        stdcall = ", stdcall=True" if f.calling_convention == "stdcall" else ""
        lines = [f"# {f}"]
        if f.is_variadic:
            lines.append("# variadic: extra arguments are passed without conversion")
        lines.append(f'{name} = _import("{library}", "{f.name}", {restype}, [{argtypes}]{stdcall})')
        return "\n".join(lines)

    # -- assembly -----------------------------------------------------------

    def build(self) -> str:
        constants = []
        enums = []
        functions = []
        for p in self.partitions:
            constants.extend(self._constant(c) for c in p.constants)
            enums.extend(self._enum(e) for e in p.enums)
        enums.extend(self._enum_alias(e) for e in self.enums.values() if e.name in self.imported)

        decls = [self._record_decl(s) for s in self.structs.values()]

        for name in self.typedefs:
            self._visit(("typedef", name))
        for name in self.structs:
            self._visit(("layout", name))

        for p in self.partitions:
            functions.extend(self._function(f, p.library) for f in p.functions)

        opaque = []
        for name, namespace in self.opaque.items():
            origin = f" (defined in {namespace})" if namespace else ""
            opaque.append(f"class {py_name(name)}(ctypes.Structure):\n    pass  # opaque{origin}")

        lines = [f'"""ctypes bindings generated from {self.metadata.assembly} metadata."""', "", _PRELUDE]
        for title, items in (
            ("Constants", constants),
            ("Enums", enums),
            ("Structures and Unions", decls),
            ("Opaque Types", opaque),
            ("Typedefs and Layouts", self.ordered),
            ("Functions", functions),
        ):
            if not items:
                continue
            lines.extend(_section(title))
            for item in items:
                lines.append(item)
                lines.append("")
        return "\n".join(lines)


def metadata_to_ctypes(metadata: Metadata, namespace: str | None = None) -> str:
    """Render metadata as Python ctypes binding source code.

    :param namespace: If given, only partitions whose namespace equals it or
        is nested under it (``namespace + "."`` prefix) are rendered. Enums,
        typedefs and by-value records they use from other namespaces are
        copied in; records only reached through pointers become opaque
        placeholders.
    """
    if namespace is None:
        partitions = list(metadata.partitions)
    else:
        partitions = [p for p in metadata.partitions if p.namespace == namespace or p.namespace.startswith(namespace + ".")]
    return _ModuleBuilder(metadata, partitions).build()


class CtypesWriter:
    """Writer that generates a Python ctypes binding module.

    Options
    -------
    namespace : str | None
        Restrict output to one namespace and the namespaces nested under it.
        Defaults to None (all partitions).
    """

    def __init__(self, namespace: str | None = None) -> None:
        self._namespace = namespace

    def write(self, metadata: Metadata) -> str:
        return metadata_to_ctypes(metadata, namespace=self._namespace)

    @property
    def name(self) -> str:
        return "ctypes"

    @property
    def format_description(self) -> str:
        return "Python ctypes bindings"


# Bottom-of-module self-registration; see _ensure_writers_loaded().
from bindscrape.writers import register_writer  # noqa: E402

register_writer(
    "ctypes",
    CtypesWriter,
    description="Python ctypes bindings",
)
