"""Intermediate model for scraped C declarations.

The model sits between libclang extraction and the output writers. Types
are reduced to a small fixed vocabulary (sized primitives, pointers,
arrays, named references and function pointers) so that writers never need
to know about clang's type system.

Type Expressions
----------------
:class:`Primitive`, :class:`Pointer`, :class:`Array`, :class:`Named` and
:class:`FunctionPointer`, combined as :data:`TypeExpr`.

Declarations
------------
:class:`Struct`, :class:`Enum`, :class:`Function`, :class:`Typedef` and
:class:`Constant`, combined as :data:`Declaration`.

Containers
----------
:class:`Partition` holds the declarations of one namespace,
:class:`TypeRegistry` maps type names to the namespace that owns them, and
:class:`Metadata` is the complete result handed to writers.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Union

# Primitive type names, ordered roughly by size.
PRIMITIVE_NAMES: tuple[str, ...] = (
    "void",
    "bool",
    "i8",
    "u8",
    "i16",
    "u16",
    "i32",
    "u32",
    "i64",
    "u64",
    "f32",
    "f64",
    "isize",
    "usize",
)

CALLING_CONVENTIONS: tuple[str, ...] = ("cdecl", "stdcall", "fastcall")

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1
_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1
_U64_MAX = 2**64 - 1


def _check_calling_convention(owner: str, value: str) -> None:
    if value not in CALLING_CONVENTIONS:
        raise ValueError(f"Unknown calling convention for {owner}: {value!r}")

# =============================================================================
# Type Expressions
# =============================================================================


@dataclass
class Primitive:
    """A fixed-size scalar type such as ``i32`` or ``f64``.

    :param name: One of :data:`PRIMITIVE_NAMES`.
    """

    name: str

    def __post_init__(self) -> None:
        if self.name not in PRIMITIVE_NAMES:
            raise ValueError(f"Unknown primitive type: {self.name!r}")

    def __str__(self) -> str:
        return self.name

    @property
    def is_signed(self) -> bool:
        return self.name.startswith("i") or self.name.startswith("f")


@dataclass
class Pointer:
    """Pointer to another type.

    ``is_const`` records const qualification of the *pointee*, so
    ``const char *`` is ``Pointer(Primitive("i8"), is_const=True)``.
    """

    pointee: TypeExpr
    is_const: bool = False

    def __str__(self) -> str:
        prefix = "const " if self.is_const else ""
        return f"{prefix}{self.pointee}*"


@dataclass
class Array:
    """Fixed-size array ``element[length]``."""

    element: TypeExpr
    length: int

    def __str__(self) -> str:
        return f"{self.element}[{self.length}]"


@dataclass
class Named:
    """Reference to a struct, union, enum or typedef by name.

    The owning namespace is not stored here; it is looked up in the
    :class:`TypeRegistry` when the metadata is written.
    """

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass
class FunctionPointer:
    """A callable type: function-pointer typedefs, callback fields and params.

    Parameters are bare types; names of callback parameters carry no ABI
    meaning and are dropped during extraction.
    """

    return_type: TypeExpr
    params: list[TypeExpr] = field(default_factory=list)
    calling_convention: str = "cdecl"
    is_variadic: bool = False

    def __post_init__(self) -> None:
        _check_calling_convention("function pointer", self.calling_convention)

    def __str__(self) -> str:
        parts = [str(p) for p in self.params]
        if self.is_variadic:
            parts.append("...")
        return f"{self.return_type} (*)({', '.join(parts)})"


TypeExpr = Union[Primitive, Pointer, Array, Named, FunctionPointer]

# =============================================================================
# Declarations
# =============================================================================


@dataclass
class SourceLocation:
    """Where a declaration was found."""

    file: str
    line: int
    column: int | None = None

    def __str__(self) -> str:
        if self.column is None:
            return f"{self.file}:{self.line}"
        return f"{self.file}:{self.line}:{self.column}"


@dataclass
class Field:
    """Struct or union member.

    :param bit_width: Width in bits for bitfields, otherwise None.
    :param bit_offset: Offset in bits from the start of the record, recorded
        for bitfields only.
    """

    name: str
    type: TypeExpr
    bit_width: int | None = None
    bit_offset: int | None = None

    def __str__(self) -> str:
        if self.bit_width is not None:
            return f"{self.type} {self.name} : {self.bit_width}"
        return f"{self.type} {self.name}"


@dataclass
class Struct:
    """Struct or union definition with its clang-computed layout."""

    name: str
    fields: list[Field] = field(default_factory=list)
    size: int = 0
    align: int = 0
    is_union: bool = False
    location: SourceLocation | None = None

    def __str__(self) -> str:
        kind = "union" if self.is_union else "struct"
        return f"{kind} {self.name}"


@dataclass
class EnumValue:
    name: str
    value: int

    def __str__(self) -> str:
        return f"{self.name} = {self.value}"


@dataclass
class Enum:
    """Enumeration with its underlying integer type."""

    name: str
    underlying_type: Primitive = field(default_factory=lambda: Primitive("i32"))
    values: list[EnumValue] = field(default_factory=list)
    location: SourceLocation | None = None

    def __str__(self) -> str:
        return f"enum {self.name} : {self.underlying_type}"


@dataclass
class Parameter:
    name: str
    type: TypeExpr

    def __str__(self) -> str:
        return f"{self.type} {self.name}"


@dataclass
class Function:
    """Exported function imported from the partition's library."""

    name: str
    return_type: TypeExpr
    parameters: list[Parameter] = field(default_factory=list)
    calling_convention: str = "cdecl"
    is_variadic: bool = False
    location: SourceLocation | None = None

    def __post_init__(self) -> None:
        _check_calling_convention(self.name, self.calling_convention)

    def __str__(self) -> str:
        parts = [str(p) for p in self.parameters]
        if self.is_variadic:
            parts.append("...")
        return f"{self.return_type} {self.name}({', '.join(parts)})"


@dataclass
class Typedef:
    name: str
    underlying_type: TypeExpr
    location: SourceLocation | None = None

    def __str__(self) -> str:
        return f"typedef {self.underlying_type} {self.name}"


@dataclass
class Constant:
    """Object-like ``#define`` with a literal value.

    ``value_type`` gives the narrowest metadata type that holds the value.
    Negative integers are always signed; integers outside the i64/u64 range
    have no metadata type.
    """

    name: str
    value: int | float | str
    location: SourceLocation | None = None

    def __str__(self) -> str:
        if isinstance(self.value, str):
            return f'#define {self.name} "{self.value}"'
        return f"#define {self.name} {self.value}"

    @property
    def value_type(self) -> str:
        value = self.value
        if isinstance(value, bool):
            raise TypeError(f"Constant {self.name!r} has a bool value")
        if isinstance(value, str):
            return "str"
        if isinstance(value, float):
            return "f64"
        if _I32_MIN <= value <= _I32_MAX:
            return "i32"
        if _I64_MIN <= value <= _I64_MAX:
            return "i64"
        if 0 <= value <= _U64_MAX:
            return "u64"
        raise ValueError(f"Constant {self.name!r} is out of the 64-bit range: {value}")


Declaration = Union[Struct, Enum, Function, Typedef, Constant]

# =============================================================================
# Containers
# =============================================================================


@dataclass
class Partition:
    """Declarations extracted for one namespace.

    :param namespace: Dotted namespace, e.g. ``"MultiTest.Widgets"``.
    :param library: Shared library the functions are imported from.
    """

    namespace: str
    library: str
    structs: list[Struct] = field(default_factory=list)
    enums: list[Enum] = field(default_factory=list)
    functions: list[Function] = field(default_factory=list)
    typedefs: list[Typedef] = field(default_factory=list)
    constants: list[Constant] = field(default_factory=list)

    def __str__(self) -> str:
        return f"Partition({self.namespace}, {sum(1 for _ in self.declarations)} declarations)"

    @property
    def declarations(self) -> Iterator[Declaration]:
        yield from self.structs
        yield from self.enums
        yield from self.functions
        yield from self.typedefs
        yield from self.constants

    def type_names(self) -> list[str]:
        """Names this partition defines as types (structs, enums, typedefs)."""
        names = [s.name for s in self.structs]
        names.extend(e.name for e in self.enums)
        names.extend(t.name for t in self.typedefs)
        return names


class TypeRegistry:
    """Maps type names to the namespace that owns them.

    Registration is first-writer-wins: once a name is registered, later
    registrations of the same name are ignored. Partitions are registered
    in configuration order, so a shared "types" partition listed first
    claims the names it defines.
    """

    def __init__(self) -> None:
        self._namespaces: dict[str, str] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._namespaces

    def __len__(self) -> int:
        return len(self._namespaces)

    def __iter__(self) -> Iterator[str]:
        return iter(self._namespaces)

    def __repr__(self) -> str:
        return f"TypeRegistry({len(self)} types)"

    def register(self, name: str, namespace: str) -> bool:
        """Register ``name`` in ``namespace``.

        :returns: True if the name was new, False if it was already taken.
        """
        if name in self._namespaces:
            return False
        self._namespaces[name] = namespace
        return True

    def contains(self, name: str) -> bool:
        return name in self._namespaces

    def namespace_for(self, name: str, default: str) -> str:
        """Namespace owning ``name``, or ``default`` if it is unregistered."""
        return self._namespaces.get(name, default)

    def items(self) -> list[tuple[str, str]]:
        return list(self._namespaces.items())


@dataclass
class Metadata:
    """Complete generator output: every partition plus the type registry."""

    assembly: str
    partitions: list[Partition] = field(default_factory=list)
    registry: TypeRegistry = field(default_factory=TypeRegistry)

    def __str__(self) -> str:
        return f"Metadata({self.assembly}, {len(self.partitions)} partitions)"

    def namespaces(self) -> list[str]:
        return [p.namespace for p in self.partitions]

    def find_partition(self, namespace: str) -> Partition | None:
        for partition in self.partitions:
            if partition.namespace == namespace:
                return partition
        return None
