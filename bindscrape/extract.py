"""Extraction: clang cursors and types -> bindscrape model.

:func:`extract_partition` parses one partition's translation unit and walks
its top-level cursors. Only declarations located in the partition's
traverse files are emitted; everything else in the translation unit just
provides types. Individual declarations that cannot be represented are
logged and skipped, never fatal.

Type mapping is done by :func:`map_type`, which reduces clang types to the
fixed vocabulary of :mod:`bindscrape.ir`.
"""

from __future__ import annotations

import logging
import math
import os
import re
import subprocess
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

from bindscrape.config import PartitionConfig, resolve_header
from bindscrape.ir import (
    Array,
    Constant,
    Enum,
    EnumValue,
    Field,
    Function,
    FunctionPointer,
    Named,
    Parameter,
    Partition,
    Pointer,
    Primitive,
    SourceLocation,
    Struct,
    Typedef,
    TypeExpr,
)

logger = logging.getLogger(__name__)


class UnsupportedTypeError(ValueError):
    """Raised when a clang type has no representation in the model."""


# Well-known C typedefs that map straight to primitives instead of Named.
WELL_KNOWN_TYPEDEFS: dict[str, str] = {
    "int8_t": "i8",
    "__int8": "i8",
    "uint8_t": "u8",
    "int16_t": "i16",
    "__int16": "i16",
    "uint16_t": "u16",
    "int32_t": "i32",
    "__int32": "i32",
    "uint32_t": "u32",
    "int64_t": "i64",
    "__int64": "i64",
    "uint64_t": "u64",
    "size_t": "usize",
    "uintptr_t": "usize",
    "ssize_t": "isize",
    "intptr_t": "isize",
    "ptrdiff_t": "isize",
}

# clang diagnostic severities (CXDiagnosticSeverity)
_SEVERITY_ERROR = 3

# =============================================================================
# Type mapping
# =============================================================================


def calling_convention_from_spelling(spelling: str) -> str:
    """Derive the calling convention from a clang function type spelling.

    clang spells non-default conventions as attributes, e.g.
    ``int (int) __attribute__((stdcall))``.
    """
    if "stdcall" in spelling:
        return "stdcall"
    if "fastcall" in spelling:
        return "fastcall"
    return "cdecl"


def _is_unnamed(cursor: Any) -> bool:
    """Check whether a record/enum cursor has no usable name.

    Depending on the LLVM version, unnamed records spell as an empty string
    or as a synthesized ``(unnamed struct at file:line:col)`` name.
    """
    name = cursor.spelling
    return not name or "(unnamed" in name or "(anonymous" in name


def _sized_integer(ty: Any, signed: bool) -> Primitive:
    """Map ``long``-like types by their actual size on the target."""
    size = ty.get_size()
    if size == 4:
        return Primitive("i32" if signed else "u32")
    return Primitive("i64" if signed else "u64")


def map_type(ty: Any) -> TypeExpr:
    """Map a ``clang.cindex.Type`` to a model type expression.

    :raises UnsupportedTypeError: If the type has no representation (e.g.
        anonymous records, ``long double``, vectors).
    """
    from bindscrape._clang import get_cindex

    kinds = get_cindex().TypeKind
    kind = ty.kind

    simple = {
        kinds.VOID: "void",
        kinds.BOOL: "bool",
        kinds.CHAR_S: "i8",
        kinds.SCHAR: "i8",
        # Plain char is i8 on unsigned-char targets too.
        kinds.CHAR_U: "i8",
        kinds.UCHAR: "u8",
        kinds.SHORT: "i16",
        kinds.USHORT: "u16",
        kinds.INT: "i32",
        kinds.UINT: "u32",
        kinds.LONGLONG: "i64",
        kinds.ULONGLONG: "u64",
        kinds.FLOAT: "f32",
        kinds.DOUBLE: "f64",
    }
    if kind in simple:
        return Primitive(simple[kind])

    if kind == kinds.LONG:
        return _sized_integer(ty, signed=True)
    if kind == kinds.ULONG:
        return _sized_integer(ty, signed=False)

    if kind == kinds.POINTER:
        pointee = ty.get_pointee()
        inner = map_type(pointee)
        if isinstance(inner, FunctionPointer):
            # A pointer to a function type is the function pointer itself.
            return inner
        return Pointer(inner, is_const=pointee.is_const_qualified())

    if kind == kinds.CONSTANTARRAY:
        return Array(map_type(ty.element_type), ty.element_count)

    if kind == kinds.INCOMPLETEARRAY:
        return Pointer(map_type(ty.element_type), is_const=False)

    if kind == kinds.ELABORATED:
        return map_type(ty.get_named_type())

    if kind == kinds.TYPEDEF:
        name = ty.get_declaration().spelling
        if name:
            if name in WELL_KNOWN_TYPEDEFS:
                return Primitive(WELL_KNOWN_TYPEDEFS[name])
            return Named(name)
        return map_type(ty.get_canonical())

    if kind in (kinds.RECORD, kinds.ENUM):
        decl = ty.get_declaration()
        if _is_unnamed(decl):
            what = "record" if kind == kinds.RECORD else "enum"
            raise UnsupportedTypeError(f"anonymous {what} type without name: {ty.spelling}")
        return Named(decl.spelling)

    if kind == kinds.FUNCTIONPROTO:
        return FunctionPointer(
            return_type=map_type(ty.get_result()),
            params=[map_type(a) for a in ty.argument_types()],
            calling_convention=calling_convention_from_spelling(ty.spelling),
            is_variadic=ty.is_function_variadic(),
        )

    if kind == kinds.FUNCTIONNOPROTO:
        # K&R-style declaration: no parameter information.
        return FunctionPointer(return_type=Primitive("void"))

    if kind == kinds.UNEXPOSED:
        canonical = ty.get_canonical()
        if canonical.kind != kinds.UNEXPOSED:
            return map_type(canonical)

    raise UnsupportedTypeError(f"unsupported clang TypeKind: {kind.spelling} ({ty.spelling})")


# =============================================================================
# Macro constants
# =============================================================================

_INT_RE = re.compile(r"^(0[xX][0-9a-fA-F]+|0[bB][01]+|0[0-7]*|[1-9][0-9]*)([uUlL]*)$")
_FLOAT_RE = re.compile(r"^(([0-9]+\.[0-9]*|\.[0-9]+)([eE][+-]?[0-9]+)?|[0-9]+[eE][+-]?[0-9]+)[fFlL]?$")
_STRING_RE = re.compile(r'^(?:u8|u|U|L)?"((?:[^"\\]|\\.)*)"$')

_STRING_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "0": "\0",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "v": "\v",
}


def _parse_int_literal(text: str) -> int | None:
    match = _INT_RE.match(text)
    if match is None:
        return None
    digits = match.group(1)
    if digits[:2] in ("0x", "0X"):
        return int(digits, 16)
    if digits[:2] in ("0b", "0B"):
        return int(digits[2:], 2)
    if len(digits) > 1 and digits.startswith("0"):
        return int(digits, 8)
    return int(digits)


def _unescape(body: str) -> str:
    out = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            nxt = body[i + 1]
            out.append(_STRING_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def parse_macro_value(tokens: Sequence[str]) -> int | float | str | None:
    """Evaluate the body of an object-like macro if it is a single literal.

    Accepts optional surrounding parentheses, an optional unary ``-`` or
    ``+``, then an integer literal, a floating literal, or adjacent string
    literals (concatenated). Returns None for anything else, including
    integers outside the 64-bit range and floats that overflow to infinity.

    :param tokens: Token spellings of the macro body (without the name).
    """
    toks = list(tokens)
    while len(toks) >= 2 and toks[0] == "(" and toks[-1] == ")":
        toks = toks[1:-1]
    if not toks:
        return None

    if all(_STRING_RE.match(t) for t in toks):
        return "".join(_unescape(_STRING_RE.match(t).group(1)) for t in toks)  # type: ignore[union-attr]

    sign = 1
    if toks[0] in ("-", "+"):
        sign = -1 if toks[0] == "-" else 1
        toks = toks[1:]
        while len(toks) >= 2 and toks[0] == "(" and toks[-1] == ")":
            toks = toks[1:-1]
    if len(toks) != 1:
        return None

    literal = toks[0]
    int_value = _parse_int_literal(literal)
    if int_value is not None:
        value = sign * int_value
        if not -(2**63) <= value <= 2**64 - 1:
            return None
        return value
    if _FLOAT_RE.match(literal):
        number = sign * float(literal.rstrip("fFlL"))
        # Non-finite results (1e999) are not constants.
        return number if math.isfinite(number) else None
    return None


def _macro_body_tokens(cursor: Any) -> list[str] | None:
    """Token spellings after the macro name, or None for function-like macros."""
    end = cursor.extent.end.offset
    tokens = [t for t in cursor.get_tokens() if t.extent.start.offset < end]
    if not tokens:
        return None
    if len(tokens) >= 2 and tokens[1].spelling == "(":
        # Function-like only if '(' directly follows the name.
        if tokens[1].extent.start.offset == tokens[0].extent.end.offset:
            return None
    return [t.spelling for t in tokens[1:]]


# =============================================================================
# Source-location filtering
# =============================================================================


def _normalize(path: str | Path) -> str:
    return os.path.normcase(os.path.realpath(path))


def _traverse_matchers(traverse_files: Iterable[Path], base_dir: Path, include_paths: list[Path]) -> list[tuple[str, tuple[str, ...]]]:
    """Pre-compute (absolute path, path parts) pairs for location checks."""
    matchers = []
    for tf in traverse_files:
        resolved = resolve_header(Path(tf), base_dir, include_paths)
        matchers.append((_normalize(resolved), Path(tf).parts))
    return matchers


def is_in_traverse(file_path: str | None, matchers: list[tuple[str, tuple[str, ...]]]) -> bool:
    """Check whether a declaration's file is one of the traverse files.

    Matches by resolved absolute path, or by path suffix so that headers
    reached through a different include directory still count.
    """
    if not file_path:
        return False
    normalized = _normalize(file_path)
    parts = Path(file_path).parts
    for abs_path, tf_parts in matchers:
        if normalized == abs_path:
            return True
        if tf_parts and parts[-len(tf_parts) :] == tf_parts:
            return True
    return False


def _location_of(cursor: Any) -> SourceLocation | None:
    loc = cursor.location
    if loc.file is None:
        return None
    return SourceLocation(loc.file.name, loc.line, loc.column)


# =============================================================================
# Declaration extraction
# =============================================================================


def extract_struct(cursor: Any, name: str) -> Struct:
    """Extract a struct or union definition under ``name``.

    :raises UnsupportedTypeError: If any field type cannot be mapped.
    """
    from bindscrape._clang import get_cindex

    ck = get_cindex().CursorKind
    ty = cursor.type
    fields = []
    for child in cursor.get_children():
        if child.kind != ck.FIELD_DECL:
            continue
        field_name = child.spelling
        try:
            ftype = map_type(child.type)
        except UnsupportedTypeError as e:
            raise UnsupportedTypeError(f"unsupported type for field {field_name!r}: {e}") from e
        bit_width = None
        bit_offset = None
        if child.is_bitfield():
            bit_width = child.get_bitfield_width()
            bit_offset = child.get_field_offsetof()
        logger.debug("  field %s: %s", field_name, ftype)
        fields.append(Field(field_name, ftype, bit_width=bit_width, bit_offset=bit_offset))

    return Struct(
        name=name,
        fields=fields,
        size=max(ty.get_size(), 0),
        align=max(ty.get_align(), 0),
        is_union=cursor.kind == ck.UNION_DECL,
        location=_location_of(cursor),
    )


def extract_enum(cursor: Any, name: str) -> Enum:
    from bindscrape._clang import get_cindex

    ck = get_cindex().CursorKind
    try:
        underlying = map_type(cursor.enum_type)
    except UnsupportedTypeError:
        underlying = Primitive("i32")
    if not isinstance(underlying, Primitive):
        underlying = Primitive("i32")

    values = [EnumValue(child.spelling, child.enum_value) for child in cursor.get_children() if child.kind == ck.ENUM_CONSTANT_DECL]
    return Enum(name=name, underlying_type=underlying, values=values, location=_location_of(cursor))


def extract_function(cursor: Any) -> Function:
    """Extract a function declaration.

    :raises UnsupportedTypeError: If a parameter type cannot be mapped.
    """
    from bindscrape._clang import get_cindex

    kinds = get_cindex().TypeKind
    fn_type = cursor.type

    try:
        return_type = map_type(cursor.result_type)
    except UnsupportedTypeError as e:
        logger.warning("function %s: unsupported return type (%s), using void", cursor.spelling, e)
        return_type = Primitive("void")

    is_proto = fn_type.kind == kinds.FUNCTIONPROTO
    arg_types = list(fn_type.argument_types()) if is_proto else []
    params = []
    for i, arg in enumerate(cursor.get_arguments()):
        pname = arg.spelling or f"param{i}"
        source_type = arg_types[i] if i < len(arg_types) else arg.type
        try:
            ptype = map_type(source_type)
        except UnsupportedTypeError as e:
            raise UnsupportedTypeError(f"unsupported type for parameter {pname!r}: {e}") from e
        params.append(Parameter(pname, ptype))

    return Function(
        name=cursor.spelling,
        return_type=return_type,
        parameters=params,
        calling_convention=calling_convention_from_spelling(fn_type.spelling),
        is_variadic=is_proto and fn_type.is_function_variadic(),
        location=_location_of(cursor),
    )


def extract_typedef(cursor: Any) -> Typedef:
    return Typedef(
        name=cursor.spelling,
        underlying_type=map_type(cursor.underlying_typedef_type),
        location=_location_of(cursor),
    )


def extract_constant(cursor: Any) -> Constant | None:
    body = _macro_body_tokens(cursor)
    if body is None:
        return None
    value = parse_macro_value(body)
    if value is None:
        return None
    return Constant(cursor.spelling, value, location=_location_of(cursor))


def _typedef_definition(cursor: Any, record_kinds: tuple[Any, ...]) -> Any | None:
    """The record/enum a typedef names, if it is defined inside the typedef.

    Covers ``typedef struct { ... } Name;`` and ``typedef struct Name { ... } Name;``.
    """
    decl = cursor.underlying_typedef_type.get_declaration()
    if decl is None or decl.kind not in record_kinds or not decl.is_definition():
        return None
    if _is_unnamed(decl) or decl.spelling == cursor.spelling:
        return decl
    return None


# =============================================================================
# Partition extraction
# =============================================================================


def _parse(index: Any, header_path: Path, clang_args: list[str]) -> Any:
    from bindscrape._clang import get_cindex

    cindex = get_cindex()
    options = cindex.TranslationUnit.PARSE_DETAILED_PROCESSING_RECORD | cindex.TranslationUnit.PARSE_SKIP_FUNCTION_BODIES
    try:
        tu = index.parse(str(header_path), args=clang_args, options=options)
    except cindex.TranslationUnitLoadError as e:
        raise RuntimeError(f"failed to parse {header_path}: {e}") from e

    errors = []
    for diag in tu.diagnostics:
        if diag.severity >= _SEVERITY_ERROR:
            errors.append(f"{diag.location.file}:{diag.location.line}: {diag.spelling}")
        else:
            logger.debug("clang: %s", diag.spelling)
    if errors:
        raise RuntimeError(f"Parse error in {header_path}: " + "; ".join(errors))
    return tu


def extract_partition(
    index: Any,
    partition: PartitionConfig,
    base_dir: Path,
    include_paths: list[Path] | None = None,
    clang_args: list[str] | None = None,
) -> Partition:
    """Extract all declarations of one partition.

    :param index: A ``clang.cindex.Index``.
    :param partition: Partition configuration.
    :param base_dir: Directory relative header paths are resolved against.
    :param include_paths: Extra header search directories from the config.
    :param clang_args: Full clang argument list. Defaults to the partition's
        own ``clang_args``.
    :raises RuntimeError: If the translation unit cannot be parsed.
    """
    from bindscrape._clang import get_cindex

    ck = get_cindex().CursorKind
    include_paths = include_paths or []
    args = list(clang_args) if clang_args is not None else list(partition.clang_args)
    header_path = partition.wrapper_header(base_dir, include_paths)
    logger.debug("parsing partition %s from %s", partition.namespace, header_path)

    tu = _parse(index, header_path, args)
    matchers = _traverse_matchers(partition.traverse_files(), base_dir, include_paths)

    result = Partition(namespace=partition.namespace, library=partition.library)
    record_kinds = (ck.STRUCT_DECL, ck.UNION_DECL)
    seen: dict[str, set[str]] = {"record": set(), "enum": set(), "function": set(), "typedef": set(), "constant": set()}

    def add_record(cursor: Any, name: str) -> None:
        if name in seen["record"]:
            return
        seen["record"].add(name)
        try:
            struct = extract_struct(cursor, name)
        except UnsupportedTypeError as e:
            logger.warning("skipping struct %s: %s", name, e)
            return
        logger.debug("extracted %s (%d fields, size %d)", struct, len(struct.fields), struct.size)
        result.structs.append(struct)

    def add_enum(cursor: Any, name: str) -> None:
        if name in seen["enum"]:
            return
        seen["enum"].add(name)
        enum = extract_enum(cursor, name)
        logger.debug("extracted %s (%d values)", enum, len(enum.values))
        result.enums.append(enum)

    for cursor in tu.cursor.get_children():
        loc_file = cursor.location.file
        if loc_file is None or not is_in_traverse(loc_file.name, matchers):
            continue
        kind = cursor.kind

        if kind in record_kinds:
            if cursor.is_definition() and not _is_unnamed(cursor):
                add_record(cursor, cursor.spelling)

        elif kind == ck.ENUM_DECL:
            if cursor.is_definition() and not _is_unnamed(cursor):
                add_enum(cursor, cursor.spelling)

        elif kind == ck.TYPEDEF_DECL:
            name = cursor.spelling
            definition = _typedef_definition(cursor, record_kinds + (ck.ENUM_DECL,))
            if definition is not None:
                if definition.kind == ck.ENUM_DECL:
                    add_enum(definition, name)
                else:
                    add_record(definition, name)
                continue
            if name in seen["typedef"]:
                continue
            seen["typedef"].add(name)
            try:
                typedef = extract_typedef(cursor)
            except UnsupportedTypeError as e:
                logger.warning("skipping typedef %s: %s", name, e)
                continue
            underlying = typedef.underlying_type
            if isinstance(underlying, Named) and underlying.name == name:
                # typedef struct Foo Foo; the record itself carries the name
                continue
            logger.debug("extracted %s", typedef)
            result.typedefs.append(typedef)

        elif kind == ck.FUNCTION_DECL:
            name = cursor.spelling
            if name in seen["function"]:
                continue
            seen["function"].add(name)
            try:
                function = extract_function(cursor)
            except UnsupportedTypeError as e:
                logger.warning("skipping function %s: %s", name, e)
                continue
            logger.debug("extracted function %s (%d params)", name, len(function.parameters))
            result.functions.append(function)

        elif kind == ck.MACRO_DEFINITION:
            name = cursor.spelling
            if name in seen["constant"]:
                continue
            constant = extract_constant(cursor)
            if constant is None:
                continue
            seen["constant"].add(name)
            logger.debug("extracted #define constant %s", name)
            result.constants.append(constant)

    logger.info(
        "partition %s extraction complete: %d structs, %d enums, %d functions, %d typedefs, %d constants",
        partition.namespace,
        len(result.structs),
        len(result.enums),
        len(result.functions),
        len(result.typedefs),
        len(result.constants),
    )
    return result


# =============================================================================
# System include directories
# =============================================================================

_system_include_cache: list[str] | None = None


def get_system_include_dirs() -> list[str]:
    """``-isystem`` flags for the host C compiler's include search path.

    Scraped from ``clang -E -v`` output and cached. The bundled libclang
    does not know where the system headers live, so these flags let
    partitions include ``<stdint.h>`` and friends. Returns an empty list
    when clang is not installed or does not answer in time.
    """
    global _system_include_cache  # pylint: disable=global-statement
    if _system_include_cache is not None:
        return _system_include_cache

    null_file = "NUL" if os.name == "nt" else "/dev/null"
    try:
        result = subprocess.run(
            ["clang", "-E", "-v", "-x", "c", null_file],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (FileNotFoundError, subprocess.SubprocessError, OSError):
        _system_include_cache = []
        return _system_include_cache

    dirs: list[str] = []
    in_search_list = False
    for line in result.stderr.splitlines():
        if line.startswith("#include <...> search starts here:"):
            in_search_list = True
            continue
        if line.startswith("End of search list."):
            break
        if in_search_list:
            path = line.strip()
            if path.endswith("(framework directory)"):
                continue
            dirs.append(f"-isystem{path}")

    _system_include_cache = dirs
    return _system_include_cache
