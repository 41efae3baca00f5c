"""bindscrape - scrape C headers into binding metadata."""

from bindscrape.config import Config, ConfigError, load_config
from bindscrape.ir import (
    # Type expressions
    Array,
    Constant,
    Declaration,
    Enum,
    EnumValue,
    # Declarations
    Field,
    Function,
    FunctionPointer,
    # Containers
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
from bindscrape.pipeline import generate, generate_from_config, run
from bindscrape.writers import (
    WriterBackend,
    get_default_writer,
    get_writer,
    get_writer_info,
    is_writer_available,
    list_writers,
    register_writer,
)

__version__ = "0.1.0"

__all__ = [
    # Types
    "Primitive",
    "Pointer",
    "Array",
    "Named",
    "FunctionPointer",
    "TypeExpr",
    # Declarations
    "Field",
    "Struct",
    "EnumValue",
    "Enum",
    "Parameter",
    "Function",
    "Typedef",
    "Constant",
    "Declaration",
    "SourceLocation",
    # Containers
    "Partition",
    "TypeRegistry",
    "Metadata",
    # Configuration
    "Config",
    "ConfigError",
    "load_config",
    # Pipeline
    "generate",
    "generate_from_config",
    "run",
    # Writer Protocol
    "WriterBackend",
    # Writer API
    "get_default_writer",
    "get_writer",
    "get_writer_info",
    "is_writer_available",
    "list_writers",
    "register_writer",
]
