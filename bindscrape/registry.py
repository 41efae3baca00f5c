"""Global type registry construction.

Every struct, enum and typedef name is owned by exactly one namespace. The
registry is built from the extracted partitions in configuration order
(first writer wins), then topped up with types imported from earlier
metadata documents. Named type references are resolved against it when
metadata is written.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from bindscrape.ir import Partition, TypeRegistry

logger = logging.getLogger(__name__)


def build_type_registry(partitions: list[Partition], namespace_overrides: dict[str, str] | None = None) -> TypeRegistry:
    """Register every type name defined by the partitions.

    :param namespace_overrides: Type name -> namespace, taking precedence
        over the partition the type was found in.
    """
    overrides = namespace_overrides or {}
    registry = TypeRegistry()
    for partition in partitions:
        for name in partition.type_names():
            registry.register(name, overrides.get(name, partition.namespace))
    logger.debug("type registry: %d types from %d partitions", len(registry), len(partitions))
    return registry


def seed_registry_from_metadata(registry: TypeRegistry, path: Path, namespace_filter: str) -> int:
    """Pre-seed the registry with types from an external metadata document.

    Only types whose namespace starts with ``namespace_filter`` are
    imported, and only if the name is not registered yet (local types win).

    :returns: Number of types imported.
    :raises RuntimeError: If the document cannot be read or parsed.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise RuntimeError(
            f"failed to read external metadata {path}: {e}\n"
            "Hint: generate the upstream metadata document first (bindscrape <upstream config>)"
        ) from e

    namespaces = data.get("namespaces") if isinstance(data, dict) else None
    if not isinstance(namespaces, list):
        raise RuntimeError(f"external metadata {path} has no 'namespaces' list")

    count = 0
    try:
        for entry in namespaces:
            namespace = entry.get("namespace", "")
            if not namespace or not namespace.startswith(namespace_filter):
                continue
            for category in ("structs", "enums", "typedefs"):
                for decl in entry.get(category, []):
                    if registry.register(decl["name"], namespace):
                        count += 1
    except (AttributeError, KeyError, TypeError) as e:
        raise RuntimeError(
            f"malformed external metadata {path}: {e!r}\n"
            "Hint: regenerate it with the json writer (bindscrape <upstream config>)"
        ) from e

    logger.info("pre-seeded type registry from %s (namespace %s): %d types imported", path, namespace_filter, count)
    return count


def deduplicate_typedefs(partitions: list[Partition], registry: TypeRegistry) -> int:
    """Keep each typedef only in the partition the registry maps it to.

    The same typedef (``uid_t``, say) is often seen by several partitions.
    Partitions that do not own it drop their copy; references to it become
    cross-namespace references instead.

    :returns: Number of typedefs removed.
    """
    removed = 0
    for partition in partitions:
        before = len(partition.typedefs)
        partition.typedefs = [
            td for td in partition.typedefs if registry.namespace_for(td.name, partition.namespace) == partition.namespace
        ]
        dropped = before - len(partition.typedefs)
        if dropped:
            logger.debug("%s: dropped %d typedefs owned by other partitions", partition.namespace, dropped)
        removed += dropped
    return removed
