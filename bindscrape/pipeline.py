"""Top-level generation pipeline.

:func:`run` is the all-in-one entry point: load the config, scrape the
headers, render the metadata with a writer and write the output file.
:func:`generate` and :func:`generate_from_config` stop at the
:class:`~bindscrape.ir.Metadata` stage for callers that want the model.
"""

from __future__ import annotations

import logging
from pathlib import Path

from bindscrape.config import Config, load_config, resolve_header
from bindscrape.extract import extract_partition, get_system_include_dirs
from bindscrape.ir import Metadata
from bindscrape.registry import build_type_registry, deduplicate_typedefs, seed_registry_from_metadata

logger = logging.getLogger(__name__)


def generate_from_config(config: Config, base_dir: Path) -> Metadata:
    """Scrape every partition of an already-loaded config.

    :param base_dir: Directory relative header paths are resolved against,
        normally the directory holding the config file.
    :raises RuntimeError: If libclang is unavailable or a partition fails
        to parse.
    """
    from bindscrape._clang import get_cindex

    logger.info("loaded configuration: assembly %s, %d partitions", config.output.name, len(config.partitions))

    cindex = get_cindex()
    index = cindex.Index.create()
    system_includes = get_system_include_dirs()

    partitions = []
    for partition_config in config.partitions:
        args = config.clang_args_for(partition_config, base_dir) + system_includes
        partitions.append(
            extract_partition(
                index,
                partition_config,
                base_dir,
                include_paths=config.include_paths,
                clang_args=args,
            )
        )

    registry = build_type_registry(partitions, config.namespace_overrides)

    # Imported types only fill names that were not extracted locally.
    for type_import in config.type_imports:
        path = resolve_header(type_import.metadata, base_dir, config.include_paths)
        seed_registry_from_metadata(registry, path, type_import.namespace)

    deduplicate_typedefs(partitions, registry)

    return Metadata(assembly=config.output.name, partitions=partitions, registry=registry)


def generate(config_path: Path) -> Metadata:
    """Load a ``bindscrape.toml`` and scrape the headers it references."""
    config_path = Path(config_path)
    config = load_config(config_path)
    return generate_from_config(config, config_path.parent)


def run(config_path: Path, output: Path | None = None, format: str | None = None) -> Path:
    """Run the full pipeline and write the output file.

    :param config_path: Path to the configuration file.
    :param output: Output path overriding ``[output] file``.
    :param format: Writer name overriding ``[output] format``.
    :returns: Path the output was written to.
    """
    from bindscrape.writers import get_writer

    config_path = Path(config_path)
    config = load_config(config_path)
    base_dir = config_path.parent

    # Resolve the writer before scraping so a bad format fails fast.
    writer = get_writer(format or config.output.format)
    metadata = generate_from_config(config, base_dir)
    text = writer.write(metadata)

    output_path = Path(output) if output is not None else base_dir / config.output.file
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(text, encoding="utf-8")
    logger.info("wrote %s output to %s (%d bytes)", writer.name, output_path, len(text.encode("utf-8")))
    return output_path
