"""Command-line entry point.

Usage::

    bindscrape [config] [-o OUTPUT] [-f FORMAT] [-v]
    python -m bindscrape bindscrape.toml

Reads a ``bindscrape.toml``, scrapes the headers it names and writes the
rendered metadata. Exit status is 0 on success, 1 when the configuration,
a header or the output file cannot be processed, and 2 on usage errors.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from bindscrape.config import ConfigError

logger = logging.getLogger("bindscrape")

DEFAULT_CONFIG = "bindscrape.toml"
LOG_ENV_VAR = "BINDSCRAPE_LOG"


def _configure_logging(verbose: bool) -> None:
    if verbose:
        level: int | str = logging.DEBUG
    else:
        level = os.environ.get(LOG_ENV_VAR, "INFO").upper()
        if not isinstance(logging.getLevelName(level), int):
            level = logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _print_formats() -> None:
    from bindscrape.writers import get_writer_info

    for info in get_writer_info():
        marker = " (default)" if info["is_default"] else ""
        print(f"{info['name']:<10} {info['description']}{marker}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="bindscrape",
        description="Scrape C headers into binding metadata.",
    )
    parser.add_argument(
        "config",
        nargs="?",
        default=DEFAULT_CONFIG,
        help=f"path to the configuration file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="output file, overriding [output] file",
    )
    parser.add_argument(
        "-f",
        "--format",
        help="output writer, overriding [output] format (see --list-formats)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help=f"debug logging (otherwise ${LOG_ENV_VAR}, default INFO)",
    )
    parser.add_argument(
        "--list-formats",
        action="store_true",
        help="list the available output writers and exit",
    )
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if args.list_formats:
        _print_formats()
        return 0

    from bindscrape.pipeline import run

    try:
        output = run(Path(args.config), output=args.output, format=args.format)
    except ConfigError as e:
        logger.error("configuration error: %s", e)
        return 1
    except (RuntimeError, OSError, ValueError) as e:
        logger.error("%s", e)
        return 1

    logger.info("done: %s", output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
