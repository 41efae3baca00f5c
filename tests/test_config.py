"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from bindscrape.config import (
    Config,
    ConfigError,
    PartitionConfig,
    load_config,
    resolve_header,
)

FIXTURES = Path(__file__).parent / "fixtures"


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "bindscrape.toml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_simple_fixture(self) -> None:
        config = load_config(FIXTURES / "simple.toml")
        assert config.output.name == "SimpleTest"
        assert config.output.file == Path("SimpleTest.json")
        assert config.output.format == "json"
        assert len(config.partitions) == 1
        part = config.partitions[0]
        assert part.namespace == "SimpleTest"
        assert part.library == "simple"
        assert part.headers == [Path("simple.h")]
        assert part.traverse == []
        assert config.type_imports == []
        assert config.namespace_overrides == {}

    def test_multi_fixture(self) -> None:
        config = load_config(FIXTURES / "multi" / "multi.toml")
        assert [p.namespace for p in config.partitions] == ["MultiTest.Types", "MultiTest.Widgets"]
        assert config.partitions[1].traverse == [Path("widget.h")]

    def test_defaults(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """
[output]
name = "Lib"

[[partition]]
namespace = "Lib"
library = "lib"
headers = ["lib.h"]
""",
        )
        config = load_config(path)
        assert config.output.file == Path("output.json")
        assert config.output.format == "json"
        assert config.include_paths == []

    def test_full_config(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """
include_paths = ["include", "/opt/include"]

[output]
name = "Posix"
file = "out/posix.json"
format = "ctypes"

[[partition]]
namespace = "Posix.Stdio"
library = "c"
headers = ["stdio.h"]
clang_args = ["-D_GNU_SOURCE"]

[namespace_overrides]
FILE = "Posix.Types"

[[type_import]]
metadata = "../base/base.json"
namespace = "Base"
""",
        )
        config = load_config(path)
        assert config.output.format == "ctypes"
        assert config.include_paths == [Path("include"), Path("/opt/include")]
        assert config.namespace_overrides == {"FILE": "Posix.Types"}
        assert config.type_imports[0].metadata == Path("../base/base.json")
        assert config.type_imports[0].namespace == "Base"
        assert config.partitions[0].clang_args == ["-D_GNU_SOURCE"]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="failed to read"):
            load_config(tmp_path / "nope.toml")

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "[output\nname = ")
        with pytest.raises(ConfigError, match="failed to parse"):
            load_config(path)

    def test_missing_output_name(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "[output]\nfile = 'x.json'\n")
        with pytest.raises(ConfigError, match="'name'"):
            load_config(path)

    def test_missing_partition_key(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """
[output]
name = "Lib"

[[partition]]
namespace = "Lib"
headers = ["lib.h"]
""",
        )
        with pytest.raises(ConfigError, match=r"\[\[partition\]\] #1.*'library'"):
            load_config(path)

    def test_empty_headers(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """
[output]
name = "Lib"

[[partition]]
namespace = "Lib"
library = "lib"
headers = []
""",
        )
        with pytest.raises(ConfigError, match="must not be empty"):
            load_config(path)

    def test_wrong_type(self, tmp_path: Path) -> None:
        path = _write(
            tmp_path,
            """
[output]
name = 3
""",
        )
        with pytest.raises(ConfigError, match="must be a str"):
            load_config(path)

    def test_config_error_is_value_error(self) -> None:
        assert issubclass(ConfigError, ValueError)


class TestResolveHeader:
    def test_absolute_path_unchanged(self, tmp_path: Path) -> None:
        header = tmp_path / "abs.h"
        assert resolve_header(header, Path("/elsewhere"), []) == header

    def test_relative_to_base_dir(self) -> None:
        assert resolve_header(Path("simple.h"), FIXTURES, []) == FIXTURES / "simple.h"

    def test_found_in_include_path(self, tmp_path: Path) -> None:
        include = tmp_path / "include"
        include.mkdir()
        (include / "api.h").write_text("", encoding="utf-8")
        assert resolve_header(Path("api.h"), tmp_path, [Path("include")]) == include / "api.h"

    def test_fallback_to_base_dir(self, tmp_path: Path) -> None:
        assert resolve_header(Path("missing.h"), tmp_path, [Path("include")]) == tmp_path / "missing.h"


class TestPartitionConfig:
    def test_traverse_defaults_to_headers(self) -> None:
        part = PartitionConfig("A", "a", [Path("a.h"), Path("b.h")])
        assert part.traverse_files() == [Path("a.h"), Path("b.h")]
        part.traverse = [Path("b.h")]
        assert part.traverse_files() == [Path("b.h")]

    def test_single_header_is_parsed_directly(self) -> None:
        part = PartitionConfig("SimpleTest", "simple", [Path("simple.h")])
        assert part.wrapper_header(FIXTURES) == FIXTURES / "simple.h"

    def test_multiple_headers_get_wrapper(self) -> None:
        part = PartitionConfig("MultiTest.All", "multi", [Path("types.h"), Path("widget.h")])
        wrapper = part.wrapper_header(FIXTURES / "multi")
        assert wrapper.name == "MultiTest_All_wrapper.c"
        assert wrapper.parent.name == "bindscrape_wrappers"
        lines = wrapper.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert lines[0].startswith('#include "') and lines[0].endswith('types.h"')
        assert lines[1].endswith('widget.h"')


class TestClangArgs:
    def test_include_paths_then_partition_args(self, tmp_path: Path) -> None:
        config = Config.from_dict(
            {
                "output": {"name": "X"},
                "include_paths": ["include", "/abs/include"],
                "partition": [{"namespace": "X", "library": "x", "headers": ["x.h"], "clang_args": ["-DX=1"]}],
            }
        )
        args = config.clang_args_for(config.partitions[0], tmp_path)
        assert args == [f"-I{tmp_path / 'include'}", f"-I{Path('/abs/include')}", "-DX=1"]
