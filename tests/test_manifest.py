"""Tests for Cargo.toml unit discovery."""

import pytest

from rsmap.errors import DiscoveryError
from rsmap.code_tree.parsers.manifest import read_manifest
from rsmap.code_tree.parsers.models import UnitKind


class TestSinglePackage:

    def test_sample_crate(self, sample_crate):
        (unit,) = read_manifest(sample_crate)
        assert unit.name == "sample"
        assert unit.kind is UnitKind.LIB
        assert unit.edition == "2021"
        assert unit.version == "0.3.1"
        # dev-dependencies are not external deps of the unit
        assert unit.external_deps == ["serde", "thiserror"]
        assert unit.root_file == sample_crate / "src" / "lib.rs"
        assert unit.manifest_dir == sample_crate

    def test_lib_and_bins(self, make_crate):
        root = make_crate({
            "Cargo.toml": '[package]\nname = "my-tool"\nversion = "1.0.0"\n',
            "src/lib.rs": "",
            "src/main.rs": "fn main() {}\n",
            "src/bin/extra.rs": "fn main() {}\n",
            "src/bin/multi/main.rs": "fn main() {}\n",
        })
        units = read_manifest(root)
        assert [(u.name, u.kind) for u in units] == [
            ("my_tool", UnitKind.LIB),
            ("my-tool", UnitKind.BIN),
            ("extra", UnitKind.BIN),
            ("multi", UnitKind.BIN),
        ]
        # edition defaults to 2015 when unset
        assert {u.edition for u in units} == {"2015"}
        assert units[3].root_file == root / "src" / "bin" / "multi" / "main.rs"

    def test_explicit_targets(self, make_crate):
        root = make_crate({
            "Cargo.toml": (
                '[package]\nname = "macros"\nversion = "0.1.0"\nedition = "2018"\n\n'
                '[lib]\npath = "lib/entry.rs"\nproc-macro = true\n\n'
                '[[bin]]\nname = "runner"\npath = "tools/run.rs"\n'
            ),
            "lib/entry.rs": "",
            "tools/run.rs": "fn main() {}\n",
        })
        units = read_manifest(root)
        assert [(u.name, u.kind) for u in units] == [
            ("macros", UnitKind.PROC_MACRO),
            ("runner", UnitKind.BIN),
        ]
        assert units[0].root_file == root / "lib" / "entry.rs"

    def test_missing_declared_target(self, make_crate):
        root = make_crate({
            "Cargo.toml": '[package]\nname = "x"\n\n[[bin]]\nname = "gone"\npath = "src/gone.rs"\n',
            "src/lib.rs": "",
        })
        with pytest.raises(DiscoveryError, match="gone"):
            read_manifest(root)


class TestWorkspace:

    def test_members_and_inheritance(self, make_crate):
        root = make_crate({
            "Cargo.toml": (
                '[workspace]\nmembers = ["crates/*"]\nexclude = ["crates/skip"]\n\n'
                '[workspace.package]\nversion = "1.2.0"\nedition = "2021"\n'
            ),
            "crates/core/Cargo.toml": (
                '[package]\nname = "core-lib"\nversion.workspace = true\n'
                'edition.workspace = true\n\n[dependencies]\nserde = "1"\n'
            ),
            "crates/core/src/lib.rs": "",
            "crates/app/Cargo.toml": '[package]\nname = "app"\nversion = "0.9.0"\n',
            "crates/app/src/main.rs": "fn main() {}\n",
            "crates/skip/README": "not a crate\n",
        })
        units = read_manifest(root)
        assert [(u.name, u.kind, u.version) for u in units] == [
            ("app", UnitKind.BIN, "0.9.0"),
            ("core_lib", UnitKind.LIB, "1.2.0"),
        ]
        core = units[1]
        assert core.edition == "2021"
        assert core.external_deps == ["serde"]
        assert core.manifest_dir == root / "crates" / "core"

    def test_member_without_manifest(self, make_crate):
        root = make_crate({
            "Cargo.toml": '[workspace]\nmembers = ["crates/*"]\n',
            "crates/broken/src/lib.rs": "",
        })
        with pytest.raises(DiscoveryError, match="No Cargo.toml"):
            read_manifest(root)


class TestErrors:

    def test_missing_manifest(self, tmp_path):
        with pytest.raises(DiscoveryError, match="No Cargo.toml"):
            read_manifest(tmp_path)

    def test_malformed_toml(self, make_crate):
        root = make_crate({"Cargo.toml": "[package\nname = "})
        with pytest.raises(DiscoveryError, match="Malformed TOML"):
            read_manifest(root)

    def test_no_package_or_workspace(self, make_crate):
        root = make_crate({"Cargo.toml": '[dependencies]\nserde = "1"\n'})
        with pytest.raises(DiscoveryError):
            read_manifest(root)
