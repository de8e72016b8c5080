"""Tests for the content-hash cache."""

import json

import pytest

from rsmap.cache import Cache, FileEntry, module_aggregate_hash
from rsmap.errors import CacheIOError
from rsmap.code_tree.parsers.models import (
    CompilationUnit, ImplTarget, Item, ItemKind, Module, UnitKind, Visibility,
)


def _item(name: str, content_hash: str, kind: ItemKind = ItemKind.FUNCTION) -> Item:
    return Item(
        name=name, kind=kind, visibility=Visibility.PUB,
        signature=f"pub fn {name}();", doc_comment=None,
        file_path="src/lib.rs", line_start=1, line_end=1,
        content_hash=content_hash,
        impl_target=ImplTarget(self_type=name) if kind is ItemKind.IMPL else None,
    )


def _module(path: str, items: list[Item], file_hash: str = "f0",
            file_path: str = "src/lib.rs", submodules=None) -> Module:
    return Module(
        path=path, file_path=file_path, file_hash=file_hash, doc_comment=None,
        visibility=Visibility.PUB, items=items, submodules=submodules or [],
    )


def _forest(root: Module) -> list[CompilationUnit]:
    return [CompilationUnit(
        name="demo", kind=UnitKind.LIB, edition="2021", version="0.1.0",
        external_deps=[], root_module=root,
    )]


class TestFromCrates:

    def test_collects_all_granularities(self):
        child = _module("crate::a", [_item("g", "h2")], "fa", "src/a.rs")
        root = _module("crate", [_item("f", "h1")], submodules=[child])
        cache = Cache.from_crates(_forest(root), now="2025-01-15T00:00:00Z")

        assert cache.files == {
            "src/lib.rs": FileEntry(hash="f0", last_indexed="2025-01-15T00:00:00Z"),
            "src/a.rs": FileEntry(hash="fa", last_indexed="2025-01-15T00:00:00Z"),
        }
        assert set(cache.modules) == {"crate", "crate::a"}
        assert cache.items == {"crate::f": "h1", "crate::a::g": "h2"}

    def test_duplicate_item_paths_get_suffixes(self):
        root = _module("crate", [
            _item("impl Foo", "h1", ItemKind.IMPL),
            _item("impl Foo", "h2", ItemKind.IMPL),
        ])
        cache = Cache.from_crates(_forest(root), now="t")
        assert cache.items == {"crate::impl Foo": "h1", "crate::impl Foo#2": "h2"}

    def test_identical_input_gives_identical_cache(self):
        def build():
            return Cache.from_crates(_forest(_module("crate", [_item("f", "h1")])), now="t")
        assert build() == build()


class TestModuleAggregate:

    def test_item_order_does_not_matter(self):
        a = _module("crate", [_item("f", "h1"), _item("g", "h2")])
        b = _module("crate", [_item("g", "h2"), _item("f", "h1")])
        assert module_aggregate_hash(a) == module_aggregate_hash(b)

    def test_item_change_changes_aggregate(self):
        a = _module("crate", [_item("f", "h1")])
        b = _module("crate", [_item("f", "h1-edited")])
        assert module_aggregate_hash(a) != module_aggregate_hash(b)

    def test_child_file_does_not_affect_parent(self):
        before = _module("crate", [_item("f", "h1")], submodules=[
            _module("crate::a", [], "fa", "src/a.rs"),
        ])
        after = _module("crate", [_item("f", "h1")], submodules=[
            _module("crate::a", [], "fa-edited", "src/a.rs"),
        ])
        assert module_aggregate_hash(before) == module_aggregate_hash(after)


class TestComparisons:

    def test_is_file_unchanged(self):
        cache = Cache(files={"src/lib.rs": FileEntry("abc123", "t")})
        assert cache.is_file_unchanged("src/lib.rs", "abc123")
        assert not cache.is_file_unchanged("src/lib.rs", "changed")
        assert not cache.is_file_unchanged("src/main.rs", "abc123")

    def test_item_hash_changed(self):
        old = Cache(items={"crate::init": "v1", "crate::same": "s"})
        new = Cache(items={"crate::init": "v2", "crate::same": "s", "crate::run": "n"})
        assert old.item_hash_changed(new, "crate::init")
        assert not old.item_hash_changed(new, "crate::same")
        # absent from either side counts as changed
        assert old.item_hash_changed(new, "crate::run")
        assert new.item_hash_changed(old, "crate::run")

    def test_module_hash_changed(self):
        old = Cache(modules={"crate": "m1"})
        new = Cache(modules={"crate": "m1", "crate::a": "m2"})
        assert not old.module_hash_changed(new, "crate")
        assert old.module_hash_changed(new, "crate::a")


class TestPersistence:

    def test_save_and_load(self, tmp_path):
        cache = Cache(
            files={"src/lib.rs": FileEntry("abc123", "2025-01-15T00:00:00Z")},
            modules={"crate": "m1"},
            items={"crate::init": "def456"},
        )
        path = cache.save(tmp_path / "out")
        assert path.name == "cache.json"
        assert Cache.load(tmp_path / "out") == cache

        data = json.loads(path.read_text())
        assert data["files"]["src/lib.rs"] == {
            "hash": "abc123", "last_indexed": "2025-01-15T00:00:00Z",
        }

    def test_missing_file(self, tmp_path):
        with pytest.raises(CacheIOError):
            Cache.load(tmp_path)

    def test_corrupt_file(self, tmp_path):
        (tmp_path / "cache.json").write_text("{not json")
        with pytest.raises(CacheIOError):
            Cache.load(tmp_path)

    def test_invalid_utf8(self, tmp_path):
        (tmp_path / "cache.json").write_bytes(b"\xff\xfe{}")
        with pytest.raises(CacheIOError):
            Cache.load(tmp_path)

    def test_wrong_shape(self, tmp_path):
        (tmp_path / "cache.json").write_text('{"files": {"src/lib.rs": 3}}')
        with pytest.raises(CacheIOError):
            Cache.load(tmp_path)


class TestOnRealCrate:

    def test_single_item_edit(self, sample_crate):
        pytest.importorskip("tree_sitter", reason="requires tree-sitter")
        from rsmap.code_tree.parsers.manifest import read_manifest
        from rsmap.code_tree.resolver import resolve_module_tree

        def snapshot():
            meta = read_manifest(sample_crate)[0]
            root = resolve_module_tree(meta, sample_crate)
            return Cache.from_crates(_forest(root), now="t")

        old = snapshot()
        assert snapshot() == old

        utils = sample_crate / "src" / "utils.rs"
        utils.write_text(utils.read_text().replace(".trim()", ".trim_start()"))
        new = snapshot()

        changed_items = [p for p in new.items if old.item_hash_changed(new, p)]
        changed_modules = [p for p in new.modules if old.module_hash_changed(new, p)]
        assert changed_items == ["crate::utils::parse_int"]
        assert changed_modules == ["crate::utils"]
