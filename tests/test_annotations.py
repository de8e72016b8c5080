"""Tests for annotation merge, export and import."""

import copy

import pytest
import toml

from rsmap.annotations import (
    AnnotationEntry, AnnotationStore,
    export_for_annotation, import_annotations, update_annotations,
)
from rsmap.cache import Cache
from rsmap.errors import AnnotationImportError, AnnotationIOError
from rsmap.code_tree.parsers.models import (
    CompilationUnit, Item, ItemKind, Module, UnitKind, Visibility,
)


def _forest(item_hashes: dict[str, str]) -> list[CompilationUnit]:
    """One unit whose root module holds one function per {name: hash}."""
    items = [
        Item(
            name=name, kind=ItemKind.FUNCTION, visibility=Visibility.PUB,
            signature=f"pub fn {name}();", doc_comment=None,
            file_path="src/lib.rs", line_start=i + 1, line_end=i + 1,
            content_hash=h,
        )
        for i, (name, h) in enumerate(item_hashes.items())
    ]
    root = Module(
        path="crate", file_path="src/lib.rs", file_hash="f", doc_comment=None,
        visibility=Visibility.PUB, items=items,
    )
    return [CompilationUnit(
        name="demo", kind=UnitKind.LIB, edition="2021", version="0.1.0",
        external_deps=[], root_module=root,
    )]


def _store(items: dict[str, AnnotationEntry], modules=None) -> AnnotationStore:
    return AnnotationStore(modules=modules or {}, items=items)


class TestUpdateAnnotations:

    def test_fresh_paths_get_empty_entries(self):
        forest = _forest({"a": "h1", "b": "h2"})
        merged = update_annotations(AnnotationStore(), forest, None, Cache.from_crates(forest))
        assert merged.items == {
            "crate::a": AnnotationEntry(),
            "crate::b": AnnotationEntry(),
        }
        assert merged.modules == {"crate": AnnotationEntry()}

    def test_changed_item_is_stale_and_keeps_note(self):
        old_forest = _forest({"a": "h1", "b": "h2"})
        new_forest = _forest({"a": "h1-edited", "b": "h2"})
        existing = _store({
            "crate::a": AnnotationEntry(note="adds things"),
            "crate::b": AnnotationEntry(note="bees"),
        })
        merged = update_annotations(
            existing, new_forest,
            Cache.from_crates(old_forest), Cache.from_crates(new_forest),
        )
        assert merged.items["crate::a"] == AnnotationEntry(note="adds things", stale=True)
        # unchanged items never gain stale
        assert merged.items["crate::b"] == AnnotationEntry(note="bees", stale=False)

    def test_without_old_cache_flags_are_carried(self):
        forest = _forest({"a": "h1", "b": "h2"})
        existing = _store({
            "crate::a": AnnotationEntry(note="x", stale=True),
            "crate::b": AnnotationEntry(note="y", stale=False),
        })
        merged = update_annotations(existing, forest, None, Cache.from_crates(forest))
        assert merged.items["crate::a"].stale is True
        assert merged.items["crate::b"].stale is False

    def test_stale_is_never_cleared_by_merge(self):
        forest = _forest({"a": "h1"})
        cache = Cache.from_crates(forest)
        existing = _store({"crate::a": AnnotationEntry(note="x", stale=True)})
        merged = update_annotations(existing, forest, cache, cache)
        assert merged.items["crate::a"].stale is True

    def test_removed_paths_are_kept(self):
        old_forest = _forest({"a": "h1", "gone": "h2"})
        new_forest = _forest({"a": "h1"})
        existing = _store({"crate::gone": AnnotationEntry(note="was here")})
        merged = update_annotations(
            existing, new_forest,
            Cache.from_crates(old_forest), Cache.from_crates(new_forest),
        )
        assert merged.items["crate::gone"] == AnnotationEntry(note="was here", removed=True)
        assert set(merged.items) == {"crate::a", "crate::gone"}

    def test_reappearing_path_is_no_longer_removed(self):
        forest = _forest({"back": "h1"})
        existing = _store({"crate::back": AnnotationEntry(note="n", removed=True)})
        merged = update_annotations(existing, forest, None, Cache.from_crates(forest))
        assert merged.items["crate::back"] == AnnotationEntry(note="n", removed=False)

    def test_existing_store_is_not_mutated(self):
        old_forest = _forest({"a": "h1", "gone": "h0"})
        new_forest = _forest({"a": "h2"})
        existing = _store({
            "crate::a": AnnotationEntry(note="n"),
            "crate::gone": AnnotationEntry(note="g"),
        })
        snapshot = copy.deepcopy(existing)
        update_annotations(
            existing, new_forest,
            Cache.from_crates(old_forest), Cache.from_crates(new_forest),
        )
        assert existing == snapshot


class TestExport:

    def test_lists_only_entries_needing_descriptions(self):
        store = _store({
            "crate::empty": AnnotationEntry(),
            "crate::stale": AnnotationEntry(note="old words", stale=True),
            "crate::done": AnnotationEntry(note="fine"),
            "crate::removed": AnnotationEntry(removed=True),
        }, modules={"crate": AnnotationEntry()})
        text = export_for_annotation(store)
        assert text.startswith("# 1 modules and 2 items need descriptions.")

        data = toml.loads(text)
        assert set(data["items"]) == {"crate::empty", "crate::stale"}
        assert data["items"]["crate::stale"] == {"note": "old words", "stale": True}
        assert set(data["modules"]) == {"crate"}

    def test_forest_adds_context(self):
        forest = _forest({"a": "h1"})
        store = _store({"crate::a": AnnotationEntry()})
        data = toml.loads(export_for_annotation(store, forest))
        assert data["items"]["crate::a"] == {
            "note": "",
            "kind": "function",
            "signature": "pub fn a();",
            "file": "src/lib.rs",
            "lines": "1-1",
        }

    def test_nothing_to_do(self):
        store = _store({"crate::done": AnnotationEntry(note="fine")})
        text = export_for_annotation(store)
        assert text.startswith("# 0 modules and 0 items need descriptions.")
        assert toml.loads(text) == {}


class TestImport:

    def test_applies_notes_and_clears_stale(self):
        store = _store(
            {"crate::a": AnnotationEntry(note="old", stale=True), "crate::b": AnnotationEntry()},
            modules={"crate": AnnotationEntry()},
        )
        text = (
            '[modules."crate"]\nnote = "the root"\n\n'
            '[items."crate::a"]\nnote = "new words"\n\n'
            '[items."crate::unknown"]\nnote = "ignored"\n'
        )
        assert import_annotations(store, text) == 2
        assert store.items["crate::a"] == AnnotationEntry(note="new words", stale=False)
        assert store.items["crate::b"] == AnnotationEntry()
        assert store.modules["crate"].note == "the root"
        assert "crate::unknown" not in store.items

    def test_export_output_round_trips(self):
        forest = _forest({"a": "h1"})
        store = _store({"crate::a": AnnotationEntry()})
        data = toml.loads(export_for_annotation(store, forest))
        data["items"]["crate::a"]["note"] = "does a"
        assert import_annotations(store, toml.dumps(data)) == 1
        assert store.items["crate::a"].note == "does a"

    def test_invalid_toml_leaves_store_untouched(self):
        store = _store({"crate::a": AnnotationEntry(note="keep")})
        snapshot = copy.deepcopy(store)
        with pytest.raises(AnnotationImportError):
            import_annotations(store, "[items\nnote = ")
        assert store == snapshot

    def test_missing_note_rejects_whole_document(self):
        store = _store({"crate::a": AnnotationEntry(), "crate::b": AnnotationEntry()})
        snapshot = copy.deepcopy(store)
        text = (
            '[items."crate::a"]\nnote = "valid"\n\n'
            '[items."crate::b"]\nnote = 42\n'
        )
        with pytest.raises(AnnotationImportError) as exc_info:
            import_annotations(store, text)
        assert "crate::b" in str(exc_info.value)
        assert store == snapshot


class TestPersistence:

    def test_save_and_load(self, tmp_path):
        store = _store(
            {
                "crate::a": AnnotationEntry(note="multi\nline \"quoted\""),
                "crate::impl Foo#2": AnnotationEntry(stale=True),
                "crate::gone": AnnotationEntry(note="old", removed=True),
            },
            modules={"crate::engine": AnnotationEntry(note="engine")},
        )
        path = store.save(tmp_path)
        assert path.name == "annotations.toml"
        assert AnnotationStore.load(tmp_path) == store

    def test_missing_file(self, tmp_path):
        with pytest.raises(AnnotationIOError):
            AnnotationStore.load(tmp_path)

    def test_corrupt_file(self, tmp_path):
        (tmp_path / "annotations.toml").write_text("[items\n")
        with pytest.raises(AnnotationIOError):
            AnnotationStore.load(tmp_path)

    def test_invalid_utf8(self, tmp_path):
        (tmp_path / "annotations.toml").write_bytes(b"\xff\xfe[modules]\n")
        with pytest.raises(AnnotationIOError):
            AnnotationStore.load(tmp_path)
