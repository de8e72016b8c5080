"""Human/LLM-authored notes per module and item, merged across runs.

Notes live in ``annotations.toml`` keyed by module and item path. After
each run the store is merged against the fresh forest: new paths get empty
entries, changed paths are flagged stale, and paths that disappeared are
kept but flagged removed so no note is ever lost.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path

import toml

from .config import ANNOTATIONS_FILE
from .errors import AnnotationIOError, AnnotationImportError
from .code_tree.parsers.models import CompilationUnit, iter_items, iter_modules

_SECTIONS = ("modules", "items")


@dataclass
class AnnotationEntry:
    note: str = ""
    stale: bool = False
    removed: bool = False

    @property
    def needs_description(self) -> bool:
        return not self.removed and (not self.note or self.stale)

    def to_dict(self) -> dict:
        data = {"note": self.note, "stale": self.stale}
        if self.removed:
            data["removed"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict) -> AnnotationEntry:
        return cls(
            note=str(data.get("note", "")),
            stale=bool(data.get("stale", False)),
            removed=bool(data.get("removed", False)),
        )


@dataclass
class AnnotationStore:
    modules: dict[str, AnnotationEntry] = field(default_factory=dict)
    items: dict[str, AnnotationEntry] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            section: {
                path: entry.to_dict()
                for path, entry in sorted(getattr(self, section).items())
            }
            for section in _SECTIONS
        }

    @classmethod
    def from_dict(cls, data: dict) -> AnnotationStore:
        store = cls()
        for section in _SECTIONS:
            table = data.get(section, {})
            if not isinstance(table, dict):
                raise AnnotationIOError(f"[{section}] must be a table")
            target = getattr(store, section)
            for path, entry in table.items():
                if not isinstance(entry, dict):
                    raise AnnotationIOError(f'{section}."{path}" must be a table')
                target[path] = AnnotationEntry.from_dict(entry)
        return store

    @classmethod
    def load(cls, output_dir: str | Path) -> AnnotationStore:
        """Load annotations.toml. Raises AnnotationIOError on any failure."""
        path = Path(output_dir) / ANNOTATIONS_FILE
        try:
            data = toml.load(path)
        except OSError as exc:
            raise AnnotationIOError(f"Cannot read {path}: {exc}") from exc
        except (toml.TomlDecodeError, UnicodeDecodeError) as exc:
            raise AnnotationIOError(f"Failed to parse {path}: {exc}") from exc
        return cls.from_dict(data)

    def save(self, output_dir: str | Path) -> Path:
        path = Path(output_dir) / ANNOTATIONS_FILE
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf8") as f:
                toml.dump(self.to_dict(), f)
        except OSError as exc:
            raise AnnotationIOError(f"Cannot write {path}: {exc}") from exc
        return path


def _merge_section(previous: dict[str, AnnotationEntry], fresh_paths: list[str],
                   changed) -> dict[str, AnnotationEntry]:
    merged: dict[str, AnnotationEntry] = {}
    for path in fresh_paths:
        prev = previous.get(path)
        if prev is None:
            merged[path] = AnnotationEntry()
            continue
        merged[path] = AnnotationEntry(
            note=prev.note,
            stale=prev.stale or changed(path),
            removed=False,
        )
    for path, prev in previous.items():
        if path not in merged:
            merged[path] = replace(prev, removed=True)
    return merged


def update_annotations(existing: AnnotationStore, forest: list[CompilationUnit],
                       old_cache, new_cache) -> AnnotationStore:
    """Merge the prior store against a fresh forest. Returns a new store.

    Stale flags only ever go up here: without an old cache nothing can be
    shown to have changed, so existing flags are carried forward as-is.
    Clearing a flag is the job of ``import_annotations``.
    """
    if old_cache is None:
        def module_changed(path):
            return False
        item_changed = module_changed
    else:
        def module_changed(path):
            return old_cache.module_hash_changed(new_cache, path)

        def item_changed(path):
            return old_cache.item_hash_changed(new_cache, path)

    module_paths = [m.path for m in iter_modules(forest)]
    item_paths = [path for _m, path, _item in iter_items(forest)]
    return AnnotationStore(
        modules=_merge_section(existing.modules, module_paths, module_changed),
        items=_merge_section(existing.items, item_paths, item_changed),
    )


def export_for_annotation(store: AnnotationStore,
                          forest: list[CompilationUnit] | None = None) -> str:
    """Render every entry needing a note (empty or stale) as a TOML document.

    With a forest, item entries also carry kind, signature, file and lines
    so the annotator has something to describe. Those extra keys are
    ignored on import.
    """
    module_files = {}
    item_context = {}
    if forest is not None:
        module_files = {m.path: m.file_path for m in iter_modules(forest)}
        item_context = {path: item for _m, path, item in iter_items(forest)}

    doc: dict[str, dict] = {}
    counts = {}
    for section in _SECTIONS:
        pending = {}
        for path, entry in sorted(getattr(store, section).items()):
            if not entry.needs_description:
                continue
            out = {"note": entry.note}
            if entry.stale:
                out["stale"] = True
            if section == "modules" and path in module_files:
                out["file"] = module_files[path]
            item = item_context.get(path) if section == "items" else None
            if item is not None:
                out["kind"] = item.kind_label
                out["signature"] = item.signature
                out["file"] = item.file_path
                out["lines"] = f"{item.line_start}-{item.line_end}"
            pending[path] = out
        counts[section] = len(pending)
        if pending:
            doc[section] = pending

    header = (
        f"# {counts['modules']} modules and {counts['items']} items need descriptions.\n"
        "# Fill in each `note`, then run: rsmap annotate import <this file>\n"
    )
    if not doc:
        return header
    return header + "\n" + toml.dumps(doc)


def import_annotations(store: AnnotationStore, text: str) -> int:
    """Apply notes from a TOML document to store in place.

    Paths unknown to the store are ignored. The whole document is validated
    before anything is written, so on AnnotationImportError the store is
    untouched. Returns the number of entries updated.
    """
    try:
        data = toml.loads(text)
    except toml.TomlDecodeError as exc:
        raise AnnotationImportError(f"Invalid TOML: {exc}") from exc

    updates: list[tuple[AnnotationEntry, str]] = []
    for section in _SECTIONS:
        table = data.get(section, {})
        if not isinstance(table, dict):
            raise AnnotationImportError(f"[{section}] must be a table")
        for path, entry in table.items():
            if not isinstance(entry, dict) or not isinstance(entry.get("note"), str):
                raise AnnotationImportError(
                    f'{section}."{path}": expected a table with a string `note`'
                )
            target = getattr(store, section).get(path)
            if target is not None:
                updates.append((target, entry["note"]))

    for target, note in updates:
        target.note = note
        target.stale = False
    return len(updates)
