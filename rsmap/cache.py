"""Content-hash cache for change detection across runs.

The cache is the single source of truth for staleness: annotation and
lookup files never carry hashes. Three granularities are tracked:

- files: whole-file hash plus the time it was indexed
- modules: an aggregate over the module's file hash and own item hashes
- items: the hash of each item's covered source lines
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .config import CACHE_FILE
from .errors import CacheIOError
from .code_tree.parsers.models import CompilationUnit, Module


@dataclass
class FileEntry:
    hash: str
    last_indexed: str


def module_aggregate_hash(module: Module) -> str:
    """Hash of a module's own content, independent of item order.

    Submodules are not included, so an edit in a child file leaves the
    parent's aggregate untouched.
    """
    h = hashlib.sha256(module.file_hash.encode("utf8"))
    for _path, item_hash in sorted(
        (path, item.content_hash) for path, item in module.item_paths()
    ):
        h.update(b"\0")
        h.update(item_hash.encode("utf8"))
    return h.hexdigest()


@dataclass
class Cache:
    files: dict[str, FileEntry] = field(default_factory=dict)
    modules: dict[str, str] = field(default_factory=dict)
    items: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_crates(cls, forest: list[CompilationUnit], now: str | None = None) -> Cache:
        """Collect file, module and item hashes from a resolved forest."""
        if now is None:
            now = datetime.now(timezone.utc).isoformat()
        cache = cls()
        for unit in forest:
            for module in unit.modules():
                # Inline modules share their parent's file; first entry wins
                cache.files.setdefault(
                    module.file_path, FileEntry(hash=module.file_hash, last_indexed=now),
                )
                cache.modules[module.path] = module_aggregate_hash(module)
                for path, item in module.item_paths():
                    cache.items[path] = item.content_hash
        return cache

    def is_file_unchanged(self, file_path: str, current_hash: str) -> bool:
        entry = self.files.get(file_path)
        return entry is not None and entry.hash == current_hash

    def module_hash_changed(self, other: Cache, module_path: str) -> bool:
        """True if the module's aggregate differs, or either side lacks it."""
        old = self.modules.get(module_path)
        new = other.modules.get(module_path)
        return old is None or new is None or old != new

    def item_hash_changed(self, other: Cache, item_path: str) -> bool:
        """True if the item's hash differs, or either side lacks it."""
        old = self.items.get(item_path)
        new = other.items.get(item_path)
        return old is None or new is None or old != new

    # ── Persistence ─────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "files": {
                path: {"hash": e.hash, "last_indexed": e.last_indexed}
                for path, e in sorted(self.files.items())
            },
            "modules": dict(sorted(self.modules.items())),
            "items": dict(sorted(self.items.items())),
        }

    @classmethod
    def from_dict(cls, data: dict) -> Cache:
        try:
            files = {
                path: FileEntry(hash=e["hash"], last_indexed=e.get("last_indexed", ""))
                for path, e in data.get("files", {}).items()
            }
            modules = {str(k): str(v) for k, v in data.get("modules", {}).items()}
            items = {str(k): str(v) for k, v in data.get("items", {}).items()}
        except (AttributeError, KeyError, TypeError) as exc:
            raise CacheIOError(f"Malformed cache data: {exc}") from exc
        return cls(files=files, modules=modules, items=items)

    @classmethod
    def load(cls, output_dir: str | Path) -> Cache:
        """Load cache.json from output_dir. Raises CacheIOError on any failure."""
        path = Path(output_dir) / CACHE_FILE
        try:
            with open(path, encoding="utf8") as f:
                data = json.load(f)
        except OSError as exc:
            raise CacheIOError(f"Cannot read {path}: {exc}") from exc
        except ValueError as exc:
            # JSONDecodeError and UnicodeDecodeError
            raise CacheIOError(f"Failed to parse {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise CacheIOError(f"Failed to parse {path}: expected a JSON object")
        return cls.from_dict(data)

    def save(self, output_dir: str | Path) -> Path:
        path = Path(output_dir) / CACHE_FILE
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf8") as f:
                json.dump(self.to_dict(), f, indent=2)
                f.write("\n")
        except OSError as exc:
            raise CacheIOError(f"Cannot write {path}: {exc}") from exc
        return path
