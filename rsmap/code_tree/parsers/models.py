"""Data models for the resolved crate forest: units, modules and items."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator


class Visibility(str, Enum):
    PUB = "pub"
    PUB_CRATE = "pub(crate)"
    PUB_SUPER = "pub(super)"
    PRIVATE = "private"

    @property
    def prefix(self) -> str:
        """Source prefix used when rendering a signature ("" for private)."""
        return "" if self is Visibility.PRIVATE else f"{self.value} "


class ItemKind(str, Enum):
    FUNCTION = "function"
    STRUCT = "struct"
    ENUM = "enum"
    TRAIT = "trait"
    IMPL = "impl"
    TYPE_ALIAS = "type_alias"
    CONST = "const"
    STATIC = "static"
    MACRO = "macro"
    USE = "use"


class UnitKind(str, Enum):
    BIN = "bin"
    LIB = "lib"
    PROC_MACRO = "proc-macro"


@dataclass(frozen=True)
class ImplTarget:
    """Payload carried only by impl items."""
    self_type: str
    trait_name: str | None = None   # None for inherent impls


@dataclass
class Item:
    name: str
    kind: ItemKind
    visibility: Visibility
    signature: str             # body stripped
    doc_comment: str | None
    file_path: str             # relative to the project root
    line_start: int            # 1-based, inclusive
    line_end: int
    content_hash: str          # hash over exactly line_start..line_end
    impl_target: ImplTarget | None = None

    def __post_init__(self):
        if (self.kind is ItemKind.IMPL) != (self.impl_target is not None):
            raise ValueError(
                f"impl_target must be set exactly for impl items ({self.name})"
            )

    @property
    def kind_label(self) -> str:
        """Kind as shown in lookup tables, e.g. "impl Display for Value"."""
        if self.impl_target is None:
            return self.kind.value
        if self.impl_target.trait_name:
            return f"impl {self.impl_target.trait_name} for {self.impl_target.self_type}"
        return f"impl {self.impl_target.self_type}"


@dataclass
class Module:
    path: str                  # e.g. "crate::engine::eval"
    file_path: str
    file_hash: str
    doc_comment: str | None
    visibility: Visibility
    items: list[Item] = field(default_factory=list)
    submodules: list[Module] = field(default_factory=list)
    imports: list[str] = field(default_factory=list)   # flattened use paths
    is_inline: bool = False

    @property
    def name(self) -> str:
        return self.path.rsplit("::", 1)[-1]

    def item_paths(self) -> Iterator[tuple[str, Item]]:
        """Yield (path, item) pairs, suffixing repeated paths with #2, #3, ..."""
        seen: dict[str, int] = {}
        for item in self.items:
            path = f"{self.path}::{item.name}"
            count = seen.get(path, 0) + 1
            seen[path] = count
            yield (path if count == 1 else f"{path}#{count}"), item

    def walk(self) -> Iterator[Module]:
        """Depth-first pre-order traversal of this module and its submodules."""
        stack = [self]
        while stack:
            module = stack.pop()
            yield module
            stack.extend(reversed(module.submodules))


@dataclass
class CompilationUnit:
    name: str
    kind: UnitKind
    edition: str
    version: str
    external_deps: list[str]
    root_module: Module

    def modules(self) -> Iterator[Module]:
        return self.root_module.walk()


def iter_modules(forest: list[CompilationUnit]) -> Iterator[Module]:
    for unit in forest:
        yield from unit.modules()


def iter_items(forest: list[CompilationUnit]) -> Iterator[tuple[Module, str, Item]]:
    """Yield (owning module, item path, item) for every item in the forest."""
    for module in iter_modules(forest):
        for path, item in module.item_paths():
            yield module, path, item


# ── Extractor output ─────────────────────────────────────────────────


@dataclass
class ModDecl:
    """A ``mod name;`` or ``mod name { ... }`` declaration."""
    name: str
    visibility: Visibility
    doc_comment: str | None
    line: int
    is_test: bool = False
    path_override: str | None = None    # from #[path = "..."]
    body: ParsedFile | None = None      # set for inline modules


@dataclass
class ParsedFile:
    """Top-level declarations of one file (or one inline module body)."""
    items: list[Item] = field(default_factory=list)
    doc_comment: str | None = None      # inner //! docs
    imports: list[str] = field(default_factory=list)
    modules: list[ModDecl] = field(default_factory=list)


# ── Manifest / project-level models ──────────────────────────────────


@dataclass
class UnitMetadata:
    """A compilation unit as reported by the manifest, before parsing."""
    name: str
    kind: UnitKind
    edition: str
    version: str
    root_file: Path                     # absolute path to lib.rs / main.rs
    manifest_dir: Path
    external_deps: list[str] = field(default_factory=list)
