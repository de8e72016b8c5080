"""Resolve a compilation unit's module tree from the on-disk file layout.

Starting at the unit's root file, every ``mod`` declaration is followed to
its inline body or to the file that backs it, and the extractor runs once
per file. The result is a single root ``Module`` owning the whole tree.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import ParseError, ResolutionError
from .parsers.base import hash_file_contents
from .parsers.models import Module, ParsedFile, UnitMetadata, Visibility
from .parsers.rust import RustParser

PARSE_ERROR_POLICIES = ("abort", "skip")

# Files whose child modules live next to them rather than in a subdirectory
_DIR_OWNER_FILES = frozenset({"mod.rs", "lib.rs", "main.rs"})


@dataclass
class ResolveStats:
    """Counters and non-fatal problems collected while resolving."""
    parsed_files: int = 0
    unchanged_files: int = 0
    warnings: list[dict] = field(default_factory=list)


def candidate_files(
    declaring_file: str | Path,
    name: str,
    path_override: str | None = None,
    inline_dirs: list[str] | tuple[str, ...] = (),
    *,
    is_crate_root: bool = False,
) -> list[Path]:
    """Candidate files for ``mod name;`` declared in declaring_file, in order.

    ``inline_dirs`` names the inline modules enclosing the declaration, each
    of which adds one directory level. Pure: no filesystem access.
    """
    declaring_file = Path(declaring_file)
    if is_crate_root or declaring_file.name in _DIR_OWNER_FILES:
        base = declaring_file.parent
    else:
        base = declaring_file.parent / declaring_file.stem
    for inline in inline_dirs:
        base = base / inline

    candidates = [base / f"{name}.rs", base / name / "mod.rs"]
    if path_override:
        # Inside an inline module the override is relative to that module's
        # directory, otherwise to the declaring file's own directory
        override_base = base if inline_dirs else declaring_file.parent
        candidates.append(override_base / path_override)
    return candidates


class ModuleResolver:
    """Walks ``mod`` declarations depth-first in file order."""

    def __init__(self, project_root: str | Path, *, parser: RustParser | None = None,
                 cache=None, on_parse_error: str = "abort",
                 stats: ResolveStats | None = None):
        if on_parse_error not in PARSE_ERROR_POLICIES:
            raise ValueError(
                f"on_parse_error must be one of {PARSE_ERROR_POLICIES}, "
                f"got {on_parse_error!r}"
            )
        self.project_root = Path(project_root)
        self.parser = parser or RustParser()
        self.cache = cache
        self.on_parse_error = on_parse_error
        self.stats = stats if stats is not None else ResolveStats()

    def _rel(self, path: Path) -> str:
        return Path(os.path.relpath(path, self.project_root)).as_posix()

    def _load(self, file_path: Path) -> tuple[ParsedFile, str, str]:
        """Read, hash and parse one file. Returns (parsed, rel_path, file_hash)."""
        rel_path = self._rel(file_path)
        try:
            text = file_path.read_text(encoding="utf8")
        except UnicodeDecodeError as exc:
            raise ParseError(rel_path, None, "not valid UTF-8") from exc
        file_hash = hash_file_contents(text)
        if self.cache is not None and self.cache.is_file_unchanged(rel_path, file_hash):
            self.stats.unchanged_files += 1
        self.stats.parsed_files += 1
        return self.parser.parse_source(text, rel_path), rel_path, file_hash

    def _build_module(self, path: str, parsed: ParsedFile, file_path: Path,
                      rel_path: str, file_hash: str, *,
                      doc_comment: str | None, visibility: Visibility,
                      is_inline: bool, inline_dirs: list[str],
                      is_crate_root: bool) -> Module:
        module = Module(
            path=path,
            file_path=rel_path,
            file_hash=file_hash,
            doc_comment=doc_comment,
            visibility=visibility,
            items=list(parsed.items),
            imports=list(parsed.imports),
            is_inline=is_inline,
        )

        for decl in parsed.modules:
            if decl.is_test:
                continue
            child_path = f"{path}::{decl.name}"

            if decl.body is not None:
                child = self._build_module(
                    child_path, decl.body, file_path, rel_path, file_hash,
                    doc_comment=decl.doc_comment or decl.body.doc_comment,
                    visibility=decl.visibility,
                    is_inline=True,
                    inline_dirs=inline_dirs + [decl.name],
                    is_crate_root=is_crate_root,
                )
                module.submodules.append(child)
                continue

            candidates = candidate_files(
                file_path, decl.name, decl.path_override, inline_dirs,
                is_crate_root=is_crate_root,
            )
            target = next((c for c in candidates if c.is_file()), None)
            if target is None:
                raise ResolutionError(
                    rel_path, decl.name, [self._rel(c) for c in candidates],
                )

            try:
                child_parsed, child_rel, child_hash = self._load(target)
            except ParseError as exc:
                if self.on_parse_error == "skip":
                    self.stats.warnings.append({
                        "context": child_path,
                        "message": f"skipped module: {exc}",
                    })
                    continue
                raise

            child = self._build_module(
                child_path, child_parsed, target, child_rel, child_hash,
                doc_comment=decl.doc_comment or child_parsed.doc_comment,
                visibility=decl.visibility,
                is_inline=False,
                inline_dirs=[],
                is_crate_root=False,
            )
            module.submodules.append(child)

        return module

    def resolve(self, unit_meta: UnitMetadata, root_path: str = "crate") -> Module:
        root_file = Path(unit_meta.root_file)
        if not root_file.is_absolute():
            root_file = self.project_root / root_file
        # A root parse error always propagates: there is nothing to skip to
        parsed, rel_path, file_hash = self._load(root_file)
        return self._build_module(
            root_path, parsed, root_file, rel_path, file_hash,
            doc_comment=parsed.doc_comment,
            visibility=Visibility.PUB,
            is_inline=False,
            inline_dirs=[],
            is_crate_root=True,
        )


def resolve_module_tree(
    unit_meta: UnitMetadata,
    project_root: str | Path,
    cache=None,
    *,
    on_parse_error: str = "abort",
    root_path: str = "crate",
    stats: ResolveStats | None = None,
) -> Module:
    """Resolve one unit into its root Module.

    Args:
        unit_meta: The unit to resolve (root file, name, kind).
        project_root: Directory that file paths are made relative to.
        cache: Optional previous Cache, used only to count unchanged files.
        on_parse_error: ``"abort"`` propagates ParseError; ``"skip"`` drops
            the failing module's subtree and records a warning in stats.
        root_path: Path given to the root module.
        stats: Optional ResolveStats to fill in.

    Raises:
        ResolutionError: A ``mod name;`` has no backing file.
        ParseError: A file failed to parse (always for the root file).
    """
    resolver = ModuleResolver(
        project_root, cache=cache, on_parse_error=on_parse_error, stats=stats,
    )
    return resolver.resolve(unit_meta, root_path=root_path)
