"""
Generate the codebase index for a Rust project.

Discovers the compilation units in Cargo.toml, resolves each unit's module
tree with tree-sitter, then writes three files into the output directory:
the JSON lookup table (index.json), the merged annotation store
(annotations.toml) and the content-hash cache (cache.json).
"""

from __future__ import annotations

import json
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

from .annotations import AnnotationStore, update_annotations
from .cache import Cache
from .config import (
    ANNOTATIONS_FILE, CACHE_FILE, CORRUPT_SUFFIX, DEFAULT_OUTPUT_DIR, HOTSPOT_THRESHOLD,
    INDEX_FILE,
)
from .errors import AnnotationIOError, CacheIOError, ParseError, ResolutionError
from .code_tree.parsers.manifest import read_manifest
from .code_tree.parsers.models import CompilationUnit, UnitMetadata, iter_items
from .code_tree.relationships import RelationshipGraph, build_relationships
from .code_tree.resolver import ResolveStats, resolve_module_tree


def lookup_table(forest: list[CompilationUnit]) -> dict[str, dict]:
    """Item path -> location, kind and visibility, sorted by path."""
    index = {}
    for _module, path, item in iter_items(forest):
        index[path] = {
            "file": item.file_path,
            "line_start": item.line_start,
            "line_end": item.line_end,
            "kind": item.kind_label,
            "visibility": item.visibility.value,
        }
    return dict(sorted(index.items()))


def unit_root_paths(units: list[UnitMetadata]) -> list[str]:
    """Root module path per unit: "crate" alone, unit names in a multi-unit forest.

    Names shared by several units (a lib and bin of one package) get a
    ``:kind`` suffix so module paths stay unique across the forest.
    """
    if len(units) == 1:
        return ["crate"]
    counts = Counter(u.name for u in units)
    return [
        u.name if counts[u.name] == 1 else f"{u.name}:{u.kind.value}"
        for u in units
    ]


@dataclass
class GenerateResult:
    forest: list[CompilationUnit]
    graph: RelationshipGraph
    cache: Cache
    annotations: AnnotationStore
    output_dir: Path
    warnings: list[dict[str, str]] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)
    stats: dict = field(default_factory=dict)


class IndexGenerator:
    """Stateful run over one project: discover, resolve, analyze, persist."""

    def __init__(self, project_root: Path, output_dir: Path, *,
                 no_cache: bool = False, on_parse_error: str = "abort",
                 fail_fast: bool = False, hotspot_threshold: int = HOTSPOT_THRESHOLD,
                 verbose: bool = False):
        self.project_root = project_root
        self.output_dir = output_dir
        self.no_cache = no_cache
        self.on_parse_error = on_parse_error
        self.fail_fast = fail_fast
        self.hotspot_threshold = hotspot_threshold
        self.verbose = verbose
        self.errors: list[dict[str, str]] = []
        self.warnings: list[dict[str, str]] = []
        self.resolve_stats = ResolveStats()

    # ── Prior state ─────────────────────────────────────────────────

    def _load_prior_cache(self) -> Cache | None:
        if self.no_cache or not (self.output_dir / CACHE_FILE).is_file():
            return None
        try:
            return Cache.load(self.output_dir)
        except CacheIOError as exc:
            self.warnings.append({"context": CACHE_FILE, "message": f"ignored: {exc}"})
            return None

    def _load_prior_annotations(self) -> AnnotationStore:
        path = self.output_dir / ANNOTATIONS_FILE
        if not path.is_file():
            return AnnotationStore()
        try:
            return AnnotationStore.load(self.output_dir)
        except AnnotationIOError as exc:
            # Move the unreadable file aside so the fresh store cannot overwrite it
            backup = path.with_name(ANNOTATIONS_FILE + CORRUPT_SUFFIX)
            try:
                path.replace(backup)
            except OSError as move_exc:
                raise AnnotationIOError(
                    f"Cannot move unreadable {path} aside: {move_exc}"
                ) from move_exc
            self.warnings.append({
                "context": ANNOTATIONS_FILE,
                "message": f"ignored: {exc} (moved to {backup.name})",
            })
            return AnnotationStore()

    # ── Phases ──────────────────────────────────────────────────────

    def _resolve_units(self, units: list[UnitMetadata],
                       old_cache: Cache | None) -> list[CompilationUnit]:
        forest = []
        for meta, root_path in zip(units, unit_root_paths(units)):
            if self.verbose:
                print(f"  Parsing {meta.kind.value} unit: {meta.name}...")
            try:
                root_module = resolve_module_tree(
                    meta, self.project_root, old_cache,
                    on_parse_error=self.on_parse_error,
                    root_path=root_path,
                    stats=self.resolve_stats,
                )
            except (ResolutionError, ParseError) as exc:
                if self.fail_fast:
                    raise
                self.errors.append({"context": meta.name, "message": str(exc)})
                continue
            forest.append(CompilationUnit(
                name=meta.name,
                kind=meta.kind,
                edition=meta.edition,
                version=meta.version,
                external_deps=list(meta.external_deps),
                root_module=root_module,
            ))
        self.warnings.extend(self.resolve_stats.warnings)
        return forest

    def _write_outputs(self, forest, annotations: AnnotationStore, cache: Cache):
        self.output_dir.mkdir(parents=True, exist_ok=True)
        with open(self.output_dir / INDEX_FILE, "w", encoding="utf8") as f:
            json.dump(lookup_table(forest), f, indent=2)
            f.write("\n")
        annotations.save(self.output_dir)
        cache.save(self.output_dir)

    def run(self) -> GenerateResult:
        t0 = time.time()
        if self.verbose:
            print("Generating index...")
            print(f"  Project: {self.project_root}")
            print(f"  Output: {self.output_dir}")

        old_cache = self._load_prior_cache()

        # Phase 1: Discover
        units = read_manifest(self.project_root)
        if self.verbose:
            names = ", ".join(f"{u.name} ({u.kind.value})" for u in units)
            print(f"  Found {len(units)} unit(s): {names}")

        # Phase 2: Resolve
        forest = self._resolve_units(units, old_cache)

        # Phase 3: Analyze (both see the same completed forest)
        new_cache = Cache.from_crates(forest)
        graph = build_relationships(forest)

        # Phase 4: Merge annotations
        annotations = update_annotations(
            self._load_prior_annotations(), forest, old_cache, new_cache,
        )

        # Phase 5: Persist
        self._write_outputs(forest, annotations, new_cache)
        if self.verbose:
            print(f"  Wrote {INDEX_FILE}, {ANNOTATIONS_FILE}, {CACHE_FILE}")

        n_modules = sum(1 for unit in forest for _ in unit.modules())
        n_items = sum(1 for _ in iter_items(forest))
        stale = sum(1 for e in annotations.items.values() if e.stale and not e.removed)
        stats = {
            "units": len(forest),
            "modules": n_modules,
            "items": n_items,
            "files_parsed": self.resolve_stats.parsed_files,
            "files_unchanged": self.resolve_stats.unchanged_files,
            "stale_items": stale,
            "hotspots": graph.hotspots(self.hotspot_threshold),
        }

        # Always print the summary line
        elapsed = time.time() - t0
        print(
            f"\nDone in {elapsed:.1f}s: "
            f"{len(forest)} unit(s), {n_modules:,} modules, {n_items:,} items "
            f"({stats['files_unchanged']} of {stats['files_parsed']} files unchanged, "
            f"{stale} stale)"
        )

        return GenerateResult(
            forest=forest,
            graph=graph,
            cache=new_cache,
            annotations=annotations,
            output_dir=self.output_dir,
            warnings=self.warnings,
            errors=self.errors,
            stats=stats,
        )


def generate(
    project_dir: str | Path,
    output_dir: str | Path | None = None,
    *,
    no_cache: bool = False,
    on_parse_error: str = "abort",
    fail_fast: bool = False,
    hotspot_threshold: int = HOTSPOT_THRESHOLD,
    verbose: bool = False,
) -> GenerateResult:
    """Index a Rust project and write the output files.

    Args:
        project_dir: Directory containing Cargo.toml.
        output_dir: Where to write; relative paths are taken from
            project_dir. Defaults to ``.codebase-index``.
        no_cache: Ignore any existing cache.json (no staleness marking).
        on_parse_error: ``"abort"`` fails the unit on a syntax error;
            ``"skip"`` drops just the unparsable module and warns.
        fail_fast: Re-raise the first unit failure instead of continuing.
        hotspot_threshold: Minimum module count for a hotspot type.
        verbose: If True, print progress information. Warnings, errors and
            a summary line are always printed.

    Returns:
        A GenerateResult with the forest, relationship graph, new cache,
        merged annotations and any warnings or per-unit errors.

    Raises:
        FileNotFoundError: If project_dir is not a directory.
        DiscoveryError: If Cargo.toml is missing or malformed.

    Example::

        from rsmap import generate

        result = generate("/path/to/crate", verbose=True)
        print(result.graph.conversion_chains())
    """
    project_root = Path(project_dir).resolve()
    if not project_root.is_dir():
        raise FileNotFoundError(f"Not a directory: {project_root}")

    out = Path(output_dir if output_dir is not None else DEFAULT_OUTPUT_DIR)
    if not out.is_absolute():
        out = project_root / out

    generator = IndexGenerator(
        project_root, out,
        no_cache=no_cache,
        on_parse_error=on_parse_error,
        fail_fast=fail_fast,
        hotspot_threshold=hotspot_threshold,
        verbose=verbose,
    )
    result = generator.run()

    # Always print warnings (regardless of verbose)
    if result.warnings:
        print(f"\n  {len(result.warnings)} warning(s):")
        for w in result.warnings:
            print(f"    [{w['context']}] {w['message']}")

    if result.errors:
        print(f"\n  {len(result.errors)} error(s):")
        for err in result.errors:
            print(f"    [{err['context']}] {err['message']}")

    return result
