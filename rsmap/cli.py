"""Typer-based CLI for rsmap."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from . import __version__
from .annotations import AnnotationStore, export_for_annotation, import_annotations
from .builder import generate, unit_root_paths
from .config import DEFAULT_OUTPUT_DIR
from .errors import (
    AnnotationImportError, AnnotationIOError, ParseError, ResolutionError, RsmapError,
)
from .code_tree.parsers.manifest import read_manifest
from .code_tree.parsers.models import CompilationUnit
from .code_tree.resolver import resolve_module_tree

app = typer.Typer(
    help="Generate incremental, annotatable index files for Rust codebases.",
    no_args_is_help=True,
)
annotate_app = typer.Typer(
    help="Export items that need notes, or import notes written elsewhere.",
    no_args_is_help=True,
)
app.add_typer(annotate_app, name="annotate")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"rsmap v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    )
):
    """rsmap: a multi-layered, LLM-friendly index of a Rust project."""
    pass


def _output_dir(project_path: Path, output: Optional[Path]) -> Path:
    out = output if output is not None else Path(DEFAULT_OUTPUT_DIR)
    return out if out.is_absolute() else project_path / out


def _load_forest(project_path: Path) -> list[CompilationUnit]:
    """Resolve every unit that resolves cleanly; failing units are left out."""
    units = read_manifest(project_path)
    forest = []
    for meta, root_path in zip(units, unit_root_paths(units)):
        try:
            root = resolve_module_tree(meta, project_path, root_path=root_path)
        except (ResolutionError, ParseError):
            continue
        forest.append(CompilationUnit(
            name=meta.name, kind=meta.kind, edition=meta.edition,
            version=meta.version, external_deps=list(meta.external_deps),
            root_module=root,
        ))
    return forest


@app.command("generate")
def generate_command(
    path: Path = typer.Option(Path("."), "--path", file_okay=False,
                              help="Path to the Rust project."),
    output: Optional[Path] = typer.Option(None, "--output",
                                          help=f"Output directory (default: {DEFAULT_OUTPUT_DIR})."),
    no_cache: bool = typer.Option(False, "--no-cache", help="Ignore the existing cache."),
    skip_unparsable: bool = typer.Option(False, "--skip-unparsable",
                                         help="Skip modules with syntax errors instead of failing the unit."),
    verbose: bool = typer.Option(False, "--verbose", help="Print progress."),
):
    """Generate index files (full or incremental)."""
    try:
        result = generate(
            path, output,
            no_cache=no_cache,
            on_parse_error="skip" if skip_unparsable else "abort",
            verbose=verbose,
        )
    except (RsmapError, FileNotFoundError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Output written to {result.output_dir}")
    if result.errors:
        raise typer.Exit(code=1)


@annotate_app.command("export")
def annotate_export(
    path: Path = typer.Option(Path("."), "--path", file_okay=False,
                              help="Path to the Rust project."),
    output: Optional[Path] = typer.Option(None, "--output", help="Index directory."),
):
    """Print unannotated and stale entries as TOML."""
    project_path = path.resolve()
    try:
        store = AnnotationStore.load(_output_dir(project_path, output))
    except AnnotationIOError as exc:
        typer.echo(f"Error: {exc}. Run 'rsmap generate' first.", err=True)
        raise typer.Exit(code=1)

    try:
        forest = _load_forest(project_path)
    except RsmapError as exc:
        typer.echo(f"Warning: exporting without item context ({exc})", err=True)
        forest = None
    typer.echo(export_for_annotation(store, forest))


@annotate_app.command("import")
def annotate_import(
    file: Path = typer.Argument(..., exists=True, dir_okay=False,
                                help="TOML file with annotations."),
    output: Optional[Path] = typer.Option(None, "--output", help="Index directory."),
):
    """Import notes from a TOML file into annotations.toml."""
    output_dir = _output_dir(Path.cwd(), output)
    try:
        store = AnnotationStore.load(output_dir)
        count = import_annotations(store, file.read_text(encoding="utf8"))
        store.save(output_dir)
    except UnicodeDecodeError as exc:
        typer.echo(f"Error: {file} is not valid UTF-8 ({exc})", err=True)
        raise typer.Exit(code=1)
    except (AnnotationIOError, AnnotationImportError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Imported {count} annotation(s).")
