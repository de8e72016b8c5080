"""Rust source and Cargo manifest parsers."""

from .models import (
    Visibility, ItemKind, UnitKind, ImplTarget,
    Item, Module, CompilationUnit, ModDecl, ParsedFile, UnitMetadata,
    iter_modules, iter_items,
)
from .rust import RustParser
from .manifest import read_manifest

__all__ = [
    "Visibility", "ItemKind", "UnitKind", "ImplTarget",
    "Item", "Module", "CompilationUnit", "ModDecl", "ParsedFile", "UnitMetadata",
    "iter_modules", "iter_items",
    "RustParser",
    "read_manifest",
]
