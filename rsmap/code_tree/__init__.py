"""Resolve Rust crates into module trees and relationship graphs using tree-sitter.

Usage::

    from rsmap.code_tree import read_manifest, resolve_module_tree

    units = read_manifest("/path/to/crate")
    root = resolve_module_tree(units[0], "/path/to/crate")
"""

try:
    import tree_sitter  # noqa: F401
    import tree_sitter_rust  # noqa: F401
except ImportError:
    raise ImportError(
        "The rsmap.code_tree module requires tree-sitter and tree-sitter-rust. "
        "Install with: pip install tree-sitter tree-sitter-rust"
    ) from None

from .parsers.manifest import read_manifest
from .relationships import RelationshipGraph, build_relationships
from .resolver import ResolveStats, candidate_files, resolve_module_tree

__all__ = [
    "read_manifest",
    "RelationshipGraph", "build_relationships",
    "ResolveStats", "candidate_files", "resolve_module_tree",
]
