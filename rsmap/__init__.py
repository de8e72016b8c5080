"""rsmap - an incremental, annotatable index of Rust codebases."""

__version__ = "0.1.0"

from .errors import (
    RsmapError, DiscoveryError, ResolutionError, ParseError,
    CacheIOError, AnnotationIOError, AnnotationImportError,
)
from .cache import Cache
from .annotations import (
    AnnotationEntry, AnnotationStore,
    update_annotations, export_for_annotation, import_annotations,
)
from .code_tree import build_relationships, read_manifest, resolve_module_tree
from .builder import GenerateResult, generate, lookup_table

__all__ = [
    "__version__",
    "RsmapError", "DiscoveryError", "ResolutionError", "ParseError",
    "CacheIOError", "AnnotationIOError", "AnnotationImportError",
    "Cache",
    "AnnotationEntry", "AnnotationStore",
    "update_annotations", "export_for_annotation", "import_annotations",
    "build_relationships", "read_manifest", "resolve_module_tree",
    "GenerateResult", "generate", "lookup_table",
]
