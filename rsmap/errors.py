"""Exception taxonomy for rsmap."""

from __future__ import annotations


class RsmapError(Exception):
    """Base class for all rsmap errors."""


class DiscoveryError(RsmapError):
    """The Cargo manifest is missing or malformed. Fatal for the whole run."""


class ResolutionError(RsmapError):
    """A ``mod name;`` declaration points at no existing file."""

    def __init__(self, file_path: str, module_name: str, candidates=()):
        self.file_path = str(file_path)
        self.module_name = module_name
        self.candidates = [str(c) for c in candidates]
        tried = ", ".join(self.candidates) or "no candidates"
        super().__init__(
            f"Cannot find module file for `mod {module_name};` "
            f"declared in {self.file_path} (tried: {tried})"
        )


class ParseError(RsmapError):
    """A source file contains syntax the Rust grammar cannot parse."""

    def __init__(self, file_path: str, line: int | None = None, detail: str = ""):
        self.file_path = str(file_path)
        self.line = line
        where = f"{self.file_path}:{line}" if line else self.file_path
        msg = f"Failed to parse {where}"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class CacheIOError(RsmapError):
    """cache.json is unreadable or corrupt. Callers treat this as "no cache"."""


class AnnotationIOError(RsmapError):
    """annotations.toml is unreadable or corrupt."""


class AnnotationImportError(RsmapError):
    """An externally produced annotation document is structurally invalid."""
