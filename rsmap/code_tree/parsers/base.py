"""Shared helpers for tree-sitter based extraction and hashing."""

import hashlib
import re


def node_text(node, source: bytes) -> str:
    """Extract the text of a tree-sitter node."""
    return source[node.start_byte:node.end_byte].decode("utf8")


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf8")).hexdigest()


def hash_file_contents(contents: str) -> str:
    """Hash the entire contents of a file."""
    return hash_text(contents)


def hash_line_range(source: str, line_start: int, line_end: int) -> str:
    """Hash the 1-based inclusive line range of source.

    The range is clamped to the file, so a heuristic end line past EOF
    still hashes the covered text. Lines are split on ``\\n`` only, matching
    tree-sitter rows, so form feeds and other Unicode line breaks stay
    inside their line.
    """
    lines = [line[:-1] if line.endswith("\r") else line for line in source.split("\n")]
    start = max(line_start - 1, 0)
    end = min(line_end, len(lines))
    return hash_text("\n".join(lines[start:end]))


_WS_RE = re.compile(r"\s+")


def collapse_ws(text: str) -> str:
    """Collapse runs of whitespace and tidy spaces just inside brackets.

    ``fn f(\\n    a: u8,\\n) -> X`` becomes ``fn f(a: u8) -> X``.
    """
    text = _WS_RE.sub(" ", text).strip()
    text = re.sub(r"([(\[<]) ", r"\1", text)
    text = re.sub(r" ([)\]>])", r"\1", text)
    text = re.sub(r",\s*([)\]>])", r"\1", text)
    return text


def get_type_parameters(node, source: bytes,
                        node_type: str = "type_parameters") -> str | None:
    """Return the raw ``<...>`` generics text of a declaration node, if any."""
    for child in node.children:
        if child.type == node_type:
            return collapse_ws(node_text(child, source))
    return None
