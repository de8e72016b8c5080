"""Rust signature extractor using tree-sitter-rust.

Turns one source file into a ``ParsedFile``: the top-level items with
body-stripped signatures, line ranges and content hashes, the flattened
``use`` paths, and the ``mod`` declarations the resolver recurses into.
"""

import re
from dataclasses import dataclass
from pathlib import Path

from tree_sitter import Language, Parser
import tree_sitter_rust as ts_rust

from ...errors import ParseError
from .base import (
    node_text, collapse_ws, get_type_parameters, hash_line_range,
)
from .models import (
    ParsedFile, ModDecl, Item, ItemKind, ImplTarget, Visibility,
)

RUST_LANGUAGE = Language(ts_rust.language())

_COMMENT_TYPES = frozenset({"line_comment", "block_comment"})

_CFG_RE = re.compile(r"#\[\s*cfg\s*\((.*)\)\s*\]", re.S)
_PATH_ATTR_RE = re.compile(r'#\[\s*path\s*=\s*"([^"]+)"\s*\]')


@dataclass
class _Source:
    data: bytes
    text: str
    rel_path: str


def _join_path(prefix: str, segment: str) -> str:
    return f"{prefix}::{segment}" if prefix else segment


def _visibility_from_text(text: str) -> Visibility:
    compact = "".join(text.split())
    if compact == "pub":
        return Visibility.PUB
    if compact in ("pub(crate)", "crate") or compact.startswith("pub(in"):
        return Visibility.PUB_CRATE
    if compact == "pub(super)":
        return Visibility.PUB_SUPER
    return Visibility.PRIVATE


class RustParser:

    def __init__(self):
        self._parser = Parser(RUST_LANGUAGE)

    # ── Helpers ─────────────────────────────────────────────────────────

    def _get_visibility(self, node) -> Visibility:
        for child in node.children:
            if child.type == "visibility_modifier":
                return _visibility_from_text(child.text.decode("utf8"))
        return Visibility.PRIVATE

    def _get_doc_comment(self, node, source: bytes) -> str | None:
        """Walk backward through siblings to collect /// or /** */ doc comments."""
        doc_lines = []
        sibling = node.prev_named_sibling
        while sibling is not None:
            if sibling.type == "line_comment":
                text = node_text(sibling, source).strip()
                if text.startswith("///") and not text.startswith("////"):
                    content = text[3:]
                    if content.startswith(" "):
                        content = content[1:]
                    doc_lines.insert(0, content)
                    sibling = sibling.prev_named_sibling
                    continue
            elif sibling.type == "block_comment":
                text = node_text(sibling, source).strip()
                if text.startswith("/**") and not text.startswith("/***"):
                    content = self._clean_block_doc(text[3:])
                    if content:
                        doc_lines.insert(0, content)
                    break
            elif sibling.type == "attribute_item":
                sibling = sibling.prev_named_sibling
                continue
            break
        return "\n".join(doc_lines).strip() or None

    @staticmethod
    def _clean_block_doc(text: str) -> str:
        if text.endswith("*/"):
            text = text[:-2]
        lines = []
        for line in text.split("\n"):
            line = line.strip()
            if line.startswith("* "):
                line = line[2:]
            elif line.startswith("*"):
                line = line[1:]
            lines.append(line)
        return "\n".join(lines).strip()

    def _get_inner_doc(self, node, source: bytes) -> str | None:
        """Collect leading //! and /*! */ comments of a file or inline body."""
        doc_lines = []
        for child in node.named_children:
            if child.type == "line_comment":
                text = node_text(child, source).strip()
                if text.startswith("//!"):
                    content = text[3:]
                    doc_lines.append(content[1:] if content.startswith(" ") else content)
                continue
            if child.type == "block_comment":
                text = node_text(child, source).strip()
                if text.startswith("/*!"):
                    doc_lines.append(self._clean_block_doc(text[3:]))
                continue
            if child.type == "inner_attribute_item":
                continue
            break
        return "\n".join(doc_lines).strip() or None

    def _get_attributes(self, node, source: bytes) -> list[str]:
        """Walk backward through siblings to collect #[...] attributes."""
        attrs = []
        sibling = node.prev_named_sibling
        while sibling is not None:
            if sibling.type == "attribute_item":
                attrs.insert(0, node_text(sibling, source))
                sibling = sibling.prev_named_sibling
                continue
            elif sibling.type in _COMMENT_TYPES:
                sibling = sibling.prev_named_sibling
                continue
            break
        return attrs

    @staticmethod
    def _is_cfg_test(attrs: list[str]) -> bool:
        for a in attrs:
            m = _CFG_RE.match(a.strip())
            if m is None:
                continue
            args = m.group(1)
            if re.search(r"\btest\b", args) and not re.search(r"not\s*\(\s*test\s*\)", args):
                return True
        return False

    @staticmethod
    def _get_path_override(attrs: list[str]) -> str | None:
        for a in attrs:
            m = _PATH_ATTR_RE.match(a.strip())
            if m:
                return m.group(1)
        return None

    def _get_name(self, node, source: bytes) -> str | None:
        name = node.child_by_field_name("name")
        return node_text(name, source) if name is not None else None

    def _field_text(self, node, field: str, source: bytes) -> str:
        child = node.child_by_field_name(field)
        return collapse_ws(node_text(child, source)) if child is not None else ""

    def _where_clause(self, node, source: bytes) -> str:
        for child in node.children:
            if child.type == "where_clause":
                return " " + collapse_ws(node_text(child, source)).rstrip(",")
        return ""

    def _has_token(self, node, token: str) -> bool:
        return any(not c.is_named and c.type == token for c in node.children)

    def _span_lines(self, node) -> tuple[int, int]:
        """Best-effort (start, end) line range of a declaration.

        Start is the line of the leading token. End comes from a forward walk
        over the declaration's tokens, keeping the furthest line reached by a
        non-comment token. Not span-exact: a token ending at column 0 is
        credited to the previous line, and macro token trees may overshoot
        or undershoot what a reader would call the item's last line.
        """
        start = node.start_point[0] + 1
        end = start
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type in _COMMENT_TYPES:
                continue
            if current.child_count == 0:
                if current.start_byte == current.end_byte:
                    continue
                row, col = current.end_point
                end = max(end, row + 1 if col > 0 else row)
                continue
            stack.extend(current.children)
        return start, end

    def _first_error_line(self, node) -> int | None:
        stack = [node]
        while stack:
            current = stack.pop()
            if current.type == "ERROR" or current.is_missing:
                return current.start_point[0] + 1
            if current.has_error:
                stack.extend(reversed(current.children))
        return None

    # ── Signature rendering ─────────────────────────────────────────────

    def _fn_signature(self, node, source: bytes) -> str:
        """Function header up to (not including) the body, ending in ';'."""
        body = node.child_by_field_name("body")
        end = body.start_byte if body is not None else node.end_byte
        text = collapse_ws(source[node.start_byte:end].decode("utf8"))
        return text.rstrip(";, ") + ";"

    def _named_field(self, field, source: bytes, with_vis: bool = True) -> str:
        vis = self._get_visibility(field).prefix if with_vis else ""
        name = self._field_text(field, "name", source)
        ty = self._field_text(field, "type", source)
        return f"{vis}{name}: {ty}"

    def _ordered_fields(self, field_list, source: bytes,
                        with_vis: bool = True) -> list[str]:
        out = []
        pending_vis = ""
        for child in field_list.named_children:
            if child.type == "attribute_item" or child.type in _COMMENT_TYPES:
                continue
            if child.type == "visibility_modifier":
                if with_vis:
                    pending_vis = _visibility_from_text(node_text(child, source)).prefix
                continue
            out.append(pending_vis + collapse_ws(node_text(child, source)))
            pending_vis = ""
        return out

    def _struct_signature(self, node, source: bytes, vis: Visibility) -> str:
        name = self._get_name(node, source)
        generics = get_type_parameters(node, source) or ""
        where = self._where_clause(node, source)
        head = f"{vis.prefix}struct {name}{generics}"
        body = node.child_by_field_name("body")
        if body is None:
            return f"{head}{where};"
        if body.type == "ordered_field_declaration_list":
            fields = ", ".join(self._ordered_fields(body, source))
            return f"{head}({fields}){where};"
        fields = [
            f"    {self._named_field(f, source)},"
            for f in body.named_children if f.type == "field_declaration"
        ]
        if not fields:
            return f"{head}{where} {{}}"
        return f"{head}{where} {{\n" + "\n".join(fields) + "\n}"

    def _enum_signature(self, node, source: bytes, vis: Visibility) -> str:
        name = self._get_name(node, source)
        generics = get_type_parameters(node, source) or ""
        where = self._where_clause(node, source)
        variants = []
        body = node.child_by_field_name("body")
        for variant in (body.named_children if body is not None else []):
            if variant.type != "enum_variant":
                continue
            vname = self._get_name(variant, source)
            vbody = variant.child_by_field_name("body")
            if vbody is None:
                variants.append(f"    {vname},")
            elif vbody.type == "field_declaration_list":
                fields = ", ".join(
                    self._named_field(f, source, with_vis=False)
                    for f in vbody.named_children if f.type == "field_declaration"
                )
                variants.append(f"    {vname} {{ {fields} }},")
            else:
                fields = ", ".join(self._ordered_fields(vbody, source, with_vis=False))
                variants.append(f"    {vname}({fields}),")
        head = f"{vis.prefix}enum {name}{generics}{where}"
        if not variants:
            return f"{head} {{}}"
        return f"{head} {{\n" + "\n".join(variants) + "\n}"

    def _member_signatures(self, body, source: bytes) -> list[str]:
        """Stripped signatures of trait/impl members (methods, types, consts)."""
        members = []
        if body is None:
            return members
        for member in body.named_children:
            if member.type in ("function_item", "function_signature_item"):
                members.append("    " + self._fn_signature(member, source))
            elif member.type in ("associated_type", "type_item"):
                text = collapse_ws(node_text(member, source))
                members.append("    " + text.rstrip(";") + ";")
            elif member.type == "const_item":
                vis = self._get_visibility(member)
                name = self._get_name(member, source)
                ty = self._field_text(member, "type", source)
                members.append(f"    {vis.prefix}const {name}: {ty};")
        return members

    def _trait_signature(self, node, source: bytes, vis: Visibility) -> str:
        name = self._get_name(node, source)
        unsafe = "unsafe " if self._has_token(node, "unsafe") else ""
        generics = get_type_parameters(node, source) or ""
        bounds = self._field_text(node, "bounds", source)
        where = self._where_clause(node, source)
        members = self._member_signatures(node.child_by_field_name("body"), source)
        head = f"{vis.prefix}{unsafe}trait {name}{generics}{bounds}{where}"
        if not members:
            return f"{head} {{}}"
        return f"{head} {{\n" + "\n".join(members) + "\n}"

    def _impl_parts(self, node, source: bytes) -> tuple[ImplTarget, str]:
        self_type = self._field_text(node, "type", source)
        trait_name = self._field_text(node, "trait", source) or None
        if trait_name and self._has_token(node, "!"):
            trait_name = f"!{trait_name}"
        unsafe = "unsafe " if self._has_token(node, "unsafe") else ""
        generics = get_type_parameters(node, source) or ""
        where = self._where_clause(node, source)
        trait_part = f"{trait_name} for " if trait_name else ""
        members = self._member_signatures(node.child_by_field_name("body"), source)
        head = f"{unsafe}impl{generics} {trait_part}{self_type}{where}"
        if not members:
            signature = f"{head} {{}}"
        else:
            signature = f"{head} {{\n" + "\n".join(members) + "\n}"
        return ImplTarget(self_type=self_type, trait_name=trait_name), signature

    # ── Use flattening ──────────────────────────────────────────────────

    def _flatten_use(self, node, source: bytes, prefix: str = "") -> list[str]:
        """Expand a use clause into one path per imported symbol.

        ``a::{b, c as d, e::*}`` yields ``a::b``, ``a::c`` and ``a::e::*``.
        """
        kind = node.type
        if kind == "scoped_use_list":
            path = node.child_by_field_name("path")
            if path is not None:
                prefix = _join_path(prefix, "".join(node_text(path, source).split()))
            return self._flatten_use(node.child_by_field_name("list"), source, prefix)
        if kind == "use_list":
            paths = []
            for child in node.named_children:
                if child.type in _COMMENT_TYPES:
                    continue
                paths.extend(self._flatten_use(child, source, prefix))
            return paths
        if kind == "use_as_clause":
            path = node.child_by_field_name("path")
            return [_join_path(prefix, "".join(node_text(path, source).split()))]
        if kind == "use_wildcard":
            base = "".join(node_text(node, source).split())[:-1].rstrip(":")
            return [_join_path(_join_path(prefix, base), "*")]
        return [_join_path(prefix, "".join(node_text(node, source).split()))]

    # ── Parsing ─────────────────────────────────────────────────────────

    def _make_item(self, node, src: _Source, name: str, kind: ItemKind,
                   visibility: Visibility, signature: str,
                   impl_target: ImplTarget | None = None) -> Item:
        line_start, line_end = self._span_lines(node)
        return Item(
            name=name,
            kind=kind,
            visibility=visibility,
            signature=signature,
            doc_comment=self._get_doc_comment(node, src.data),
            file_path=src.rel_path,
            line_start=line_start,
            line_end=line_end,
            content_hash=hash_line_range(src.text, line_start, line_end),
            impl_target=impl_target,
        )

    def _parse_block(self, node, src: _Source) -> ParsedFile:
        """Parse all item-level children of a node (file root or inline mod body)."""
        source = src.data
        result = ParsedFile(doc_comment=self._get_inner_doc(node, source))

        for child in node.named_children:
            kind = child.type
            if kind in _COMMENT_TYPES or kind in ("attribute_item", "inner_attribute_item"):
                continue
            attrs = self._get_attributes(child, source)
            is_test = self._is_cfg_test(attrs)

            if kind == "mod_item":
                body = child.child_by_field_name("body")
                result.modules.append(ModDecl(
                    name=self._get_name(child, source),
                    visibility=self._get_visibility(child),
                    doc_comment=self._get_doc_comment(child, source),
                    line=child.start_point[0] + 1,
                    is_test=is_test,
                    path_override=self._get_path_override(attrs),
                    body=(self._parse_block(body, src)
                          if body is not None and not is_test else None),
                ))
                continue

            if is_test:
                continue

            vis = self._get_visibility(child)

            if kind == "function_item":
                result.items.append(self._make_item(
                    child, src, self._get_name(child, source), ItemKind.FUNCTION,
                    vis, self._fn_signature(child, source),
                ))

            elif kind == "struct_item":
                result.items.append(self._make_item(
                    child, src, self._get_name(child, source), ItemKind.STRUCT,
                    vis, self._struct_signature(child, source, vis),
                ))

            elif kind == "enum_item":
                result.items.append(self._make_item(
                    child, src, self._get_name(child, source), ItemKind.ENUM,
                    vis, self._enum_signature(child, source, vis),
                ))

            elif kind == "trait_item":
                result.items.append(self._make_item(
                    child, src, self._get_name(child, source), ItemKind.TRAIT,
                    vis, self._trait_signature(child, source, vis),
                ))

            elif kind == "impl_item":
                target, signature = self._impl_parts(child, source)
                if target.trait_name:
                    name = f"impl {target.trait_name} for {target.self_type}"
                else:
                    name = f"impl {target.self_type}"
                # impl blocks carry no visibility of their own
                result.items.append(self._make_item(
                    child, src, name, ItemKind.IMPL, Visibility.PRIVATE,
                    signature, impl_target=target,
                ))

            elif kind == "type_item":
                name = self._get_name(child, source)
                generics = get_type_parameters(child, source) or ""
                ty = self._field_text(child, "type", source)
                result.items.append(self._make_item(
                    child, src, name, ItemKind.TYPE_ALIAS, vis,
                    f"{vis.prefix}type {name}{generics} = {ty};",
                ))

            elif kind == "const_item":
                name = self._get_name(child, source)
                ty = self._field_text(child, "type", source)
                result.items.append(self._make_item(
                    child, src, name, ItemKind.CONST, vis,
                    f"{vis.prefix}const {name}: {ty};",
                ))

            elif kind == "static_item":
                name = self._get_name(child, source)
                ty = self._field_text(child, "type", source)
                mut = "mut " if any(c.type == "mutable_specifier" for c in child.children) else ""
                result.items.append(self._make_item(
                    child, src, name, ItemKind.STATIC, vis,
                    f"{vis.prefix}static {mut}{name}: {ty};",
                ))

            elif kind == "macro_definition":
                name = self._get_name(child, source)
                if name:
                    exported = any("macro_export" in a for a in attrs)
                    result.items.append(self._make_item(
                        child, src, name, ItemKind.MACRO,
                        Visibility.PUB if exported else Visibility.PRIVATE,
                        f"macro_rules! {name} {{ ... }}",
                    ))

            elif kind == "use_declaration":
                argument = child.child_by_field_name("argument")
                if argument is None:
                    continue
                result.imports.extend(self._flatten_use(argument, source))
                # Only re-exports are items; private uses stay imports
                if vis is not Visibility.PRIVATE:
                    tree = collapse_ws(node_text(argument, source))
                    result.items.append(self._make_item(
                        child, src, tree, ItemKind.USE, vis,
                        f"{vis.prefix}use {tree};",
                    ))

        return result

    def parse_source(self, source_text: str, rel_path: str) -> ParsedFile:
        """Parse already-loaded source text. Raises ParseError on syntax errors."""
        data = source_text.encode("utf8")
        tree = self._parser.parse(data)
        root = tree.root_node
        if root.has_error:
            line = self._first_error_line(root)
            raise ParseError(rel_path, line, "syntax error")
        return self._parse_block(root, _Source(data=data, text=source_text,
                                               rel_path=rel_path))

    def parse_file(self, filepath: Path, src_root: Path) -> ParsedFile:
        """Parse a file on disk; item file paths are relative to src_root."""
        try:
            rel_path = str(filepath.relative_to(src_root))
        except ValueError:
            rel_path = str(filepath)
        try:
            source_text = filepath.read_text(encoding="utf8")
        except UnicodeDecodeError as exc:
            raise ParseError(rel_path, None, "not valid UTF-8") from exc
        return self.parse_source(source_text, rel_path)
