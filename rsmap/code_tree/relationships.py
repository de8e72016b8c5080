"""Cross-cutting relationships computed over a resolved forest.

Four views, all heuristic and name-based (no type resolution):

- trait implementation map: trait name -> implementing types
- From conversions: ``impl From<S> for T`` gives the edge S -> T, and
  chains are followed through those edges
- module dependencies derived from ``use`` paths
- type usage: capitalized identifiers in signatures -> modules using them
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import pandas as pd

from ..config import HOTSPOT_THRESHOLD
from .parsers.base import collapse_ws
from .parsers.models import CompilationUnit, ItemKind

# Capitalized names too common to say anything about a codebase
TYPE_DENY_LIST = frozenset({
    "Self", "String", "Vec", "Box", "Option", "Result", "Ok", "Err",
    "Some", "None", "HashMap", "HashSet", "BTreeMap", "BTreeSet", "Rc",
    "Arc", "Mutex", "RwLock", "Pin", "Cow", "PhantomData", "Where", "Fn",
    "FnMut", "FnOnce",
})

_WORD_SPLIT_RE = re.compile(r"[^0-9A-Za-z_]+")


def clean_type_name(name: str) -> str:
    return collapse_ws(name)


def from_source(trait_name: str) -> str | None:
    """``From<S>`` (or ``std::convert::From<S>``) -> ``S``, else None."""
    trait_name = clean_type_name(trait_name)
    base, sep, _ = trait_name.partition("<")
    if not sep or base.strip().rsplit("::", 1)[-1] != "From":
        return None
    start = trait_name.find("<")
    end = trait_name.rfind(">")
    if end <= start:
        return None
    return clean_type_name(trait_name[start + 1:end]) or None


def extract_type_names(signature: str) -> list[str]:
    """Capitalized, multi-letter identifiers in a signature, minus the deny-list."""
    return [
        word for word in _WORD_SPLIT_RE.split(signature)
        if len(word) > 1 and word[0].isupper() and word not in TYPE_DENY_LIST
    ]


def _parent(path: str) -> str | None:
    return path.rsplit("::", 1)[0] if "::" in path else None


def resolve_import(use_path: str, module_path: str, root_path: str,
                   known_modules: set[str]) -> str | None:
    """Map a flattened use path to the internal module it depends on.

    Returns the longest prefix of the absolutized path that names a known
    module, or None for external (or unresolvable) imports.
    """
    segments = use_path.split("::")
    head = segments[0]
    if head == "crate":
        base, rest = root_path, segments[1:]
    elif head in ("self", "super"):
        base = module_path
        i = 1 if head == "self" else 0
        while i < len(segments) and segments[i] == "super":
            base = _parent(base) if base != root_path else None
            if base is None:
                return None
            i += 1
        rest = segments[i:]
    elif f"{module_path}::{head}" in known_modules:
        base, rest = module_path, segments
    elif f"{root_path}::{head}" in known_modules:
        base, rest = root_path, segments
    else:
        return None

    for end in range(len(rest), -1, -1):
        candidate = "::".join([base, *rest[:end]])
        if candidate in known_modules:
            return candidate
    return None


def walk_conversion_chains(graph: dict[str, list[str]], start: str,
                           seen: set[str] | None = None) -> list[list[str]]:
    """All maximal conversion paths from start, depth-first.

    ``seen`` is the traversal's visited set; a node already in it ends the
    branch that reaches it, so cycles terminate. Paths of a single node are
    not chains and are never returned.
    """
    if seen is None:
        seen = set()
    seen.add(start)
    chains = []
    stack = [(start, [start])]
    while stack:
        node, path = stack.pop()
        nexts = [n for n in graph.get(node, ()) if n not in seen]
        if not nexts:
            if len(path) > 1:
                chains.append(path)
            continue
        for nxt in reversed(nexts):
            seen.add(nxt)
            stack.append((nxt, path + [nxt]))
    return chains


def _is_sub_chain(short: tuple, long: tuple) -> bool:
    n = len(short)
    return any(long[i:i + n] == short for i in range(len(long) - n + 1))


@dataclass
class RelationshipGraph:
    trait_impls: dict[str, set[str]] = field(default_factory=dict)
    conversions: set[tuple[str, str]] = field(default_factory=set)
    module_deps: dict[str, list[str]] = field(default_factory=dict)
    type_usage: dict[str, set[str]] = field(default_factory=dict)

    def conversion_graph(self) -> dict[str, list[str]]:
        graph: dict[str, list[str]] = {}
        for source, target in sorted(self.conversions):
            graph.setdefault(source, []).append(target)
        return graph

    def conversion_chains(self) -> list[str]:
        """Chains such as ``"IoError -> ConfigError -> AppError"``, sorted.

        Every node with outgoing edges starts a walk. Chains contained
        contiguously in a longer chain are dropped.
        """
        graph = self.conversion_graph()
        found = set()
        for start in sorted(graph):
            for chain in walk_conversion_chains(graph, start, set()):
                found.add(tuple(chain))
        kept = [
            chain for chain in found
            if not any(len(other) > len(chain) and _is_sub_chain(chain, other)
                       for other in found)
        ]
        return sorted(" -> ".join(chain) for chain in kept)

    def hotspots(self, threshold: int = HOTSPOT_THRESHOLD) -> list[tuple[str, int]]:
        """(type, module count) for types used in at least threshold modules."""
        counts = [
            (type_name, len(modules))
            for type_name, modules in self.type_usage.items()
            if len(modules) >= threshold
        ]
        return sorted(counts, key=lambda pair: (-pair[1], pair[0]))

    def to_frames(self) -> dict[str, pd.DataFrame]:
        """Each relationship as an edge DataFrame, keyed by relationship name."""
        return {
            "trait_impls": pd.DataFrame(
                [{"trait_name": t, "type_name": ty}
                 for t, types in sorted(self.trait_impls.items())
                 for ty in sorted(types)],
                columns=["trait_name", "type_name"],
            ),
            "conversions": pd.DataFrame(
                [{"source": s, "target": t} for s, t in sorted(self.conversions)],
                columns=["source", "target"],
            ),
            "module_deps": pd.DataFrame(
                [{"module": m, "dependency": d}
                 for m, deps in sorted(self.module_deps.items())
                 for d in deps],
                columns=["module", "dependency"],
            ),
            "type_usage": pd.DataFrame(
                [{"type_name": t, "module": m}
                 for t, modules in sorted(self.type_usage.items())
                 for m in sorted(modules)],
                columns=["type_name", "module"],
            ),
        }


def build_relationships(forest: list[CompilationUnit]) -> RelationshipGraph:
    """Single pass over every (module, item) pair of the forest."""
    graph = RelationshipGraph()

    for unit in forest:
        root_path = unit.root_module.path
        known_modules = {m.path for m in unit.modules()}

        for module in unit.modules():
            for _path, item in module.item_paths():
                if item.kind is ItemKind.IMPL and item.impl_target.trait_name:
                    trait_name = item.impl_target.trait_name
                    # negative impls (!Send) implement nothing
                    if not trait_name.startswith("!"):
                        self_type = clean_type_name(item.impl_target.self_type)
                        graph.trait_impls.setdefault(
                            clean_type_name(trait_name), set()
                        ).add(self_type)
                        source = from_source(trait_name)
                        if source is not None:
                            graph.conversions.add((source, self_type))

                for type_name in extract_type_names(item.signature):
                    graph.type_usage.setdefault(type_name, set()).add(module.path)

            deps = set()
            for use_path in module.imports:
                target = resolve_import(use_path, module.path, root_path, known_modules)
                if target is not None and target != module.path:
                    deps.add(target)
            graph.module_deps[module.path] = sorted(deps)

    return graph
