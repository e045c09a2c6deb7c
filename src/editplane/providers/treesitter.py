"""Tree-sitter backed providers.

One provider per bundled grammar. Every named node of the syntax tree becomes
a handle; the handle's name is the text of the node's ``name`` field when the
grammar defines one.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import tree_sitter

from editplane.core.errors import ParseFailureError
from editplane.core.logging import get_logger
from editplane.providers.base import Handle, StructureProvider, normalize_bare_cr

log = get_logger("providers.treesitter")


@dataclass(frozen=True)
class LanguageSpec:
    """Grammar wiring for one language."""

    name: str  # Provider name ("tree-sitter-python")
    display_name: str  # Used in syntax error messages ("Python")
    grammar_module: str  # Python import ("tree_sitter_python")
    extensions: tuple[str, ...] = ()
    # Non-standard function name (e.g. "language_typescript", "language_tsx")
    language_func: str | None = None
    normalize_bare_cr: bool = True

    @property
    def syntax_error_message(self) -> str:
        return f"Syntax errors detected in {self.display_name} source"


LANGUAGE_SPECS: tuple[LanguageSpec, ...] = (
    LanguageSpec("tree-sitter-python", "Python", "tree_sitter_python", ("py", "pyi")),
    LanguageSpec(
        "tree-sitter-javascript",
        "JavaScript",
        "tree_sitter_javascript",
        ("js", "mjs", "cjs", "jsx"),
    ),
    LanguageSpec(
        "tree-sitter-typescript",
        "TypeScript",
        "tree_sitter_typescript",
        ("ts", "mts", "cts"),
        language_func="language_typescript",
    ),
    LanguageSpec(
        "tree-sitter-tsx",
        "TSX",
        "tree_sitter_typescript",
        ("tsx",),
        language_func="language_tsx",
    ),
    LanguageSpec("tree-sitter-go", "Go", "tree_sitter_go", ("go",)),
    LanguageSpec("tree-sitter-rust", "Rust", "tree_sitter_rust", ("rs",)),
    LanguageSpec("tree-sitter-json", "JSON", "tree_sitter_json", ("json",)),
    LanguageSpec("tree-sitter-css", "CSS", "tree_sitter_css", ("css",)),
    LanguageSpec("tree-sitter-html", "HTML", "tree_sitter_html", ("html", "htm")),
)


class TreeSitterProvider(StructureProvider):
    """Provider backed by one tree-sitter grammar."""

    def __init__(self, spec: LanguageSpec) -> None:
        self.spec = spec
        self.name = spec.name
        self._language: Any = None

    def supported_extensions(self) -> tuple[str, ...]:
        return self.spec.extensions

    def _get_language(self) -> Any:
        """Load the grammar on first use."""
        if self._language is not None:
            return self._language
        try:
            mod = importlib.import_module(self.spec.grammar_module)
            lang_fn = getattr(mod, self.spec.language_func or "language")
            self._language = tree_sitter.Language(lang_fn())
        except (ImportError, AttributeError) as err:
            raise ParseFailureError.from_provider(
                self.name, f"tree-sitter language not available: {err}"
            ) from err
        return self._language

    def parse(self, source: bytes) -> tree_sitter.Tree:
        parser = tree_sitter.Parser()
        parser.language = self._get_language()
        parse_source = normalize_bare_cr(source) if self.spec.normalize_bare_cr else source
        return parser.parse(parse_source)

    def select(self, path: Path, source: bytes) -> list[Handle]:
        tree = self.parse(source)
        if tree.root_node.has_error:
            raise ParseFailureError.from_provider(self.name, self.spec.syntax_error_message)

        handles: list[Handle] = []
        stack = [tree.root_node]
        while stack:
            node = stack.pop()
            if node.is_named and node.end_byte <= len(source):
                handles.append(
                    Handle.from_parts(
                        path,
                        node.start_byte,
                        node.end_byte,
                        node.type,
                        _node_name(node, source),
                        _slice_text(source, node.start_byte, node.end_byte),
                    )
                )
            stack.extend(reversed(node.children))

        log.debug("handles_selected", provider=self.name, file=str(path), count=len(handles))
        return handles


def _slice_text(source: bytes, start: int, end: int) -> str:
    return source[start:end].decode("utf-8", errors="replace")


def _node_name(node: tree_sitter.Node, source: bytes) -> str | None:
    name_node = node.child_by_field_name("name")
    if name_node is None:
        return None
    name = _slice_text(source, name_node.start_byte, name_node.end_byte)
    return name or None


_PROVIDERS: list[TreeSitterProvider] = []


def tree_sitter_providers() -> list[TreeSitterProvider]:
    """Shared provider instances (grammars load lazily and are cached)."""
    if not _PROVIDERS:
        _PROVIDERS.extend(TreeSitterProvider(spec) for spec in LANGUAGE_SPECS)
    return list(_PROVIDERS)
