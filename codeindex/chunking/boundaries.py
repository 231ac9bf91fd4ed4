# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Per-language boundary node kinds.

A boundary kind is a syntax node type that becomes one chunk. The table
is checked against the installed grammars before use: languages without
a grammar and kinds the grammar does not define are dropped with a
warning, so a typo in a config file cannot silently produce zero chunks.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple

from codeindex.chunking.tree_sitter_manager import ParserPool
from codeindex.errors import UnsupportedLanguage

logger = logging.getLogger(__name__)

DEFAULT_BOUNDARY_KINDS: Dict[str, Tuple[str, ...]] = {
    "python": ("decorated_definition", "function_definition", "class_definition"),
    "javascript": (
        "function_declaration",
        "generator_function_declaration",
        "class_declaration",
        "method_definition",
    ),
    "typescript": (
        "function_declaration",
        "class_declaration",
        "abstract_class_declaration",
        "interface_declaration",
        "method_definition",
    ),
    "tsx": (
        "function_declaration",
        "class_declaration",
        "interface_declaration",
        "method_definition",
    ),
    "go": ("function_declaration", "method_declaration", "type_declaration"),
    "java": (
        "class_declaration",
        "interface_declaration",
        "enum_declaration",
        "method_declaration",
        "constructor_declaration",
    ),
    "rust": (
        "function_item",
        "struct_item",
        "enum_item",
        "trait_item",
        "impl_item",
        "mod_item",
    ),
    "c": ("function_definition", "struct_specifier"),
    "cpp": ("function_definition", "class_specifier", "struct_specifier"),
    "c_sharp": ("class_declaration", "interface_declaration", "method_declaration"),
    "ruby": ("class", "module", "method", "singleton_method"),
    "php": ("function_definition", "class_declaration", "method_declaration"),
    "kotlin": ("class_declaration", "function_declaration"),
    "scala": ("class_definition", "object_definition", "function_definition"),
    "bash": ("function_definition",),
    "lua": ("function_declaration",),
}


class BoundaryKinds:
    """Immutable mapping of language to an ordered tuple of boundary kinds."""

    def __init__(self, table: Optional[Mapping[str, Iterable[str]]] = None):
        source = DEFAULT_BOUNDARY_KINDS if table is None else table
        self._table: Dict[str, Tuple[str, ...]] = {
            language: tuple(dict.fromkeys(kinds)) for language, kinds in source.items() if kinds
        }

    def kinds_for(self, language: str) -> Tuple[str, ...]:
        """Boundary kinds for language; empty means whole-file chunking."""
        return self._table.get(language, ())

    def languages(self) -> Tuple[str, ...]:
        return tuple(sorted(self._table))

    def as_dict(self) -> Dict[str, Tuple[str, ...]]:
        return dict(self._table)

    def merged(self, overrides: Mapping[str, Iterable[str]]) -> "BoundaryKinds":
        """Copy with per-language overrides replacing the built-in kinds."""
        table: Dict[str, Iterable[str]] = dict(self._table)
        table.update(overrides)
        return BoundaryKinds(table)

    def validated(self, pool: ParserPool) -> "BoundaryKinds":
        """Copy containing only languages and kinds the installed grammars know."""
        table: Dict[str, Tuple[str, ...]] = {}
        for language, kinds in self._table.items():
            try:
                grammar = pool.language(language)
            except UnsupportedLanguage as e:
                logger.warning(f"Dropping boundary kinds for {language}: {e}")
                continue

            known = []
            for kind in kinds:
                if grammar.id_for_node_kind(kind, True):
                    known.append(kind)
                else:
                    logger.warning(f"Grammar for {language} has no node kind '{kind}', dropping it")
            if known:
                table[language] = tuple(known)

        return BoundaryKinds(table)

    def __repr__(self) -> str:
        return f"BoundaryKinds(languages={list(self.languages())})"
