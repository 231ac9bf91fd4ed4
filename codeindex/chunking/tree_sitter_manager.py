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

"""Tree-sitter grammar loading and parser caching.

Grammars come from the pre-compiled ``tree-sitter-<language>`` packages
(tree-sitter 0.25+ API). Install the ones you need, e.g.
``pip install tree-sitter-python``.
"""

from __future__ import annotations

import importlib
import logging
import threading
from typing import Dict, List, Optional, Tuple

from tree_sitter import Language, Parser, Tree

from codeindex.errors import UnsupportedLanguage

logger = logging.getLogger(__name__)


# Format: "language_name": ("module_name", "function_name")
# function_name returns the Language object (usually "language")
LANGUAGE_MODULES: Dict[str, Tuple[str, str]] = {
    "python": ("tree_sitter_python", "language"),
    "javascript": ("tree_sitter_javascript", "language"),
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
    "java": ("tree_sitter_java", "language"),
    "go": ("tree_sitter_go", "language"),
    "rust": ("tree_sitter_rust", "language"),
    "c": ("tree_sitter_c", "language"),
    "cpp": ("tree_sitter_cpp", "language"),
    "c_sharp": ("tree_sitter_c_sharp", "language"),
    "ruby": ("tree_sitter_ruby", "language"),
    "php": ("tree_sitter_php", "language_php"),
    "kotlin": ("tree_sitter_kotlin", "language"),
    "swift": ("tree_sitter_swift", "language"),
    "scala": ("tree_sitter_scala", "language"),
    "bash": ("tree_sitter_bash", "language"),
    "lua": ("tree_sitter_lua", "language"),
    "elixir": ("tree_sitter_elixir", "language"),
    "haskell": ("tree_sitter_haskell", "language"),
}


class ParserPool:
    """Per-instance cache of tree-sitter languages and parsers.

    Parsers are not safe to share between threads, so parse() holds a lock;
    chunking runs files one at a time in a worker thread anyway.
    """

    def __init__(self, modules: Optional[Dict[str, Tuple[str, str]]] = None):
        self._modules = dict(LANGUAGE_MODULES if modules is None else modules)
        self._languages: Dict[str, Language] = {}
        self._parsers: Dict[str, Parser] = {}
        self._lock = threading.Lock()

    def supports(self, language: str) -> bool:
        """True if a grammar is registered and importable for language."""
        try:
            self.language(language)
            return True
        except UnsupportedLanguage:
            return False

    def registered_languages(self) -> List[str]:
        return sorted(self._modules)

    def language(self, language: str) -> Language:
        """Load the tree-sitter Language for a language name.

        Raises:
            UnsupportedLanguage: If no grammar is registered or the package is missing
        """
        if language in self._languages:
            return self._languages[language]

        module_info = self._modules.get(language)
        if not module_info:
            raise UnsupportedLanguage(language)

        module_name, func_name = module_info
        try:
            language_module = importlib.import_module(module_name)
        except ImportError:
            raise UnsupportedLanguage(
                language,
                f"install it with: pip install {module_name.replace('_', '-')}",
            )

        lang_func = getattr(language_module, func_name, None)
        if lang_func is None:
            raise UnsupportedLanguage(
                language, f"module '{module_name}' has no function '{func_name}'"
            )

        lang_obj = lang_func()
        # Grammar packages return a PyCapsule that Language wraps
        lang = lang_obj if isinstance(lang_obj, Language) else Language(lang_obj)
        self._languages[language] = lang
        return lang

    def parser(self, language: str) -> Parser:
        if language not in self._parsers:
            self._parsers[language] = Parser(self.language(language))
        return self._parsers[language]

    def parse(self, language: str, source: bytes) -> Optional[Tree]:
        """Parse source with the language's grammar.

        Returns:
            The syntax tree, or None if tree-sitter gave up on the input

        Raises:
            UnsupportedLanguage: If no grammar is available
        """
        with self._lock:
            return self.parser(language).parse(source)
