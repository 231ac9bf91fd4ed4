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

"""Language detection for source files.

Languages are registered with their extensions, well-known file names,
aliases and shebang interpreters. Detection resolves in this order:

1. Exact file name (Makefile, Dockerfile, ...)
2. File extension
3. Shebang line of the content (``#!/usr/bin/env python3``)
4. ``"text"``
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

UNKNOWN_LANGUAGE = "text"

_SHEBANG_RE = re.compile(r"^#!\s*(\S+)(?:\s+(\S+))?")
_VERSION_SUFFIX_RE = re.compile(r"[\d.]+$")


class LanguageDetector:
    """Registry-backed language detection."""

    def __init__(self):
        self._extension_map: Dict[str, str] = {}  # .py -> python
        self._filename_map: Dict[str, str] = {}  # Makefile -> make
        self._alias_map: Dict[str, str] = {}  # py -> python
        self._interpreter_map: Dict[str, str] = {}  # python3 -> python

    def register(
        self,
        name: str,
        extensions: Optional[Iterable[str]] = None,
        filenames: Optional[Iterable[str]] = None,
        aliases: Optional[Iterable[str]] = None,
        interpreters: Optional[Iterable[str]] = None,
    ) -> None:
        """Register a language.

        Args:
            name: Canonical language name
            extensions: File extensions, with or without the leading dot
            filenames: Exact file names (case-sensitive)
            aliases: Alternative names resolved by canonical_name()
            interpreters: Shebang interpreter names (version suffixes are stripped)
        """
        name = name.lower()
        for ext in extensions or []:
            ext = ext.lower()
            if not ext.startswith("."):
                ext = "." + ext
            self._extension_map[ext] = name
        for filename in filenames or []:
            self._filename_map[filename] = name
        for alias in aliases or []:
            self._alias_map[alias.lower()] = name
        for interpreter in interpreters or []:
            self._interpreter_map[interpreter] = name
        logger.debug(f"Registered language: {name}")

    def canonical_name(self, name: str) -> str:
        name = name.lower()
        return self._alias_map.get(name, name)

    def languages(self) -> List[str]:
        names = set(self._extension_map.values()) | set(self._filename_map.values())
        return sorted(names | set(self._interpreter_map.values()))

    def detect(self, path: Union[str, Path], content: Optional[str] = None) -> str:
        """Detect the language of a file.

        Args:
            path: File path (only the name is inspected)
            content: Optional file content for shebang detection

        Returns:
            Language name, or "text" when nothing matches
        """
        path = Path(path)
        if path.name in self._filename_map:
            return self._filename_map[path.name]

        ext = path.suffix.lower()
        if ext in self._extension_map:
            return self._extension_map[ext]

        if content:
            language = self._detect_shebang(content)
            if language:
                return language

        return UNKNOWN_LANGUAGE

    def _detect_shebang(self, content: str) -> Optional[str]:
        first_line = content.split("\n", 1)[0]
        match = _SHEBANG_RE.match(first_line)
        if not match:
            return None

        program, argument = match.groups()
        interpreter = Path(program).name
        # "#!/usr/bin/env python3" names the interpreter in the argument
        if interpreter == "env" and argument:
            interpreter = argument
        interpreter = _VERSION_SUFFIX_RE.sub("", interpreter) or interpreter
        return self._interpreter_map.get(interpreter)


def _register_builtin_languages(detector: LanguageDetector) -> None:
    detector.register("python", [".py", ".pyi", ".pyw"], aliases=["py"], interpreters=["python"])
    detector.register(
        "javascript", [".js", ".mjs", ".cjs", ".jsx"], aliases=["js"], interpreters=["node"]
    )
    detector.register("typescript", [".ts", ".mts", ".cts"], aliases=["ts"])
    detector.register("tsx", [".tsx"])
    detector.register("rust", [".rs"], aliases=["rs"])
    detector.register("go", [".go"], aliases=["golang"])
    detector.register("java", [".java"])
    detector.register("kotlin", [".kt", ".kts"])
    detector.register("scala", [".scala", ".sc"])
    detector.register("c", [".c", ".h"])
    detector.register("cpp", [".cpp", ".cc", ".cxx", ".hpp", ".hh", ".hxx"], aliases=["c++"])
    detector.register("c_sharp", [".cs"], aliases=["csharp", "c#"])
    detector.register("ruby", [".rb"], filenames=["Gemfile", "Rakefile"], interpreters=["ruby"])
    detector.register("php", [".php"], interpreters=["php"])
    detector.register("swift", [".swift"])
    detector.register("lua", [".lua"], interpreters=["lua"])
    detector.register("elixir", [".ex", ".exs"])
    detector.register("haskell", [".hs"])
    detector.register("r", [".r"], interpreters=["Rscript"])
    detector.register(
        "bash", [".sh", ".bash"], aliases=["shell", "sh"], interpreters=["bash", "sh", "zsh"]
    )
    detector.register("sql", [".sql"])
    detector.register("html", [".html", ".htm"])
    detector.register("css", [".css"])
    detector.register("json", [".json"])
    detector.register("yaml", [".yaml", ".yml"], aliases=["yml"])
    detector.register("toml", [".toml"])
    detector.register("markdown", [".md", ".markdown"], aliases=["md"])
    detector.register("make", [".mk"], filenames=["Makefile", "makefile", "GNUmakefile"])
    detector.register("dockerfile", filenames=["Dockerfile", "Containerfile"])


_detector: Optional[LanguageDetector] = None


def get_language_detector() -> LanguageDetector:
    """Shared detector with the built-in languages registered."""
    global _detector
    if _detector is None:
        _detector = LanguageDetector()
        _register_builtin_languages(_detector)
    return _detector


def detect_language(path: Union[str, Path], content: Optional[str] = None) -> str:
    """Convenience wrapper around the shared detector."""
    return get_language_detector().detect(path, content)
