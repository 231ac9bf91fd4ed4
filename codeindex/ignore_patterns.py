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

"""Which files a repository scan visits.

Shared by the chunker (full scans) and the watch engine (event filtering)
so a file ignored by one is ignored by the other:
- Hidden directories and files (starting with '.') are excluded, which
  also keeps the index state directory out of its own scans
- Vendor, build and cache directories are excluded by name
- Callers may add project-specific directory names
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator, Optional, Set, Union

logger = logging.getLogger(__name__)

DEFAULT_SKIP_DIRS: Set[str] = {
    # Python
    "__pycache__",
    "venv",
    "env",
    # Node.js
    "node_modules",
    # Build outputs
    "build",
    "dist",
    "target",
    "out",
    # Coverage
    "coverage",
    "htmlcov",
    # Third party
    "vendor",
    "third_party",
}


def is_hidden_path(path: Path) -> bool:
    """True if any component of path starts with '.' ('.' and '..' excepted)."""
    return any(part.startswith(".") and part not in (".", "..") for part in path.parts)


def skip_dirs_with(extra_skip_dirs: Optional[Iterable[str]] = None) -> Set[str]:
    """DEFAULT_SKIP_DIRS merged with extra names."""
    if not extra_skip_dirs:
        return set(DEFAULT_SKIP_DIRS)
    return DEFAULT_SKIP_DIRS | set(extra_skip_dirs)


def should_ignore_path(path: Path, skip_dirs: Optional[Set[str]] = None) -> bool:
    """Check a repository-relative path against the ignore rules.

    Example:
        >>> should_ignore_path(Path("src/main.py"))
        False
        >>> should_ignore_path(Path(".git/config"))
        True
        >>> should_ignore_path(Path("node_modules/lodash/index.js"))
        True
    """
    if is_hidden_path(path):
        return True
    effective = skip_dirs if skip_dirs is not None else DEFAULT_SKIP_DIRS
    # The file name itself is not a directory
    return any(part in effective for part in path.parts[:-1])


def relative_to_root(path: Union[str, Path], root: Path) -> Optional[Path]:
    """path relative to root, or None if it lies outside root."""
    path = Path(path)
    if not path.is_absolute():
        return path
    try:
        return path.relative_to(root)
    except ValueError:
        return None


def iter_source_files(root: Path, extra_skip_dirs: Optional[Iterable[str]] = None) -> Iterator[Path]:
    """Walk root and yield indexable files in a stable (sorted) order.

    Ignored directories are pruned before descending. Symlinks are not
    followed.
    """
    root = Path(root)
    skip_dirs = skip_dirs_with(extra_skip_dirs)

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(
            d for d in dirnames if not d.startswith(".") and d not in skip_dirs
        )
        for name in sorted(filenames):
            if name.startswith("."):
                continue
            path = Path(dirpath) / name
            if path.is_symlink():
                logger.debug(f"Skipping symlink {path}")
                continue
            yield path
