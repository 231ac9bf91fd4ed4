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

"""LanceDB vector store for production deployments.

LanceDB is an embedded, disk-based vector database:
- Scales to large repositories with low memory footprint
- Zero-copy reads via Apache Arrow

The vector column is a fixed-size list, so the table schema itself
records the collection dimension. Chunk text is NOT stored.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Optional, Sequence, Set

import lancedb
import pyarrow as pa

from codeindex.config import VectorStoreConfig
from codeindex.models import Point
from codeindex.vector.stores import BaseVectorStore

logger = logging.getLogger(__name__)

DEFAULT_LANCEDB_DIR = "~/.codeindex/lancedb"


def _schema(dimension: int) -> pa.Schema:
    return pa.schema(
        [
            ("id", pa.int64()),
            ("vector", pa.list_(pa.float32(), dimension)),
            ("chunk_id", pa.int64()),
            ("file_path", pa.string()),
            ("language", pa.string()),
            ("start_line", pa.int64()),
            ("end_line", pa.int64()),
            ("token_count", pa.int64()),
            ("checksum", pa.string()),
            ("repository_id", pa.int64()),
            ("kind", pa.string()),
            ("symbol_name", pa.string()),
        ]
    )


def _quote(value: str) -> str:
    return value.replace("'", "''")


class LanceDBStore(BaseVectorStore):
    """LanceDB-backed point storage."""

    def __init__(self, config: VectorStoreConfig):
        super().__init__(config)
        self.db = None
        self.table = None

    def _connect(self):
        if self.db is None:
            persist_dir = Path(self.config.persist_directory or DEFAULT_LANCEDB_DIR).expanduser()
            persist_dir.mkdir(parents=True, exist_ok=True)
            self.db = lancedb.connect(str(persist_dir))
            logger.info(f"LanceDB storage: {persist_dir}")
        return self.db

    def _table_names(self) -> Set[str]:
        result = self._connect().list_tables()
        return set(getattr(result, "tables", result))

    def _get_table(self):
        if self.table is None and self.collection_name in self._table_names():
            self.table = self._connect().open_table(self.collection_name)
        return self.table

    def collection_dimension(self) -> Optional[int]:
        table = self._get_table()
        if table is None:
            return None
        return table.schema.field("vector").type.list_size

    def create_collection(self, dimension: int) -> None:
        self.table = self._connect().create_table(
            self.collection_name, schema=_schema(dimension), exist_ok=True
        )
        logger.info(f"LanceDB table ready: {self.collection_name} (dim={dimension})")

    def upsert(self, points: Sequence[Point]) -> None:
        if not points:
            return
        table = self._get_table()
        if table is None:
            raise RuntimeError(f"Table {self.collection_name} does not exist")

        rows = [{"id": point.id, "vector": point.vector, **asdict(point.payload)} for point in points]
        data = pa.Table.from_pylist(rows, schema=table.schema)
        (
            table.merge_insert("id")
            .when_matched_update_all()
            .when_not_matched_insert_all()
            .execute(data)
        )

    def delete_by_file(self, file_path: str) -> int:
        table = self._get_table()
        if table is None:
            return 0

        count_before = table.count_rows()
        table.delete(f"file_path = '{_quote(file_path)}'")
        return count_before - table.count_rows()

    def count(self) -> int:
        table = self._get_table()
        return table.count_rows() if table is not None else 0

    def clear(self) -> None:
        if self.collection_name in self._table_names():
            self._connect().drop_table(self.collection_name)
        self.table = None

    def close(self) -> None:
        # LanceDB connections are lightweight, no explicit cleanup needed
        self.db = None
        self.table = None
