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

"""Whole-batch embedding of chunks."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence

from codeindex.embeddings.manager import EmbeddingModelManager
from codeindex.errors import EmbeddingFailure
from codeindex.models import Chunk

logger = logging.getLogger(__name__)


class BatchProcessor:
    """Embeds a batch of chunks with the manager's active model.

    A batch either fully succeeds or raises EmbeddingFailure. There are no
    partial per-chunk results.
    """

    def __init__(self, manager: EmbeddingModelManager, timeout: Optional[float] = 60.0):
        self.manager = manager
        self.timeout = timeout

    def batch_size(self) -> int:
        return self.manager.batch_size()

    async def embed_chunks(self, chunks: Sequence[Chunk]) -> Dict[int, List[float]]:
        """Embed chunks, keyed by chunk id.

        Raises:
            EmbeddingFailure: backend error, timeout, or a vector count that
                does not match the input
        """
        if not chunks:
            return {}

        model = self.manager.active_model
        texts = [chunk.text for chunk in chunks]
        start = time.perf_counter()
        try:
            vectors = await asyncio.wait_for(model.embed_batch(texts), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise EmbeddingFailure(
                f"Embedding batch of {len(chunks)} chunks timed out after {self.timeout}s"
            ) from e
        except Exception as e:
            raise EmbeddingFailure(f"Embedding batch of {len(chunks)} chunks failed: {e}") from e

        if len(vectors) != len(chunks):
            raise EmbeddingFailure(
                f"Embedding backend returned {len(vectors)} vectors for {len(chunks)} chunks"
            )

        logger.debug(
            f"Embedded {len(chunks)} chunks with {model.model_name} "
            f"in {time.perf_counter() - start:.2f}s"
        )
        return {chunk.id: list(vector) for chunk, vector in zip(chunks, vectors)}
