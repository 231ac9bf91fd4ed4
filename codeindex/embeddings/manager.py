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

"""Active embedding model selection and switching."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Optional

from codeindex.embeddings.models import (
    BaseEmbeddingModel,
    EmbeddingModelConfig,
    EmbeddingModelKind,
    create_embedding_model,
)
from codeindex.errors import DimensionMismatch, EmbeddingFailure

if TYPE_CHECKING:
    from codeindex.config import EmbeddingSettings

logger = logging.getLogger(__name__)

ModelFactory = Callable[[EmbeddingModelConfig], BaseEmbeddingModel]


class EmbeddingModelManager:
    """Holds the active embedding model and swaps it atomically.

    The manager knows nothing about the vector index. Callers that need the
    new model to match an existing collection pass ``expected_dimension`` to
    :meth:`switch_model`, which then refuses the switch before it happens.
    """

    def __init__(
        self,
        settings: Optional["EmbeddingSettings"] = None,
        model_factory: ModelFactory = create_embedding_model,
        model: Optional[BaseEmbeddingModel] = None,
    ):
        """Initialize the manager.

        Args:
            settings: Embedding settings. Defaults to EmbeddingSettings().
            model_factory: Builds a model from its config (injectable for tests)
            model: Optional pre-built active model. If None, one is created
                   from settings on initialize().
        """
        if settings is None:
            from codeindex.config import EmbeddingSettings

            settings = EmbeddingSettings()
        self.settings = settings
        self._factory = model_factory
        self._active: Optional[BaseEmbeddingModel] = model
        self._switch_lock = asyncio.Lock()

    @property
    def active_model(self) -> BaseEmbeddingModel:
        if self._active is None:
            raise RuntimeError("EmbeddingModelManager not initialized; call initialize() first")
        return self._active

    @property
    def active_kind(self) -> EmbeddingModelKind:
        return self.active_model.kind

    async def initialize(self) -> None:
        """Create and initialize the configured startup model. Idempotent."""
        if self._active is None:
            config = self.settings.config_for(self.settings.active_model)
            self._active = self._factory(config)
        await self._active.initialize()

    def dimension(self) -> int:
        return self.active_model.get_dimension()

    def batch_size(self) -> int:
        return self.active_model.batch_size()

    async def switch_model(
        self,
        kind: EmbeddingModelKind,
        expected_dimension: Optional[int] = None,
    ) -> BaseEmbeddingModel:
        """Make another backend the active model.

        The candidate is built and initialized before anything changes. If
        that fails, or its dimension differs from ``expected_dimension``,
        the candidate is closed and the previous model stays active.

        Args:
            kind: Backend to switch to
            expected_dimension: Required vector size, if any

        Returns:
            The newly active model

        Raises:
            EmbeddingFailure: If the candidate cannot be created or initialized
            DimensionMismatch: If the candidate's dimension is not expected_dimension
        """
        kind = EmbeddingModelKind(kind)
        async with self._switch_lock:
            config = self.settings.config_for(kind)
            try:
                candidate = self._factory(config)
                await candidate.initialize()
            except Exception as e:
                raise EmbeddingFailure(f"Failed to initialize {kind.value} model: {e}") from e

            dimension = candidate.get_dimension()
            if expected_dimension is not None and dimension != expected_dimension:
                await candidate.close()
                raise DimensionMismatch(
                    expected_dimension, dimension, f"switch to {kind.value}"
                )

            previous = self._active
            self._active = candidate
            logger.info(
                f"Switched embedding model to {candidate.model_name} ({kind.value}, dim={dimension})"
            )

        if previous is not None and previous is not candidate:
            try:
                await previous.close()
            except Exception as e:
                logger.warning(f"Error closing previous embedding model: {e}")
        return candidate

    async def close(self) -> None:
        if self._active is not None:
            await self._active.close()
