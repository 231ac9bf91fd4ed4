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

"""Embedding model backends (separate from vector stores).

This module handles GENERATING embeddings (converting text to vectors).
The vector stores (ChromaDB, LanceDB) handle STORING them.

The set of backends is closed (EmbeddingModelKind). Every backend exposes the
same capability surface: embed_text, embed_batch, get_dimension, batch_size.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EmbeddingModelKind(str, Enum):
    """Supported embedding backends."""

    SENTENCE_TRANSFORMERS = "sentence-transformers"
    OLLAMA = "ollama"
    OPENAI = "openai"
    COHERE = "cohere"


# Model used when a config does not name one
DEFAULT_MODEL_NAMES: Dict[EmbeddingModelKind, str] = {
    EmbeddingModelKind.SENTENCE_TRANSFORMERS: "all-MiniLM-L6-v2",
    EmbeddingModelKind.OLLAMA: "nomic-embed-text",
    EmbeddingModelKind.OPENAI: "text-embedding-3-small",
    EmbeddingModelKind.COHERE: "embed-english-v3.0",
}


class EmbeddingModelConfig(BaseModel):
    """Configuration for embedding model."""

    model_type: EmbeddingModelKind = Field(
        default=EmbeddingModelKind.SENTENCE_TRANSFORMERS,
        description="Model type (sentence-transformers, ollama, openai, cohere)",
    )
    model_name: Optional[str] = Field(
        default=None, description="Specific model name (backend default when unset)"
    )
    dimension: int = Field(
        default=384, description="Embedding dimension (auto-detected if possible)"
    )
    api_key: Optional[str] = Field(default=None, description="API key for cloud providers")
    base_url: Optional[str] = Field(default=None, description="Server URL for Ollama")
    batch_size: int = Field(default=32, description="Batch size for embedding generation")
    request_timeout: float = Field(default=120.0, description="HTTP timeout in seconds")

    @property
    def resolved_model_name(self) -> str:
        return self.model_name or DEFAULT_MODEL_NAMES[self.model_type]


class BaseEmbeddingModel(ABC):
    """Abstract base for embedding models.

    Handles converting text -> vectors.
    Does NOT handle storage/search (that's the vector store's job).
    """

    def __init__(self, config: EmbeddingModelConfig):
        """Initialize embedding model.

        Args:
            config: Model configuration
        """
        self.config = config
        self._initialized = False

    @property
    def kind(self) -> EmbeddingModelKind:
        return self.config.model_type

    @property
    def model_name(self) -> str:
        return self.config.resolved_model_name

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the model (load weights, connect to API, etc.)."""
        pass

    @abstractmethod
    async def embed_text(self, text: str) -> List[float]:
        """Generate embedding for single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector
        """
        pass

    @abstractmethod
    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts (batch optimized).

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, in input order
        """
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of embeddings produced by this model."""
        pass

    def batch_size(self) -> int:
        """Preferred number of texts per embed_batch call."""
        return max(1, self.config.batch_size)

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model_name}, dim={self.get_dimension()})"


class SentenceTransformerModel(BaseEmbeddingModel):
    """Sentence-transformers embedding model (local, CPU/GPU).

    Pros:
    - Free
    - Runs locally
    - No API limits

    Cons:
    - Requires downloading models
    - CPU inference can be slow for large batches

    Good for: Development, privacy-sensitive data, offline use
    """

    def __init__(self, config: EmbeddingModelConfig):
        """Initialize sentence-transformers model."""
        super().__init__(config)
        self._model = None

    async def initialize(self) -> None:
        """Load the model weights off the event loop."""
        if self._initialized:
            return

        try:
            from sentence_transformers import SentenceTransformer
        except ImportError:
            raise ImportError(
                "sentence-transformers not installed. "
                "Install with: pip install sentence-transformers"
            )

        logger.info(f"Loading sentence-transformer model: {self.model_name}")
        self._model = await asyncio.to_thread(SentenceTransformer, self.model_name)
        self._initialized = True
        logger.info(f"Model loaded, dimension: {self.get_dimension()}")

    async def embed_text(self, text: str) -> List[float]:
        """Generate embedding for single text."""
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts (batch optimized)."""
        if not self._initialized:
            await self.initialize()

        embeddings = await asyncio.to_thread(
            self._model.encode,
            texts,
            batch_size=self.batch_size(),
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        return [emb.tolist() for emb in embeddings]

    def get_dimension(self) -> int:
        """Get embedding dimension."""
        if self._model is not None:
            return int(self._model.get_sentence_embedding_dimension())
        return self.config.dimension

    async def close(self) -> None:
        """Drop the model reference so the weights can be collected."""
        self._model = None
        self._initialized = False


class OpenAIEmbeddingModel(BaseEmbeddingModel):
    """OpenAI embedding model (cloud API).

    Good for: Production, when cost is acceptable
    """

    DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(self, config: EmbeddingModelConfig):
        """Initialize OpenAI embedding model."""
        super().__init__(config)
        self.client = None

    async def initialize(self) -> None:
        """Initialize OpenAI client."""
        if self._initialized:
            return

        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise ImportError("openai not installed. Install with: pip install openai")

        if not self.config.api_key:
            raise ValueError("OpenAI API key required")

        self.client = AsyncOpenAI(api_key=self.config.api_key, timeout=self.config.request_timeout)
        self._initialized = True
        logger.info(f"OpenAI embedding model initialized: {self.model_name}")

    async def embed_text(self, text: str) -> List[float]:
        """Generate embedding using OpenAI API."""
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts."""
        if not self._initialized:
            await self.initialize()

        # OpenAI API handles batching internally (up to 2048 texts per request)
        response = await self.client.embeddings.create(model=self.model_name, input=texts)
        return [item.embedding for item in response.data]

    def get_dimension(self) -> int:
        """Get embedding dimension based on model."""
        return self.DIMENSIONS.get(self.model_name, self.config.dimension)

    async def close(self) -> None:
        """Clean up resources."""
        if self.client is not None:
            await self.client.close()
        self.client = None
        self._initialized = False


class CohereEmbeddingModel(BaseEmbeddingModel):
    """Cohere embedding model (cloud API).

    Good for: Production, multilingual use cases
    """

    DIMENSIONS = {
        "embed-english-v3.0": 1024,
        "embed-multilingual-v3.0": 1024,
        "embed-english-light-v3.0": 384,
        "embed-multilingual-light-v3.0": 384,
    }

    def __init__(self, config: EmbeddingModelConfig):
        """Initialize Cohere embedding model."""
        super().__init__(config)
        self.client = None

    async def initialize(self) -> None:
        """Initialize Cohere client."""
        if self._initialized:
            return

        try:
            import cohere
        except ImportError:
            raise ImportError("cohere not installed. Install with: pip install cohere")

        if not self.config.api_key:
            raise ValueError("Cohere API key required")

        self.client = cohere.AsyncClient(api_key=self.config.api_key)
        self._initialized = True
        logger.info(f"Cohere embedding model initialized: {self.model_name}")

    async def embed_text(self, text: str) -> List[float]:
        """Generate embedding using Cohere API."""
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts."""
        if not self._initialized:
            await self.initialize()

        response = await self.client.embed(
            texts=texts, model=self.model_name, input_type="search_document"
        )
        return [list(vector) for vector in response.embeddings]

    def get_dimension(self) -> int:
        """Get embedding dimension."""
        return self.DIMENSIONS.get(self.model_name, self.config.dimension)

    async def close(self) -> None:
        """Clean up resources."""
        self.client = None
        self._initialized = False


class OllamaEmbeddingModel(BaseEmbeddingModel):
    """Ollama embedding model (local server).

    Supported Models (dimension):
    - qwen3-embedding:8b (4096)
    - bge-m3 (1024)
    - mxbai-embed-large (1024)
    - nomic-embed-text (768)
    - all-minilm (384)
    """

    DIMENSIONS = {
        "qwen3-embedding:8b": 4096,
        "qwen3-embedding:4b": 2560,
        "snowflake-arctic-embed2": 1024,
        "bge-m3": 1024,
        "mxbai-embed-large": 1024,
        "nomic-embed-text": 768,
        "nomic-embed-text:v1.5": 768,
        "all-minilm": 384,
        "all-minilm:l6-v2": 384,
    }

    def __init__(self, config: EmbeddingModelConfig):
        """Initialize Ollama embedding model."""
        super().__init__(config)
        self.base_url = config.base_url or "http://localhost:11434"
        self.client = None

    async def initialize(self) -> None:
        """Initialize Ollama client and verify model availability."""
        if self._initialized:
            return

        import httpx

        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=self.config.request_timeout)
        logger.info(f"Initializing Ollama embedding model {self.model_name} at {self.base_url}")

        # Verify model is available by testing with a small prompt
        try:
            response = await self.client.post(
                "/api/embeddings", json={"model": self.model_name, "prompt": "test"}
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            await self.close()
            if e.response.status_code == 404:
                raise RuntimeError(
                    f"Ollama model '{self.model_name}' not found. "
                    f"Pull it with: ollama pull {self.model_name}"
                ) from e
            raise RuntimeError(f"Ollama API error: {e}") from e
        except httpx.ConnectError as e:
            await self.close()
            raise RuntimeError(
                f"Cannot connect to Ollama at {self.base_url}. "
                f"Make sure Ollama is running: ollama serve"
            ) from e

        self._initialized = True

    async def embed_text(self, text: str) -> List[float]:
        """Generate embedding for single text using Ollama."""
        if not self._initialized:
            await self.initialize()

        response = await self.client.post(
            "/api/embeddings", json={"model": self.model_name, "prompt": text}
        )
        response.raise_for_status()
        return response.json()["embedding"]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings concurrently.

        Ollama doesn't have a native batch API, so requests are issued
        with asyncio.gather. Any failed request fails the whole batch.
        """
        if not self._initialized:
            await self.initialize()

        return list(await asyncio.gather(*(self.embed_text(text) for text in texts)))

    def get_dimension(self) -> int:
        """Get embedding dimension based on model."""
        name = self.model_name
        if name in self.DIMENSIONS:
            return self.DIMENSIONS[name]

        # Partial match (e.g., "qwen3-embedding" matches "qwen3-embedding:8b")
        for model_key, dim in self.DIMENSIONS.items():
            if name in model_key or model_key in name:
                return dim

        return self.config.dimension

    async def close(self) -> None:
        """Clean up HTTP client resources."""
        if self.client:
            await self.client.aclose()
            self.client = None
        self._initialized = False


# Model Registry
_embedding_models: Dict[EmbeddingModelKind, Callable[[EmbeddingModelConfig], BaseEmbeddingModel]] = {
    EmbeddingModelKind.SENTENCE_TRANSFORMERS: SentenceTransformerModel,
    EmbeddingModelKind.OPENAI: OpenAIEmbeddingModel,
    EmbeddingModelKind.COHERE: CohereEmbeddingModel,
    EmbeddingModelKind.OLLAMA: OllamaEmbeddingModel,
}


def create_embedding_model(config: EmbeddingModelConfig) -> BaseEmbeddingModel:
    """Factory function to create embedding model.

    Args:
        config: Model configuration

    Returns:
        Embedding model instance (not yet initialized)

    Raises:
        ValueError: If model type not recognized
    """
    model_class = _embedding_models.get(config.model_type)
    if not model_class:
        available = ", ".join(kind.value for kind in _embedding_models)
        raise ValueError(
            f"Unknown embedding model type: {config.model_type}. Available: {available}"
        )

    return model_class(config)
