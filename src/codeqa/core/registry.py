from typing import Any

from codeqa.infrastructure.embeddings.hashing import HashingEmbedder
from codeqa.infrastructure.embeddings.remote import RemoteEmbedder
from codeqa.infrastructure.storage.lancedb_engine import LanceDBStoreBackend
from codeqa.infrastructure.storage.memory import InMemoryStoreBackend


class ComponentRegistry:
    """Registry pattern to dynamically map string names to class implementations."""

    _vector_backends: dict[str, Any] = {
        "memory": InMemoryStoreBackend,
        "lancedb": LanceDBStoreBackend,
    }

    _embedders: dict[str, Any] = {
        "remote": RemoteEmbedder,
        "local": HashingEmbedder,
    }

    @classmethod
    def get_vector_backend(cls, name: str) -> Any:
        if name not in cls._vector_backends:
            raise ValueError(f"Unknown vector backend type: '{name}'")
        return cls._vector_backends[name]

    @classmethod
    def get_embedder(cls, name: str) -> Any:
        if name not in cls._embedders:
            raise ValueError(f"Unknown embedder type: '{name}'")
        return cls._embedders[name]
