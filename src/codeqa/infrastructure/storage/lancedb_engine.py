from collections.abc import Collection, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import lancedb
import numpy as np
import pyarrow as pa
from loguru import logger
from numpy.typing import NDArray
from pydantic import Field, ValidationError

from codeqa.config import Settings
from codeqa.core.models import CamelModel, SearchResult, VectorDocument
from codeqa.infrastructure.storage.mappers import ChunkMapper


def _quote(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


class LanceDBManifest(CamelModel):
    """Names the live table generation and the embedding space it holds."""

    table: str = Field(min_length=1)
    embedding_scheme: str
    dimension: int = Field(gt=0)
    indexed_at: datetime | None = None


class LanceDBVectorStore:
    """
    Concrete implementation of IVectorStore over one LanceDB table.
    Each indexing generation writes a fresh table, so readers of the previous
    generation are never affected by an in-progress write.
    """

    def __init__(
        self,
        db_path: str,
        table_name: str,
        embedding_scheme: str,
        dimension: int,
        mapper: Any = None,
        batch_size: int = 100,
        indexed_at: datetime | None = None,
    ) -> None:
        self.db_path = db_path
        self.table_name = table_name
        self.dimension = dimension
        self.mapper = mapper or ChunkMapper(dimension)
        self.batch_size = batch_size
        self._embedding_scheme = embedding_scheme
        self._indexed_at = indexed_at

        self.db = lancedb.connect(self.db_path)
        self.table = self.db.create_table(
            self.table_name,
            schema=self.mapper.schema,
            exist_ok=True,
        )

    @property
    def embedding_scheme(self) -> str:
        return self._embedding_scheme

    @property
    def indexed_at(self) -> datetime | None:
        return self._indexed_at

    def count(self) -> int:
        return self.table.count_rows()

    def upsert(self, documents: Sequence[VectorDocument]) -> None:
        """Writes documents in batches, replacing rows whose id already exists."""
        if not documents:
            return

        for start in range(0, len(documents), self.batch_size):
            batch = self.mapper.to_record_batch(
                documents[start : start + self.batch_size], self._embedding_scheme
            )
            (
                self.table.merge_insert("id")
                .when_matched_update_all()
                .when_not_matched_insert_all()
                .execute(pa.Table.from_batches([batch]))
            )

    def delete(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        self.table.delete(f"id IN ({', '.join(_quote(i) for i in ids)})")

    def clear(self) -> None:
        self.db.drop_table(self.table_name, ignore_missing=True)
        self.table = self.db.create_table(self.table_name, schema=self.mapper.schema)

    def drop(self) -> None:
        self.db.drop_table(self.table_name, ignore_missing=True)

    def search(self, query_embedding: NDArray[np.float32], k: int = 5) -> list[SearchResult]:
        if k <= 0:
            return []
        query = np.asarray(query_embedding, dtype=np.float32).ravel()
        if query.shape[0] != self.dimension:
            raise ValueError(
                f"Query dimension {query.shape[0]} does not match store dimension {self.dimension}"
            )
        if not np.any(query):
            # Cosine distance is undefined for a zero vector
            return []

        df = self.table.search(query).distance_type("cosine").limit(k).to_polars()

        results = []
        for row in df.iter_rows(named=True):
            # Cosine distance is 1 - similarity
            score = 1.0 - float(row["_distance"])
            results.append(self.mapper.from_polars_row(row, score))
        return results


class LanceDBStoreBackend:
    """
    Manages LanceDB table generations. A JSON manifest in the data directory
    names the live table together with the scheme it was embedded with.
    """

    MANIFEST_FILE = "lancedb_manifest.json"

    def __init__(
        self,
        data_dir: str | Path,
        db_path: str,
        table_name: str = "code_chunks",
        batch_size: int = 100,
    ) -> None:
        self.manifest_path = Path(data_dir) / self.MANIFEST_FILE
        self.db_path = db_path
        self.table_name = table_name
        self.batch_size = batch_size

    @classmethod
    def from_settings(cls, settings: Settings) -> "LanceDBStoreBackend":
        return cls(
            settings.data_dir,
            db_path=settings.db_path,
            table_name=settings.table_name,
            batch_size=settings.batch_size,
        )

    def _generation_table(self, indexed_at: datetime) -> str:
        return f"{self.table_name}_{indexed_at:%Y%m%d%H%M%S%f}"

    def create(
        self, embedding_scheme: str, dimension: int, indexed_at: datetime
    ) -> LanceDBVectorStore:
        return LanceDBVectorStore(
            db_path=self.db_path,
            table_name=self._generation_table(indexed_at),
            embedding_scheme=embedding_scheme,
            dimension=dimension,
            batch_size=self.batch_size,
            indexed_at=indexed_at,
        )

    def persist(self, store: LanceDBVectorStore) -> None:
        manifest = LanceDBManifest(
            table=store.table_name,
            embedding_scheme=store.embedding_scheme,
            dimension=store.dimension,
            indexed_at=store.indexed_at,
        )
        self.manifest_path.parent.mkdir(parents=True, exist_ok=True)
        self.manifest_path.write_text(manifest.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
        logger.info("LanceDB table '{}' is now live ({} rows)", store.table_name, store.count())

    def _read_manifest(self) -> LanceDBManifest | None:
        if not self.manifest_path.exists():
            return None
        try:
            return LanceDBManifest.model_validate_json(self.manifest_path.read_bytes())
        except ValidationError as e:
            logger.error("LanceDB manifest {} is malformed: {}; re-index required", self.manifest_path, e)
            return None

    def load(self, accepted_schemes: Collection[str]) -> LanceDBVectorStore | None:
        manifest = self._read_manifest()
        if manifest is None:
            return None

        if manifest.embedding_scheme not in accepted_schemes:
            logger.warning(
                "LanceDB table '{}' was built with '{}', which is not available now; re-index required",
                manifest.table,
                manifest.embedding_scheme,
            )
            return None

        try:
            store = LanceDBVectorStore(
                db_path=self.db_path,
                table_name=manifest.table,
                embedding_scheme=manifest.embedding_scheme,
                dimension=manifest.dimension,
                batch_size=self.batch_size,
                indexed_at=manifest.indexed_at,
            )
            rows = store.count()
        except (OSError, ValueError, RuntimeError) as e:
            logger.error("LanceDB table '{}' could not be opened: {}; re-index required", manifest.table, e)
            return None

        logger.info("Opened LanceDB table '{}' ({} rows)", store.table_name, rows)
        return store

    def retire(self, store: LanceDBVectorStore) -> None:
        """Drops the table of a replaced generation."""
        manifest = self._read_manifest()
        if manifest is not None and manifest.table == store.table_name:
            return
        store.drop()
        logger.debug("Dropped retired LanceDB table '{}'", store.table_name)

    def clear(self) -> None:
        manifest = self._read_manifest()
        if manifest is not None:
            lancedb.connect(self.db_path).drop_table(manifest.table, ignore_missing=True)
        self.manifest_path.unlink(missing_ok=True)
