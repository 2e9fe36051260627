from collections.abc import Sequence
from typing import Any

import numpy as np
import pyarrow as pa

from codeqa.core.models import ChunkMetadata, SearchResult, VectorDocument


class ChunkMapper:
    """Mapper for mapping vector documents to PyArrow structures and vice versa."""

    def __init__(self, vector_dimension: int) -> None:
        self.vector_dimension = vector_dimension
        self._schema = pa.schema(
            [
                pa.field("id", pa.string()),
                pa.field("vector", pa.list_(pa.float32(), self.vector_dimension)),
                pa.field("content", pa.string()),
                pa.field("file_path", pa.string()),
                pa.field("start_line", pa.int64()),
                pa.field("end_line", pa.int64()),
                pa.field("type", pa.string()),
                pa.field("name", pa.string()),
                pa.field("language", pa.string()),
                pa.field("parent_name", pa.string(), nullable=True),
                pa.field("docstring", pa.string(), nullable=True),
                pa.field("signature", pa.string(), nullable=True),
                pa.field("embedding_scheme", pa.string()),
            ]
        )

    @property
    def schema(self) -> Any:
        return self._schema

    def to_record_batch(self, documents: Sequence[VectorDocument], embedding_scheme: str) -> Any:
        vectors = np.asarray([d.embedding for d in documents], dtype=np.float32).reshape(
            len(documents), self.vector_dimension
        )
        metas = [d.metadata for d in documents]

        return pa.RecordBatch.from_arrays(
            [
                pa.array([d.id for d in documents], type=pa.string()),
                pa.FixedSizeListArray.from_arrays(vectors.ravel(), list_size=self.vector_dimension),
                pa.array([d.content for d in documents], type=pa.string()),
                pa.array([m.file_path for m in metas], type=pa.string()),
                pa.array([m.start_line for m in metas], type=pa.int64()),
                pa.array([m.end_line for m in metas], type=pa.int64()),
                pa.array([m.type for m in metas], type=pa.string()),
                pa.array([m.name for m in metas], type=pa.string()),
                pa.array([m.language for m in metas], type=pa.string()),
                pa.array([m.parent_name for m in metas], type=pa.string()),
                pa.array([m.docstring for m in metas], type=pa.string()),
                pa.array([m.signature for m in metas], type=pa.string()),
                pa.array([embedding_scheme] * len(documents), type=pa.string()),
            ],
            schema=self._schema,
        )

    def from_polars_row(self, row: dict[str, Any], score: float) -> SearchResult:
        metadata = ChunkMetadata(
            file_path=row["file_path"],
            start_line=row["start_line"],
            end_line=row["end_line"],
            type=row["type"],
            name=row["name"],
            language=row["language"],
            parent_name=row.get("parent_name"),
            docstring=row.get("docstring"),
            signature=row.get("signature"),
        )
        return SearchResult(id=row["id"], content=row["content"], metadata=metadata, score=score)
