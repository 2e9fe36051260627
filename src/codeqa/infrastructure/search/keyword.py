import math
import re
from collections import defaultdict
from pathlib import Path

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from codeqa.core.models import Chunk, SearchResult

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_CHUNK_LIST = TypeAdapter(list[Chunk])

# Name boosts dwarf IDF sums so a symbol-name query surfaces the symbol itself
EXACT_NAME_BOOST = 100.0
NAME_CONTAINS_QUERY_BOOST = 50.0
QUERY_CONTAINS_NAME_BOOST = 30.0
MIN_CONTAINED_NAME_LENGTH = 4
SCORE_SCALE = 100.0


def tokenize(text: str) -> list[str]:
    """Lowercase, replace non-alphanumerics with spaces, keep words longer than 2 chars."""
    return [word for word in _NON_ALNUM.sub(" ", text.lower()).split() if len(word) > 2]


class KeywordIndex:
    """Dependency-free inverted index with IDF scoring and symbol-name boosts."""

    def __init__(self) -> None:
        self._documents: dict[str, Chunk] = {}
        self._inverted: dict[str, set[str]] = defaultdict(set)

    def __len__(self) -> int:
        return len(self._documents)

    @property
    def indexed_words(self) -> int:
        return len(self._inverted)

    def chunks(self) -> list[Chunk]:
        return list(self._documents.values())

    def get(self, doc_id: str) -> Chunk | None:
        return self._documents.get(doc_id)

    def index(self, chunks: list[Chunk]) -> None:
        """Rebuilds the index wholesale from the given chunks."""
        self._documents = {}
        self._inverted = defaultdict(set)
        for chunk in chunks:
            self._documents[chunk.id] = chunk
            for word in tokenize(f"{chunk.content} {chunk.metadata.name}"):
                self._inverted[word].add(chunk.id)

    def search(self, query: str, k: int = 5) -> list[SearchResult]:
        if not self._documents or k <= 0:
            return []

        scores: dict[str, float] = defaultdict(float)
        corpus_size = len(self._documents)

        for word in tokenize(query):
            matching = self._inverted.get(word)
            if not matching:
                continue
            # Rarer words weigh more
            idf = math.log(corpus_size / len(matching) + 1)
            for doc_id in matching:
                scores[doc_id] += idf

        query_lower = query.lower().strip()
        if query_lower:
            for doc_id, chunk in self._documents.items():
                name = chunk.metadata.name.lower()
                if not name:
                    continue
                if name == query_lower:
                    scores[doc_id] += EXACT_NAME_BOOST
                elif query_lower in name:
                    scores[doc_id] += NAME_CONTAINS_QUERY_BOOST
                elif name in query_lower and len(name) >= MIN_CONTAINED_NAME_LENGTH:
                    scores[doc_id] += QUERY_CONTAINS_NAME_BOOST

        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)[:k]
        results = []
        for doc_id, score in ranked:
            chunk = self._documents[doc_id]
            results.append(
                SearchResult(
                    id=doc_id,
                    content=chunk.content,
                    metadata=chunk.metadata,
                    score=score / SCORE_SCALE,
                )
            )
        return results

    def save(self, path: Path) -> None:
        """Writes the index source file: a JSON array of chunks."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(
            _CHUNK_LIST.dump_json(self.chunks(), by_alias=True, exclude_none=True, indent=2)
        )

    @classmethod
    def load(cls, path: Path) -> "KeywordIndex":
        """Rebuilds an index from its source file. Missing or malformed files yield an empty index."""
        index = cls()
        if not path.exists():
            return index

        try:
            chunks = _CHUNK_LIST.validate_json(path.read_bytes())
        except ValidationError as e:
            logger.error("Keyword index source {} is unreadable, starting empty: {}", path, e)
            return index

        index.index(chunks)
        logger.info("Loaded {} documents into the keyword index", len(index))
        return index
