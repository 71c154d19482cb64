"""FAISS index over code units for similarity search."""

import json
import logging
from pathlib import Path
from typing import Optional, Sequence

import faiss
import numpy as np

from autoflow.collaborators.embedder import TextEmbedder
from autoflow.schema import CodeUnit, SearchMatch

logger = logging.getLogger(__name__)

# Over-fetch factor applied when results are narrowed to one repository.
REPO_OVERFETCH = 4


class CodeSearchIndex:
    """Inner-product FAISS index of normalized code-unit embeddings."""

    def __init__(
        self,
        embedder: Optional[TextEmbedder] = None,
        index_path: Optional[Path] = None,
    ):
        """Initialize the index.

        Args:
            embedder: TextEmbedder used by ``build`` (created if not provided)
            index_path: Directory to load an existing index from
        """
        self.embedder = embedder or TextEmbedder()
        self.index: Optional[faiss.Index] = None
        self.units: dict[int, CodeUnit] = {}  # vector_id -> unit

        if index_path and (index_path / "index.faiss").exists():
            self.load(index_path)

    def build(self, units: list[CodeUnit]) -> None:
        """Embed and index code units.

        Raises:
            ValueError: If ``units`` is empty.
        """
        if not units:
            raise ValueError("Cannot build index with empty unit list")

        embeddings = self.embedder.embed_units(units)

        # Inner product equals cosine similarity for normalized vectors
        index = faiss.IndexFlatIP(embeddings.shape[1])
        index.add(np.asarray(embeddings, dtype=np.float32))
        self.index, self.units = index, dict(enumerate(units))
        logger.info("Indexed %d code units", len(units))

    def replace_repo(self, repo: str, units: list[CodeUnit]) -> None:
        """Rebuild the index with ``units`` in place of the repository's current ones."""
        kept = [unit for unit in self.units.values() if unit.repo != repo]
        if not kept and not units:
            self.index, self.units = None, {}
            return
        self.build(kept + units)

    def search(self, vector: Sequence[float], repo_scope: str, top_n: int) -> list[SearchMatch]:
        """Find the units closest to ``vector`` within one repository.

        Args:
            vector: Normalized query embedding
            repo_scope: Repository name results are restricted to
            top_n: Maximum number of matches

        Returns:
            Matches ordered by descending score
        """
        if self.index is None:
            raise ValueError("Index not built or loaded")

        query = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        k = min(self.index.ntotal, top_n * REPO_OVERFETCH)
        scores, indices = self.index.search(query, k)

        matches = []
        for score, idx in zip(scores[0], indices[0]):
            unit = self.units.get(int(idx))
            if idx < 0 or unit is None or unit.repo != repo_scope:
                continue
            matches.append(
                SearchMatch(
                    id=unit.id,
                    score=float(score),
                    snippet=unit.summary,
                    symbol_name=unit.qualified_name,
                    kind=unit.kind,
                    file_path=unit.file_path,
                )
            )
            if len(matches) >= top_n:
                break

        return matches

    def save(self, path: Path) -> None:
        """Save index and unit mapping to a directory."""
        if self.index is None:
            raise ValueError("No index to save")

        path.mkdir(parents=True, exist_ok=True)
        faiss.write_index(self.index, str(path / "index.faiss"))
        with open(path / "units.json", "w") as f:
            json.dump({str(k): unit.model_dump(mode="json") for k, unit in self.units.items()}, f)

    def load(self, path: Path) -> None:
        """Load index and unit mapping from a directory."""
        index_file = path / "index.faiss"
        if not index_file.exists():
            raise FileNotFoundError(f"Index file not found: {index_file}")

        self.index = faiss.read_index(str(index_file))

        mapping_file = path / "units.json"
        if mapping_file.exists():
            with open(mapping_file) as f:
                self.units = {int(k): CodeUnit(**v) for k, v in json.load(f).items()}

    @property
    def size(self) -> int:
        if self.index is None:
            return 0
        return self.index.ntotal
