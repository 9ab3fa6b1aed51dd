"""
Map free-text feedback to the nearest taxonomy node.

Matching never fails: embedding errors degrade to a zero vector, weak matches
fall back to the globally nearest valid node, and an empty or unusable index
yields the UNCATEGORIZED sentinel so every item lands in some bucket.
"""

from typing import List, Optional, Protocol, Tuple
import logging

from src.config.settings import Settings
from src.embedding.embedder import Embedder
from src.models.schemas import MatchResult, TaxonomyNode

logger = logging.getLogger(__name__)

UNCATEGORIZED = TaxonomyNode(
    lob="Uncategorized",
    category="General",
    folder="Other",
    title="Uncategorized Feedback",
)


class VectorIndex(Protocol):
    def nearest(self, query_vector: List[float], limit: int = 1,
                valid_only: bool = False) -> List[Tuple[TaxonomyNode, float]]:
        ...


class TaxonomyMatcher:
    """Nearest-neighbour taxonomy matching with a fallback ladder."""

    def __init__(self, config: Settings, embedder: Embedder, index: VectorIndex):
        self.config = config
        self.embedder = embedder
        self.index = index
        self.threshold = config.match_threshold
        self.dimension = config.embedding_dimension

    def embed(self, text: str) -> Tuple[List[float], bool]:
        """Embed text, substituting a zero vector on failure. Returns (vector, failed)."""
        try:
            return self.embedder.embed_single(text), False
        except Exception as e:
            logger.warning(f"Embedding failed, matching with a zero vector: {e}")
            return [0.0] * self.dimension, True

    def match(self, text: str) -> MatchResult:
        """
        Find the taxonomy node for a feedback text.

        1. Nearest node, accepted when its distance is below the threshold.
        2. Otherwise the nearest node with a non-empty LOB and Category.
        3. Otherwise the UNCATEGORIZED sentinel.
        """
        vector, embedding_failed = self.embed(text)

        nearest = self.index.nearest(vector, limit=1)
        if nearest:
            node, distance = nearest[0]
            if distance < self.threshold and node.is_valid:
                return MatchResult(node=node, distance=distance, confident=True,
                                   embedding_failed=embedding_failed)
            if not node.is_valid:
                logger.warning(f"Nearest taxonomy node {node.node_id} has empty LOB or Category")

        fallback = self._nearest_valid(vector)
        if fallback is not None:
            node, distance = fallback
            logger.info(f"No taxonomy match within {self.threshold}; using nearest node "
                        f"'{node.path}' at distance {distance:.3f}")
            return MatchResult(node=node, distance=distance, confident=False,
                               embedding_failed=embedding_failed)

        logger.warning("No usable taxonomy node found, using Uncategorized")
        return MatchResult(node=UNCATEGORIZED.model_copy(), distance=None, confident=False,
                           embedding_failed=embedding_failed)

    def _nearest_valid(self, vector: List[float]) -> Optional[Tuple[TaxonomyNode, float]]:
        results = self.index.nearest(vector, limit=1, valid_only=True)
        if not results:
            return None
        node, distance = results[0]
        # The index filters on empty strings; whitespace-only labels still slip through
        if not node.is_valid:
            return None
        return node, distance


def match_confidence(result: MatchResult) -> float:
    """Confidence for a classification derived from its taxonomy match."""
    if result.is_sentinel:
        return 0.0
    confidence = max(0.0, min(1.0, 1.0 - result.distance))
    if not result.confident:
        confidence /= 2
    return confidence
