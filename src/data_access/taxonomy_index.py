"""
Vector index over taxonomy nodes.

TaxonomyIndex stores node embeddings in PostgreSQL with pgvector and answers
nearest-neighbour queries by L2 distance. InMemoryTaxonomyIndex answers the
same queries with numpy for small taxonomies loaded from a file.
"""

import psycopg2
from psycopg2.extras import execute_values
from typing import List, Tuple, Optional, Sequence
import logging

import numpy as np

from src.config.settings import Settings
from src.models.errors import FeedbackStoreError
from src.models.schemas import TaxonomyNode

logger = logging.getLogger(__name__)


class TaxonomyIndex:
    """PostgreSQL vector index for taxonomy embeddings."""

    def __init__(self, config: Settings):
        self.config = config
        self.conn = None

    def connect(self) -> None:
        """Establish database connection."""
        self.conn = psycopg2.connect(
            host=self.config.postgres_host,
            port=self.config.postgres_port,
            database=self.config.postgres_database,
            user=self.config.postgres_username,
            password=self.config.postgres_password,
            sslmode=self.config.postgres_sslmode
        )

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def initialize_schema(self) -> None:
        """Create the taxonomy table and vector index if they don't exist."""
        if not self.conn:
            self.connect()

        schema_sql = f"""
        CREATE EXTENSION IF NOT EXISTS vector;

        CREATE TABLE IF NOT EXISTS taxonomy_embeddings (
            id SERIAL PRIMARY KEY,
            lob VARCHAR(255) NOT NULL DEFAULT '',
            category VARCHAR(255) NOT NULL DEFAULT '',
            folder VARCHAR(255) NOT NULL DEFAULT '',
            title TEXT NOT NULL DEFAULT '',
            embedding vector({self.config.embedding_dimension})
        );

        CREATE INDEX IF NOT EXISTS taxonomy_embeddings_vector_idx
        ON taxonomy_embeddings USING ivfflat (embedding vector_l2_ops)
        WITH (lists = 100);
        """

        with self.conn.cursor() as cursor:
            cursor.execute(schema_sql)
            self.conn.commit()

    def insert_nodes(self, nodes: List[TaxonomyNode]) -> None:
        """
        Insert taxonomy nodes with their embeddings.

        Args:
            nodes: Nodes carrying a precomputed embedding
        """
        if not self.conn:
            self.connect()

        values = [
            (n.lob, n.category, n.folder, n.title, n.embedding)
            for n in nodes
        ]

        query = """
            INSERT INTO taxonomy_embeddings (lob, category, folder, title, embedding)
            VALUES %s
        """

        with self.conn.cursor() as cursor:
            execute_values(cursor, query, values, template="(%s, %s, %s, %s, %s::vector)")
            self.conn.commit()

    def nearest(
        self,
        query_vector: List[float],
        limit: int = 1,
        valid_only: bool = False
    ) -> List[Tuple[TaxonomyNode, float]]:
        """
        Find the nearest taxonomy nodes by L2 distance.

        Args:
            query_vector: Query embedding vector
            limit: Maximum number of results
            valid_only: Only consider nodes with a non-empty LOB and Category

        Returns:
            List of (node, distance) tuples ordered by distance
        """
        if not self.conn:
            self.connect()

        query = """
            SELECT id, lob, category, folder, title, embedding <-> %s::vector AS distance
            FROM taxonomy_embeddings
            WHERE embedding IS NOT NULL
        """
        params = [query_vector]

        if valid_only:
            query += " AND lob <> '' AND category <> ''"

        query += " ORDER BY distance, id LIMIT %s"
        params.append(limit)

        with self.conn.cursor() as cursor:
            cursor.execute(query, tuple(params))
            rows = cursor.fetchall()

        return [
            (
                TaxonomyNode(node_id=row[0], lob=row[1], category=row[2], folder=row[3], title=row[4]),
                float(row[5])
            )
            for row in rows
        ]

    def verify(self) -> dict:
        """
        Check the taxonomy table exists and report how much of it is usable.

        Raises:
            FeedbackStoreError: if the table does not exist
        """
        if not self.conn:
            self.connect()

        with self.conn.cursor() as cursor:
            cursor.execute("""
                SELECT EXISTS (
                    SELECT FROM information_schema.tables
                    WHERE table_schema = 'public' AND table_name = 'taxonomy_embeddings'
                )
            """)
            if not cursor.fetchone()[0]:
                raise FeedbackStoreError("taxonomy_embeddings table does not exist")

            cursor.execute("""
                SELECT
                    COUNT(*),
                    COUNT(*) FILTER (WHERE lob <> '' AND category <> ''),
                    COUNT(embedding)
                FROM taxonomy_embeddings
            """)
            total, labelled, embedded = cursor.fetchone()

        stats = {"total": total, "labelled": labelled, "embedded": embedded}
        logger.info(f"Taxonomy statistics: Total={total}, WithLOB={labelled}, WithEmbeddings={embedded}")
        return stats


class InMemoryTaxonomyIndex:
    """numpy-backed index with the same query interface as TaxonomyIndex."""

    def __init__(self, nodes: Optional[Sequence[TaxonomyNode]] = None):
        self.nodes: List[TaxonomyNode] = []
        self._matrix: Optional[np.ndarray] = None
        if nodes:
            self.insert_nodes(list(nodes))

    def insert_nodes(self, nodes: List[TaxonomyNode]) -> None:
        for node in nodes:
            if node.embedding is None:
                raise ValueError(f"Taxonomy node '{node.path}' has no embedding")
        self.nodes.extend(nodes)
        self._matrix = np.array([n.embedding for n in self.nodes], dtype=np.float32)

    def nearest(
        self,
        query_vector: List[float],
        limit: int = 1,
        valid_only: bool = False
    ) -> List[Tuple[TaxonomyNode, float]]:
        if not self.nodes:
            return []

        vector = np.asarray(query_vector, dtype=np.float32)
        distances = np.linalg.norm(self._matrix - vector, axis=1)
        order = np.argsort(distances, kind="stable")

        results = []
        for idx in order:
            node = self.nodes[idx]
            if valid_only and not node.is_valid:
                continue
            results.append((node.model_copy(update={"embedding": None}), float(distances[idx])))
            if len(results) >= limit:
                break
        return results
