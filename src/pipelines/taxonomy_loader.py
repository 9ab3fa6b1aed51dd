"""
Load a taxonomy CSV into the vector index.

The CSV carries LOB, Category, Folder and Title columns (a header row is
optional; the first four columns are used in that order). Rows without a
LOB or Category cannot be match targets and are dropped.
"""

from typing import List, Optional
import argparse
import logging

import pandas as pd

from src.config.settings import Settings
from src.config.logging_config import configure_logging
from src.data_access.taxonomy_index import TaxonomyIndex
from src.embedding.embedder import Embedder
from src.models.schemas import TaxonomyNode

logger = logging.getLogger(__name__)

TAXONOMY_COLUMNS = ["lob", "category", "folder", "title"]


def read_taxonomy_csv(path: str, has_header: bool = True) -> pd.DataFrame:
    """Read the first four columns of a taxonomy CSV as lob / category / folder / title."""
    df = pd.read_csv(path, header=0 if has_header else None, dtype=str, keep_default_na=False)
    if df.shape[1] < len(TAXONOMY_COLUMNS):
        raise ValueError(f"Taxonomy CSV needs {len(TAXONOMY_COLUMNS)} columns, found {df.shape[1]}")

    df = df.iloc[:, :len(TAXONOMY_COLUMNS)]
    df.columns = TAXONOMY_COLUMNS
    for column in TAXONOMY_COLUMNS:
        df[column] = df[column].str.strip()

    valid = (df["lob"] != "") & (df["category"] != "")
    dropped = int((~valid).sum())
    if dropped:
        logger.warning(f"Dropping {dropped} taxonomy rows with empty LOB or Category")

    return df[valid].drop_duplicates().reset_index(drop=True)


def node_text(node: TaxonomyNode) -> str:
    """Text embedded for a taxonomy node."""
    return f"LOB: {node.lob} | Category: {node.category} | Subcategory: {node.folder} | Question: {node.title}"


class TaxonomyLoader:
    """Embeds taxonomy rows and writes them to the vector index."""

    def __init__(self, config: Settings, embedder: Optional[Embedder] = None,
                 index: Optional[TaxonomyIndex] = None):
        self.config = config
        self.embedder = embedder or Embedder(config)
        self.index = index or TaxonomyIndex(config)

    def build_nodes(self, df: pd.DataFrame) -> List[TaxonomyNode]:
        nodes = [
            TaxonomyNode(lob=row.lob, category=row.category, folder=row.folder, title=row.title)
            for row in df.itertuples(index=False)
        ]
        embeddings = self.embedder.embed_texts([node_text(n) for n in nodes])
        return [n.model_copy(update={"embedding": e}) for n, e in zip(nodes, embeddings)]

    def run(self, path: str, has_header: bool = True) -> dict:
        """
        Load a taxonomy CSV into the index.

        Returns:
            Dictionary with the number of rows read and nodes stored
        """
        df = read_taxonomy_csv(path, has_header=has_header)
        logger.info(f"Read {len(df)} taxonomy rows from {path}")

        if df.empty:
            return {"rows": 0, "stored": 0}

        nodes = self.build_nodes(df)

        try:
            self.index.initialize_schema()
            self.index.insert_nodes(nodes)
            stats = self.index.verify()
        finally:
            self.index.close()

        logger.info(f"Stored {len(nodes)} taxonomy nodes")
        return {"rows": len(df), "stored": len(nodes), **stats}


def main():
    """Main entry point for loading a taxonomy CSV."""
    configure_logging()

    parser = argparse.ArgumentParser(description='Embed a taxonomy CSV and store it in the vector index.')
    parser.add_argument('path', type=str, help='Path to the taxonomy CSV (LOB, Category, Folder, Title)')
    parser.add_argument('--no-header', action='store_true', help='The CSV has no header row')
    args = parser.parse_args()

    config = Settings()
    stats = TaxonomyLoader(config).run(args.path, has_header=not args.no_header)

    print("\n" + "="*50)
    print("TAXONOMY LOAD RESULTS")
    print("="*50)
    print(f"Rows read: {stats['rows']}")
    print(f"Nodes stored: {stats['stored']}")
    if 'total' in stats:
        print(f"Index total: {stats['total']} (labelled {stats['labelled']}, embedded {stats['embedded']})")
    print("="*50)


if __name__ == "__main__":
    main()
