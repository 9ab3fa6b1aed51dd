"""
Prediction pipeline: match every unclassified feedback item to the taxonomy
and assign it an insight type.

Pages of unclassified feedback are fetched in id order and handed to a fixed
pool of workers through a bounded queue. Each worker classifies its batch one
item at a time with per-item retries; an item that keeps failing is recorded
and skipped without stopping the rest of the batch or the pool.
"""

from typing import List, Optional
from datetime import datetime, timezone
import argparse
import threading
import logging
import time

from src.config.settings import Settings
from src.config.logging_config import configure_logging
from src.concurrency.task_pool import TaskPool
from src.data_access.sql_client import SQLClient
from src.data_access.taxonomy_index import TaxonomyIndex
from src.embedding.embedder import Embedder
from src.agents.llm_agent import ChatAgent
from src.agents.classifier import FeedbackClassifier
from src.taxonomy.matcher import TaxonomyMatcher, match_confidence
from src.models.errors import OperationCancelled
from src.models.schemas import FeedbackRecord, ClassificationRecord


logger = logging.getLogger(__name__)


class PredictionPipeline:
    """Pipeline for classifying feedback that has no classification yet."""

    def __init__(
        self,
        config: Settings,
        sql_client: Optional[SQLClient] = None,
        matcher: Optional[TaxonomyMatcher] = None,
        classifier: Optional[FeedbackClassifier] = None,
    ):
        """
        Initialize the prediction pipeline.

        Args:
            config: Application settings
            sql_client: Feedback store (default: SQLClient)
            matcher: Taxonomy matcher (default: pgvector index + OpenAI embeddings)
            classifier: Insight-type classifier (default: chat model)
        """
        self.config = config
        self.sql_client = sql_client or SQLClient(config)
        self.taxonomy_index = None
        if matcher is None:
            self.taxonomy_index = TaxonomyIndex(config)
            matcher = TaxonomyMatcher(config, Embedder(config), self.taxonomy_index)
        self.matcher = matcher
        self.classifier = classifier or FeedbackClassifier(ChatAgent(config))

        self.worker_count = config.worker_count
        self.max_item_retries = max(1, config.max_item_retries)
        self.item_retry_delay = config.item_retry_delay

    def process_feedback(self, feedback: FeedbackRecord,
                         cancel_event: Optional[threading.Event] = None) -> ClassificationRecord:
        """
        Match, classify and store the classification for one feedback item.

        Any previous classification of the item is replaced atomically.
        """
        match = self.matcher.match(feedback.text)
        label = self.classifier.classify(feedback.text, match.node, cancel_event=cancel_event)

        record = ClassificationRecord(
            feedback_id=feedback.feedback_id,
            feedback_type=label,
            lob=match.node.lob,
            category=match.node.category,
            folder=match.node.folder,
            title=match.node.title,
            confidence_score=match_confidence(match),
            created_at=datetime.now(timezone.utc),
        )
        self.sql_client.replace_classification(record)
        return record

    def run(
        self,
        batch_size: Optional[int] = None,
        limit: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> dict:
        """
        Classify all unclassified feedback.

        Args:
            batch_size: Number of records per batch (default from config)
            limit: Maximum number of records to queue (None = all)
            cancel_event: Once set, no further batches or items are started

        Returns:
            Dictionary with processing statistics. Item failures are listed
            under "failures" once every worker has exited.
        """
        if batch_size is None:
            batch_size = self.config.batch_size

        logger.info("Starting prediction pipeline")

        try:
            total_records = self.sql_client.count_unclassified()
            logger.info(f"Found {total_records} unclassified feedback records")

            if total_records == 0:
                logger.info("No new feedback to process")
                return self._stats(0, 0, [], cancelled=False)

            pool = TaskPool(
                lambda batch: self._process_batch(batch, cancel_event),
                worker_count=self.worker_count,
                queue_size=self.worker_count,
                name="prediction",
                cancel_event=cancel_event,
            )
            pool.start()

            try:
                self._queue_batches(pool, batch_size, limit, total_records, cancel_event)
            finally:
                results = pool.join()

            classified = 0
            failures = []
            for result in results:
                if result.ok:
                    classified += result.value["classified"]
                    failures.extend(result.value["failures"])
                else:
                    # A skipped batch after cancellation
                    logger.warning(f"Batch of {len(result.task)} records not processed: {result.error}")

            cancelled = cancel_event is not None and cancel_event.is_set()
            logger.info(
                f"Prediction complete: {classified} classified, {len(failures)} failed"
                + (" (cancelled)" if cancelled else "")
            )
            return self._stats(total_records, classified, failures, cancelled)

        finally:
            self.sql_client.close()
            if self.taxonomy_index is not None:
                self.taxonomy_index.close()

    def _queue_batches(self, pool: TaskPool, batch_size: int, limit: Optional[int],
                       total_records: int, cancel_event: Optional[threading.Event]) -> int:
        """Fetch pages of unclassified feedback in id order and hand them to the pool."""
        queued = 0
        after_id = None

        while cancel_event is None or not cancel_event.is_set():
            page_size = batch_size if limit is None else min(batch_size, limit - queued)
            if page_size <= 0:
                break

            batch = self.sql_client.get_unclassified_feedback(after_id=after_id, limit=page_size)
            if not batch:
                break

            if not pool.submit(batch):
                break

            after_id = batch[-1].feedback_id
            queued += len(batch)
            logger.info(f"Queued batch of {len(batch)} feedback records ({queued}/{total_records})")

        return queued

    def _process_batch(self, batch: List[FeedbackRecord],
                       cancel_event: Optional[threading.Event]) -> dict:
        worker = threading.current_thread().name
        logger.info(f"{worker} processing batch of {len(batch)} feedback records")

        classified = 0
        failures = []

        for feedback in batch:
            if cancel_event is not None and cancel_event.is_set():
                break
            try:
                self._process_with_retry(feedback, cancel_event)
                classified += 1
            except OperationCancelled:
                break
            except Exception as e:
                logger.error(f"Failed to process feedback {feedback.feedback_id} "
                             f"after {self.max_item_retries} attempts: {e}")
                failures.append({"feedback_id": feedback.feedback_id, "error": str(e)})

        return {"classified": classified, "failures": failures}

    def _process_with_retry(self, feedback: FeedbackRecord,
                            cancel_event: Optional[threading.Event]) -> ClassificationRecord:
        for attempt in range(self.max_item_retries):
            try:
                return self.process_feedback(feedback, cancel_event=cancel_event)
            except OperationCancelled:
                raise
            except Exception as e:
                if attempt == self.max_item_retries - 1:
                    raise
                logger.warning(f"Attempt {attempt + 1}/{self.max_item_retries} for feedback "
                               f"{feedback.feedback_id} failed: {e}")
                if cancel_event is not None:
                    if cancel_event.wait(self.item_retry_delay):
                        raise OperationCancelled("cancelled while waiting to retry feedback")
                else:
                    time.sleep(self.item_retry_delay)

    @staticmethod
    def _stats(total_records: int, classified: int, failures: list, cancelled: bool) -> dict:
        return {
            "total_records": total_records,
            "classified": classified,
            "errors": len(failures),
            "failures": failures,
            "cancelled": cancelled,
        }


def main():
    """Main entry point for running the prediction pipeline."""
    configure_logging()

    parser = argparse.ArgumentParser(description='Classify unclassified feedback against the product taxonomy.')
    parser.add_argument('--limit', type=int, help='Maximum number of records to process')
    parser.add_argument('--batch-size', type=int, help='Number of records per batch')
    args = parser.parse_args()

    config = Settings()

    pipeline = PredictionPipeline(config)
    stats = pipeline.run(batch_size=args.batch_size, limit=args.limit)

    print("\n" + "="*50)
    print("PREDICTION PIPELINE RESULTS")
    print("="*50)
    print(f"Unclassified records found: {stats['total_records']}")
    print(f"Classified: {stats['classified']}")
    print(f"Errors: {stats['errors']}")
    for failure in stats['failures'][:10]:
        print(f"  - {failure['feedback_id']}: {failure['error']}")
    print("="*50)


if __name__ == "__main__":
    main()
