"""
Insight-type classification of a feedback item against its matched taxonomy node.
"""

from typing import Optional
import threading
import logging

from src.agents.llm_agent import ChatAgent
from src.models.schemas import InsightType, TaxonomyNode

logger = logging.getLogger(__name__)

VALID_LABELS = frozenset(t.value for t in InsightType)

# Answers the model commonly gives for the catch-all label
LABEL_ALIASES = {"others": InsightType.OTHER.value}

_STRIP_CHARS = " \t\r\n\"'`."


def build_classification_prompt(feedback_text: str, node: TaxonomyNode) -> str:
    return f"""Classify this feedback into one of these types:
- complaint: User reporting a problem or expressing frustration
- improvement: User suggesting enhancement to existing feature
- feature-request: User asking for new functionality
- other: Feedback doesn't fit above categories

Context:
Feedback: "{feedback_text}"
Related Article:
- LOB: {node.lob}
- Category: {node.category}
- Topic: {node.folder}
- Title: {node.title}

Respond with exactly one category name only."""


def normalize_label(response: Optional[str]) -> str:
    """
    Map a raw model answer onto the closed label set.

    Anything that is not a single line naming exactly one label becomes "other".
    """
    if not response:
        return InsightType.OTHER.value

    cleaned = response.strip()
    if "\n" in cleaned or "\r" in cleaned:
        return InsightType.OTHER.value

    cleaned = cleaned.strip(_STRIP_CHARS).lower()
    cleaned = LABEL_ALIASES.get(cleaned, cleaned)

    if cleaned in VALID_LABELS:
        return cleaned
    return InsightType.OTHER.value


class FeedbackClassifier:
    """Assign an insight type to feedback using the chat model."""

    def __init__(self, agent: ChatAgent):
        self.agent = agent

    def classify(self, feedback_text: str, node: TaxonomyNode,
                 cancel_event: Optional[threading.Event] = None) -> str:
        """
        Classify one piece of feedback.

        Args:
            feedback_text: The feedback content
            node: Taxonomy node the feedback was matched to
            cancel_event: Optional cancellation for the underlying completion

        Returns:
            One of complaint, improvement, feature-request, other

        Raises:
            RetriesExhaustedError: the completion call failed on every attempt
        """
        prompt = build_classification_prompt(feedback_text, node)
        response = self.agent.chat_single(prompt, cancel_event=cancel_event)
        label = normalize_label(response)

        if label == InsightType.OTHER.value and response.strip().lower() not in ("other", "others"):
            logger.debug(f"Unrecognised classification {response[:50]!r}, using 'other'")

        return label
