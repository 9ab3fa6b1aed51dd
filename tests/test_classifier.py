"""Unit tests for insight-type classification."""
import random
import string
from unittest.mock import Mock

import pytest

from src.agents.classifier import (
    FeedbackClassifier, VALID_LABELS, build_classification_prompt, normalize_label,
)
from src.models.errors import RetriesExhaustedError
from src.models.schemas import TaxonomyNode


@pytest.fixture
def node():
    return TaxonomyNode(lob="Payments", category="Bills", folder="Electricity", title="Payment Failures")


class TestNormalizeLabel:
    """The label set is closed: every answer maps to one of four labels."""

    @pytest.mark.parametrize("response,expected", [
        ("complaint", "complaint"),
        ("  Complaint\n", "complaint"),
        ("FEATURE-REQUEST", "feature-request"),
        ('"improvement"', "improvement"),
        ("improvement.", "improvement"),
        ("`other`", "other"),
        ("others", "other"),
        ("Others", "other"),
    ])
    def test_recognised_labels(self, response, expected):
        assert normalize_label(response) == expected

    @pytest.mark.parametrize("response", [
        "",
        None,
        "complaint\nimprovement",
        "This is a complaint",
        "feature request",
        "bug",
        "complaint, improvement",
    ])
    def test_unrecognised_answers_become_other(self, response):
        assert normalize_label(response) == "other"

    def test_fuzzed_answers_stay_in_label_set(self):
        rng = random.Random(1234)
        alphabet = string.ascii_letters + string.punctuation + " \n\t-"
        seeds = list(VALID_LABELS) + ["others", ""]

        for _ in range(500):
            text = "".join(rng.choice(alphabet) for _ in range(rng.randint(0, 30)))
            if rng.random() < 0.3:
                text = rng.choice(seeds).upper() + text
            assert normalize_label(text) in VALID_LABELS


class TestFeedbackClassifier:
    """Test FeedbackClassifier class."""

    def test_prompt_includes_feedback_and_node(self, node):
        prompt = build_classification_prompt("App crashes when paying", node)

        assert '"App crashes when paying"' in prompt
        assert "LOB: Payments" in prompt
        assert "Title: Payment Failures" in prompt
        assert "feature-request" in prompt

    def test_classify(self, node):
        agent = Mock()
        agent.chat_single.return_value = "Complaint"
        classifier = FeedbackClassifier(agent)

        assert classifier.classify("App crashes when paying", node) == "complaint"
        agent.chat_single.assert_called_once()

    def test_classify_coerces_unknown(self, node):
        agent = Mock()
        agent.chat_single.return_value = "I think this is praise"

        assert FeedbackClassifier(agent).classify("Love it", node) == "other"

    def test_completion_failure_propagates(self, node):
        agent = Mock()
        agent.chat_single.side_effect = RetriesExhaustedError(3, RuntimeError("timeout"))

        with pytest.raises(RetriesExhaustedError):
            FeedbackClassifier(agent).classify("App crashes", node)
