"""
Narrative summaries for groups of classified feedback.
"""

from typing import List, Optional
import re
import threading
import logging

from src.agents.llm_agent import ChatAgent
from src.models.schemas import InsightSummary, InsightType

logger = logging.getLogger(__name__)

_BULLET_PREFIX = re.compile(r"^(?:[-*•]\s*|\d+[.)]\s+)")
_MARKDOWN_TOKENS = ("**", "#", "*", "`", "|", "---")


def create_prompt(feedbacks: List[str], insight_type: str) -> str:
    feedback_text = "\n".join(feedbacks)

    if insight_type == InsightType.FEATURE_REQUEST:
        return f"""Analyze these user feedback items and extract feature requests:

{feedback_text}

RESPONSE FORMAT:
- List only the specific features requested
- Start each line with a hyphen
- No headers, no explanations
- Maximum 5 features
- Be concise and specific"""

    if insight_type == InsightType.IMPROVEMENT:
        return f"""Analyze these improvement suggestions:

{feedback_text}

RESPONSE FORMAT:
Write 2-3 plain sentences that:
1. State what users want improved
2. Explain the impact on user experience
3. No formatting, no bullet points, no headers"""

    if insight_type == InsightType.COMPLAINT:
        return f"""Analyze these user complaints:

{feedback_text}

RESPONSE FORMAT:
Write 3-4 plain sentences that:
1. State the main problems
2. Include specific numbers or percentages
3. Mention business impact
4. No formatting, no bullet points, no headers"""

    raise ValueError(f"No summary prompt for insight type '{insight_type}'")


def clean_feature_list(response: str) -> List[str]:
    """Split a bulleted answer into a deduplicated, ordered list of features."""
    features = []
    seen = set()
    for line in response.splitlines():
        line = _BULLET_PREFIX.sub("", line.strip()).strip()
        if not line:
            continue
        key = line.lower()
        if key in seen:
            continue
        seen.add(key)
        features.append(line)
    return features


def clean_narrative(response: str) -> str:
    """Strip markdown and headers, joining the remaining lines into one paragraph."""
    lines = []
    for line in response.splitlines():
        line = line.strip()
        if not line or line.startswith("##"):
            continue
        for token in _MARKDOWN_TOKENS:
            line = line.replace(token, "")
        line = line.strip()
        if line:
            lines.append(line)
    return " ".join(lines).strip()


class InsightSummarizer:
    """Produce the InsightSummary for a group of feedback texts."""

    def __init__(self, agent: ChatAgent):
        self.agent = agent

    def summarize(self, feedbacks: List[str], insight_type: str,
                  cancel_event: Optional[threading.Event] = None) -> InsightSummary:
        """
        Summarize feedback texts for one insight type.

        Feature requests yield a feature list; improvements and complaints
        yield a short narrative. An empty input returns an empty summary
        without calling the model.
        """
        summary = InsightSummary()
        if not feedbacks:
            return summary

        prompt = create_prompt(feedbacks, insight_type)
        response = self.agent.chat_single(prompt, cancel_event=cancel_event)

        if insight_type == InsightType.FEATURE_REQUEST:
            summary.requested_features = clean_feature_list(response)
        elif insight_type == InsightType.IMPROVEMENT:
            summary.improvement_summary = clean_narrative(response)
        else:
            summary.complaint_summary = clean_narrative(response)

        return summary
