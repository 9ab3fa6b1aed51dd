"""Unit tests for the ChatAgent class."""
import threading
import time
from unittest.mock import Mock

import httpx
import openai
import pytest

from src.agents.llm_agent import ChatAgent
from src.concurrency.rate_limiter import RateLimiter
from src.models.errors import OperationCancelled, RetriesExhaustedError
from tests.conftest import completion_response


def connection_error():
    return openai.APIConnectionError(request=httpx.Request("POST", "http://test"))


@pytest.fixture
def mock_client():
    return Mock()


class TestChatAgent:
    """Test ChatAgent class."""

    def test_agent_initialization(self, mock_config, mock_client):
        """Test ChatAgent takes its retry policy from config."""
        agent = ChatAgent(mock_config, client=mock_client)

        assert agent.config == mock_config
        assert agent.model == "gpt-4o-mini"
        assert agent.max_retries == 3
        assert agent.rate_limiter.capacity == 5

    def test_chat_single(self, mock_config, mock_client):
        """Test single prompt returns the first choice."""
        mock_client.chat.completions.create.return_value = completion_response("Hello")
        agent = ChatAgent(mock_config, client=mock_client)

        assert agent.chat_single("Say hello") == "Hello"

        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == [{"role": "user", "content": "Say hello"}]
        assert kwargs["timeout"] == 0.5

    def test_retries_then_succeeds(self, mock_config, mock_client):
        mock_client.chat.completions.create.side_effect = [
            connection_error(),
            completion_response("complaint"),
        ]
        agent = ChatAgent(mock_config, client=mock_client)

        assert agent.chat_single("classify") == "complaint"
        assert mock_client.chat.completions.create.call_count == 2

    def test_always_failing_makes_exactly_max_retries_attempts(self, mock_config, mock_client):
        """Test the retry budget and the wall-clock bound of the backoff."""
        mock_client.chat.completions.create.side_effect = connection_error()
        agent = ChatAgent(mock_config, client=mock_client)

        start = time.monotonic()
        with pytest.raises(RetriesExhaustedError) as exc_info:
            agent.chat_single("classify")
        elapsed = time.monotonic() - start

        assert mock_client.chat.completions.create.call_count == 3
        assert exc_info.value.attempts == 3
        assert "failed after 3 attempts" in str(exc_info.value)
        # 0.01 + 0.02 of backoff plus three attempt timeouts
        assert elapsed < 0.03 + 3 * 0.5

    def test_empty_choices_is_retried(self, mock_config, mock_client):
        empty = Mock()
        empty.choices = []
        mock_client.chat.completions.create.return_value = empty
        agent = ChatAgent(mock_config, client=mock_client)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            agent.chat_single("classify")

        assert mock_client.chat.completions.create.call_count == 3
        assert "no response from LLM" in str(exc_info.value)

    def test_none_content_becomes_empty_string(self, mock_config, mock_client):
        mock_client.chat.completions.create.return_value = completion_response(None)
        agent = ChatAgent(mock_config, client=mock_client)

        assert agent.chat_single("classify") == ""

    def test_cancelled_during_backoff(self, mock_config, mock_client):
        mock_config.llm_retry_delay = 5.0
        mock_client.chat.completions.create.side_effect = connection_error()
        agent = ChatAgent(mock_config, client=mock_client)
        cancel_event = threading.Event()
        threading.Timer(0.05, cancel_event.set).start()

        start = time.monotonic()
        with pytest.raises(OperationCancelled):
            agent.chat_single("classify", cancel_event=cancel_event)

        assert time.monotonic() - start < 2.0
        assert mock_client.chat.completions.create.call_count == 1

    def test_cancelled_before_first_attempt(self, mock_config, mock_client):
        agent = ChatAgent(mock_config, client=mock_client)
        cancel_event = threading.Event()
        cancel_event.set()

        with pytest.raises(OperationCancelled):
            agent.chat_single("classify", cancel_event=cancel_event)

        mock_client.chat.completions.create.assert_not_called()

    def test_shared_rate_limiter_bounds_concurrency(self, mock_config, mock_client):
        active = 0
        peak = 0
        lock = threading.Lock()

        def create(**kwargs):
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with lock:
                active -= 1
            return completion_response("ok")

        mock_client.chat.completions.create.side_effect = create
        agent = ChatAgent(mock_config, client=mock_client, rate_limiter=RateLimiter(2))

        threads = [threading.Thread(target=agent.chat_single, args=("hi",)) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert mock_client.chat.completions.create.call_count == 6
        assert peak <= 2
