# src/agents/llm_agent.py
from openai import OpenAI, APIError
from typing import List, Optional
from src.config.settings import Settings
from src.concurrency.rate_limiter import RateLimiter
from src.models.errors import CompletionError, OperationCancelled, RetriesExhaustedError
import threading
import time
import logging

logger = logging.getLogger(__name__)


class ChatAgent:
    """
    OpenAI chat completion client.

    Every request goes through a shared RateLimiter and has its own timeout.
    Failed attempts (transport errors, non-success status, empty choices) are
    retried with exponential backoff; the limiter slot is released while
    waiting between attempts.
    """

    def __init__(self, config: Settings, client: OpenAI = None, rate_limiter: Optional[RateLimiter] = None):
        self.config = config
        self.client = client or OpenAI(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            max_retries=0,
        )
        self.model = config.openai_llm_model
        self.max_retries = max(1, config.llm_max_retries)
        self.retry_delay = config.llm_retry_delay
        self.backoff_multiplier = config.llm_backoff_multiplier
        self.timeout = config.llm_timeout
        self.rate_limiter = rate_limiter or RateLimiter(config.max_concurrent_llm_calls)

    def chat(self, messages: List[dict], cancel_event: Optional[threading.Event] = None) -> str:
        """
        Send a list of messages to the chat model and get the response.

        Args:
            messages: List of message dicts (e.g., [{"role": "user", "content": "Hello"}])
            cancel_event: Optional event; once set, pending waits abort immediately

        Returns:
            The assistant's reply as a string.

        Raises:
            OperationCancelled: cancel_event was set before or between attempts.
            RetriesExhaustedError: every attempt failed.
        """
        last_error = None
        current_delay = self.retry_delay

        for attempt in range(self.max_retries):
            if attempt > 0:
                if self._wait(current_delay, cancel_event):
                    raise OperationCancelled("cancelled while waiting to retry completion")
                current_delay *= self.backoff_multiplier
            elif cancel_event is not None and cancel_event.is_set():
                raise OperationCancelled("cancelled before completion request")

            try:
                return self._request(messages, cancel_event)
            except (APIError, CompletionError) as e:
                last_error = e
                logger.warning(f"LLM request attempt {attempt + 1}/{self.max_retries} failed: {e}")

        raise RetriesExhaustedError(self.max_retries, last_error)

    def chat_single(self, prompt: str, cancel_event: Optional[threading.Event] = None) -> str:
        """
        Send a single prompt to the chat model and get the response.

        Args:
            prompt: The user's prompt as a string.

        Returns:
            The assistant's reply as a string.
        """
        messages = [{"role": "user", "content": prompt}]
        return self.chat(messages, cancel_event=cancel_event)

    def _request(self, messages: List[dict], cancel_event: Optional[threading.Event]) -> str:
        with self.rate_limiter.slot(cancel_event):
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.config.llm_temperature,
                max_tokens=self.config.llm_max_tokens,
                timeout=self.timeout,
            )

        if not response.choices:
            raise CompletionError("no response from LLM")
        return response.choices[0].message.content or ""

    @staticmethod
    def _wait(delay: float, cancel_event: Optional[threading.Event]) -> bool:
        """Sleep for delay seconds; returns True if cancelled during the wait."""
        if cancel_event is None:
            time.sleep(delay)
            return False
        return cancel_event.wait(delay)
