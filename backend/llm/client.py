"""
HTTP client for the interviewer LLM (llama.cpp `/completion` server).

Calls are blocking (requests); async callers run them in a worker thread.
A failed or empty completion never raises to the caller: it comes back as an
invalid LLMResponse so the interviewer can fall back to scripted questions.
"""
import time
import logging
from typing import Any, Dict, List, Optional, Tuple
from dataclasses import dataclass

import requests

from utils.config import config
from utils.cleaning import ResponseCleaner

logger = logging.getLogger(__name__)

# Generated text past these markers is the model playing the candidate
QUESTION_STOP_SEQUENCES = ["Candidate:", "Answer:", "Q:", "A:"]


@dataclass
class LLMResponse:
    """One completion and whether it is usable."""
    content: str
    is_valid: bool
    raw_response: Dict[str, Any]
    tokens_used: int = 0


class LLMClient:
    """Thin wrapper over a shared requests.Session."""

    def __init__(self, base_url: Optional[str] = None, session: Optional[requests.Session] = None):
        self.base_url = (base_url or config.llm.base_url).rstrip("/")
        self.completion_url = self.base_url + config.llm.completion_endpoint
        self.timeout = config.llm.timeout
        self.max_retries = config.llm.max_retries
        self.http = session or requests.Session()
        logger.info(f"LLM client for {self.completion_url} (timeout={self.timeout}s, retries={self.max_retries})")

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST a completion request, retrying transport failures with linear backoff."""
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = self.http.post(self.completion_url, json=payload, timeout=self.timeout)
                response.raise_for_status()
                return response.json()
            except requests.exceptions.RequestException as e:
                slow = isinstance(e, requests.exceptions.Timeout)
                logger.warning(f"LLM request attempt {attempt}/{attempts} failed: {e}")
                if attempt == attempts:
                    raise ConnectionError(f"LLM server unreachable after {attempts} attempts: {e}") from e
                # Timeouts mean the server is busy; give it longer
                time.sleep((1.0 if slow else 0.5) * attempt)
        raise ConnectionError("LLM request was never attempted")

    def generate(
        self,
        prompt: str,
        max_tokens: int = 200,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        repeat_penalty: Optional[float] = None,
        stop: Optional[List[str]] = None,
    ) -> LLMResponse:
        """
        Run one completion.

        Args:
            prompt: Full prompt text
            max_tokens: Sent as n_predict
            temperature, top_p, repeat_penalty: Sampling overrides; None keeps the config default
            stop: Stop sequences

        Returns:
            LLMResponse; is_valid is False when the server failed or produced nothing
        """
        sampling = config.llm
        payload: Dict[str, Any] = {
            "prompt": prompt,
            "n_predict": max_tokens,
            "temperature": sampling.default_temperature if temperature is None else temperature,
            "top_p": sampling.default_top_p if top_p is None else top_p,
            "repeat_penalty": sampling.default_repeat_penalty if repeat_penalty is None else repeat_penalty,
        }
        if stop:
            payload["stop"] = stop

        try:
            body = self._post(payload)
        except (ConnectionError, ValueError) as e:
            logger.warning(f"LLM completion failed: {e}")
            return LLMResponse(content="", is_valid=False, raw_response={"error": str(e)})

        text = body.get("content") or ""
        return LLMResponse(
            content=text,
            is_valid=bool(text.strip()),
            raw_response=body,
            tokens_used=body.get("tokens_predicted", 0),
        )

    def generate_question(self, prompt: str, max_tokens: int = 200) -> Tuple[str, bool]:
        """
        Ask for one interviewer question and clean it for speech.

        Returns:
            (question, is_valid); question is "" when invalid
        """
        response = self.generate(prompt, max_tokens=max_tokens, stop=QUESTION_STOP_SEQUENCES)
        if not response.is_valid:
            return "", False

        question, is_valid = ResponseCleaner.clean_question(response.content)
        logger.debug(f"Cleaned question (valid={is_valid}): {question[:100] or 'EMPTY'}")
        return question, is_valid
