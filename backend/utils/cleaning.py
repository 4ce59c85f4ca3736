"""
Response cleaning utilities for LLM outputs.
Strips reasoning blocks and preambles so only the spoken question is left.
"""
import re
from typing import Optional, Tuple


class ResponseCleaner:
    """
    Cleans raw LLM completions into a single interviewer question.
    """

    # Leading chatter that models put before the actual question
    PREAMBLE_PATTERNS = [
        r"^\s*(?:sure|okay|ok|alright|certainly)[,!.]\s*",
        r"^\s*(?:here(?:'s| is) (?:a|the|my|your) (?:question|follow-up)[^:]*:)\s*",
        r"^\s*(?:question|interviewer|next question)\s*:\s*",
    ]

    QUESTION_WORDS = (
        'what', 'how', 'why', 'can', 'could', 'would', 'tell',
        'describe', 'explain', 'when', 'where', 'who', 'walk',
    )

    @classmethod
    def strip_reasoning(cls, text: str) -> str:
        """Remove <think> blocks, including an unterminated trailing one."""
        cleaned = re.sub(r'<think>.*?</think>', '', text, flags=re.DOTALL | re.IGNORECASE)
        cleaned = re.sub(r'<think>.*$', '', cleaned, flags=re.DOTALL | re.IGNORECASE)
        return re.sub(r'</?\s*think\s*>', '', cleaned, flags=re.IGNORECASE)

    @classmethod
    def strip_preamble(cls, text: str) -> str:
        cleaned = text
        for pattern in cls.PREAMBLE_PATTERNS:
            cleaned = re.sub(pattern, '', cleaned, flags=re.IGNORECASE)
        return cleaned

    @classmethod
    def extract_first_question(cls, text: str) -> Optional[str]:
        """Return the first sentence ending in '?' with at least three words."""
        for match in re.findall(r'[^.!?\n]*\?', text):
            match = match.strip()
            if len(match.split()) >= 3:
                return match
        return None

    @classmethod
    def clean_question(cls, text: str) -> Tuple[str, bool]:
        """
        Full cleaning pipeline for a generated question.

        Returns:
            Tuple of (cleaned_text, is_valid)
        """
        if not text:
            return "", False

        cleaned = cls.strip_preamble(cls.strip_reasoning(text))
        # Drop stage directions and markdown emphasis
        cleaned = re.sub(r'\([^)]*\)|\[[^\]]*\]|\*+', '', cleaned)
        cleaned = cleaned.strip().strip('"').strip()
        cleaned = re.sub(r'\s+', ' ', cleaned)

        if len(cleaned) > 300:
            question = cls.extract_first_question(cleaned)
            if not question:
                return "", False
            cleaned = question

        if len(cleaned) < 10:
            return "", False

        if not cleaned.endswith(('?', '!', '.')):
            cleaned += '?' if cleaned.lower().startswith(cls.QUESTION_WORDS) else '.'

        return cleaned, True
