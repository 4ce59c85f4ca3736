"""
Question generators for the live interview.

The controller only sees `await generator.next_question(prior_answer)`:
None asks for an opening question, anything else (possibly an empty string)
is the candidate's most recent finalized answer. Generators keep no memory
between turns.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from llm.client import LLMClient
from llm.prompts import Prompts, OPENING_QUESTION, scripted_follow_up
from utils.config import config

logger = logging.getLogger(__name__)


class QuestionGenerator(ABC):
    """Produces the next interview question."""

    @abstractmethod
    async def next_question(self, prior_answer: Optional[str]) -> str:
        ...


class ScriptedInterviewer(QuestionGenerator):
    """
    Fixed opening question plus keyword-routed follow-ups.
    Used when no LLM is configured and as the LLM fallback.
    """

    async def next_question(self, prior_answer: Optional[str]) -> str:
        if prior_answer is None:
            return OPENING_QUESTION
        return scripted_follow_up(prior_answer)


class InterviewerAgent(QuestionGenerator):
    """
    Generates interview questions with the LLM.
    Falls back to scripted questions whenever the LLM reply is unusable.
    """

    def __init__(
        self,
        llm: Optional[LLMClient] = None,
        job_role: Optional[str] = None,
        fallback: Optional[QuestionGenerator] = None,
        budget: Optional[float] = None,
    ):
        self.llm = llm or LLMClient()
        self.job_role = job_role or config.interview.default_job_role
        self.fallback = fallback or ScriptedInterviewer()
        self.budget = budget if budget is not None else config.interview.llm_budget

    async def next_question(self, prior_answer: Optional[str]) -> str:
        """
        Generate the next interview question.

        Args:
            prior_answer: None for the opening question, else the last answer

        Returns:
            The question text
        """
        if prior_answer is None:
            logger.info(f"Generating opening question for {self.job_role}")
            prompt = Prompts.opening_question(self.job_role)
        else:
            logger.info(f"Generating follow-up for answer: \"{prior_answer[:50]}...\"")
            prompt = Prompts.follow_up_question(self.job_role, prior_answer)

        # requests is blocking; keep it off the event loop
        try:
            question, is_valid = await asyncio.wait_for(
                asyncio.to_thread(self.llm.generate_question, prompt),
                timeout=self.budget,
            )
        except asyncio.TimeoutError:
            logger.warning(f"LLM gave no question within {self.budget}s, using scripted fallback")
            return await self.fallback.next_question(prior_answer)

        if not is_valid or not question:
            logger.warning("LLM returned no usable question, using scripted fallback")
            return await self.fallback.next_question(prior_answer)

        logger.info(f"LLM generated question: {question[:80]}...")
        return question


def build_question_generator(source: Optional[str] = None) -> QuestionGenerator:
    """Create the generator selected by INTERVIEW_QUESTION_SOURCE."""
    source = (source or config.interview.question_source).lower()
    if source == "scripted":
        return ScriptedInterviewer()
    if source == "llm":
        return InterviewerAgent()
    raise ValueError(f"Unknown question source: {source!r}")
