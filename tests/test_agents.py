import asyncio
import time

import pytest

from interview.agents import InterviewerAgent, ScriptedInterviewer, build_question_generator
from llm.prompts import (
    DEFAULT_FOLLOW_UP,
    EMPTY_ANSWER_FOLLOW_UP,
    KEYWORD_FOLLOW_UPS,
    OPENING_QUESTION,
    Prompts,
    scripted_follow_up,
)


class StubLLM:
    def __init__(self, reply=("", False)):
        self.reply = reply
        self.prompts = []

    def generate_question(self, prompt):
        self.prompts.append(prompt)
        return self.reply


def test_scripted_opening_and_default():
    interviewer = ScriptedInterviewer()
    assert asyncio.run(interviewer.next_question(None)) == OPENING_QUESTION
    assert asyncio.run(interviewer.next_question("I wrote some code.")) == DEFAULT_FOLLOW_UP


def test_teamwork_keyword_follow_up():
    question = scripted_follow_up("Teamwork was key on that project.")
    assert question == KEYWORD_FOLLOW_UPS[0][1]
    assert "disagreements within the team" in question


@pytest.mark.parametrize("answer, expected", [
    ("We had a hard deadline.", KEYWORD_FOLLOW_UPS[1][1]),
    ("I debugged a memory leak.", KEYWORD_FOLLOW_UPS[2][1]),
    ("The database schema was a mess.", KEYWORD_FOLLOW_UPS[3][1]),
    ("I led the migration.", KEYWORD_FOLLOW_UPS[4][1]),
])
def test_keyword_routing(answer, expected):
    assert scripted_follow_up(answer) == expected


def test_keywords_match_word_starts_only():
    # "handled" contains "led" but is not a leadership answer
    assert scripted_follow_up("I handled it myself.") == DEFAULT_FOLLOW_UP


def test_empty_answer_asks_to_repeat():
    assert scripted_follow_up("   ") == EMPTY_ANSWER_FOLLOW_UP


def test_agent_uses_llm_question():
    llm = StubLLM(("What drove that architecture choice?", True))
    agent = InterviewerAgent(llm=llm, job_role="Data Engineer")

    question = asyncio.run(agent.next_question("I built an ingestion pipeline."))

    assert question == "What drove that architecture choice?"
    assert "Data Engineer" in llm.prompts[0]
    assert "I built an ingestion pipeline." in llm.prompts[0]


def test_agent_falls_back_when_llm_fails():
    agent = InterviewerAgent(llm=StubLLM(("", False)), job_role="Backend Developer")
    assert asyncio.run(agent.next_question(None)) == OPENING_QUESTION
    assert asyncio.run(agent.next_question("Our team shipped weekly.")) == KEYWORD_FOLLOW_UPS[0][1]


def test_prompts_mention_role():
    assert "Backend Developer" in Prompts.opening_question("Backend Developer")
    assert "(the candidate did not say anything)" in Prompts.follow_up_question("QA", "")


def test_build_question_generator():
    assert isinstance(build_question_generator("scripted"), ScriptedInterviewer)
    assert isinstance(build_question_generator("LLM"), InterviewerAgent)
    with pytest.raises(ValueError):
        build_question_generator("oracle")


@pytest.mark.parametrize("answer", [
    "We moved from MySQL to PostgreSQL.",
    "Our NoSQL store could not keep up.",
    "I rewrote the slow queries.",
])
def test_database_answers_match_engine_names(answer):
    assert scripted_follow_up(answer) == KEYWORD_FOLLOW_UPS[3][1]


def test_ledger_is_not_leadership():
    assert scripted_follow_up("I reconciled the ledger every month.") == DEFAULT_FOLLOW_UP


class BlockingLLM:
    def generate_question(self, prompt):
        time.sleep(0.3)
        return "What would you do with more time?", True


def test_agent_falls_back_when_llm_is_too_slow():
    agent = InterviewerAgent(llm=BlockingLLM(), budget=0.05)
    assert asyncio.run(agent.next_question("We shipped under a tight deadline.")) == KEYWORD_FOLLOW_UPS[1][1]
