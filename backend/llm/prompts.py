"""
Prompt templates and scripted questions for the video interviewer.
Each prompt is designed to:
1. Produce exactly one spoken question
2. Keep the model in the interviewer role
3. Avoid leaking reasoning into the output
"""
import re
from typing import List, Optional, Tuple


class Prompts:
    """Collection of interviewer prompts."""

    # ============================================================
    # OPENING QUESTION
    # ============================================================

    @staticmethod
    def opening_question(job_role: str) -> str:
        """Prompt for the first question of the interview."""
        return f"""You are an expert technical interviewer conducting a video interview for a {job_role} position.
Your tone is professional, encouraging, and conversational.

CRITICAL RULES:
1. You ASK questions only. Never answer them.
2. Do NOT include any thinking or reasoning.
3. Do NOT ask a generic "tell me about yourself".

YOUR TASK: Greet the candidate briefly and ask ONE open-ended question about
a project or experience that is relevant to the role.

Example: "Hi, thanks for joining me today. Could you walk me through a challenging project you worked on and what made it difficult?"

Respond with ONLY the question text:"""

    # ============================================================
    # FOLLOW-UP QUESTION
    # ============================================================

    @staticmethod
    def follow_up_question(job_role: str, last_answer: str) -> str:
        """Prompt for a follow-up built on the candidate's last answer only."""
        answer = last_answer.strip() or "(the candidate did not say anything)"
        return f"""You are an expert technical interviewer continuing a video interview for a {job_role} position.
Your tone is professional and inquisitive.

CANDIDATE'S LAST ANSWER:
\"\"\"{answer}\"\"\"

CRITICAL RULES:
1. Ask ONE relevant follow-up question.
2. If the answer was strong, probe deeper into a technical detail they mentioned.
3. If the answer was weak or vague, ask a clarifying question.
4. Keep it concise. No thinking or reasoning in the response.

Example: "That's interesting. You mentioned using AES-256. What was your reasoning for choosing it over other options?"

Respond with ONLY the question text:"""


# ============================================================
# SCRIPTED QUESTIONS (used when the LLM is off or fails)
# ============================================================

OPENING_QUESTION = "Tell me about a challenging project you've worked on and what made it so."

DEFAULT_FOLLOW_UP = "Thank you for sharing. What was the most important lesson you learned from that experience?"

EMPTY_ANSWER_FOLLOW_UP = "I didn't quite catch that. Could you walk me through your answer again in a bit more detail?"

# Regex fragments anchored at a word start; the first matching group wins
KEYWORD_FOLLOW_UPS: List[Tuple[Tuple[str, ...], str]] = [
    (
        ("teamwork", "team", "colleague", "collaborat"),
        "That's interesting. Can you elaborate on how you handled disagreements within the team during that project?",
    ),
    (
        ("deadline", "pressure", "urgent"),
        "How did you prioritize your work to meet that deadline, and what would you do differently next time?",
    ),
    (
        ("bug", "debug", "outage", "incident"),
        "Walk me through how you tracked down the root cause. What tools or techniques did you rely on?",
    ),
    (
        ("database", r"\w*sql", "postgres", "quer", "schema"),
        "What trade-offs did you consider when designing the data model for that system?",
    ),
    (
        (r"led\b", "lead", "mentor", "manag"),
        "How did you keep the people you were leading aligned, and how did you measure success?",
    ),
]


def scripted_follow_up(last_answer: Optional[str]) -> str:
    """Pick a follow-up question by scanning the answer for keywords."""
    if last_answer is None:
        return OPENING_QUESTION

    text = last_answer.lower()
    if not text.strip():
        return EMPTY_ANSWER_FOLLOW_UP

    for keywords, question in KEYWORD_FOLLOW_UPS:
        if any(re.search(rf"\b{keyword}", text) for keyword in keywords):
            return question
    return DEFAULT_FOLLOW_UP
