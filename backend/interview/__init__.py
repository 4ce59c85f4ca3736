# Interview module
from .state import InterviewSession, InterviewStateMachine
from .store import SessionStore
from .agents import QuestionGenerator, InterviewerAgent, ScriptedInterviewer, build_question_generator
from .controller import InterviewController
