"""End-to-end turn-taking through InterviewController with fake collaborators."""
import asyncio
import time

from models.schemas import InterviewState
from interview.agents import InterviewerAgent, QuestionGenerator, ScriptedInterviewer
from utils.config import config
from llm.prompts import OPENING_QUESTION, KEYWORD_FOLLOW_UPS

from conftest import Harness, RecordingGenerator

TEAMWORK_FOLLOW_UP = KEYWORD_FOLLOW_UPS[0][1]


def test_start_sends_opening_question():
    async def scenario():
        h = Harness(generator=ScriptedInterviewer())
        await h.start()

        assert h.messages == [
            {"event": "new-question", "data": {"question": OPENING_QUESTION, "questionNumber": 1}}
        ]
        assert h.controller.state == InterviewState.AWAITING_ANSWER
        assert h.controller.session.question_count == 1
        await h.close()

    asyncio.run(scenario())


def test_start_before_join_is_ignored():
    async def scenario():
        h = Harness()
        h.controller.start_interview()
        await h.idle()

        assert h.sent == []
        assert h.generator.prior_answers == []
        assert h.controller.state is None
        await h.close()

    asyncio.run(scenario())


def test_full_answer_cycle_with_keyword_follow_up():
    async def scenario():
        h = Harness(generator=ScriptedInterviewer())
        await h.start()

        transcriber = await h.open_transcriber()
        assert transcriber.is_ready
        # The frame that opened the stream is not forwarded
        assert transcriber.chunks == []

        h.controller.audio_frame(b"chunk-1")
        h.controller.audio_frame(b"chunk-2")
        await h.idle()
        assert transcriber.chunks == [b"chunk-1", b"chunk-2"]

        transcriber.callbacks.on_fragment("I worked", False)
        transcriber.callbacks.on_fragment("I worked closely with my team.", True)
        await h.idle()
        assert h.events("live-transcript") == ["I worked", "I worked closely with my team."]

        transcriber.callbacks.on_utterance_end()
        await h.idle()

        assert transcriber.finish_calls == 1
        assert h.controller.transcriber is None
        assert h.events("new-question")[-1] == {"question": TEAMWORK_FOLLOW_UP, "questionNumber": 2}
        assert h.controller.session.accumulated_transcript == ""
        await h.close()

    asyncio.run(scenario())


def test_only_final_fragments_reach_the_answer():
    async def scenario():
        h = Harness()
        await h.start()

        transcriber = await h.open_transcriber()
        transcriber.callbacks.on_fragment("Hel", False)
        transcriber.callbacks.on_fragment("Hello there.", True)
        transcriber.callbacks.on_fragment("Second", False)
        transcriber.callbacks.on_fragment("Second sentence.", True)
        transcriber.callbacks.on_utterance_end()
        await h.idle()

        assert h.generator.prior_answers == [None, "Hello there. Second sentence."]
        await h.close()

    asyncio.run(scenario())


def test_interview_finishes_after_max_questions():
    async def scenario():
        h = Harness(max_questions=2)
        await h.start()
        await h.answer("First answer.")
        await h.answer("Second answer.")

        numbers = [q["questionNumber"] for q in h.events("new-question")]
        assert numbers == [1, 2]
        assert h.messages[-1] == {"event": "interview-finished", "data": {"reason": "completed"}}
        assert "conn-1" not in h.store
        assert h.controller.state == InterviewState.FINISHED
        assert all(t.finish_calls == 1 for t in h.transcribers)
        await h.close()

    asyncio.run(scenario())


def test_question_numbers_increase_by_one():
    async def scenario():
        h = Harness(max_questions=5)
        await h.start()
        for n in range(3):
            await h.answer(f"Answer {n}.")

        assert [q["questionNumber"] for q in h.events("new-question")] == [1, 2, 3, 4]
        assert h.controller.session.question_count == 4
        await h.close()

    asyncio.run(scenario())


def test_audio_outside_answer_window_is_dropped():
    async def scenario():
        h = Harness()
        h.controller.join("app-1")
        h.controller.audio_frame(b"too early")
        await h.idle()

        assert h.transcribers == []
        assert h.controller.state == InterviewState.IDLE
        await h.close()

    asyncio.run(scenario())


def test_end_answer_uses_client_transcript():
    async def scenario():
        h = Harness()
        await h.start()
        transcriber = await h.open_transcriber()
        transcriber.callbacks.on_fragment("partial words", True)
        await h.idle()

        h.controller.end_answer("The full answer typed by the client.")
        await h.idle()

        assert transcriber.finish_calls == 1
        assert h.generator.prior_answers[-1] == "The full answer typed by the client."
        assert h.events("new-question")[-1]["questionNumber"] == 2
        await h.close()

    asyncio.run(scenario())


def test_end_answer_without_audio_submits_empty_answer():
    async def scenario():
        h = Harness()
        await h.start()
        h.controller.end_answer()
        await h.idle()

        assert h.transcribers == []
        assert h.generator.prior_answers == [None, ""]
        await h.close()

    asyncio.run(scenario())


def test_disconnect_mid_answer_releases_transcriber():
    async def scenario():
        h = Harness()
        await h.start()
        transcriber = await h.open_transcriber()
        before = len(h.sent)

        await h.close()
        # Late provider events after teardown go nowhere
        transcriber.callbacks.on_fragment("late words", True)
        transcriber.callbacks.on_utterance_end()

        assert transcriber.finish_calls == 1
        assert len(h.store) == 0
        assert len(h.sent) == before
        assert h.runner.done()

    asyncio.run(scenario())


def test_disconnect_twice_is_harmless():
    async def scenario():
        h = Harness()
        await h.start()
        transcriber = await h.open_transcriber()

        await h.controller.disconnect()
        await h.controller.disconnect()
        await h.runner

        assert transcriber.finish_calls == 1
        assert len(h.store) == 0

    asyncio.run(scenario())


def test_disconnect_without_join_is_a_no_op():
    async def scenario():
        h = Harness()
        await h.close()
        assert h.sent == []
        assert len(h.store) == 0

    asyncio.run(scenario())


def test_join_again_overwrites_session():
    async def scenario():
        h = Harness()
        await h.start("app-1")
        transcriber = await h.open_transcriber()

        h.controller.join("app-2")
        await h.idle()

        session = h.controller.session
        assert session.application_id == "app-2"
        assert session.state == InterviewState.IDLE
        assert session.question_count == 0
        assert transcriber.finish_calls == 1
        await h.close()

    asyncio.run(scenario())


def test_stale_transcriber_events_are_ignored():
    async def scenario():
        h = Harness()
        await h.start()
        first = await h.answer("First answer.")
        sent_before = len(h.sent)

        first.callbacks.on_fragment("ghost words", True)
        first.callbacks.on_utterance_end()
        await h.idle()

        assert len(h.sent) == sent_before
        assert h.controller.session.question_count == 2
        assert h.controller.session.accumulated_transcript == ""
        await h.close()

    asyncio.run(scenario())


def test_transcriber_failure_reports_and_recovers():
    async def scenario():
        h = Harness(fail_connect=True)
        await h.start()
        h.controller.audio_frame(b"first")
        await h.idle()

        assert h.events("transcription-error") == ["provider refused the stream"]
        assert h.controller.state == InterviewState.AWAITING_ANSWER
        assert h.controller.transcriber is None

        # Next frame opens a fresh handle
        h.fail_connect = False
        h.controller.audio_frame(b"again")
        await h.idle()
        assert len(h.transcribers) == 2
        assert h.transcribers[1].is_ready
        await h.close()

    asyncio.run(scenario())


def test_transcriber_factory_error_is_reported():
    def broken_factory(callbacks):
        raise ValueError("DEEPGRAM_API_KEY is required for live transcription")

    async def scenario():
        h = Harness(factory=broken_factory)
        await h.start()
        h.controller.audio_frame(b"first")
        await h.idle()

        assert h.events("transcription-error") == ["DEEPGRAM_API_KEY is required for live transcription"]
        assert h.controller.state == InterviewState.AWAITING_ANSWER
        await h.close()

    asyncio.run(scenario())


def test_provider_error_mid_stream_keeps_interview_going():
    async def scenario():
        h = Harness()
        await h.start()
        transcriber = await h.open_transcriber()
        transcriber.callbacks.on_fragment("Some words.", True)
        transcriber.callbacks.on_error("socket reset")
        await h.idle()

        assert h.events("transcription-error") == ["socket reset"]
        assert transcriber.finish_calls == 1
        assert h.controller.state == InterviewState.AWAITING_ANSWER
        # Finalized text survives the reconnect
        assert h.controller.session.accumulated_transcript == "Some words. "
        await h.close()

    asyncio.run(scenario())


class SlowGenerator(QuestionGenerator):
    async def next_question(self, prior_answer):
        await asyncio.sleep(60)
        return "never"


class FlakyGenerator(QuestionGenerator):
    def __init__(self):
        self.calls = 0

    async def next_question(self, prior_answer):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("model overloaded")
        return "What did you learn from it?"


def test_question_timeout_finishes_with_error():
    async def scenario():
        h = Harness(generator=SlowGenerator(), question_timeout=0.01, question_retries=1)
        await h.start()

        assert h.messages == [{"event": "interview-finished", "data": {"reason": "error"}}]
        assert len(h.store) == 0
        assert h.controller.state == InterviewState.FINISHED
        await h.close()

    asyncio.run(scenario())


def test_question_generation_retries_once():
    async def scenario():
        generator = FlakyGenerator()
        h = Harness(generator=generator, question_retries=1)
        await h.start()

        assert generator.calls == 2
        assert h.events("new-question") == [{"question": "What did you learn from it?", "questionNumber": 1}]
        await h.close()

    asyncio.run(scenario())


def test_disconnect_while_question_pending_cancels_it():
    async def scenario():
        h = Harness(generator=SlowGenerator(), question_timeout=30)
        h.controller.join("app-1")
        h.controller.start_interview()
        await asyncio.sleep(0.01)
        assert h.controller.state == InterviewState.STARTING

        await h.close()
        assert h.sent == []
        assert len(h.store) == 0

    asyncio.run(scenario())


def test_controller_without_runner_handles_disconnect_directly():
    async def scenario():
        h = Harness()
        h.runner.cancel()
        await asyncio.gather(h.runner, return_exceptions=True)

        await h.controller.disconnect()
        assert len(h.store) == 0

    asyncio.run(scenario())


def test_recording_generator_sees_opening_request():
    async def scenario():
        generator = RecordingGenerator()
        h = Harness(generator=generator)
        await h.start()
        assert generator.prior_answers == [None]
        assert h.events("new-question") == [{"question": "Question 1?", "questionNumber": 1}]
        await h.close()

    asyncio.run(scenario())


def test_audio_before_join_is_silent():
    async def scenario():
        h = Harness()
        h.controller.audio_frame(b"orphan")
        await h.idle()

        assert h.transcribers == []
        assert h.sent == []
        assert len(h.store) == 0
        await h.close()

    asyncio.run(scenario())


def test_audio_after_disconnect_is_a_no_op():
    async def scenario():
        h = Harness()
        await h.start()
        await h.open_transcriber()
        await h.close()

        h.controller.audio_frame(b"stray")
        assert len(h.transcribers) == 1
        assert len(h.store) == 0

    asyncio.run(scenario())


def test_default_interview_runs_five_questions():
    async def scenario():
        h = Harness()
        assert h.controller.machine.max_questions == config.interview.max_questions == 5

        await h.start()
        for n in range(5):
            await h.answer(f"Answer {n + 1}.")

        assert [q["questionNumber"] for q in h.events("new-question")] == [1, 2, 3, 4, 5]
        assert h.messages[-1] == {"event": "interview-finished", "data": {"reason": "completed"}}
        assert len(h.store) == 0
        assert h.controller.state == InterviewState.FINISHED
        # The fifth answer is never sent for a sixth question
        assert len(h.generator.prior_answers) == 5
        await h.close()

    asyncio.run(scenario())


def test_interim_text_is_echoed_but_not_kept():
    async def scenario():
        h = Harness()
        await h.start()
        transcriber = await h.open_transcriber()
        transcriber.callbacks.on_fragment("I worked", False)
        transcriber.callbacks.on_fragment("on a project.", True)
        transcriber.callbacks.on_utterance_end()
        await h.idle()

        assert h.events("live-transcript") == ["I worked", "on a project."]
        assert h.generator.prior_answers[-1] == "on a project."
        await h.close()

    asyncio.run(scenario())


def test_missing_transcriber_config_is_reported_once():
    def broken_factory(callbacks):
        raise ValueError("DEEPGRAM_API_KEY is required for live transcription")

    async def scenario():
        h = Harness(factory=broken_factory)
        await h.start()
        for _ in range(4):
            h.controller.audio_frame(b"frame")
            await h.idle()

        assert h.events("transcription-error") == ["DEEPGRAM_API_KEY is required for live transcription"]
        assert h.controller.state == InterviewState.AWAITING_ANSWER
        await h.close()

    asyncio.run(scenario())


class SlowLLM:
    """Blocks like a stalled llama.cpp server, then returns nothing usable."""

    def __init__(self, delay):
        self.delay = delay

    def generate_question(self, prompt):
        time.sleep(self.delay)
        return "", False


def test_slow_llm_falls_back_to_scripted_question():
    async def scenario():
        agent = InterviewerAgent(llm=SlowLLM(0.5), job_role="Backend Developer", budget=0.05)
        h = Harness(generator=agent, question_timeout=0.2, question_retries=1)
        await h.start()

        assert h.messages == [
            {"event": "new-question", "data": {"question": OPENING_QUESTION, "questionNumber": 1}}
        ]
        await h.close()

    asyncio.run(scenario())


def test_default_llm_timing_leaves_room_for_fallback():
    retries = config.llm.max_retries
    # Timed-out attempts back off 1s, 2s, ...
    llm_worst_case = config.llm.timeout * (retries + 1) + retries * (retries + 1) / 2
    assert llm_worst_case <= config.interview.llm_budget < config.interview.question_timeout
