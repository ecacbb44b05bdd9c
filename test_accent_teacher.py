#!/usr/bin/env python3
"""Tests for the terminal front-end.

Covers command dispatch in handle_line (with fake engines), event rendering
and orchestrator wiring from config. No API key, audio device or model is
needed.

Run: python3 test_accent_teacher.py
"""

import asyncio
import contextlib
import io
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from accent_teacher import HELP_TEXT, build_orchestrator, handle_line, render_event
from config import DEFAULT_CONFIG
from event_bus import BusEvent, EventType
from gemini_client import ApiResult, GeminiClient
from orchestrator import NO_USER_TURN_MESSAGE, DialogueOrchestrator
from prompts import GREETING, ROLE_PLAY_PROMPT, VOCAB_REQUEST, vocabulary_prompt
from session_state import Trigger
from speech_input import SpeechInputController, WhisperRecognitionEngine
from speech_output import PiperSynthesisEngine, SpeechOutputQueue

PASSED = 0
FAILED = 0
ERRORS = []


def case(name):
    def decorator(fn):
        fn._test_name = name
        return fn
    return decorator


def run_test(fn):
    global PASSED, FAILED
    name = getattr(fn, '_test_name', fn.__name__)
    try:
        fn()
        PASSED += 1
        print(f"  PASS: {name}")
    except AssertionError as e:
        FAILED += 1
        ERRORS.append((name, str(e)))
        print(f"  FAIL: {name} -- {e}")
    except Exception as e:
        FAILED += 1
        ERRORS.append((name, f"{type(e).__name__}: {e}"))
        print(f"  ERROR: {name} -- {type(e).__name__}: {e}")


class GatedApiClient:
    """Answers every prompt with the same reply, optionally held until gate is set."""

    def __init__(self, reply="Splendid."):
        self.reply = reply
        self.gate = None
        self.prompts = []

    async def generate(self, history, prompt):
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        return ApiResult(ok=True, text=self.reply)


class SilentSynthesisEngine:
    def __init__(self):
        self.spoken = []

    def get_voices(self):
        return []

    async def speak(self, utterance, on_start):
        on_start()
        self.spoken.append(utterance.text)
        await asyncio.sleep(0)

    def cancel(self):
        pass

    def close(self):
        pass


def make_orchestrator(api=None):
    api = api or GatedApiClient()
    synth = SilentSynthesisEngine()
    speech_output = SpeechOutputQueue(synth, initial_delay=0, chunk_delay=0)
    return DialogueOrchestrator(api, speech_output, None), api, synth


def texts(orchestrator):
    return [t.text for t in orchestrator.conversation]


def captured(coro):
    """Run coro and return (result, printed output)."""
    out = io.StringIO()
    with contextlib.redirect_stdout(out):
        result = asyncio.run(coro)
    return result, out.getvalue()


@case("A typed line returns at once; /clear works while the reply loads")
def test_clear_while_loading():
    async def scenario():
        orch, api, synth = make_orchestrator()
        api.gate = asyncio.Event()
        assert await handle_line(orch, "Good morning") is True
        await asyncio.sleep(0.01)
        assert orch.loading
        assert texts(orch) == [GREETING, "Good morning"]

        assert await handle_line(orch, "/clear") is True
        assert not orch.loading
        assert texts(orch) == [GREETING]

        api.gate.set()
        await orch.drain()
        assert texts(orch) == [GREETING]
        assert synth.spoken == []
        assert orch.is_enabled(Trigger.SEND_TEXT)

    asyncio.run(scenario())


@case("A typed line is answered and read aloud")
def test_send_line():
    async def scenario():
        orch, api, synth = make_orchestrator()
        await handle_line(orch, "Good morning")
        await orch.drain()
        assert api.prompts == ["Good morning"]
        assert texts(orch) == [GREETING, "Good morning", "Splendid."]
        assert synth.spoken == ["Splendid."]

    asyncio.run(scenario())


@case("/vocab asks for a topic, the next line fills the template")
def test_vocab_command():
    async def scenario():
        orch, api, _ = make_orchestrator()
        await handle_line(orch, "/vocab")
        assert VOCAB_REQUEST in texts(orch)
        await handle_line(orch, "the weather")
        await orch.drain()
        assert api.prompts == [vocabulary_prompt("the weather")]

    asyncio.run(scenario())


@case("/roleplay sends the role-play instruction in the background")
def test_roleplay_command():
    async def scenario():
        orch, api, _ = make_orchestrator()
        api.gate = asyncio.Event()
        await handle_line(orch, "/roleplay")
        await asyncio.sleep(0.01)
        assert orch.loading
        api.gate.set()
        await orch.drain()
        assert api.prompts == [ROLE_PLAY_PROMPT]

    asyncio.run(scenario())


@case("/tips with nothing said yet leaves an advisory")
def test_tips_command():
    async def scenario():
        orch, api, _ = make_orchestrator()
        await handle_line(orch, "/tips")
        await orch.drain()
        assert orch.advisory.message == NO_USER_TURN_MESSAGE
        assert api.prompts == []

    asyncio.run(scenario())


@case("/quit and /exit end the loop; /help and unknown commands print")
def test_plain_commands():
    orch, api, _ = make_orchestrator()
    assert asyncio.run(handle_line(orch, "/quit")) is False
    assert asyncio.run(handle_line(orch, "  /exit ")) is False

    keep_going, out = captured(handle_line(orch, "/help"))
    assert keep_going is True
    assert HELP_TEXT in out

    keep_going, out = captured(handle_line(orch, "/dance"))
    assert keep_going is True
    assert "Unknown command /dance" in out
    assert api.prompts == []


@case("/listen without voice input is a device advisory")
def test_listen_without_voice():
    async def scenario():
        orch, _, _ = make_orchestrator()
        assert await handle_line(orch, "/listen") is True
        assert orch.advisory is not None
        assert not orch.listening

    asyncio.run(scenario())


@case("Turns, advisories and activity are rendered for the user")
def test_render_event():
    def render(event_type, **payload):
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            render_event(BusEvent(0.0, "test", event_type.value, "sid", **payload))
        return out.getvalue()

    assert render(EventType.TURN, role="user", text="Hello", kind="content") == "You: Hello\n"
    assert render(EventType.TURN, role="model", text="Hi", kind="content") == "Teacher: Hi\n"
    assert render(EventType.TURN, role="user", text="Listening...", kind="placeholder") == \
        "  (Listening...)\n"
    assert render(EventType.ADVISORY, kind="network", message="Offline") == "! Offline\n"
    assert render(EventType.STATUS, activity="loading") == "  [loading]\n"
    assert render(EventType.STATUS, activity="idle") == ""
    assert render(EventType.CLEAR, epoch=1) == "Conversation cleared.\n"
    assert render(EventType.LLM_SEND, prompt="x", history=0) == ""


@case("build_orchestrator wires engines from config")
def test_build_orchestrator():
    async def scenario():
        config = dict(DEFAULT_CONFIG, voices_dir="/nonexistent", locale="en-GB")
        orch = build_orchestrator(config, "test-key")
        assert isinstance(orch.api_client, GeminiClient)
        assert orch.api_client.model == config["model"]
        assert isinstance(orch.speech_output.engine, PiperSynthesisEngine)
        assert orch.speech_output.max_len == config["max_utterance_length"]
        assert isinstance(orch.speech_input, SpeechInputController)
        assert isinstance(orch.speech_input.engine, WhisperRecognitionEngine)
        await orch.api_client.aclose()

        text_only = build_orchestrator(config, "test-key", text_only=True)
        assert text_only.speech_input is None
        assert not text_only.is_enabled(Trigger.START_LISTENING)
        await text_only.api_client.aclose()

    asyncio.run(scenario())


if __name__ == "__main__":
    print("=" * 60)
    print("Accent Teacher Front-end Tests")
    print("=" * 60)

    tests = [
        obj for name, obj in sorted(globals().items())
        if callable(obj) and hasattr(obj, '_test_name')
    ]

    print(f"\nRunning {len(tests)} tests...\n")

    for fn in tests:
        run_test(fn)

    print(f"\n{'=' * 60}")
    print(f"Results: {PASSED} passed, {FAILED} failed out of {PASSED + FAILED}")

    if ERRORS:
        print("\nFailures:")
        for name, err in ERRORS:
            print(f"  - {name}: {err}")

    print("=" * 60)
    sys.exit(0 if FAILED == 0 else 1)
