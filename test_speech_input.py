#!/usr/bin/env python3
"""Tests for SpeechInputController and the Whisper hallucination filter.

Uses a fake recognition engine, so no microphone or Whisper model is needed.

Run: python3 test_speech_input.py
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from errors import OperationUnavailable, RecognitionError, RecognitionUnavailable
from speech_input import (
    RecognitionOutcome,
    SpeechInputController,
    WhisperRecognitionEngine,
    is_hallucination,
)

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


class FakeRecognitionEngine:
    """Returns a scripted transcript, or raises, once stop is requested or immediately."""

    def __init__(self, transcript=None, error=None, wait_for_stop=False):
        self.transcript = transcript
        self.error = error
        self.wait_for_stop = wait_for_stop
        self.locales = []

    async def listen_once(self, locale, stop_event):
        self.locales.append(locale)
        if self.wait_for_stop:
            await stop_event.wait()
        else:
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.transcript


def run_session(engine, stop=False):
    """Run one session to completion and return (controller, outcomes)."""
    outcomes = []

    async def scenario():
        controller = SpeechInputController(engine, locale="en-GB", on_outcome=outcomes.append)
        session_id = controller.start()
        assert controller.listening
        if stop:
            controller.stop()
        await controller.task
        assert not controller.listening
        assert [o.session_id for o in outcomes] == [session_id]
        return controller

    return asyncio.run(scenario()), outcomes


@case("Final transcript is delivered once, trimmed")
def test_transcript():
    engine = FakeRecognitionEngine(transcript="  Good morning  ")
    _, outcomes = run_session(engine)
    assert outcomes[0].outcome is RecognitionOutcome.TRANSCRIPT
    assert outcomes[0].text == "Good morning"
    assert engine.locales == ["en-GB"]


@case("No speech yields a no-speech outcome")
def test_no_speech():
    for transcript in (None, "", "   "):
        _, outcomes = run_session(FakeRecognitionEngine(transcript=transcript))
        assert outcomes[0].outcome is RecognitionOutcome.NO_SPEECH, transcript


@case("Device problems are reported as device errors")
def test_device_error():
    engine = FakeRecognitionEngine(error=RecognitionUnavailable("microphone permission denied"))
    _, outcomes = run_session(engine)
    assert outcomes[0].outcome is RecognitionOutcome.ERROR
    assert outcomes[0].device_error
    assert "permission denied" in outcomes[0].error


@case("Engine failures are reported as errors")
def test_engine_error():
    for error in (RecognitionError("decoder crashed"), RuntimeError("unexpected")):
        _, outcomes = run_session(FakeRecognitionEngine(error=error))
        assert outcomes[0].outcome is RecognitionOutcome.ERROR
        assert not outcomes[0].device_error


@case("stop() ends the session early but the outcome still arrives")
def test_stop():
    engine = FakeRecognitionEngine(transcript="cut short", wait_for_stop=True)
    _, outcomes = run_session(engine, stop=True)
    assert outcomes[0].text == "cut short"


@case("A second start while listening is rejected")
def test_double_start():
    async def scenario():
        controller = SpeechInputController(FakeRecognitionEngine(wait_for_stop=True))
        first = controller.start()
        try:
            controller.start()
            raise AssertionError("Expected OperationUnavailable")
        except OperationUnavailable:
            pass
        controller.stop()
        await controller.task
        second = controller.start()
        assert second == first + 1
        controller.stop()
        await controller.task

    asyncio.run(scenario())


@case("stop() with no session is harmless")
def test_stop_idle():
    controller = SpeechInputController(FakeRecognitionEngine())
    controller.stop()
    assert not controller.listening


@case("Hallucination filter")
def test_hallucination_filter():
    assert is_hallucination("...")
    assert is_hallucination("Thank you.", no_speech_prob=0.5)
    assert not is_hallucination("Thank you.", no_speech_prob=0.05)
    assert is_hallucination("the the the the")
    assert not is_hallucination("I would like a cup of tea, please.")


@case("Whisper transcription drops low-confidence segments")
def test_whisper_transcribe():
    class FakeModel:
        def __init__(self, result):
            self.result = result
            self.calls = []

        def transcribe(self, audio, **kwargs):
            self.calls.append(kwargs)
            return self.result

    pcm = b"\x00\x10" * 16000
    model = FakeModel({"segments": [
        {"text": " Good morning.", "no_speech_prob": 0.1},
        {"text": " Thanks for watching!", "no_speech_prob": 0.9},
    ]})
    engine = WhisperRecognitionEngine(whisper_model=model)
    assert engine._transcribe(pcm, "en") == "Good morning."
    assert model.calls[0]["language"] == "en"

    engine = WhisperRecognitionEngine(whisper_model=FakeModel({"segments": [
        {"text": " you", "no_speech_prob": 0.7},
    ]}))
    assert engine._transcribe(pcm, "en") is None


if __name__ == "__main__":
    print("=" * 60)
    print("Speech Input Tests")
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
