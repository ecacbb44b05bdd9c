#!/usr/bin/env python3
"""
Accent Teacher - terminal front-end

Talk to an AI British accent teacher. Type a message and press Enter, or use
/listen to speak it. Replies are read aloud with a local Piper voice.
"""

import argparse
import asyncio
import logging
import sys
import time
import uuid
from pathlib import Path

from config import get_gemini_api_key, load_config
from event_bus import EventBus, EventType
from gemini_client import GeminiClient
from orchestrator import DialogueOrchestrator
from speech_input import SpeechInputController, WhisperRecognitionEngine
from speech_output import PiperSynthesisEngine, SpeechOutputQueue

log = logging.getLogger("accent_teacher")

HELP_TEXT = """Commands:
  <text>      Send a message to the teacher
  /listen     Speak your message instead of typing it
  /stop       Stop the teacher speaking
  /tips       Pronunciation tips for the last thing you said
  /vocab      British vocabulary and idioms for a topic
  /rephrase   Rephrase a sentence in British English
  /roleplay   Start a role-play scenario
  /clear      Start the conversation over
  /help       Show this help
  /quit       Exit"""


def render_event(evt):
    """Print bus events the user should see."""
    if evt.type == EventType.TURN.value:
        if evt.payload.get("kind") == "placeholder":
            print(f"  ({evt.payload['text']})", flush=True)
            return
        speaker = "You" if evt.payload["role"] == "user" else "Teacher"
        print(f"{speaker}: {evt.payload['text']}", flush=True)
    elif evt.type == EventType.ADVISORY.value:
        print(f"! {evt.payload['message']}", flush=True)
    elif evt.type == EventType.STATUS.value:
        activity = evt.payload["activity"]
        if activity != "idle":
            print(f"  [{activity}]", flush=True)
    elif evt.type == EventType.CLEAR.value:
        print("Conversation cleared.", flush=True)


def build_orchestrator(config: dict, api_key: str, text_only: bool = False,
                       bus: EventBus | None = None) -> DialogueOrchestrator:
    """Wire up the API client, speech engines and orchestrator from config."""
    api_client = GeminiClient(
        api_key,
        model=config["model"],
        base_url=config["api_base_url"],
        timeout=config["request_timeout"],
    )
    speech_output = SpeechOutputQueue(
        PiperSynthesisEngine(config["voices_dir"], piper_cmd=config["piper_cmd"]),
        locale=config["locale"],
        preferred_voice=config["preferred_voice"],
        max_len=config["max_utterance_length"],
        rate=config["speech_rate"],
        pitch=config["speech_pitch"],
        initial_delay=config["initial_speech_delay"],
        chunk_delay=config["inter_chunk_delay"],
    )
    speech_input = None
    if not text_only:
        speech_input = SpeechInputController(
            WhisperRecognitionEngine(config["whisper_model"], config["max_listen_seconds"]),
            locale=config["locale"],
        )
    return DialogueOrchestrator(api_client, speech_output, speech_input, bus=bus)


async def handle_line(orchestrator: DialogueOrchestrator, line: str) -> bool:
    """Dispatch one input line. Returns False when the user wants to quit.

    API round trips run in the background so the input loop stays free for
    /stop and /clear while a reply is loading.
    """
    command = line.strip()
    if command in ("/quit", "/exit"):
        return False
    if command == "/help":
        print(HELP_TEXT, flush=True)
    elif command == "/listen":
        orchestrator.start_listening()
    elif command == "/stop":
        orchestrator.stop_speaking()
    elif command == "/tips":
        orchestrator.spawn(orchestrator.request_pronunciation_tips())
    elif command == "/vocab":
        orchestrator.request_vocabulary()
    elif command == "/rephrase":
        orchestrator.request_rephrase()
    elif command == "/roleplay":
        orchestrator.spawn(orchestrator.request_role_play())
    elif command == "/clear":
        orchestrator.clear()
    elif command.startswith("/"):
        print(f"Unknown command {command}. Type /help for the list.", flush=True)
    else:
        orchestrator.spawn(orchestrator.send_text(line))
    return True


async def run(config: dict, api_key: str, text_only: bool = False):
    event_log = None
    if config["event_log_dir"]:
        event_log = Path(config["event_log_dir"]).expanduser() / f"{time.strftime('%Y%m%d-%H%M%S')}.jsonl"
    bus = EventBus("accent_teacher", uuid.uuid4().hex[:12], log_path=event_log)
    bus.on("*", render_event)

    orchestrator = build_orchestrator(config, api_key, text_only=text_only, bus=bus)
    bus.emit(EventType.SESSION_START, model=config["model"], locale=config["locale"],
             voice_input=not text_only)

    print(f"Teacher: {orchestrator.greeting}", flush=True)
    print("Type /help for commands.", flush=True)
    orchestrator.speech_output.speak(orchestrator.greeting)

    loop = asyncio.get_running_loop()
    try:
        while True:
            try:
                line = await loop.run_in_executor(None, input)
            except EOFError:
                break
            if not await handle_line(orchestrator, line):
                break
    finally:
        await orchestrator.close()
        await orchestrator.api_client.aclose()
        bus.close()


def main():
    parser = argparse.ArgumentParser(description="AI British accent teacher")
    parser.add_argument("--config", default=None, help="Path to config.json")
    parser.add_argument("--text-only", action="store_true", help="Disable voice input")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    config = load_config(args.config)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else getattr(logging, str(config["log_level"]).upper(), logging.WARNING),
        format="%(asctime)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    api_key = get_gemini_api_key()
    if not api_key:
        print("Error: set GEMINI_API_KEY (or GOOGLE_API_KEY) to use the teacher.",
              file=sys.stderr, flush=True)
        sys.exit(1)

    try:
        asyncio.run(run(config, api_key, text_only=args.text_only))
    except KeyboardInterrupt:
        print("\nShutting down...", flush=True)


if __name__ == "__main__":
    main()
