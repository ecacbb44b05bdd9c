"""
DialogueOrchestrator: the accent teacher's conversation state machine.

Mediates between the conversation log, the speech input controller, the
speech output queue and the Gemini client. Every trigger runs through a pure
transition in session_state, then the returned commands are carried out
here. Triggers never raise to the caller: a rejected or failed action leaves
an Advisory on the orchestrator and publishes it on the event bus.

Three independently timed sources feed it: recognition outcomes, API
replies and playback signals. Late signals are matched against what the
orchestrator still expects (recognition session id, conversation epoch,
playback id inside the output queue) and dropped when stale.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import session_state
from conversation_store import ConversationStore, Role, Turn, TurnKind
from errors import DialogueError, OperationUnavailable, RemoteError
from event_bus import EventBus, EventType
from gemini_client import CONNECTION_APOLOGY, ApiResult
from prompts import (
    GREETING,
    LISTENING_PLACEHOLDER,
    REPHRASE_ACK,
    REPHRASE_MARKER,
    REPHRASE_REQUEST,
    ROLE_PLAY_MARKER,
    ROLE_PLAY_PROMPT,
    VOCAB_ACK,
    VOCAB_MARKER,
    VOCAB_REQUEST,
    pronunciation_tips_marker,
    pronunciation_tips_prompt,
    rephrase_prompt,
    vocabulary_prompt,
)
from session_state import Command, Effect, FeatureMode, SessionState, Trigger
from speech_input import RecognitionOutcome, RecognitionResult

logger = logging.getLogger(__name__)

EMPTY_MESSAGE = "Please enter or speak a message to send."
NO_USER_TURN_MESSAGE = "Please speak or type a message first to get pronunciation tips."
NO_SPEECH_MESSAGE = "No speech was recognized. Please try speaking clearly."
NO_RECOGNITION_MESSAGE = "Speech recognition is not available. Please type your message instead."
RECOGNITION_START_MESSAGE = (
    "Failed to start speech recognition. Please check microphone permissions and try again."
)
NETWORK_MESSAGE = "Failed to get response from AI. Please check your network connection."

# Per feature: user-facing marker, spoken request, acknowledgement, prompt template
_FEATURES = {
    FeatureMode.AWAITING_VOCAB_TOPIC: (VOCAB_MARKER, VOCAB_REQUEST, VOCAB_ACK, vocabulary_prompt),
    FeatureMode.AWAITING_REPHRASE_TEXT: (REPHRASE_MARKER, REPHRASE_REQUEST, REPHRASE_ACK, rephrase_prompt),
}


class AdvisoryKind(Enum):
    RECOVERABLE_INPUT = "recoverable_input"
    DEVICE = "device"
    ENGINE = "engine"
    NETWORK = "network"


@dataclass(frozen=True)
class Advisory:
    """User-visible message describing the last rejected or failed action."""
    kind: AdvisoryKind
    message: str


class DialogueOrchestrator:
    """Top-level conversation state machine.

    Args:
        api_client: Object with `async generate(history, prompt) -> ApiResult`.
        speech_output: SpeechOutputQueue; its callbacks are taken over here.
        speech_input: SpeechInputController, or None when voice input is
            unavailable (listening is then always rejected).
        bus: EventBus to publish on. A private one is created if omitted.
        greeting: Model turn the conversation starts (and restarts) with.
    """

    def __init__(self, api_client, speech_output, speech_input=None,
                 bus: Optional[EventBus] = None, greeting: str = GREETING):
        self.api_client = api_client
        self.speech_output = speech_output
        self.speech_output.on_start = self._on_speech_start
        self.speech_output.on_end = self._on_speech_end
        self.speech_output.on_error = self._on_speech_error
        self.speech_input = speech_input
        if speech_input is not None:
            speech_input.on_outcome = self._on_recognition
        self.bus = bus or EventBus("orchestrator", uuid.uuid4().hex[:12])
        self.greeting = greeting

        self.conversation = ConversationStore([self._greeting_turn()])
        self.advisory: Optional[Advisory] = None
        self._state = SessionState()
        self._epoch = 0                          # Bumped by clear()
        self._listen_session: Optional[int] = None
        self._tasks: set[asyncio.Task] = set()

    # ── State ──────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def listening(self) -> bool:
        return self._state.listening

    @property
    def speaking(self) -> bool:
        return self._state.speaking

    @property
    def loading(self) -> bool:
        return self._state.loading

    @property
    def feature_mode(self) -> FeatureMode:
        return self._state.feature_mode

    def is_enabled(self, trigger: Trigger) -> bool:
        """Whether the UI should offer trigger right now."""
        if trigger is Trigger.START_LISTENING and self.speech_input is None:
            return False
        return session_state.is_enabled(self._state, trigger)

    def _greeting_turn(self) -> Turn:
        return Turn(Role.MODEL, self.greeting)

    def _set_state(self, new_state: SessionState) -> None:
        if new_state == self._state:
            return
        old, self._state = self._state, new_state
        logger.debug("State %s/%s -> %s/%s", old.activity.value, old.feature_mode.value,
                     new_state.activity.value, new_state.feature_mode.value)
        self.bus.emit(EventType.STATUS, activity=new_state.activity.value,
                      feature_mode=new_state.feature_mode.value)

    def _transition(self, fn, *args) -> list[Command]:
        """Apply a pure transition. Raises OperationUnavailable before any change."""
        new_state, commands = fn(self._state, *args)
        self._set_state(new_state)
        return commands

    # ── Side effects ───────────────────────────────────────────────

    def _execute(self, commands: list[Command]) -> list[Command]:
        """Carry out immediate effects in order; return API calls for the caller."""
        deferred = []
        for command in commands:
            effect = command.effect
            if effect is Effect.CANCEL_SPEECH:
                self.speech_output.stop()
            elif effect is Effect.STOP_RECOGNITION:
                self._listen_session = None
                if self.speech_input is not None:
                    self.speech_input.stop()
                self.conversation.remove_placeholders()
            elif effect is Effect.START_RECOGNITION:
                self._listen_session = self.speech_input.start()
                self.bus.emit(EventType.STT_START, session=self._listen_session)
            elif effect is Effect.SPEAK:
                self.speech_output.speak(command.payload)
            elif effect is Effect.RESET_CONVERSATION:
                self.conversation.replace_all([self._greeting_turn()])
            elif effect is Effect.CALL_API:
                deferred.append(command)
        return deferred

    def _append(self, turn: Turn) -> None:
        self.conversation.append(turn)
        self.bus.emit(EventType.TURN, role=turn.role.value, text=turn.text, kind=turn.kind.value)

    def _advise(self, kind: AdvisoryKind, message: str) -> None:
        self.advisory = Advisory(kind, message)
        if kind is AdvisoryKind.RECOVERABLE_INPUT:
            logger.info("Advisory: %s", message)
        else:
            logger.warning("Advisory (%s): %s", kind.value, message)
        self.bus.emit(EventType.ADVISORY, kind=kind.value, message=message)

    def _reject(self, error: OperationUnavailable) -> None:
        self._advise(AdvisoryKind.RECOVERABLE_INPUT, str(error))

    def spawn(self, coro) -> asyncio.Task:
        """Run coro in the background, keeping a strong reference until done."""
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for background work (recognition, voice submissions, playback) to settle."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            engines = [self.speech_output]
            if self.speech_input is not None:
                engines.append(self.speech_input)
            for engine in engines:
                if engine.task is not None and not engine.task.done():
                    pending.append(engine.task)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ── API round trip ─────────────────────────────────────────────

    async def _dispatch(self, calls: list[Command], history: list[Turn]) -> Optional[ApiResult]:
        result = None
        for call in calls:
            result = await self._call_api(call.payload, history)
        return result

    async def _call_api(self, prompt: str, history: list[Turn]) -> ApiResult:
        epoch = self._epoch
        self.bus.emit(EventType.LLM_SEND, prompt=prompt, history=len(history))
        try:
            result = await self.api_client.generate(history, prompt)
        except RemoteError as e:
            logger.error("API request failed: %s", e)
            result = ApiResult(ok=False, text=CONNECTION_APOLOGY, error=str(e))
        except Exception as e:
            # Loading must resolve even if a client breaks its contract
            logger.exception("API client raised")
            result = ApiResult(ok=False, text=CONNECTION_APOLOGY, error=str(e))

        if epoch != self._epoch:
            logger.info("Discarding reply to a conversation that was cleared")
            return result

        self.bus.emit(EventType.LLM_COMPLETE, ok=result.ok, chars=len(result.text))
        self._append(Turn(Role.MODEL, result.text))
        if not result.ok:
            self._advise(AdvisoryKind.NETWORK, NETWORK_MESSAGE)
        self._execute(self._transition(session_state.api_resolved, result.ok, result.text))
        return result

    # ── Triggers ───────────────────────────────────────────────────

    async def send_text(self, text: str) -> Optional[ApiResult]:
        """Submit typed or recognized text. Returns the API result, or None if rejected."""
        self.advisory = None
        content = (text or "").strip()
        if not content:
            self._advise(AdvisoryKind.RECOVERABLE_INPUT, EMPTY_MESSAGE)
            return None

        feature = _FEATURES.get(self._state.feature_mode)
        if feature is not None:
            _, _, ack, template = feature
            prompt = template(content)
        else:
            ack, prompt = None, content

        history = self.conversation.snapshot_for_submission()
        try:
            commands = self._transition(session_state.request_send, prompt)
        except OperationUnavailable as e:
            self._reject(e)
            return None

        calls = self._execute(commands)
        self._append(Turn(Role.USER, content))
        if ack is not None:
            self._append(Turn(Role.MODEL, ack, TurnKind.FEATURE_MARKER))
        return await self._dispatch(calls, history)

    def start_listening(self) -> bool:
        """Begin a voice turn. Returns False if listening could not start."""
        self.advisory = None
        if self.speech_input is None:
            self._advise(AdvisoryKind.DEVICE, NO_RECOGNITION_MESSAGE)
            return False
        try:
            commands = self._transition(session_state.request_listen)
        except OperationUnavailable as e:
            self._reject(e)
            return False

        self._append(Turn(Role.USER, LISTENING_PLACEHOLDER, TurnKind.PLACEHOLDER))
        try:
            self._execute(commands)
        except OperationUnavailable as e:
            # The controller is still winding down an abandoned session
            self._abandon_listening()
            self._reject(e)
            return False
        except (DialogueError, RuntimeError) as e:
            logger.error("Could not start recognition: %s", e)
            self._abandon_listening()
            self._advise(AdvisoryKind.DEVICE, RECOGNITION_START_MESSAGE)
            return False
        return True

    def _abandon_listening(self) -> None:
        self._listen_session = None
        self.conversation.remove_placeholders()
        self._set_state(session_state.recognition_finished(self._state)[0])

    def _on_recognition(self, result: RecognitionResult) -> None:
        if result.session_id != self._listen_session:
            logger.debug("Ignoring outcome of abandoned recognition session %d", result.session_id)
            return
        self._listen_session = None
        self.conversation.remove_placeholders()
        self._set_state(session_state.recognition_finished(self._state)[0])
        self.bus.emit(EventType.STT_COMPLETE, session=result.session_id,
                      outcome=result.outcome.value)

        if result.outcome is RecognitionOutcome.TRANSCRIPT:
            self.spawn(self.send_text(result.text))
        elif result.outcome is RecognitionOutcome.ERROR:
            kind = AdvisoryKind.DEVICE if result.device_error else AdvisoryKind.ENGINE
            self._advise(kind, f"Speech recognition error: {result.error}. "
                               "Please ensure microphone access is granted.")
        else:
            self._advise(AdvisoryKind.RECOVERABLE_INPUT, NO_SPEECH_MESSAGE)

    def stop_speaking(self) -> bool:
        self.advisory = None
        try:
            commands = self._transition(session_state.request_stop_speaking)
        except OperationUnavailable as e:
            self._reject(e)
            return False
        self._execute(commands)
        self.bus.emit(EventType.TTS_COMPLETE, interrupted=True)
        return True

    def initiate_feature(self, mode: FeatureMode) -> bool:
        """Start vocabulary or rephrase: ask for its input, without calling the API."""
        self.advisory = None
        marker, request, _, _ = _FEATURES[mode]
        try:
            commands = self._transition(session_state.request_feature, mode, request)
        except OperationUnavailable as e:
            self._reject(e)
            return False

        self._append(Turn(Role.USER, marker, TurnKind.FEATURE_MARKER))
        self._append(Turn(Role.MODEL, request))
        self._execute(commands)
        self.bus.emit(EventType.FEATURE, feature=mode.value)
        return True

    def request_vocabulary(self) -> bool:
        return self.initiate_feature(FeatureMode.AWAITING_VOCAB_TOPIC)

    def request_rephrase(self) -> bool:
        return self.initiate_feature(FeatureMode.AWAITING_REPHRASE_TEXT)

    async def request_pronunciation_tips(self) -> Optional[ApiResult]:
        """Ask for tips on the last thing the user said."""
        self.advisory = None
        if not self.is_enabled(Trigger.PRONUNCIATION_TIPS):
            self._reject(OperationUnavailable(
                session_state.UNAVAILABLE_MESSAGES[Trigger.PRONUNCIATION_TIPS]))
            return None

        last = self.conversation.last_user_content()
        if last is None:
            self._advise(AdvisoryKind.RECOVERABLE_INPUT, NO_USER_TURN_MESSAGE)
            return None

        history = self.conversation.snapshot_for_submission()
        commands = self._transition(session_state.request_api_feature,
                                    Trigger.PRONUNCIATION_TIPS, pronunciation_tips_prompt(last.text))
        calls = self._execute(commands)
        self._append(Turn(Role.USER, pronunciation_tips_marker(last.text), TurnKind.FEATURE_MARKER))
        self.bus.emit(EventType.FEATURE, feature="pronunciation_tips")
        return await self._dispatch(calls, history)

    async def request_role_play(self) -> Optional[ApiResult]:
        """Have the teacher open a role-play scenario."""
        self.advisory = None
        history = self.conversation.snapshot_for_submission()
        try:
            commands = self._transition(session_state.request_api_feature,
                                        Trigger.ROLE_PLAY, ROLE_PLAY_PROMPT)
        except OperationUnavailable as e:
            self._reject(e)
            return None

        calls = self._execute(commands)
        self._append(Turn(Role.USER, ROLE_PLAY_MARKER, TurnKind.FEATURE_MARKER))
        self.bus.emit(EventType.FEATURE, feature="role_play")
        return await self._dispatch(calls, history)

    def clear(self) -> None:
        """Stop everything and start over from the greeting."""
        self._epoch += 1
        self._execute(self._transition(session_state.clear))
        self.advisory = None
        self.bus.emit(EventType.CLEAR, epoch=self._epoch)

    # ── Playback signals ───────────────────────────────────────────

    def _on_speech_start(self) -> None:
        self._set_state(session_state.speech_started(self._state)[0])
        self.bus.emit(EventType.TTS_START)

    def _on_speech_end(self) -> None:
        self._set_state(session_state.speech_finished(self._state)[0])
        self.bus.emit(EventType.TTS_COMPLETE, interrupted=False)

    def _on_speech_error(self, message: str) -> None:
        self._set_state(session_state.speech_finished(self._state)[0])
        self._advise(AdvisoryKind.ENGINE, message)

    # ── Lifecycle ──────────────────────────────────────────────────

    async def close(self) -> None:
        """Stop all activity and release audio output."""
        await self.speech_output.close()
        if self.speech_input is not None:
            self.speech_input.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.bus.emit(EventType.SESSION_END)
