"""Session state machine for the dialogue orchestrator.

(state, request) -> (new_state, commands)

The activity is a single tagged value, so listening, speaking and loading
can never be true at the same time. Transition functions are pure: they
never touch engines or the conversation, they only return the next state
and the side effects the orchestrator must carry out, in order. A request
that is not enabled in the current state raises OperationUnavailable and
leaves the state untouched.
"""

from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Any

from errors import OperationUnavailable


class Activity(Enum):
    IDLE = "idle"
    LISTENING = "listening"
    LOADING = "loading"
    SPEAKING = "speaking"


class FeatureMode(Enum):
    NONE = "none"
    AWAITING_VOCAB_TOPIC = "awaiting_vocab_topic"
    AWAITING_REPHRASE_TEXT = "awaiting_rephrase_text"


class Trigger(Enum):
    """UI-facing triggers. Each one maps to an enabled predicate."""
    SEND_TEXT = "send_text"
    START_LISTENING = "start_listening"
    STOP_SPEAKING = "stop_speaking"
    PRONUNCIATION_TIPS = "pronunciation_tips"
    VOCABULARY = "vocabulary"
    REPHRASE = "rephrase"
    ROLE_PLAY = "role_play"
    CLEAR = "clear"


class Effect(Enum):
    CANCEL_SPEECH = auto()       # Stop playback and drop queued chunks
    STOP_RECOGNITION = auto()    # Best-effort end of the recognition session
    START_RECOGNITION = auto()   # Activate a one-shot recognition session
    CALL_API = auto()            # payload: prompt text
    SPEAK = auto()               # payload: text to read aloud
    RESET_CONVERSATION = auto()  # Back to the single greeting turn


@dataclass(frozen=True)
class Command:
    effect: Effect
    payload: Any = None


@dataclass(frozen=True)
class SessionState:
    activity: Activity = Activity.IDLE
    feature_mode: FeatureMode = FeatureMode.NONE

    @property
    def idle(self) -> bool:
        return self.activity is Activity.IDLE

    @property
    def listening(self) -> bool:
        return self.activity is Activity.LISTENING

    @property
    def loading(self) -> bool:
        return self.activity is Activity.LOADING

    @property
    def speaking(self) -> bool:
        return self.activity is Activity.SPEAKING


# Advisory shown when a trigger is used while disabled
UNAVAILABLE_MESSAGES = {
    Trigger.SEND_TEXT: "Please wait for the current response before sending another message.",
    Trigger.START_LISTENING: "Speech recognition is not available or already active.",
    Trigger.STOP_SPEAKING: "Nothing is being spoken right now.",
    Trigger.PRONUNCIATION_TIPS: "Pronunciation tips are not available right now.",
    Trigger.VOCABULARY: "Vocabulary suggestions are not available right now.",
    Trigger.REPHRASE: "Rephrasing is not available right now.",
    Trigger.ROLE_PLAY: "Role-play is not available right now.",
    Trigger.CLEAR: "",
}

_FEATURE_TRIGGERS = {
    FeatureMode.AWAITING_VOCAB_TOPIC: Trigger.VOCABULARY,
    FeatureMode.AWAITING_REPHRASE_TEXT: Trigger.REPHRASE,
}


def is_enabled(state: SessionState, trigger: Trigger) -> bool:
    """Enabled predicate per trigger; the exact inverse of its rejection rule."""
    if trigger is Trigger.SEND_TEXT:
        return not state.loading
    if trigger is Trigger.START_LISTENING:
        return state.idle or state.speaking
    if trigger is Trigger.STOP_SPEAKING:
        return state.speaking
    if trigger is Trigger.CLEAR:
        return True
    # Feature-style triggers: only from a quiet session with nothing pending
    return state.idle and state.feature_mode is FeatureMode.NONE


def _require(state: SessionState, trigger: Trigger) -> None:
    if not is_enabled(state, trigger):
        raise OperationUnavailable(UNAVAILABLE_MESSAGES[trigger])


def _cancel_speech() -> list[Command]:
    # Unconditional: also drops a reply that is queued but has not started yet
    return [Command(Effect.CANCEL_SPEECH)]


# ── User-initiated transitions ─────────────────────────────────

def request_listen(state: SessionState) -> tuple[SessionState, list[Command]]:
    """Idle/Speaking -> Listening. Speech is preempted first."""
    _require(state, Trigger.START_LISTENING)
    commands = _cancel_speech() + [Command(Effect.START_RECOGNITION)]
    return replace(state, activity=Activity.LISTENING), commands


def request_send(state: SessionState, prompt: str,
                 consume_feature: bool = True) -> tuple[SessionState, list[Command]]:
    """Any non-Loading state -> Loading, dispatching prompt to the API.

    Args:
        prompt: Final prompt text, already wrapped in a feature template if any.
        consume_feature: Reset FeatureMode to NONE (user submissions do,
            pronunciation tips and role-play leave it alone).
    """
    _require(state, Trigger.SEND_TEXT)
    commands = _cancel_speech()
    if state.listening:
        commands.append(Command(Effect.STOP_RECOGNITION))
    commands.append(Command(Effect.CALL_API, prompt))
    feature_mode = FeatureMode.NONE if consume_feature else state.feature_mode
    return SessionState(Activity.LOADING, feature_mode), commands


def request_api_feature(state: SessionState, trigger: Trigger,
                        prompt: str) -> tuple[SessionState, list[Command]]:
    """Pronunciation tips / role-play: Idle -> Loading without touching FeatureMode."""
    _require(state, trigger)
    commands = _cancel_speech() + [Command(Effect.CALL_API, prompt)]
    return replace(state, activity=Activity.LOADING), commands


def request_feature(state: SessionState, mode: FeatureMode,
                    spoken_prompt: str) -> tuple[SessionState, list[Command]]:
    """Start a two-step feature. Stays Idle until the prompt starts playing."""
    if mode is FeatureMode.NONE:
        raise ValueError("request_feature needs a concrete feature mode")
    _require(state, _FEATURE_TRIGGERS[mode])
    return replace(state, feature_mode=mode), [Command(Effect.SPEAK, spoken_prompt)]


def request_stop_speaking(state: SessionState) -> tuple[SessionState, list[Command]]:
    _require(state, Trigger.STOP_SPEAKING)
    return replace(state, activity=Activity.IDLE), [Command(Effect.CANCEL_SPEECH)]


def clear(state: SessionState) -> tuple[SessionState, list[Command]]:
    """Any state -> Idle with an empty feature mode and a fresh conversation."""
    commands = [
        Command(Effect.CANCEL_SPEECH),
        Command(Effect.STOP_RECOGNITION),
        Command(Effect.RESET_CONVERSATION),
    ]
    return SessionState(), commands


# ── Engine / network signals ───────────────────────────────────

def recognition_finished(state: SessionState) -> tuple[SessionState, list[Command]]:
    """Recognition reached a terminal outcome. Listening -> Idle."""
    if not state.listening:
        return state, []
    return replace(state, activity=Activity.IDLE), []


def api_resolved(state: SessionState, ok: bool, text: str) -> tuple[SessionState, list[Command]]:
    """Loading -> Idle, reading the reply aloud on success only."""
    if not state.loading:
        return state, []
    commands = [Command(Effect.SPEAK, text)] if ok else []
    return replace(state, activity=Activity.IDLE), commands


def speech_started(state: SessionState) -> tuple[SessionState, list[Command]]:
    """First chunk began playing. Only an idle session starts speaking."""
    if not state.idle:
        return state, []
    return replace(state, activity=Activity.SPEAKING), []


def speech_finished(state: SessionState) -> tuple[SessionState, list[Command]]:
    """Last chunk ended, or playback failed. Speaking -> Idle."""
    if not state.speaking:
        return state, []
    return replace(state, activity=Activity.IDLE), []
