"""Error taxonomy for the dialogue pipeline.

Recoverable input problems, device/permission failures, transient engine
failures and remote/network failures are kept apart so the orchestrator can
turn each into the right kind of user-facing advisory.
"""


class DialogueError(Exception):
    """Base class for every error raised inside the dialogue pipeline."""


class RecoverableInputError(DialogueError):
    """Bad or premature user input. Rejected with an advisory, no state change."""


class OperationUnavailable(RecoverableInputError):
    """A trigger was invoked while its precondition does not hold."""


class DeviceError(DialogueError):
    """Microphone or speaker missing, unsupported or permission denied."""


class EngineError(DialogueError):
    """A speech engine failed in the middle of an utterance or session."""


class SynthesisError(EngineError):
    """Text-to-speech failed for the current utterance."""


class RecognitionError(EngineError):
    """Speech recognition failed for the current session."""


class RecognitionUnavailable(RecognitionError, DeviceError):
    """Recognition cannot run at all (no recorder, no model, no access)."""


class RemoteError(DialogueError):
    """The language-model request failed or returned something unusable."""
