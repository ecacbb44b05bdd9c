"""
SpeechInputController: one-shot speech recognition sessions.

Every start() activates a single-utterance, final-results-only session and
yields exactly one terminal outcome: a transcript, an error, or "nothing
recognized". stop() only asks the engine to finish early; the outcome is
still delivered.

Engine contract (WhisperRecognitionEngine below, fakes in tests):
    await listen_once(locale, stop_event) -> str | None
        returns the final transcript, or None when no speech was heard;
        raises RecognitionUnavailable for device/permission problems and
        RecognitionError for anything that breaks mid-session.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from errors import OperationUnavailable, RecognitionError, RecognitionUnavailable

logger = logging.getLogger(__name__)

# Whisper works on 16 kHz mono float audio
SAMPLE_RATE = 16000
BYTES_PER_SAMPLE = 2
CHUNK_SIZE = 3200            # 100 ms of 16-bit PCM per read from pw-record
SILENCE_THRESHOLD = 500      # RMS below this counts as silence
SILENCE_DURATION = 1.2       # seconds of silence after speech that end the session
MIN_SPEECH_SECONDS = 0.3     # anything shorter is treated as no speech
NO_SPEECH_PROB_LIMIT = 0.6   # Whisper segments above this are dropped

# Phrases Whisper invents from noise. Only trusted when Whisper itself was
# unsure there was speech, since a learner may well say "thank you".
HALLUCINATION_PHRASES: frozenset = frozenset({
    "thank you", "thanks for watching", "thanks for listening",
    "thank you for watching", "please subscribe", "like and subscribe",
    "subtitles by", "subtitles made by", "amara.org",
    "music", "applause", "laughter", "silence", "inaudible",
    "you", "bye", "so", "the", "uh", "um", "hmm",
})


class RecognitionOutcome(Enum):
    TRANSCRIPT = "transcript"
    ERROR = "error"
    NO_SPEECH = "no_speech"


@dataclass(frozen=True)
class RecognitionResult:
    """Terminal outcome of one recognition session."""
    session_id: int
    outcome: RecognitionOutcome
    text: str = ""
    error: Optional[str] = None
    device_error: bool = False  # microphone missing / permission denied


def is_hallucination(text: str, no_speech_prob: float = 0.0) -> bool:
    """Check whether a Whisper transcript is most likely invented from noise.

    Three layers:
    1. Nothing but punctuation
    2. A known hallucination phrase while Whisper doubted there was speech
    3. Repetitive content (4+ words with <=2 unique words)
    """
    cleaned = text.lower().strip().strip('.!?,… ')
    if not cleaned:
        return True

    if cleaned in HALLUCINATION_PHRASES and no_speech_prob > 0.2:
        return True

    words = cleaned.split()
    if len(words) >= 4 and len(set(words)) <= 2:
        return True

    return False


class SpeechInputController:
    """Owns the "currently listening" flag and the active recognition session.

    Args:
        engine: Recognition engine (see module docstring).
        locale: Recognition locale, fixed to the target accent.
        on_outcome: Called with a RecognitionResult once per session,
            after listening has gone back to False.
    """

    def __init__(self, engine, locale: str = "en-GB",
                 on_outcome: Optional[Callable[[RecognitionResult], None]] = None):
        self.engine = engine
        self.locale = locale
        self.on_outcome = on_outcome or (lambda result: None)
        self._listening = False
        self._session_id = 0
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def start(self) -> int:
        """Activate a recognition session and return its id.

        Raises:
            OperationUnavailable: If a session is still running.
        """
        if self._listening:
            raise OperationUnavailable("Speech recognition is already active.")

        self._session_id += 1
        session_id = self._session_id
        self._stop_event = asyncio.Event()
        self._listening = True
        self._task = asyncio.get_running_loop().create_task(
            self._run(session_id, self._stop_event),
            name=f"recognition-{session_id}",
        )
        logger.debug("Recognition session %d started (%s)", session_id, self.locale)
        return session_id

    def stop(self) -> None:
        """Ask the running session to finish early. Safe to call at any time."""
        if self._listening and self._stop_event is not None:
            self._stop_event.set()

    async def _run(self, session_id: int, stop_event: asyncio.Event) -> None:
        try:
            text = await self.engine.listen_once(self.locale, stop_event)
        except asyncio.CancelledError:
            self._listening = False
            raise
        except RecognitionUnavailable as e:
            result = RecognitionResult(session_id, RecognitionOutcome.ERROR,
                                       error=str(e), device_error=True)
        except RecognitionError as e:
            result = RecognitionResult(session_id, RecognitionOutcome.ERROR, error=str(e))
        except Exception as e:
            logger.exception("Recognition engine failed")
            result = RecognitionResult(session_id, RecognitionOutcome.ERROR, error=str(e))
        else:
            text = (text or "").strip()
            if text:
                result = RecognitionResult(session_id, RecognitionOutcome.TRANSCRIPT, text=text)
            else:
                result = RecognitionResult(session_id, RecognitionOutcome.NO_SPEECH)

        self._listening = False
        logger.debug("Recognition session %d ended: %s", session_id, result.outcome.value)
        self.on_outcome(result)


class WhisperRecognitionEngine:
    """Records one utterance with pw-record and transcribes it with Whisper.

    Recording ends on a stop request, on SILENCE_DURATION of silence after
    speech, or after max_seconds. Whisper runs in the default executor.
    """

    def __init__(self, model_name: str = "small", max_seconds: float = 15.0,
                 whisper_model=None):
        self.model_name = model_name
        self.max_seconds = max_seconds
        self.whisper_model = whisper_model
        self._model_lock = threading.Lock()

    async def listen_once(self, locale: str, stop_event: asyncio.Event) -> Optional[str]:
        pcm = await self._record(stop_event)
        if len(pcm) < SAMPLE_RATE * BYTES_PER_SAMPLE * MIN_SPEECH_SECONDS:
            return None
        language = locale.replace("_", "-").split("-")[0]
        return await asyncio.get_running_loop().run_in_executor(
            None, self._transcribe, pcm, language
        )

    async def _record(self, stop_event: asyncio.Event) -> bytes:
        """Capture mic audio until silence, stop or timeout. Empty if no speech."""
        import numpy as np

        try:
            process = await asyncio.create_subprocess_exec(
                'pw-record', '--format', 's16', '--rate', str(SAMPLE_RATE), '--channels', '1', '-',
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL
            )
        except OSError as e:
            raise RecognitionUnavailable(f"microphone recorder unavailable: {e}") from e

        audio_buffer = bytearray()
        heard_speech = False
        silence_start = None
        deadline = time.monotonic() + self.max_seconds

        try:
            while not stop_event.is_set():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                try:
                    data = await asyncio.wait_for(process.stdout.read(CHUNK_SIZE),
                                                  timeout=min(0.5, remaining))
                except asyncio.TimeoutError:
                    continue
                if not data:
                    if not audio_buffer:
                        raise RecognitionUnavailable("microphone recording ended unexpectedly")
                    break
                audio_buffer.extend(data)

                samples = np.frombuffer(data[:len(data) - len(data) % 2], dtype=np.int16)
                rms = np.sqrt(np.mean(samples.astype(np.float64) ** 2)) if samples.size else 0.0
                if rms >= SILENCE_THRESHOLD:
                    heard_speech = True
                    silence_start = None
                elif heard_speech:
                    if silence_start is None:
                        silence_start = time.monotonic()
                    elif time.monotonic() - silence_start > SILENCE_DURATION:
                        break
        finally:
            if process.returncode is None:
                process.terminate()
            await process.wait()

        return bytes(audio_buffer) if heard_speech else b""

    def _load_model(self):
        with self._model_lock:
            if self.whisper_model is None:
                try:
                    import whisper
                except ImportError as e:
                    raise RecognitionUnavailable("openai-whisper is not installed") from e
                logger.info("Loading Whisper model '%s'", self.model_name)
                self.whisper_model = whisper.load_model(self.model_name)
            return self.whisper_model

    def _transcribe(self, pcm_data: bytes, language: str) -> Optional[str]:
        """Transcribe 16 kHz PCM (blocking, run in executor)."""
        import numpy as np

        model = self._load_model()
        audio = np.frombuffer(pcm_data, dtype=np.int16).astype(np.float32) / 32768.0
        try:
            result = model.transcribe(
                audio, language=language, fp16=False,
                condition_on_previous_text=False,  # Prevent hallucination loops
            )
        except Exception as e:
            raise RecognitionError(f"transcription failed: {e}") from e

        # Drop segments Whisper thinks are not speech (coughs, background noise)
        segments = result.get("segments", [])
        if segments:
            kept = [s for s in segments if s.get("no_speech_prob", 0) < NO_SPEECH_PROB_LIMIT]
            text = "".join(s["text"] for s in kept).strip()
            no_speech_prob = max((s.get("no_speech_prob", 0) for s in kept), default=1.0)
        else:
            text = result.get("text", "").strip()
            no_speech_prob = 0.0

        if not text or is_hallucination(text, no_speech_prob):
            logger.info("Whisper heard no usable speech: %r", text)
            return None
        return text
