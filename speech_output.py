"""
SpeechOutputQueue: chunked, strictly sequential speech playback.

A reply is split into utterance-sized chunks (text_chunker) and handed to a
synthesis engine one chunk at a time. The queue owns the chunk list, a
cursor into it and a playback id; every new speak() or stop() bumps the id
so a late signal from an abandoned playback is ignored.

Engine contract (PiperSynthesisEngine below, fakes in tests):
    get_voices() -> list[Voice]         may be empty until voices are installed
    await speak(utterance, on_start)    returns when the utterance has ended,
                                        raises SynthesisError on failure
    cancel()                            fire-and-forget stop of the current utterance
    close()                             release the audio device at shutdown
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from errors import SynthesisError
from text_chunker import MAX_UTTERANCE_LENGTH, chunk

logger = logging.getLogger(__name__)

# Piper default voices produce 16-bit mono PCM at 22050 Hz
PIPER_SAMPLE_RATE = 22050
CHUNK_SIZE = 4096  # bytes per read from piper stdout


@dataclass(frozen=True)
class Voice:
    name: str
    locale: str


@dataclass(frozen=True)
class Utterance:
    """One chunk of a reply, ready for the synthesis engine."""
    text: str
    index: int
    voice: Optional[Voice]
    locale: str
    rate: float = 1.0
    pitch: float = 1.0


def normalize_locale(locale: str) -> str:
    """'en_GB' and 'en-gb' both become 'en-gb'."""
    return locale.replace("_", "-").lower()


def select_voice(voices: list[Voice], locale: str,
                 preferred: Optional[str] = None) -> Optional[Voice]:
    """Pick a voice for locale, preferring one whose name contains `preferred`.

    Returns None when no voice matches the locale exactly; the engine then
    uses its default voice.
    """
    target = normalize_locale(locale)
    matches = [v for v in voices if normalize_locale(v.locale) == target]
    if not matches:
        return None
    if preferred:
        for voice in matches:
            if preferred.lower() in voice.name.lower():
                return voice
    return matches[0]


def _is_current(task: asyncio.Task) -> bool:
    try:
        return task is asyncio.current_task()
    except RuntimeError:
        return False


class SpeechOutputQueue:
    """Plays one reply at a time, chunk by chunk, through a synthesis engine.

    Args:
        engine: Synthesis engine (see module docstring).
        locale: Target accent, e.g. "en-GB".
        preferred_voice: Substring marking the high-quality voice variant.
        max_len: Maximum chunk length handed to the engine.
        rate, pitch: Passed through on every utterance.
        initial_delay: Seconds before the first chunk (lets a cancel settle).
        chunk_delay: Seconds between chunks.
        on_start: Called once when the first chunk starts playing.
        on_end: Called once after the last chunk has ended.
        on_error: Called with a message when playback fails.
    """

    def __init__(self, engine, locale: str = "en-GB",
                 preferred_voice: Optional[str] = None,
                 max_len: int = MAX_UTTERANCE_LENGTH,
                 rate: float = 1.0, pitch: float = 1.0,
                 initial_delay: float = 0.2, chunk_delay: float = 0.05,
                 on_start: Optional[Callable[[], None]] = None,
                 on_end: Optional[Callable[[], None]] = None,
                 on_error: Optional[Callable[[str], None]] = None):
        self.engine = engine
        self.locale = locale
        self.preferred_voice = preferred_voice
        self.max_len = max_len
        self.rate = rate
        self.pitch = pitch
        self.initial_delay = initial_delay
        self.chunk_delay = chunk_delay
        self.on_start = on_start or (lambda: None)
        self.on_end = on_end or (lambda: None)
        self.on_error = on_error or (lambda message: None)

        self._chunks: list[str] = []
        self._cursor = 0
        self._playback_id = 0
        self._speaking = False
        self._task: asyncio.Task | None = None

    @property
    def speaking(self) -> bool:
        return self._speaking

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    @property
    def pending(self) -> list[str]:
        """Chunks not yet finished, current one first."""
        return self._chunks[self._cursor:]

    # ── Public API ────────────────────────────────────────────────

    def speak(self, text: str) -> Optional[asyncio.Task]:
        """Cancel whatever is playing and start reading text aloud.

        Returns the playback task, or None if there is nothing to say.
        """
        self.stop()
        chunks = chunk(text, self.max_len)
        if not chunks:
            return None

        self._chunks = chunks
        self._cursor = 0
        playback_id = self._playback_id
        self._task = asyncio.get_running_loop().create_task(
            self._play(playback_id),
            name=f"speech-playback-{playback_id}",
        )
        logger.debug("Queued %d chunk(s) for playback %d", len(chunks), playback_id)
        return self._task

    def stop(self) -> None:
        """Cancel current and queued playback. speaking is False on return."""
        active = self._speaking or (self._task is not None and not self._task.done())
        self._playback_id += 1
        self._chunks = []
        self._cursor = 0
        self._speaking = False

        task, self._task = self._task, None
        if task is not None and not task.done() and not _is_current(task):
            task.cancel()

        if active:
            try:
                self.engine.cancel()
            except Exception as e:
                logger.warning("Synthesis engine cancel failed: %s", e)

    async def close(self) -> None:
        """Stop playback, let the cancelled playback unwind, then release the engine."""
        task = self._task
        self.stop()
        if task is not None and not _is_current(task):
            await asyncio.gather(task, return_exceptions=True)
        try:
            self.engine.close()
        except Exception as e:
            logger.warning("Synthesis engine close failed: %s", e)

    # ── Playback loop ─────────────────────────────────────────────

    def _resolve_voice(self) -> Optional[Voice]:
        """Re-query voices on every playback; the list can fill in late."""
        try:
            voices = list(self.engine.get_voices())
        except Exception as e:
            logger.warning("Could not list synthesis voices: %s", e)
            voices = []
        voice = select_voice(voices, self.locale, self.preferred_voice)
        if voice is None:
            logger.warning("No %s voice available (%d voices), using engine default",
                           self.locale, len(voices))
        return voice

    def _chunk_started(self, playback_id: int) -> None:
        if playback_id != self._playback_id or self._speaking:
            return
        self._speaking = True
        self.on_start()

    async def _play(self, playback_id: int) -> None:
        try:
            if self.initial_delay > 0:
                await asyncio.sleep(self.initial_delay)
            if playback_id != self._playback_id:
                return
            voice = self._resolve_voice()

            while playback_id == self._playback_id and self._cursor < len(self._chunks):
                utterance = Utterance(
                    text=self._chunks[self._cursor],
                    index=self._cursor,
                    voice=voice,
                    locale=self.locale,
                    rate=self.rate,
                    pitch=self.pitch,
                )
                await self.engine.speak(utterance, lambda: self._chunk_started(playback_id))
                if playback_id != self._playback_id:
                    return
                self._cursor += 1
                if self._cursor < len(self._chunks) and self.chunk_delay > 0:
                    await asyncio.sleep(self.chunk_delay)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if playback_id != self._playback_id:
                return
            if not isinstance(e, SynthesisError):
                logger.exception("Unexpected synthesis failure")
            self._abort(f"Speech synthesis error: {e}. Please try again.")
            return

        if playback_id == self._playback_id:
            self._finish()

    def _finish(self) -> None:
        self._chunks = []
        self._cursor = 0
        self._speaking = False
        self._task = None
        self.on_end()

    def _abort(self, message: str) -> None:
        logger.error("Playback aborted at chunk %d/%d: %s",
                     self._cursor + 1, len(self._chunks), message)
        self._chunks = []
        self._cursor = 0
        self._speaking = False
        self._task = None
        self.on_error(message)


class PiperSynthesisEngine:
    """Local Piper TTS, played through PyAudio.

    Voices are the Piper `.onnx` models found in voices_dir; a model named
    `en_GB-alba-medium.onnx` is the voice "en_GB-alba-medium" with locale
    "en_GB". The directory is rescanned on every get_voices() call.
    """

    def __init__(self, voices_dir, piper_cmd: str = "piper",
                 sample_rate: int = PIPER_SAMPLE_RATE):
        self.voices_dir = Path(voices_dir).expanduser()
        self.piper_cmd = piper_cmd
        self.sample_rate = sample_rate
        self._process: asyncio.subprocess.Process | None = None
        self._cancelled = False
        self._pa = None

    def get_voices(self) -> list[Voice]:
        if not self.voices_dir.is_dir():
            return []
        return [
            Voice(name=path.stem, locale=path.stem.split("-", 1)[0])
            for path in sorted(self.voices_dir.glob("*.onnx"))
        ]

    def _model_path(self, voice: Optional[Voice]) -> Path:
        if voice is not None:
            path = self.voices_dir / f"{voice.name}.onnx"
            if path.exists():
                return path
        # Engine default: first installed model
        models = sorted(self.voices_dir.glob("*.onnx")) if self.voices_dir.is_dir() else []
        if not models:
            raise SynthesisError(f"no Piper voice models found in {self.voices_dir}")
        return models[0]

    def _open_stream(self):
        import pyaudio

        if self._pa is None:
            self._pa = pyaudio.PyAudio()
        return self._pa.open(
            format=pyaudio.paInt16,
            channels=1,
            rate=self.sample_rate,
            output=True,
        )

    @staticmethod
    def _write(lock: threading.Lock, stream, pcm: bytes) -> None:
        with lock:
            stream.write(pcm)

    @staticmethod
    def _close_stream(lock: threading.Lock, stream) -> None:
        """Close stream once any write still running in the executor has returned."""
        with lock:
            stream.stop_stream()
            stream.close()

    async def speak(self, utterance: Utterance, on_start: Callable[[], None]) -> None:
        """Synthesize one utterance and block until its audio has played."""
        self._cancelled = False
        model = self._model_path(utterance.voice)
        length_scale = 1.0 / utterance.rate if utterance.rate > 0 else 1.0
        loop = asyncio.get_running_loop()

        try:
            process = await asyncio.create_subprocess_exec(
                self.piper_cmd, '--model', str(model), '--output-raw',
                '--length_scale', f"{length_scale:.3f}",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise SynthesisError(f"could not start Piper: {e}") from e
        self._process = process

        # Feed text and close stdin to trigger synthesis
        process.stdin.write(utterance.text.encode())
        process.stdin.close()

        try:
            stream = await loop.run_in_executor(None, self._open_stream)
        except OSError as e:
            process.terminate()
            await process.wait()
            self._process = None
            raise SynthesisError(f"audio output unavailable: {e}") from e

        write_lock = threading.Lock()
        started = False
        finished = False
        try:
            while not self._cancelled:
                pcm = await process.stdout.read(CHUNK_SIZE)
                if not pcm:
                    break
                if not started:
                    started = True
                    on_start()
                await loop.run_in_executor(None, self._write, write_lock, stream, pcm)
            finished = not self._cancelled
        finally:
            if process.returncode is None and not finished:
                process.terminate()
            await loop.run_in_executor(None, self._close_stream, write_lock, stream)
            return_code = await process.wait()
            self._process = None

        if return_code != 0 and not self._cancelled:
            raise SynthesisError(f"Piper exited with code {return_code}")

    def cancel(self) -> None:
        self._cancelled = True
        process = self._process
        if process is not None and process.returncode is None:
            process.terminate()

    def close(self) -> None:
        """Stop any synthesis and release the audio device."""
        self.cancel()
        if self._pa is not None:
            self._pa.terminate()
            self._pa = None
