"""Speech recognition engine backed by DashScope qwen3-asr-flash.

qwen3-asr-flash recognises complete audio clips, so the engine records from the
microphone, cuts the stream into utterances with a simple energy gate and sends
each utterance to the model with ``stream=True``. Streaming chunks are reported
as interim results and the last one as the final result.

With ``continuous=True`` the engine keeps listening across utterances and only
ends its session when stopped. With ``continuous=False`` it ends after the first
utterance or after a no-speech timeout, the way single-shot platform engines do.
Callbacks are always delivered on the asyncio loop that called ``start()``.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
import os
import threading
import time
import wave
from collections import deque
from queue import Empty, Queue
from typing import Any, Callable, Optional

from errors import EngineBusyError, NoInputError
from interfaces import RecognitionEngine, Recorder
from models import AudioFrame, RecognitionResult
from recorder import SoundDeviceRecorder

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

logger = logging.getLogger(__name__)


def _pcm_to_wav_base64(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> str:
    """Convert raw PCM bytes to a base64-encoded WAV data URI payload."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return base64.b64encode(buf.getvalue()).decode("ascii")


def _frame_rms(pcm16: bytes) -> float:
    if np is None or not pcm16:
        return 0.0
    samples = np.frombuffer(pcm16, dtype=np.int16).astype(np.float32)
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(samples * samples)))


class UtteranceSegmenter:
    """Energy gate that turns a frame stream into utterances."""

    def __init__(
        self,
        threshold: float = 500.0,
        end_silence_ms: int = 800,
        max_utterance_ms: int = 15000,
        preroll_frames: int = 3,
    ) -> None:
        self.threshold = threshold
        self.end_silence_ms = end_silence_ms
        self.max_utterance_ms = max_utterance_ms
        self._preroll: deque[AudioFrame] = deque(maxlen=preroll_frames)
        self._frames: list[AudioFrame] = []
        self._silence_ms = 0
        self._speech_ms = 0

    @property
    def in_speech(self) -> bool:
        return bool(self._frames)

    def feed(self, frame: AudioFrame) -> Optional[bytes]:
        duration_ms = self._duration_ms(frame)
        loud = _frame_rms(frame.pcm16_bytes) >= self.threshold
        if not self._frames:
            if not loud:
                self._preroll.append(frame)
                return None
            self._frames.extend(self._preroll)
            self._preroll.clear()
        self._frames.append(frame)
        self._speech_ms += duration_ms
        self._silence_ms = 0 if loud else self._silence_ms + duration_ms
        if self._silence_ms >= self.end_silence_ms or self._speech_ms >= self.max_utterance_ms:
            return self._flush()
        return None

    def _flush(self) -> bytes:
        pcm = b"".join(f.pcm16_bytes for f in self._frames)
        self._frames = []
        self._silence_ms = 0
        self._speech_ms = 0
        return pcm

    @staticmethod
    def _duration_ms(frame: AudioFrame) -> int:
        samples = len(frame.pcm16_bytes) // (2 * max(frame.channels, 1))
        return int(samples * 1000 / max(frame.sample_rate, 1))


class DashscopeSpeechEngine:
    def __init__(
        self,
        api_key: str,
        lang: str = "en-US",
        continuous: bool = True,
        model: str = "qwen3-asr-flash",
        request_timeout_s: float = 10.0,
        no_speech_timeout_s: float = 8.0,
        recorder_factory: Callable[[], Recorder] = SoundDeviceRecorder,
        segmenter_factory: Callable[[], UtteranceSegmenter] = UtteranceSegmenter,
    ) -> None:
        self.continuous = continuous
        self.lang = lang
        self.on_start: Optional[Callable[[], None]] = None
        self.on_result: Optional[Callable[[RecognitionResult], None]] = None
        self.on_end: Optional[Callable[[], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None

        self._api_key = api_key
        self._model = model
        self._request_timeout_s = request_timeout_s
        self._no_speech_timeout_s = no_speech_timeout_s
        self._recorder_factory = recorder_factory
        self._segmenter_factory = segmenter_factory
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            raise EngineBusyError("recognition already started")
        self._loop = asyncio.get_running_loop()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._worker, args=(self._stop_event,), daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _worker(self, stop_event: threading.Event) -> None:
        audio_queue: Queue[AudioFrame | None] = Queue(maxsize=200)
        recorder = self._recorder_factory()
        try:
            recorder.start(audio_queue)
        except Exception as exc:
            logger.error("Could not open microphone: %s", exc)
            self._dispatch("on_error", "audio-capture")
            self._dispatch("on_end")
            return

        self._dispatch("on_start")
        try:
            self._listen(audio_queue, recorder, stop_event)
        finally:
            recorder.stop()
            self._dispatch("on_end")

    def _listen(
        self,
        audio_queue: Queue[AudioFrame | None],
        recorder: Recorder,
        stop_event: threading.Event,
    ) -> None:
        segmenter = self._segmenter_factory()
        idle_since = time.monotonic()
        while not stop_event.is_set():
            try:
                frame = audio_queue.get(timeout=0.2)
            except Empty:
                frame = None
            else:
                if frame is None:  # Sentinel
                    return

            if frame is not None:
                pcm = segmenter.feed(frame)
                if pcm:
                    if not self.continuous:
                        recorder.stop()
                    self._recognize(pcm, frame.sample_rate, frame.channels, stop_event)
                    if not self.continuous:
                        return
                    idle_since = time.monotonic()
                    continue

            if (
                not self.continuous
                and not segmenter.in_speech
                and time.monotonic() - idle_since > self._no_speech_timeout_s
            ):
                self._dispatch("on_error", "no-speech")
                return

    def _recognize(
        self, pcm: bytes, sample_rate: int, channels: int, stop_event: threading.Event
    ) -> None:
        """Send one utterance to DashScope and report interim/final results."""
        if dashscope is None:
            logger.error("dashscope is not installed")
            self._dispatch("on_error", "service-not-allowed")
            return
        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            logger.error("No DashScope API key configured")
            self._dispatch("on_error", "service-not-allowed")
            return

        wav_b64 = _pcm_to_wav_base64(pcm, sample_rate, channels)
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=api_key,
                model=self._model,
                messages=[
                    {"role": "system", "content": [{"text": ""}]},
                    {"role": "user", "content": [{"audio": f"data:audio/wav;base64,{wav_b64}"}]},
                ],
                result_format="message",
                asr_options={"enable_itn": False, "language": self.lang.split("-")[0]},
                stream=True,
                timeout=self._request_timeout_s,
            )
            latest_text = ""
            for chunk in response:
                if stop_event.is_set():
                    return
                text = _extract_text(chunk)
                if text:
                    latest_text = text
                    self._dispatch("on_result", RecognitionResult(text=text, is_final=False))
        except Exception as exc:
            logger.warning("Recognition request failed: %s", exc)
            self._dispatch("on_error", _to_engine_error(exc))
            return

        if latest_text and not stop_event.is_set():
            self._dispatch("on_result", RecognitionResult(text=latest_text, is_final=True))

    def _dispatch(self, callback_name: str, *args: Any) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._invoke, callback_name, args)

    def _invoke(self, callback_name: str, args: tuple) -> None:
        # Looked up on delivery so detached callbacks stay silent.
        callback = getattr(self, callback_name)
        if callback is not None:
            callback(*args)


class OneShotListener:
    """Captures a single spoken reply with a dedicated single-shot engine."""

    def __init__(
        self,
        engine_factory: Callable[[str, bool], RecognitionEngine],
        language: str = "en-US",
        timeout_s: float = 10.0,
    ) -> None:
        self._engine_factory = engine_factory
        self.language = language
        self._timeout_s = timeout_s

    async def listen(self) -> str:
        loop = asyncio.get_running_loop()
        reply: asyncio.Future[str] = loop.create_future()
        engine = self._engine_factory(self.language, False)

        def _on_result(result: RecognitionResult) -> None:
            if result.is_final and not reply.done():
                reply.set_result(result.text)

        def _on_end() -> None:
            if not reply.done():
                reply.set_result("")

        def _on_error(error: str) -> None:
            logger.debug("Reply capture error: %s", error)

        engine.on_result = _on_result
        engine.on_end = _on_end
        engine.on_error = _on_error
        try:
            engine.start()
            text = await asyncio.wait_for(reply, timeout=self._timeout_s)
        except asyncio.TimeoutError as exc:
            raise NoInputError() from exc
        finally:
            engine.on_result = None
            engine.on_end = None
            engine.on_error = None
            engine.stop()
        if not text.strip():
            raise NoInputError()
        return text.strip()


def _extract_text(chunk: object) -> str:
    """Pull text from a DashScope streaming chunk."""
    if not isinstance(chunk, dict):
        return ""
    output = chunk.get("output") or {}
    choices = output.get("choices") or []
    if not choices:
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content") or []
    if isinstance(content, str):
        return content
    if not content:
        return ""
    value = content[0]
    if isinstance(value, dict):
        return str(value.get("text", ""))
    return ""


def _to_engine_error(exc: Exception) -> str:
    """Map an SDK/network exception to a platform-style engine error name."""
    low = str(exc).lower()
    if "401" in low or "auth" in low or "api key" in low:
        return "service-not-allowed"
    if "timeout" in low or "network" in low or "connection" in low:
        return "network"
    return "recognition-failed"
