"""Text-to-speech output using DashScope CosyVoice and sounddevice playback."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable, Optional

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

try:
    import dashscope
    from dashscope.audio.tts_v2 import AudioFormat, SpeechSynthesizer
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore
    AudioFormat = None  # type: ignore
    SpeechSynthesizer = None  # type: ignore

logger = logging.getLogger(__name__)

SAMPLE_RATE = 22050

VOICES = {
    "en-US": "longcheng",
    "hi-IN": "longxiaochun",
}

SpeakingListener = Callable[[bool], None]


class DashscopeSpeechOutput:
    def __init__(
        self,
        api_key: str,
        language: str = "en-US",
        model: str = "cosyvoice-v1",
    ) -> None:
        self._api_key = api_key
        self.language = language
        self._model = model
        self._listeners: list[SpeakingListener] = []
        self._lock = threading.Lock()
        self._generation = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.is_speaking = False

    def add_listener(self, callback: SpeakingListener) -> None:
        self._listeners.append(callback)

    def speak(self, text: str) -> None:
        if not text.strip():
            return
        self._loop = asyncio.get_running_loop()
        with self._lock:
            self._generation += 1
            generation = self._generation
        if sd is not None:
            sd.stop()
        self._set_speaking(True)
        threading.Thread(target=self._worker, args=(text, generation), daemon=True).start()

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
        if sd is not None:
            sd.stop()
        self._set_speaking(False)

    def _worker(self, text: str, generation: int) -> None:
        try:
            audio = self._synthesize(text)
            if audio is not None and self._is_current(generation):
                sd.play(audio, samplerate=SAMPLE_RATE)
                sd.wait()
        except Exception as exc:
            logger.warning("Speech output failed: %s", exc)
        finally:
            if self._is_current(generation):
                self._notify_done(generation)

    def _synthesize(self, text: str):  # noqa: ANN202
        if SpeechSynthesizer is None or sd is None or np is None:
            logger.error("Speech output unavailable: dashscope/sounddevice/numpy missing")
            return None
        synthesizer = SpeechSynthesizer(
            model=self._model,
            voice=VOICES.get(self.language, VOICES["en-US"]),
            format=AudioFormat.PCM_22050HZ_MONO_16BIT,
        )
        if self._api_key:
            dashscope.api_key = self._api_key
        pcm = synthesizer.call(text)
        if not pcm:
            return None
        return np.frombuffer(pcm, dtype=np.int16)

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def _notify_done(self, generation: int) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return

        def _done() -> None:
            if self._is_current(generation):
                self._set_speaking(False)

        loop.call_soon_threadsafe(_done)

    def _set_speaking(self, value: bool) -> None:
        if self.is_speaking == value:
            return
        self.is_speaking = value
        for listener in list(self._listeners):
            listener(value)
