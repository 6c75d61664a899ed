"""Cooperative capture -> analyse -> speak loops.

Live commentary and object search are the same loop with different steps, so
both run on ``PollingLoop`` with a ``LoopProfile`` supplying the per-kind parts.
The loop checks its active flag before capture, after capture and after the
analysis call, so a stop is honoured within one in-flight analysis.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from interfaces import FrameSource, SpeechOutput
from models import Frame, LoopKind, PollingLoopHandle

logger = logging.getLogger(__name__)

AnalyzeStep = Callable[[Frame, Optional[str]], Awaitable[Optional[str]]]
ResultCallback = Callable[[str], None]


@dataclass
class LoopProfile:
    kind: LoopKind
    start_message: Callable[[Optional[str]], str]
    analyze: AnalyzeStep
    spoken_delay_s: float
    idle_delay_s: float


class PollingLoop:
    def __init__(
        self,
        profile: LoopProfile,
        frames: FrameSource,
        speech: SpeechOutput,
        on_result: Optional[ResultCallback] = None,
    ) -> None:
        self._profile = profile
        self._frames = frames
        self._speech = speech
        self._on_result = on_result
        self._handle = PollingLoopHandle(kind=profile.kind)
        self._wake = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def kind(self) -> LoopKind:
        return self._profile.kind

    @property
    def handle(self) -> PollingLoopHandle:
        return self._handle

    @property
    def is_active(self) -> bool:
        return self._handle.is_active

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def start(self, target: Optional[str] = None) -> None:
        if self._handle.is_active:
            return
        self._handle.is_active = True
        self._handle.target = target
        self._wake = asyncio.Event()
        message = self._profile.start_message(target)
        self._emit(message)
        self._speech.speak(message)
        logger.info("Started %s loop (target=%s)", self.kind.value, target)
        self._task = asyncio.ensure_future(self._run(self._wake, target))

    def stop(self) -> None:
        if not self._handle.is_active:
            return
        logger.info("Stopping %s loop", self.kind.value)
        self._handle.is_active = False
        self._handle.target = None
        self._wake.set()

    async def wait_closed(self) -> None:
        if self._task is not None:
            await self._task

    async def _run(self, wake: asyncio.Event, target: Optional[str]) -> None:
        # ``wake`` belongs to this run; a restarted loop gets a fresh one.
        while self._handle.is_active and not wake.is_set():
            frame = self._frames.capture_frame()
            if not self._running(wake):
                break
            text: Optional[str] = None
            if frame is not None:
                try:
                    text = await self._profile.analyze(frame, target)
                except Exception:
                    logger.exception("%s frame analysis failed", self.kind.value)
                    text = None
                if not self._running(wake):
                    break
                if text:
                    self._emit(text)
                    self._speech.speak(text)
            delay = self._profile.spoken_delay_s if text else self._profile.idle_delay_s
            await self._sleep(wake, delay)

    def _running(self, wake: asyncio.Event) -> bool:
        return self._handle.is_active and not wake.is_set()

    async def _sleep(self, wake: asyncio.Event, delay_s: float) -> None:
        try:
            await asyncio.wait_for(wake.wait(), timeout=delay_s)
        except asyncio.TimeoutError:
            pass

    def _emit(self, text: str) -> None:
        if self._on_result:
            self._on_result(text)
