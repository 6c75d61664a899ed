from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from models import Frame, LoopKind
from polling_loop import LoopProfile, PollingLoop


class FakeFrames:
    def __init__(self, frames: Optional[list] = None) -> None:
        self.frames = frames
        self.captures = 0

    def capture_frame(self) -> Optional[Frame]:
        self.captures += 1
        if self.frames is None:
            return Frame(jpeg_bytes=b"jpeg")
        return self.frames.pop(0) if self.frames else None


class FakeSpeech:
    def __init__(self) -> None:
        self.is_speaking = False
        self.spoken: list[str] = []

    def speak(self, text: str) -> None:
        self.spoken.append(text)

    def cancel(self) -> None:
        pass

    def add_listener(self, callback) -> None:  # noqa: ANN001
        pass


def _profile(analyze, spoken_delay_s: float = 0.01, idle_delay_s: float = 0.01) -> LoopProfile:  # noqa: ANN001
    return LoopProfile(
        kind=LoopKind.COMMENTARY,
        start_message=lambda target: f"Starting {target or 'commentary'}",
        analyze=analyze,
        spoken_delay_s=spoken_delay_s,
        idle_delay_s=idle_delay_s,
    )


@pytest.mark.asyncio
async def test_loop_speaks_start_message_and_results() -> None:
    async def analyze(frame: Frame, target: Optional[str]) -> Optional[str]:
        return "A chair."

    speech = FakeSpeech()
    emitted: list[str] = []
    polling_loop = PollingLoop(_profile(analyze), FakeFrames(), speech, on_result=emitted.append)

    polling_loop.start()
    await asyncio.sleep(0.03)
    polling_loop.stop()
    await polling_loop.wait_closed()

    assert speech.spoken[0] == "Starting commentary"
    assert speech.spoken.count("A chair.") >= 2
    assert emitted == speech.spoken
    assert polling_loop.is_active is False


@pytest.mark.asyncio
async def test_start_while_active_is_noop() -> None:
    async def analyze(frame: Frame, target: Optional[str]) -> Optional[str]:
        return None

    speech = FakeSpeech()
    polling_loop = PollingLoop(_profile(analyze), FakeFrames(), speech)

    polling_loop.start("keys")
    first_task = polling_loop.task
    polling_loop.start("wallet")

    assert polling_loop.task is first_task
    assert polling_loop.handle.target == "keys"
    assert speech.spoken == ["Starting keys"]

    polling_loop.stop()
    await polling_loop.wait_closed()


@pytest.mark.asyncio
async def test_stop_during_analysis_drops_the_result() -> None:
    gate = asyncio.Event()

    async def analyze(frame: Frame, target: Optional[str]) -> Optional[str]:
        await gate.wait()
        return "Too late."

    speech = FakeSpeech()
    polling_loop = PollingLoop(_profile(analyze), FakeFrames(), speech)

    polling_loop.start()
    await asyncio.sleep(0.01)
    polling_loop.stop()
    gate.set()
    await polling_loop.wait_closed()

    assert "Too late." not in speech.spoken


@pytest.mark.asyncio
async def test_stop_interrupts_long_delay_promptly() -> None:
    async def analyze(frame: Frame, target: Optional[str]) -> Optional[str]:
        return "Something."

    polling_loop = PollingLoop(_profile(analyze, spoken_delay_s=30.0), FakeFrames(), FakeSpeech())

    polling_loop.start()
    await asyncio.sleep(0.01)
    polling_loop.stop()

    await asyncio.wait_for(polling_loop.wait_closed(), timeout=1.0)


@pytest.mark.asyncio
async def test_missing_frame_and_analysis_errors_keep_loop_running() -> None:
    calls: list[Frame] = []

    async def analyze(frame: Frame, target: Optional[str]) -> Optional[str]:
        calls.append(frame)
        if len(calls) == 1:
            raise RuntimeError("vision down")
        return "Recovered."

    frames = FakeFrames([None, Frame(jpeg_bytes=b"a"), Frame(jpeg_bytes=b"b")])
    speech = FakeSpeech()
    polling_loop = PollingLoop(_profile(analyze), frames, speech)

    polling_loop.start()
    await asyncio.sleep(0.05)
    polling_loop.stop()
    await polling_loop.wait_closed()

    assert len(calls) == 2
    assert speech.spoken[1:] == ["Recovered."]


@pytest.mark.asyncio
async def test_loop_can_be_restarted_after_stop() -> None:
    async def analyze(frame: Frame, target: Optional[str]) -> Optional[str]:
        return None

    speech = FakeSpeech()
    polling_loop = PollingLoop(_profile(analyze), FakeFrames(), speech)

    polling_loop.start("keys")
    polling_loop.stop()
    polling_loop.start("wallet")
    await asyncio.sleep(0.02)

    assert polling_loop.is_active
    assert polling_loop.handle.target == "wallet"

    polling_loop.stop()
    await polling_loop.wait_closed()
