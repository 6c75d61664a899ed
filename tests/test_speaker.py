from __future__ import annotations

import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from speaker import VOICES, DashscopeSpeechOutput


@pytest.fixture
def fake_tts(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    synthesizer_cls = MagicMock()
    synthesizer_cls.return_value.call.return_value = b"\x00\x00" * 100
    monkeypatch.setattr("speaker.SpeechSynthesizer", synthesizer_cls)
    monkeypatch.setattr("speaker.AudioFormat", MagicMock())
    monkeypatch.setattr("speaker.dashscope", MagicMock())
    monkeypatch.setattr("speaker.sd", MagicMock())
    return synthesizer_cls


async def _wait_until(predicate, timeout: float = 2.0) -> None:  # noqa: ANN001
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate() and loop.time() < deadline:
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_speak_notifies_listeners_around_playback(fake_tts: MagicMock) -> None:
    output = DashscopeSpeechOutput(api_key="k", language="hi-IN")
    changes: list[bool] = []
    output.add_listener(changes.append)

    output.speak("Hello there.")
    assert output.is_speaking is True
    await _wait_until(lambda: not output.is_speaking)

    assert changes == [True, False]
    fake_tts.return_value.call.assert_called_once_with("Hello there.")
    assert fake_tts.call_args.kwargs["voice"] == VOICES["hi-IN"]


@pytest.mark.asyncio
async def test_cancel_stops_immediately_and_ignores_late_completion(
    fake_tts: MagicMock,
) -> None:
    release = threading.Event()

    def slow_call(text: str) -> bytes:
        release.wait(2.0)
        return b"\x00\x00" * 100

    fake_tts.return_value.call.side_effect = slow_call
    output = DashscopeSpeechOutput(api_key="k")
    changes: list[bool] = []
    output.add_listener(changes.append)

    output.speak("A long description.")
    output.cancel()
    output.speak("Okay, stopped.")
    release.set()
    await _wait_until(lambda: not output.is_speaking)
    await asyncio.sleep(0.05)

    assert changes == [True, False, True, False]


@pytest.mark.asyncio
async def test_blank_text_is_not_spoken(fake_tts: MagicMock) -> None:
    output = DashscopeSpeechOutput(api_key="k")
    changes: list[bool] = []
    output.add_listener(changes.append)

    output.speak("   ")

    assert changes == []
    fake_tts.assert_not_called()
