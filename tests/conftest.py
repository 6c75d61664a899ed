"""
Shared fakes and fixtures for the command coordinator tests.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Optional

import pytest

from actions import commentary_profile, object_search_profile
from command_coordinator import CommandCoordinator
from errors import PermissionDeniedError
from models import AnalysisResult, CommandResult, Frame, PersonalItem


class FakeRecognition:
    def __init__(self) -> None:
        self.on_transcript = None
        self.denied = False
        self.started = 0
        self.stopped = 0
        self.pauses: list[str] = []
        self.resumes: list[str] = []
        self.completions = 0

    async def start(self) -> None:
        if self.denied:
            raise PermissionDeniedError()
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1

    def pause(self, reason: str = "speech") -> None:
        self.pauses.append(reason)

    def resume(self, reason: str = "speech") -> None:
        self.resumes.append(reason)

    def resume_after_command_completion(self) -> None:
        self.completions += 1


class FakeInterpreter:
    def __init__(self) -> None:
        self.results: dict[str, Optional[CommandResult]] = {}
        self.calls: list[tuple[str, list[str], object]] = []
        self.gate: Optional[asyncio.Event] = None

    async def interpret(self, text, known_item_names, current_state):  # noqa: ANN001
        self.calls.append((text, list(known_item_names), current_state))
        if self.gate is not None:
            await self.gate.wait()
        result = self.results.get(text)
        if isinstance(result, Exception):
            raise result
        return result


class FakeAnalyzer:
    def __init__(self) -> None:
        self.replies: dict[str, str] = {}
        self.calls: list[tuple] = []
        self.gate: Optional[asyncio.Event] = None
        self.error: Optional[Exception] = None

    async def _reply(self, name: str, *args) -> AnalysisResult:  # noqa: ANN002
        self.calls.append((name, *args))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        text = self.replies.get(name, f"{name} result")
        return AnalysisResult(text=text, history=[{"role": "assistant", "content": text}])

    async def describe_scene(self, frame, item_names):  # noqa: ANN001
        return await self._reply("describe_scene", frame, item_names)

    async def read_text(self, frame):  # noqa: ANN001
        return await self._reply("read_text", frame)

    async def identify_people(self, frame, item_names):  # noqa: ANN001
        return await self._reply("identify_people", frame, item_names)

    async def check_hazards(self, frame):  # noqa: ANN001
        return await self._reply("check_hazards", frame)

    async def analyze_terrain(self, frame):  # noqa: ANN001
        return await self._reply("analyze_terrain", frame)

    async def quick_description(self, frame, item_names):  # noqa: ANN001
        return await self._reply("quick_description", frame, item_names)

    async def find_object(self, frame, target, item_names):  # noqa: ANN001
        return await self._reply("find_object", frame, target, item_names)

    async def ask_followup(self, frame, history, question):  # noqa: ANN001
        return await self._reply("ask_followup", frame, list(history), question)

    async def ask_open_query(self, query):  # noqa: ANN001
        return await self._reply("ask_open_query", query)


class FakeSpeech:
    def __init__(self) -> None:
        self.is_speaking = False
        self.spoken: list[str] = []
        self.cancels = 0
        self._listeners: list = []

    def speak(self, text: str) -> None:
        self.spoken.append(text)

    def cancel(self) -> None:
        self.cancels += 1

    def add_listener(self, callback) -> None:  # noqa: ANN001
        self._listeners.append(callback)

    def set_speaking(self, value: bool) -> None:
        self.is_speaking = value
        for callback in self._listeners:
            callback(value)


class FakeFrames:
    def __init__(self) -> None:
        self.frame: Optional[Frame] = Frame(jpeg_bytes=b"jpeg", width=1024, height=576)
        self.captures = 0

    def capture_frame(self) -> Optional[Frame]:
        self.captures += 1
        return self.frame


class FakeItems:
    def __init__(self, names: tuple[str, ...] = ()) -> None:
        self.items = [PersonalItem(name=name) for name in names]
        self.saved: list[tuple[str, Frame]] = []

    def list_items(self) -> list[PersonalItem]:
        return list(self.items)

    def save_item(self, name: str, frame: Frame) -> PersonalItem:
        item = PersonalItem(name=name)
        self.items.append(item)
        self.saved.append((name, frame))
        return item

    def delete_item(self, name: str) -> list[PersonalItem]:
        self.items = [i for i in self.items if i.name.lower() != name.lower()]
        return list(self.items)


class FakeReplies:
    def __init__(self) -> None:
        self.replies: list[str] = []
        self.listens = 0

    async def listen(self) -> str:
        self.listens += 1
        return self.replies.pop(0) if self.replies else ""


@pytest.fixture
def env():
    """A coordinator wired to fakes, with fast polling loops."""
    recognition = FakeRecognition()
    interpreter = FakeInterpreter()
    analyzer = FakeAnalyzer()
    speech = FakeSpeech()
    frames = FakeFrames()
    items = FakeItems(("keys", "wallet"))
    replies = FakeReplies()
    transitions: list = []
    responses: list[str] = []
    errors: list[tuple[str, str]] = []

    coordinator = CommandCoordinator(
        recognition=recognition,
        interpreter=interpreter,
        analyzer=analyzer,
        speech=speech,
        frames=frames,
        items=items,
        replies=replies,
        loop_profiles=(
            commentary_profile(analyzer, items, spoken_delay_s=0.01, idle_delay_s=0.01),
            object_search_profile(analyzer, items, spoken_delay_s=0.01, idle_delay_s=0.01),
        ),
        on_state_change=lambda f, t: transitions.append((f, t)),
        on_response=responses.append,
        on_error=lambda c, m: errors.append((c, m)),
    )
    return SimpleNamespace(
        coordinator=coordinator,
        recognition=recognition,
        interpreter=interpreter,
        analyzer=analyzer,
        speech=speech,
        frames=frames,
        items=items,
        replies=replies,
        transitions=transitions,
        responses=responses,
        errors=errors,
    )
