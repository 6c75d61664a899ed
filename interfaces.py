"""Protocol interfaces used by the recognition manager and coordinator."""

from __future__ import annotations

from queue import Queue
from typing import Any, Callable, Optional, Protocol

from models import (
    AnalysisResult,
    AppState,
    AudioFrame,
    CommandResult,
    CommandTranscript,
    Frame,
    PersonalItem,
    RecognitionResult,
)


class Recorder(Protocol):
    def start(self, audio_queue: Queue[AudioFrame | None]) -> None: ...

    def stop(self) -> None: ...


class RecognitionEngine(Protocol):
    continuous: bool
    lang: str
    on_start: Optional[Callable[[], None]]
    on_result: Optional[Callable[[RecognitionResult], None]]
    on_end: Optional[Callable[[], None]]
    on_error: Optional[Callable[[str], None]]

    def start(self) -> None: ...

    def stop(self) -> None: ...


class RecognitionControl(Protocol):
    on_transcript: Optional[Callable[[CommandTranscript], None]]

    async def start(self) -> None: ...

    def stop(self) -> None: ...

    def pause(self, reason: str = ...) -> None: ...

    def resume(self, reason: str = ...) -> None: ...

    def resume_after_command_completion(self) -> None: ...


class MicrophoneAccess(Protocol):
    async def request_access(self) -> bool: ...


class FrameSource(Protocol):
    def capture_frame(self) -> Frame | None: ...


class CommandInterpreter(Protocol):
    async def interpret(
        self, text: str, known_item_names: list[str], current_state: AppState
    ) -> CommandResult | None: ...


class VisionAnalyzer(Protocol):
    async def describe_scene(self, frame: Frame, item_names: list[str]) -> AnalysisResult: ...

    async def read_text(self, frame: Frame) -> AnalysisResult: ...

    async def identify_people(self, frame: Frame, item_names: list[str]) -> AnalysisResult: ...

    async def check_hazards(self, frame: Frame) -> AnalysisResult: ...

    async def analyze_terrain(self, frame: Frame) -> AnalysisResult: ...

    async def quick_description(self, frame: Frame, item_names: list[str]) -> AnalysisResult: ...

    async def find_object(self, frame: Frame, target: str, item_names: list[str]) -> AnalysisResult: ...

    async def ask_followup(
        self, frame: Frame, history: list[dict[str, Any]], question: str
    ) -> AnalysisResult: ...

    async def ask_open_query(self, query: str) -> AnalysisResult: ...


class SpeechOutput(Protocol):
    is_speaking: bool

    def speak(self, text: str) -> None: ...

    def cancel(self) -> None: ...

    def add_listener(self, callback: Callable[[bool], None]) -> None: ...


class ReplyListener(Protocol):
    async def listen(self) -> str: ...


class ItemStore(Protocol):
    def list_items(self) -> list[PersonalItem]: ...

    def save_item(self, name: str, frame: Frame) -> PersonalItem: ...

    def delete_item(self, name: str) -> list[PersonalItem]: ...


class ConfigStore(Protocol):
    def get_api_key(self) -> str: ...

    def set_api_key(self, key: str) -> None: ...

    def get_hotkey(self) -> str: ...

    def set_hotkey(self, hotkey: str) -> None: ...

    def get_language(self) -> str: ...

    def set_language(self, language: str) -> None: ...

    def get_listening_model(self) -> str: ...

    def set_listening_model(self, model: str) -> None: ...

    def get_log_level(self) -> str: ...
