"""Core data models for the app."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ListeningModel(str, Enum):
    CONTINUOUS = "continuous"
    SINGLE_SHOT = "single_shot"


class RecognitionPhase(str, Enum):
    IDLE = "IDLE"
    STARTING = "STARTING"
    LISTENING = "LISTENING"
    ENDING = "ENDING"


class AppState(str, Enum):
    IDLE = "IDLE"
    INTERPRETING = "INTERPRETING"
    ANALYZING = "ANALYZING"
    AWAITING_FOLLOWUP = "AWAITING_FOLLOWUP"
    SAVING_ITEM = "SAVING_ITEM"
    FINDING_ITEM = "FINDING_ITEM"
    LIVE_COMMENTARY = "LIVE_COMMENTARY"
    MANAGING_ITEMS = "MANAGING_ITEMS"


# States that still accept a new command.
COMMAND_READY_STATES = frozenset(
    {AppState.IDLE, AppState.AWAITING_FOLLOWUP, AppState.MANAGING_ITEMS}
)


class ActionType(str, Enum):
    DESCRIBE_SCENE = "DESCRIBE_SCENE"
    READ_TEXT = "READ_TEXT"
    IDENTIFY_PEOPLE = "IDENTIFY_PEOPLE"
    CHECK_HAZARDS = "CHECK_HAZARDS"
    ANALYZE_TERRAIN = "ANALYZE_TERRAIN"
    SAVE_ITEM = "SAVE_ITEM"
    LIVE_COMMENTARY = "LIVE_COMMENTARY"
    FIND_ITEM = "FIND_ITEM"
    MANAGE_ITEMS = "MANAGE_ITEMS"
    HELP = "HELP"
    ASK_QUESTION = "ASK_QUESTION"
    OPEN_QUERY = "OPEN_QUERY"
    DELETE_ITEM = "DELETE_ITEM"
    CLOSE_MANAGEMENT = "CLOSE_MANAGEMENT"
    STOP = "STOP"
    UNKNOWN = "UNKNOWN"


class LoopKind(str, Enum):
    COMMENTARY = "commentary"
    OBJECT_SEARCH = "object_search"


@dataclass
class AudioFrame:
    pcm16_bytes: bytes
    sample_rate: int = 16000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass
class Frame:
    jpeg_bytes: bytes
    width: int = 0
    height: int = 0
    timestamp_ms: int = 0


@dataclass
class RecognitionResult:
    """Raw result as reported by a recognition engine."""

    text: str
    is_final: bool = False
    confidence: float = 0.0


@dataclass(frozen=True)
class CommandTranscript:
    text: str
    is_final: bool
    confidence: float = 0.0


@dataclass
class RecognitionSession:
    listening_model: ListeningModel
    language_tag: str
    is_active: bool = False
    is_manually_stopped: bool = False
    is_paused: bool = False
    is_awaiting_command_completion: bool = False


@dataclass
class CommandResult:
    action: ActionType
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class AnalysisResult:
    text: str
    history: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class PollingLoopHandle:
    kind: LoopKind
    is_active: bool = False
    target: Optional[str] = None


@dataclass
class PersonalItem:
    name: str
    image_b64: str = ""
    created_ms: int = 0


@dataclass
class FollowUpContext:
    frame: Frame
    history: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class CommandContext:
    """Identifies one command run through the coordinator."""

    generation: int
    pre_state: AppState
    text: str = ""
