"""Command interpretation and vision analysis using DashScope Qwen models.

Every call is a blocking SDK request, so each one runs in a worker thread via
``asyncio.to_thread`` and the event loop stays free for recognition callbacks
and interrupts.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import os
import re
from typing import Any, Optional

from errors import AUTH_FAILED, NETWORK_ERROR, AssistantError, HandlerFailureError
from models import ActionType, AnalysisResult, AppState, CommandResult, Frame

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)

INTERPRET_PROMPT = """You turn a spoken command for a camera assistant into JSON.
Reply with one JSON object: {{"action": ACTION, "payload": {{...}}}}.
ACTION is one of: {actions}.
Use payload.item_name for FIND_ITEM and DELETE_ITEM, payload.query for OPEN_QUERY.
Use UNKNOWN when the command is an open question that needs no camera.
The user's saved items: {items}.
Current application state: {state}.
Command: "{text}"
"""

PROMPTS = {
    "describe_scene": (
        "Describe this scene for a visually impaired person in two or three sentences. "
        "Mention any of these saved items if you see them: {items}."
    ),
    "read_text": "Read out all the text visible in this image. Say so if there is none.",
    "identify_people": (
        "Describe the people in this image, their positions and what they are doing. "
        "Known items: {items}."
    ),
    "check_hazards": (
        "List any hazards in front of the camera for someone walking, most urgent first. "
        "Say the path is clear if there are none."
    ),
    "analyze_terrain": (
        "Describe the ground and terrain ahead: surface, slopes, steps, obstacles."
    ),
    "quick_description": (
        "In one short sentence, say what is in front of the camera. "
        "Mention these saved items if visible: {items}."
    ),
    "find_object": (
        "Is there a {target} in this image? If yes, say where it is in one short sentence. "
        "Saved items for reference: {items}. If not, reply exactly: I don't see it here."
    ),
}

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def _frame_to_data_uri(frame: Frame) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(frame.jpeg_bytes).decode("ascii")


def _response_text(response: Any) -> str:
    """Pull the reply text out of a Generation/MultiModalConversation response."""
    if not isinstance(response, dict):
        return ""
    output = response.get("output") or {}
    choices = output.get("choices") or []
    if choices:
        content = (choices[0].get("message") or {}).get("content", "")
        if isinstance(content, str):
            return content.strip()
        parts = [str(part.get("text", "")) for part in content if isinstance(part, dict)]
        return "".join(parts).strip()
    return str(output.get("text", "")).strip()


def parse_command(raw: str) -> Optional[CommandResult]:
    text = _FENCE_RE.sub("", raw.strip()).strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Interpreter returned non-JSON reply: %s", raw)
        return None
    if not isinstance(data, dict):
        return None
    try:
        action = ActionType(str(data.get("action", "")).upper())
    except ValueError:
        logger.warning("Interpreter returned unknown action: %s", data.get("action"))
        return None
    payload = data.get("payload") or {}
    if not isinstance(payload, dict):
        payload = {}
    return CommandResult(action=action, payload=payload)


class DashscopeAssistantService:
    def __init__(
        self,
        api_key: str,
        text_model: str = "qwen-plus",
        vision_model: str = "qwen-vl-plus",
        request_timeout_s: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._text_model = text_model
        self._vision_model = vision_model
        self._request_timeout_s = request_timeout_s

    # ------------------------------------------------------------------
    # CommandInterpreter
    # ------------------------------------------------------------------

    async def interpret(
        self, text: str, known_item_names: list[str], current_state: AppState
    ) -> Optional[CommandResult]:
        prompt = INTERPRET_PROMPT.format(
            actions=", ".join(action.value for action in ActionType),
            items=", ".join(known_item_names) or "none",
            state=current_state.value,
            text=text,
        )
        raw = await self._generate([{"role": "user", "content": prompt}])
        return parse_command(raw)

    # ------------------------------------------------------------------
    # VisionAnalyzer
    # ------------------------------------------------------------------

    async def describe_scene(self, frame: Frame, item_names: list[str]) -> AnalysisResult:
        return await self._look(frame, PROMPTS["describe_scene"].format(items=_names(item_names)))

    async def read_text(self, frame: Frame) -> AnalysisResult:
        return await self._look(frame, PROMPTS["read_text"])

    async def identify_people(self, frame: Frame, item_names: list[str]) -> AnalysisResult:
        return await self._look(frame, PROMPTS["identify_people"].format(items=_names(item_names)))

    async def check_hazards(self, frame: Frame) -> AnalysisResult:
        return await self._look(frame, PROMPTS["check_hazards"])

    async def analyze_terrain(self, frame: Frame) -> AnalysisResult:
        return await self._look(frame, PROMPTS["analyze_terrain"])

    async def quick_description(self, frame: Frame, item_names: list[str]) -> AnalysisResult:
        prompt = PROMPTS["quick_description"].format(items=_names(item_names))
        return await self._look(frame, prompt)

    async def find_object(
        self, frame: Frame, target: str, item_names: list[str]
    ) -> AnalysisResult:
        prompt = PROMPTS["find_object"].format(target=target, items=_names(item_names))
        return await self._look(frame, prompt)

    async def ask_followup(
        self, frame: Frame, history: list[dict[str, Any]], question: str
    ) -> AnalysisResult:
        messages = list(history) or [
            {"role": "user", "content": [{"image": _frame_to_data_uri(frame)}]}
        ]
        messages.append({"role": "user", "content": [{"text": question}]})
        return await self._converse(messages)

    async def ask_open_query(self, query: str) -> AnalysisResult:
        messages = [{"role": "user", "content": query}]
        text = await self._generate(messages)
        return AnalysisResult(text=text, history=messages + [{"role": "assistant", "content": text}])

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _look(self, frame: Frame, prompt: str) -> AnalysisResult:
        messages = [
            {
                "role": "user",
                "content": [{"image": _frame_to_data_uri(frame)}, {"text": prompt}],
            }
        ]
        return await self._converse(messages)

    async def _converse(self, messages: list[dict[str, Any]]) -> AnalysisResult:
        response = await asyncio.to_thread(
            self._call,
            "MultiModalConversation",
            model=self._vision_model,
            messages=messages,
        )
        text = _response_text(response)
        if not text:
            raise HandlerFailureError("The vision model returned no answer.")
        history = messages + [{"role": "assistant", "content": [{"text": text}]}]
        return AnalysisResult(text=text, history=history)

    async def _generate(self, messages: list[dict[str, Any]]) -> str:
        response = await asyncio.to_thread(
            self._call,
            "Generation",
            model=self._text_model,
            messages=messages,
            result_format="message",
        )
        return _response_text(response)

    def _call(self, api: str, **kwargs: Any) -> Any:
        if dashscope is None:
            raise HandlerFailureError("dashscope is not installed")
        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            raise _ServiceError(AUTH_FAILED, "No API key configured")
        try:
            response = getattr(dashscope, api).call(
                api_key=api_key, timeout=self._request_timeout_s, **kwargs
            )
        except Exception as exc:
            raise _to_service_error(exc) from exc
        status = getattr(response, "status_code", 200)
        if status != 200:
            message = getattr(response, "message", "") or f"HTTP {status}"
            raise _to_service_error(RuntimeError(f"{status}: {message}"))
        return response


class _ServiceError(AssistantError):
    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(message)


def _to_service_error(exc: Exception) -> AssistantError:
    """Map an SDK/network exception to an assistant error."""
    message = str(exc)
    low = message.lower()
    if "401" in low or "auth" in low or "api key" in low:
        return _ServiceError(AUTH_FAILED, "API key is invalid.")
    if "timeout" in low or "network" in low or "connection" in low:
        return _ServiceError(NETWORK_ERROR, "Network error. Please check your internet connection.")
    return HandlerFailureError(message)


def _names(item_names: list[str]) -> str:
    return ", ".join(item_names) or "none"
