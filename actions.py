"""Action handlers dispatched by the command coordinator."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from errors import HandlerFailureError, NoInputError
from interfaces import FrameSource, ItemStore, ReplyListener, SpeechOutput, VisionAnalyzer
from models import (
    ActionType,
    AnalysisResult,
    AppState,
    CommandContext,
    Frame,
    LoopKind,
)
from polling_loop import LoopProfile

if TYPE_CHECKING:
    from command_coordinator import CommandCoordinator

logger = logging.getLogger(__name__)

NOT_FOUND_REPLY = "I don't see it here."

HELP_TEXT = (
    "You can say: describe the scene, read text, who is here, check for hazards, "
    "analyze terrain, save this item, find my keys, start live commentary, "
    "manage items, or ask any question. Say 'stop' at any time to interrupt."
)

Handler = Callable[[dict[str, Any], CommandContext], Awaitable[None]]


def _item_names(items: ItemStore) -> list[str]:
    return [item.name for item in items.list_items()]


def commentary_profile(
    analyzer: VisionAnalyzer,
    items: ItemStore,
    spoken_delay_s: float = 2.0,
    idle_delay_s: float = 1.0,
) -> LoopProfile:
    async def analyze(frame: Frame, target: Optional[str]) -> Optional[str]:
        result = await analyzer.quick_description(frame, _item_names(items))
        return result.text.strip() or None

    return LoopProfile(
        kind=LoopKind.COMMENTARY,
        start_message=lambda _target: "Starting live commentary. Say 'stop' to exit.",
        analyze=analyze,
        spoken_delay_s=spoken_delay_s,
        idle_delay_s=idle_delay_s,
    )


def object_search_profile(
    analyzer: VisionAnalyzer,
    items: ItemStore,
    spoken_delay_s: float = 3.5,
    idle_delay_s: float = 0.5,
) -> LoopProfile:
    async def analyze(frame: Frame, target: Optional[str]) -> Optional[str]:
        result = await analyzer.find_object(frame, target or "", _item_names(items))
        text = result.text.strip()
        if not text or text == NOT_FOUND_REPLY:
            return None
        return text

    return LoopProfile(
        kind=LoopKind.OBJECT_SEARCH,
        start_message=lambda target: (
            f"Looking for {target}. Pan your camera around. Say 'stop' to exit."
        ),
        analyze=analyze,
        spoken_delay_s=spoken_delay_s,
        idle_delay_s=idle_delay_s,
    )


class ActionHandlers:
    def __init__(
        self,
        coordinator: CommandCoordinator,
        analyzer: VisionAnalyzer,
        frames: FrameSource,
        speech: SpeechOutput,
        items: ItemStore,
        replies: ReplyListener,
        speech_wait_timeout_s: float = 15.0,
        speech_poll_s: float = 0.05,
    ) -> None:
        self._coordinator = coordinator
        self._analyzer = analyzer
        self._frames = frames
        self._speech = speech
        self._items = items
        self._replies = replies
        self._speech_wait_timeout_s = speech_wait_timeout_s
        self._speech_poll_s = speech_poll_s
        self._table: dict[ActionType, Handler] = {
            ActionType.DESCRIBE_SCENE: self._describe_scene,
            ActionType.READ_TEXT: self._read_text,
            ActionType.IDENTIFY_PEOPLE: self._identify_people,
            ActionType.CHECK_HAZARDS: self._check_hazards,
            ActionType.ANALYZE_TERRAIN: self._analyze_terrain,
            ActionType.SAVE_ITEM: self._save_item,
            ActionType.LIVE_COMMENTARY: self._live_commentary,
            ActionType.FIND_ITEM: self._find_item,
            ActionType.MANAGE_ITEMS: self._manage_items,
            ActionType.HELP: self._help,
            ActionType.ASK_QUESTION: self._ask_question,
            ActionType.OPEN_QUERY: self._open_query,
            ActionType.DELETE_ITEM: self._delete_item,
            ActionType.CLOSE_MANAGEMENT: self._close_management,
        }

    async def dispatch(
        self, action: ActionType, payload: dict[str, Any], ctx: CommandContext
    ) -> None:
        if action != ActionType.ASK_QUESTION:
            self._coordinator.clear_followup()
        handler = self._table.get(action)
        if handler is None:
            logger.warning("No handler for action %s", action.value)
            return
        logger.info("Dispatching %s", action.value)
        await handler(payload, ctx)

    async def open_query(self, query: Optional[str], ctx: CommandContext) -> None:
        if not query:
            query = await self._ask("What is your question?", ctx)
            if not self._coordinator.is_current(ctx):
                return
        self._coordinator.set_state(AppState.ANALYZING)
        self._coordinator.display(f'Thinking about: "{query}"...')
        result = await self._analyzer.ask_open_query(query)
        if self._coordinator.is_current(ctx):
            self._coordinator.respond(result.text)

    # ------------------------------------------------------------------
    # Frame analysis
    # ------------------------------------------------------------------

    async def _describe_scene(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        names = _item_names(self._items)
        await self._analyze(ctx, lambda frame: self._analyzer.describe_scene(frame, names), True)

    async def _identify_people(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        names = _item_names(self._items)
        await self._analyze(ctx, lambda frame: self._analyzer.identify_people(frame, names), True)

    async def _read_text(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        await self._analyze(ctx, self._analyzer.read_text)

    async def _check_hazards(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        await self._analyze(ctx, self._analyzer.check_hazards)

    async def _analyze_terrain(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        self._coordinator.display("Analyzing terrain...")
        await self._analyze(ctx, self._analyzer.analyze_terrain)

    async def _analyze(
        self,
        ctx: CommandContext,
        call: Callable[[Frame], Awaitable[AnalysisResult]],
        keep_context: bool = False,
    ) -> None:
        self._speech.cancel()
        self._coordinator.set_state(AppState.ANALYZING)
        frame = self._frames.capture_frame()
        if frame is None:
            raise HandlerFailureError("Could not capture frame from camera.")
        result = await call(frame)
        if not self._coordinator.is_current(ctx):
            logger.debug("Dropping analysis result for superseded command")
            return
        if keep_context:
            self._coordinator.remember_analysis(frame, result.history)
        self._coordinator.respond(result.text)

    async def _ask_question(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        followup = self._coordinator.followup
        if followup is None:
            self._coordinator.respond("Please describe a scene first before asking a question.")
            return
        question = await self._ask("What's your question?", ctx)
        if not self._coordinator.is_current(ctx):
            return
        self._coordinator.set_state(AppState.ANALYZING)
        self._coordinator.display(f'Thinking about: "{question}"...')
        result = await self._analyzer.ask_followup(followup.frame, followup.history, question)
        if not self._coordinator.is_current(ctx):
            return
        self._coordinator.remember_analysis(followup.frame, result.history)
        self._coordinator.respond(result.text)
        self._coordinator.set_state(AppState.AWAITING_FOLLOWUP)

    async def _open_query(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        await self.open_query(payload.get("query"), ctx)

    # ------------------------------------------------------------------
    # Saved items
    # ------------------------------------------------------------------

    async def _save_item(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        self._coordinator.set_state(AppState.SAVING_ITEM)
        name = await self._ask("What should I call this item?", ctx)
        if not self._coordinator.is_current(ctx):
            return
        self._coordinator.set_state(AppState.ANALYZING)
        self._coordinator.display(f'Saving as "{name}"...')
        frame = self._frames.capture_frame()
        if frame is None:
            raise HandlerFailureError("Could not capture image.")
        self._items.save_item(name, frame)
        self._coordinator.respond(f"Okay, I've saved this as {name}.")

    async def _manage_items(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        self._coordinator.set_state(AppState.MANAGING_ITEMS)
        names = _item_names(self._items)
        if names:
            message = (
                f"Here are your saved items: {', '.join(names)}. "
                "You can say 'delete' followed by the name."
            )
        else:
            message = "You have no saved items."
        self._coordinator.respond(message)

    async def _delete_item(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        name = payload.get("item_name")
        if ctx.pre_state != AppState.MANAGING_ITEMS or not name:
            logger.debug("Ignoring delete outside item management: %s", name)
            return
        self._items.delete_item(name)
        self._coordinator.respond(f"Okay, I've deleted {name}.")

    async def _close_management(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        if ctx.pre_state != AppState.MANAGING_ITEMS:
            return
        self._speech.cancel()
        self._coordinator.set_state(AppState.IDLE)
        self._coordinator.display("Closed item management.")

    # ------------------------------------------------------------------
    # Loops and misc
    # ------------------------------------------------------------------

    async def _live_commentary(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        self._coordinator.start_loop(LoopKind.COMMENTARY)

    async def _find_item(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        name = payload.get("item_name")
        if not name:
            self._coordinator.respond("Please tell me which item to look for.")
            return
        self._coordinator.start_loop(LoopKind.OBJECT_SEARCH, name)

    async def _help(self, payload: dict[str, Any], ctx: CommandContext) -> None:
        self._coordinator.respond(HELP_TEXT)

    # ------------------------------------------------------------------
    # Reply capture
    # ------------------------------------------------------------------

    async def _ask(self, prompt: str, ctx: CommandContext) -> str:
        """Speak ``prompt`` and capture one spoken reply."""
        self._coordinator.suspend_listening()
        try:
            self._speech.cancel()
            self._coordinator.respond(prompt)
            await self._wait_for_speech()
            reply = (await self._replies.listen()).strip()
        finally:
            self._coordinator.release_listening()
        if not reply:
            raise NoInputError()
        return reply

    async def _wait_for_speech(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._speech_wait_timeout_s
        while self._speech.is_speaking and loop.time() < deadline:
            await asyncio.sleep(self._speech_poll_s)
