"""State-machine based command orchestration.

The coordinator is the only owner of ``AppState``. It receives every transcript
from the recognition manager, lets interrupt words through ahead of everything
else, gates new commands on the busy state and hands eligible finals to the
interpreter and then to the action handlers. Whatever happens to a command, the
state is restored and the recognition session is released exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterable, Optional

from actions import ActionHandlers, commentary_profile, object_search_profile
from errors import (
    AssistantError,
    CommandUnrecognizedError,
    HandlerFailureError,
    PermissionDeniedError,
)
from interfaces import (
    CommandInterpreter,
    FrameSource,
    ItemStore,
    RecognitionControl,
    ReplyListener,
    SpeechOutput,
    VisionAnalyzer,
)
from models import (
    COMMAND_READY_STATES,
    ActionType,
    AppState,
    CommandContext,
    CommandTranscript,
    Frame,
    FollowUpContext,
    LoopKind,
)
from polling_loop import LoopProfile, PollingLoop
from recognition_manager import REPLY_PAUSE, SPEECH_PAUSE

logger = logging.getLogger(__name__)

StateCallback = Callable[[AppState, AppState], None]
ResponseCallback = Callable[[str], None]
ErrorCallback = Callable[[str, str], None]

INTERRUPT_WORDS = ("stop", "cancel", "be quiet", "enough", "that's enough")
STOP_MESSAGE = "Okay, stopped."

# Busy states a finished or failed command must leave again. Loop states persist
# until an interrupt.
_COMMAND_STATES = frozenset({AppState.INTERPRETING, AppState.ANALYZING, AppState.SAVING_ITEM})

_LOOP_STATES = {
    LoopKind.COMMENTARY: AppState.LIVE_COMMENTARY,
    LoopKind.OBJECT_SEARCH: AppState.FINDING_ITEM,
}

_LOOP_STOP_MESSAGES = {
    LoopKind.COMMENTARY: "Live commentary stopped.",
    LoopKind.OBJECT_SEARCH: "Stopped finding item.",
}


class CommandCoordinator:
    def __init__(
        self,
        recognition: RecognitionControl,
        interpreter: CommandInterpreter,
        analyzer: VisionAnalyzer,
        speech: SpeechOutput,
        frames: FrameSource,
        items: ItemStore,
        replies: ReplyListener,
        interrupt_words: Iterable[str] = INTERRUPT_WORDS,
        loop_profiles: Optional[Iterable[LoopProfile]] = None,
        on_state_change: Optional[StateCallback] = None,
        on_response: Optional[ResponseCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._recognition = recognition
        self._interpreter = interpreter
        self._speech = speech
        self._items = items
        self._interrupt_words = tuple(word.lower() for word in interrupt_words)
        self._on_state_change = on_state_change
        self._on_response = on_response
        self._on_error = on_error

        self._state = AppState.IDLE
        self._generation = 0
        self._in_flight: Optional[int] = None
        self._voice_active = False
        self._followup: Optional[FollowUpContext] = None
        self.last_response = ""
        self._tasks: set[asyncio.Future] = set()

        self._actions = ActionHandlers(
            coordinator=self,
            analyzer=analyzer,
            frames=frames,
            speech=speech,
            items=items,
            replies=replies,
        )
        if loop_profiles is None:
            loop_profiles = (
                commentary_profile(analyzer, items),
                object_search_profile(analyzer, items),
            )
        self._loops = {
            profile.kind: PollingLoop(profile, frames, speech, on_result=self.display)
            for profile in loop_profiles
        }

        recognition.on_transcript = self.handle_transcript
        speech.add_listener(self._on_speaking_change)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._state not in COMMAND_READY_STATES

    @property
    def voice_active(self) -> bool:
        return self._voice_active

    @property
    def followup(self) -> Optional[FollowUpContext]:
        return self._followup

    def set_state(self, to_state: AppState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.debug("State %s -> %s", from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)

    def is_current(self, ctx: CommandContext) -> bool:
        return ctx.generation == self._generation

    def loop(self, kind: LoopKind) -> PollingLoop:
        return self._loops[kind]

    # ------------------------------------------------------------------
    # Transcript entry point
    # ------------------------------------------------------------------

    def handle_transcript(self, transcript: CommandTranscript) -> None:
        logger.debug(
            "Transcript %r final=%s state=%s", transcript.text, transcript.is_final, self._state.value
        )
        if self.is_interrupt(transcript.text):
            logger.info("Stop command detected: %s", transcript.text)
            self.interrupt()
            return

        if not transcript.is_final or self.is_busy or self._in_flight is not None:
            if transcript.is_final:
                logger.info("Busy (%s), discarding: %s", self._state.value, transcript.text)
                if self._in_flight is None:
                    # No command will release the session, so do it here.
                    self._recognition.resume_after_command_completion()
            return

        self._generation += 1
        ctx = CommandContext(
            generation=self._generation, pre_state=self._state, text=transcript.text
        )
        self._in_flight = ctx.generation
        self.set_state(AppState.INTERPRETING)
        self.display(f'Interpreting: "{transcript.text}"...')
        task = asyncio.ensure_future(self._run_command(ctx))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def is_interrupt(self, text: str) -> bool:
        lowered = text.lower()
        return any(word in lowered for word in self._interrupt_words)

    def interrupt(self) -> None:
        # Anything still in flight is now stale; its results are dropped.
        self._generation += 1
        self._in_flight = None
        self._speech.cancel()
        self.stop_loops()
        self.set_state(AppState.IDLE)
        self.respond(STOP_MESSAGE)
        self._recognition.resume_after_command_completion()

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    async def _run_command(self, ctx: CommandContext) -> None:
        try:
            await self._execute(ctx)
        except CommandUnrecognizedError as exc:
            if self.is_current(ctx):
                self._fail(exc)
        except Exception as exc:
            logger.exception("Command %r failed", ctx.text)
            if self.is_current(ctx):
                failure = exc if isinstance(exc, AssistantError) else HandlerFailureError(str(exc))
                self._fail(failure)
        finally:
            self._finish(ctx)

    async def _execute(self, ctx: CommandContext) -> None:
        item_names = [item.name for item in self._items.list_items()]
        try:
            result = await self._interpreter.interpret(ctx.text, item_names, ctx.pre_state)
        except Exception as exc:
            raise CommandUnrecognizedError() from exc
        if not self.is_current(ctx):
            return
        if result is None or result.action is None:
            raise CommandUnrecognizedError()

        logger.info("Interpreted %r as %s", ctx.text, result.action.value)
        if result.action == ActionType.UNKNOWN:
            await self._actions.open_query(ctx.text, ctx)
        elif result.action == ActionType.STOP:
            return
        else:
            await self._actions.dispatch(result.action, result.payload, ctx)

    def _finish(self, ctx: CommandContext) -> None:
        if not self.is_current(ctx):
            # Superseded by an interrupt, which already released the session.
            return
        if self._state in _COMMAND_STATES:
            restore = (
                AppState.MANAGING_ITEMS
                if ctx.pre_state == AppState.MANAGING_ITEMS
                else AppState.IDLE
            )
            self.set_state(restore)
        self._in_flight = None
        logger.debug("Command processing complete, resuming recognition")
        self._recognition.resume_after_command_completion()

    def _fail(self, error: AssistantError) -> None:
        self.respond(f"Sorry. {error.message}")
        self._emit_error(error.code, error.message)

    # ------------------------------------------------------------------
    # Helpers for action handlers
    # ------------------------------------------------------------------

    def respond(self, text: str) -> None:
        self.display(text)
        self._speech.speak(text)

    def display(self, text: str) -> None:
        self.last_response = text
        if self._on_response:
            self._on_response(text)

    def remember_analysis(self, frame: Frame, history: list[dict[str, Any]]) -> None:
        self._followup = FollowUpContext(frame=frame, history=list(history))

    def clear_followup(self) -> None:
        self._followup = None

    def suspend_listening(self) -> None:
        self._recognition.pause(REPLY_PAUSE)

    def release_listening(self) -> None:
        self._recognition.resume(REPLY_PAUSE)

    def start_loop(self, kind: LoopKind, target: Optional[str] = None) -> None:
        for other_kind, other in self._loops.items():
            if other_kind != kind:
                other.stop()
        self.set_state(_LOOP_STATES[kind])
        self._loops[kind].start(target)

    def stop_loops(self) -> None:
        for kind, polling_loop in self._loops.items():
            if polling_loop.is_active:
                polling_loop.stop()
                self.display(_LOOP_STOP_MESSAGES[kind])

    # ------------------------------------------------------------------
    # Voice command toggle
    # ------------------------------------------------------------------

    async def start_listening(self) -> bool:
        try:
            await self._recognition.start()
        except PermissionDeniedError as exc:
            self.display(exc.message)
            return False
        self._voice_active = True
        self.display("Voice commands active. Say a command like 'describe scene' or 'help'.")
        return True

    def stop_listening(self) -> None:
        self._voice_active = False
        self._recognition.stop()
        self.display("Voice commands paused. Press the hotkey to resume.")

    async def toggle_listening(self) -> bool:
        if self._voice_active:
            self.stop_listening()
            return False
        return await self.start_listening()

    def _on_speaking_change(self, is_speaking: bool) -> None:
        if not self._voice_active:
            return
        if is_speaking:
            self._recognition.pause(SPEECH_PAUSE)
        else:
            self._recognition.resume(SPEECH_PAUSE)

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)
