"""Lifecycle management for the platform speech recognition engine.

Engines come in two flavours. A CONTINUOUS engine keeps one session open across
utterances and only ends on a manual stop or a fatal error. A SINGLE_SHOT engine
ends its session after every utterance (or silence timeout), so listening has to
be restarted over and over, and a naive restart on every end-of-session would
race the command that the last utterance triggered.

The manager hides that difference behind start/stop/pause/resume and an explicit
``resume_after_command_completion`` signal. The listening model is resolved once
and turned into a strategy object; every restart goes through one single-slot
timer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from errors import (
    ENGINE_NETWORK_ERRORS,
    ENGINE_PERMISSION_ERRORS,
    ENGINE_TRANSIENT_ERRORS,
    ERROR_MESSAGES,
    NETWORK_ERROR,
    PERMISSION_DENIED,
    RECOGNITION_FAILED,
    EngineBusyError,
    PermissionDeniedError,
)
from interfaces import MicrophoneAccess, RecognitionEngine
from models import (
    CommandTranscript,
    ListeningModel,
    RecognitionPhase,
    RecognitionResult,
    RecognitionSession,
)

logger = logging.getLogger(__name__)

EngineFactory = Callable[[str, bool], RecognitionEngine]
TranscriptCallback = Callable[[CommandTranscript], None]
ListeningCallback = Callable[[bool], None]
ErrorCallback = Callable[[str, str], None]

SPEECH_PAUSE = "speech"
REPLY_PAUSE = "reply"
HIDDEN_PAUSE = "hidden"


class ListeningStrategy:
    model: ListeningModel
    continuous: bool

    def __init__(self, restart_delay_s: float) -> None:
        self.restart_delay_s = restart_delay_s

    def on_final_result(self, manager: RecognitionLifecycleManager) -> None:
        """Runs before a final transcript is handed to the coordinator."""

    def after_command(self, manager: RecognitionLifecycleManager) -> None:
        """Runs when the coordinator reports the command as finished."""


class ContinuousListening(ListeningStrategy):
    model = ListeningModel.CONTINUOUS
    continuous = True


class SingleShotListening(ListeningStrategy):
    model = ListeningModel.SINGLE_SHOT
    continuous = False

    def on_final_result(self, manager: RecognitionLifecycleManager) -> None:
        # Stop before the platform does, so its end-of-session cannot restart us.
        manager._hold_for_command()

    def after_command(self, manager: RecognitionLifecycleManager) -> None:
        manager._restart_after_command()


def strategy_for(
    model: ListeningModel,
    continuous_restart_delay_s: float = 0.25,
    single_shot_restart_delay_s: float = 0.5,
) -> ListeningStrategy:
    if model == ListeningModel.CONTINUOUS:
        return ContinuousListening(continuous_restart_delay_s)
    return SingleShotListening(single_shot_restart_delay_s)


class RecognitionLifecycleManager:
    def __init__(
        self,
        engine_factory: EngineFactory,
        microphone: MicrophoneAccess,
        listening_model: ListeningModel,
        language: str = "en-US",
        continuous_restart_delay_s: float = 0.25,
        single_shot_restart_delay_s: float = 0.5,
        resume_delay_s: float = 0.1,
        command_settle_s: float = 0.3,
        visibility_settle_s: float = 0.3,
        on_transcript: Optional[TranscriptCallback] = None,
        on_listening_change: Optional[ListeningCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._engine_factory = engine_factory
        self._microphone = microphone
        self._strategy = strategy_for(
            listening_model, continuous_restart_delay_s, single_shot_restart_delay_s
        )
        self._resume_delay_s = resume_delay_s
        self._command_settle_s = command_settle_s
        self._visibility_settle_s = visibility_settle_s
        self.on_transcript = on_transcript
        self.on_listening_change = on_listening_change
        self.on_error = on_error

        self._phase = RecognitionPhase.IDLE
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._pause_reasons: set[str] = set()
        self._permission_blocked = False
        self.last_error: Optional[str] = None

        self._session = RecognitionSession(
            listening_model=self._strategy.model,
            language_tag=language,
            # Nothing restarts until the user starts listening.
            is_manually_stopped=True,
        )
        self._engine: Optional[RecognitionEngine] = self._create_engine(language)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def session(self) -> RecognitionSession:
        return self._session

    @property
    def phase(self) -> RecognitionPhase:
        return self._phase

    @property
    def listening_model(self) -> ListeningModel:
        return self._strategy.model

    @property
    def language(self) -> str:
        return self._session.language_tag

    @property
    def is_active(self) -> bool:
        return self._phase in (RecognitionPhase.STARTING, RecognitionPhase.LISTENING)

    @property
    def is_paused(self) -> bool:
        return self._session.is_paused

    @property
    def is_manually_stopped(self) -> bool:
        return self._session.is_manually_stopped

    @property
    def is_awaiting_command_completion(self) -> bool:
        return self._session.is_awaiting_command_completion

    @property
    def permission_blocked(self) -> bool:
        return self._permission_blocked

    @property
    def restart_pending(self) -> bool:
        return self._restart_handle is not None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._cancel_restart()
        granted = await self._microphone.request_access()
        if not granted:
            self._session.is_manually_stopped = True
            self._report(PERMISSION_DENIED, ERROR_MESSAGES[PERMISSION_DENIED])
            raise PermissionDeniedError()
        if self.is_active:
            return
        self._session.is_manually_stopped = False
        self._permission_blocked = False
        self._pause_reasons.clear()
        self._sync_paused()
        self.last_error = None
        self._start_engine()

    def stop(self) -> None:
        self._session.is_manually_stopped = True
        self._pause_reasons.clear()
        self._sync_paused()
        self._cancel_restart()
        self._stop_engine()

    def pause(self, reason: str = SPEECH_PAUSE) -> None:
        self._pause_reasons.add(reason)
        self._sync_paused()
        self._cancel_restart()
        self._stop_engine()

    def resume(self, reason: str = SPEECH_PAUSE) -> None:
        if reason not in self._pause_reasons:
            return
        self._pause_reasons.discard(reason)
        self._sync_paused()
        if self.is_active or not self._can_auto_restart():
            return
        self._schedule_restart(self._resume_delay_s)

    def resume_after_command_completion(self) -> None:
        logger.debug("Command complete, releasing recognition session")
        self._session.is_awaiting_command_completion = False
        self._strategy.after_command(self)

    def set_hidden(self, hidden: bool) -> None:
        if hidden:
            logger.info("App hidden, pausing recognition")
            self.pause(HIDDEN_PAUSE)
            return
        if HIDDEN_PAUSE not in self._pause_reasons:
            return
        logger.info("App visible, resuming recognition")
        self._pause_reasons.discard(HIDDEN_PAUSE)
        self._sync_paused()
        if self._session.is_manually_stopped or self._permission_blocked or self._pause_reasons:
            return
        # Coming back to the foreground does not wait for command completion.
        self._schedule_restart(self._visibility_settle_s, ignore_awaiting=True)

    def set_language(self, language: str) -> None:
        if language == self._session.language_tag:
            return
        was_listening = not self._session.is_manually_stopped
        self._teardown_engine()
        self._session = RecognitionSession(
            listening_model=self._strategy.model,
            language_tag=language,
            is_manually_stopped=self._session.is_manually_stopped,
            is_paused=bool(self._pause_reasons),
            is_awaiting_command_completion=self._session.is_awaiting_command_completion,
        )
        self._engine = self._create_engine(language)
        if was_listening and self._can_auto_restart():
            self._schedule_restart(self._strategy.restart_delay_s)

    def reset_error(self) -> None:
        self.last_error = None
        self._permission_blocked = False

    def close(self) -> None:
        self._session.is_manually_stopped = True
        self._teardown_engine()
        self._engine = None

    # ------------------------------------------------------------------
    # Strategy hooks
    # ------------------------------------------------------------------

    def _hold_for_command(self) -> None:
        self._session.is_awaiting_command_completion = True
        self._cancel_restart()
        self._stop_engine()

    def _restart_after_command(self) -> None:
        if self.is_active or not self._can_auto_restart():
            return
        self._schedule_restart(self._command_settle_s)

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    def _handle_start(self) -> None:
        logger.debug("Speech recognition started")
        self._set_phase(RecognitionPhase.LISTENING)
        self.last_error = None

    def _handle_result(self, result: RecognitionResult) -> None:
        text = result.text.strip().lower()
        if not text:
            return
        if result.is_final:
            logger.info("Final transcript received: %s", text)
            self._strategy.on_final_result(self)
        if self.on_transcript:
            self.on_transcript(
                CommandTranscript(text=text, is_final=result.is_final, confidence=result.confidence)
            )

    def _handle_end(self) -> None:
        logger.debug(
            "Speech recognition ended, paused=%s stopped=%s awaiting=%s",
            self._session.is_paused,
            self._session.is_manually_stopped,
            self._session.is_awaiting_command_completion,
        )
        self._set_phase(RecognitionPhase.IDLE)
        if self._can_auto_restart():
            self._schedule_restart(self._strategy.restart_delay_s)

    def _handle_error(self, error: str) -> None:
        if error in ENGINE_PERMISSION_ERRORS:
            self._permission_blocked = True
            self._cancel_restart()
            self._report(PERMISSION_DENIED, ERROR_MESSAGES[PERMISSION_DENIED])
        elif error in ENGINE_TRANSIENT_ERRORS:
            logger.debug("Non-critical recognition error, continuing: %s", error)
        elif error in ENGINE_NETWORK_ERRORS:
            self._report(NETWORK_ERROR, ERROR_MESSAGES[NETWORK_ERROR])
        else:
            self._report(RECOGNITION_FAILED, f"Speech error: {error}")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _create_engine(self, language: str) -> RecognitionEngine:
        engine = self._engine_factory(language, self._strategy.continuous)
        engine.on_start = self._handle_start
        engine.on_result = self._handle_result
        engine.on_end = self._handle_end
        engine.on_error = self._handle_error
        return engine

    def _teardown_engine(self) -> None:
        self._cancel_restart()
        engine = self._engine
        if engine is None:
            return
        engine.on_start = None
        engine.on_result = None
        engine.on_end = None
        engine.on_error = None
        if self.is_active:
            self._safe_stop(engine)
        self._set_phase(RecognitionPhase.IDLE)

    def _can_auto_restart(self, ignore_awaiting: bool = False) -> bool:
        if self._session.is_manually_stopped or self._permission_blocked:
            return False
        if self._session.is_paused:
            return False
        if self._session.is_awaiting_command_completion and not ignore_awaiting:
            return False
        return True

    def _start_engine(self) -> None:
        if self._engine is None or self.is_active:
            return
        self._set_phase(RecognitionPhase.STARTING)
        try:
            self._engine.start()
        except EngineBusyError:
            logger.debug("Recognition already starting, ignoring")
        except Exception as exc:
            self._set_phase(RecognitionPhase.IDLE)
            self._report(RECOGNITION_FAILED, f"Failed to start: {exc}")

    def _stop_engine(self) -> None:
        if self._engine is None or not self.is_active:
            return
        self._set_phase(RecognitionPhase.ENDING)
        self._safe_stop(self._engine)

    def _safe_stop(self, engine: RecognitionEngine) -> None:
        try:
            engine.stop()
        except Exception as exc:
            logger.warning("Error stopping recognition: %s", exc)

    def _schedule_restart(self, delay_s: float, ignore_awaiting: bool = False) -> None:
        self._cancel_restart()
        loop = asyncio.get_running_loop()
        self._restart_handle = loop.call_later(delay_s, self._restart, ignore_awaiting)

    def _restart(self, ignore_awaiting: bool) -> None:
        self._restart_handle = None
        if not self._can_auto_restart(ignore_awaiting):
            return
        logger.debug("Auto-restarting speech recognition")
        self._start_engine()

    def _cancel_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    def _sync_paused(self) -> None:
        self._session.is_paused = bool(self._pause_reasons)

    def _set_phase(self, phase: RecognitionPhase) -> None:
        was_listening = self._phase == RecognitionPhase.LISTENING
        self._phase = phase
        self._session.is_active = self.is_active
        is_listening = phase == RecognitionPhase.LISTENING
        if was_listening != is_listening and self.on_listening_change:
            self.on_listening_change(is_listening)

    def _report(self, code: str, message: str) -> None:
        self.last_error = message
        logger.warning("%s: %s", code, message)
        if self.on_error:
            self.on_error(code, message)
