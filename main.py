"""Application entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Optional

from assistant_service import DashscopeAssistantService
from camera import OpenCvFrameSource
from command_coordinator import CommandCoordinator
from config import JsonConfigStore
from hotkey import GlobalHotkeyAdapter
from item_store import JsonItemStore
from models import AppState, ListeningModel
from recognition_manager import RecognitionLifecycleManager
from recognizer import DashscopeSpeechEngine, OneShotListener
from recorder import SoundDeviceMicrophone
from speaker import DashscopeSpeechOutput

logger = logging.getLogger("handsfree")

# Platforms whose recognition sessions end after every utterance.
SINGLE_SHOT_PLATFORMS = ("android", "ios")


def resolve_listening_model(setting: str, platform: str = sys.platform) -> ListeningModel:
    if setting == "continuous":
        return ListeningModel.CONTINUOUS
    if setting == "single_shot":
        return ListeningModel.SINGLE_SHOT
    if platform.startswith(SINGLE_SHOT_PLATFORMS):
        return ListeningModel.SINGLE_SHOT
    return ListeningModel.CONTINUOUS


class App:
    def __init__(self) -> None:
        self.config_store = JsonConfigStore()
        logging.basicConfig(
            level=self.config_store.get_log_level(),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        api_key = self.config_store.get_api_key()
        language = self.config_store.get_language()

        def engine_factory(lang: str, continuous: bool) -> DashscopeSpeechEngine:
            return DashscopeSpeechEngine(api_key=api_key, lang=lang, continuous=continuous)

        self.frames = OpenCvFrameSource()
        self.speech = DashscopeSpeechOutput(api_key=api_key, language=language)
        self.recognition = RecognitionLifecycleManager(
            engine_factory=engine_factory,
            microphone=SoundDeviceMicrophone(),
            listening_model=resolve_listening_model(self.config_store.get_listening_model()),
            language=language,
            on_listening_change=self._on_listening_change,
            on_error=self._on_error,
        )
        service = DashscopeAssistantService(api_key=api_key)
        self.coordinator = CommandCoordinator(
            recognition=self.recognition,
            interpreter=service,
            analyzer=service,
            speech=self.speech,
            frames=self.frames,
            items=JsonItemStore(),
            replies=OneShotListener(engine_factory, language=language),
            on_state_change=self._on_state_change,
            on_response=self._on_response,
            on_error=self._on_error,
        )
        self.hotkey = GlobalHotkeyAdapter(hotkey_name=self.config_store.get_hotkey())
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stopped = asyncio.Event()
        self._tasks: set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: AppState, to_state: AppState) -> None:
        logger.info("State: %s -> %s", from_state.value, to_state.value)

    def _on_listening_change(self, listening: bool) -> None:
        logger.info("Listening for commands..." if listening else "Microphone idle")

    def _on_response(self, text: str) -> None:
        logger.info("» %s", text)

    def _on_error(self, code: str, message: str) -> None:
        logger.warning("%s: %s", code, message)

    # ------------------------------------------------------------------
    # Hotkey handler (pynput thread)
    # ------------------------------------------------------------------

    def _on_hotkey(self) -> None:
        loop = self._loop
        if loop is not None:
            loop.call_soon_threadsafe(self._toggle_listening)

    def _toggle_listening(self) -> None:
        task = asyncio.ensure_future(self.coordinator.toggle_listening())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> int:
        self._loop = asyncio.get_running_loop()
        try:
            self.frames.open()
        except RuntimeError as exc:
            logger.error("Camera disabled: %s", exc)
        try:
            self.hotkey.start(on_toggle=self._on_hotkey)
        except Exception as exc:
            logger.error("Hotkey disabled: %s", exc)
        await self.coordinator.start_listening()
        try:
            await self._stopped.wait()
        finally:
            self.shutdown()
        return 0

    def quit(self) -> None:
        self._stopped.set()

    def shutdown(self) -> None:
        self.hotkey.stop()
        self.coordinator.stop_loops()
        self.recognition.close()
        self.speech.cancel()
        self.frames.close()


def main() -> int:
    app = App()
    try:
        return asyncio.run(app.run())
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
