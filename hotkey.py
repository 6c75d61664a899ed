"""Global key that toggles voice commands on and off."""

from __future__ import annotations

import threading
from typing import Any, Callable

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore


class GlobalHotkeyAdapter:
    def __init__(self, hotkey_name: str = "Key.f9") -> None:
        self._hotkey_name = hotkey_name
        self._listener: Any = None
        self._held = threading.Event()

    def start(self, on_toggle: Callable[[], None]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")

        def on_press(key: object) -> None:
            # Auto-repeat keeps delivering presses while the key is held.
            if str(key) == self._hotkey_name and not self._held.is_set():
                self._held.set()
                on_toggle()

        def on_release(key: object) -> None:
            if str(key) == self._hotkey_name:
                self._held.clear()

        self._listener = keyboard.Listener(on_press=on_press, on_release=on_release)
        self._listener.start()

    def stop(self) -> None:
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
