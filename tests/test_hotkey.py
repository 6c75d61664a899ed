from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from hotkey import GlobalHotkeyAdapter


@pytest.fixture
def fake_keyboard(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    fake = MagicMock()
    monkeypatch.setattr("hotkey.keyboard", fake)
    return fake


def test_toggle_fires_once_per_press(fake_keyboard: MagicMock) -> None:
    toggles: list[int] = []
    adapter = GlobalHotkeyAdapter(hotkey_name="Key.f9")

    adapter.start(on_toggle=lambda: toggles.append(1))
    handlers = fake_keyboard.Listener.call_args.kwargs
    on_press, on_release = handlers["on_press"], handlers["on_release"]

    on_press("Key.f9")
    on_press("Key.f9")
    assert len(toggles) == 1

    on_release("Key.f9")
    on_press("Key.f9")
    assert len(toggles) == 2

    on_press("Key.f8")
    assert len(toggles) == 2


def test_stop_stops_listener(fake_keyboard: MagicMock) -> None:
    adapter = GlobalHotkeyAdapter()
    adapter.start(on_toggle=lambda: None)

    adapter.stop()
    adapter.stop()

    fake_keyboard.Listener.return_value.stop.assert_called_once()


def test_start_without_pynput(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("hotkey.keyboard", None)

    with pytest.raises(RuntimeError, match="pynput is not installed"):
        GlobalHotkeyAdapter().start(on_toggle=lambda: None)
