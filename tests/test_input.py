"""
Tests for the hotkey InputController.

pynput needs a display server, so a stand-in keyboard module is
installed in sys.modules for these tests.
"""

from types import SimpleNamespace
from unittest.mock import Mock, patch

import pytest

from murmullo.input import InputController


class FakeKeyCode:
    def __init__(self, char=None):
        self.char = char


FakeKey = SimpleNamespace(
    shift=object(), shift_r=object(), esc=object(), f9=object(), alt_r=object(), space=object(),
)


@pytest.fixture(autouse=True)
def fake_pynput():
    keyboard = SimpleNamespace(Key=FakeKey, KeyCode=FakeKeyCode)
    with patch.dict("sys.modules", {"pynput": SimpleNamespace(keyboard=keyboard),
                                    "pynput.keyboard": keyboard}):
        yield


def make_controller(trigger="f9", recording=False):
    config = Mock()
    config.trigger_key = trigger
    controller = InputController(config)
    state = {"recording": recording}
    controller.is_recording = lambda: state["recording"]
    controller.on_start_recording = Mock(side_effect=lambda: state.update(recording=True))
    controller.on_stop_recording = Mock(side_effect=lambda: state.update(recording=False))
    controller.on_emergency_reset = Mock()
    return controller


class TestToggle:

    def test_press_starts_then_press_stops(self):
        controller = make_controller()

        controller.on_key_press(FakeKey.f9)
        controller.on_key_release(FakeKey.f9)
        controller.on_key_press(FakeKey.f9)
        controller.on_key_release(FakeKey.f9)

        controller.on_start_recording.assert_called_once()
        controller.on_stop_recording.assert_called_once()

    def test_key_repeat_ignored(self):
        controller = make_controller()

        controller.on_key_press(FakeKey.f9)
        controller.on_key_press(FakeKey.f9)
        controller.on_key_press(FakeKey.f9)

        controller.on_start_recording.assert_called_once()
        controller.on_stop_recording.assert_not_called()

    def test_other_keys_ignored(self):
        controller = make_controller()

        controller.on_key_press(FakeKey.space)
        controller.on_key_press(FakeKeyCode("a"))

        controller.on_start_recording.assert_not_called()

    def test_character_trigger(self):
        controller = make_controller(trigger="R")

        controller.on_key_press(FakeKeyCode("r"))

        controller.on_start_recording.assert_called_once()


class TestEmergencyReset:

    def test_shift_esc_resets(self):
        controller = make_controller(recording=True)

        controller.on_key_press(FakeKey.shift)
        controller.on_key_press(FakeKey.esc)

        controller.on_emergency_reset.assert_called_once()
        controller.on_stop_recording.assert_not_called()

    def test_esc_alone_does_nothing(self):
        controller = make_controller(recording=True)

        controller.on_key_press(FakeKey.shift)
        controller.on_key_release(FakeKey.shift)
        controller.on_key_press(FakeKey.esc)

        controller.on_emergency_reset.assert_not_called()

    def test_reset_clears_held_trigger(self):
        controller = make_controller()
        controller.on_key_press(FakeKey.f9)

        controller.on_key_press(FakeKey.shift_r)
        controller.on_key_press(FakeKey.esc)
        controller.on_key_release(FakeKey.shift_r)
        controller.on_key_press(FakeKey.f9)

        assert controller.on_stop_recording.call_count == 1
