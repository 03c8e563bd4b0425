"""
Global hotkey handling.

One configurable key toggles recording; Shift+Esc is the emergency reset.
pynput is imported lazily because it needs a display server on Linux.
"""

import logging
import threading
from typing import Callable, Optional

from .config import Config

logger = logging.getLogger(__name__)


TRIGGER = "trigger"
RESET = "reset"


class InputController:
    """
    Turns pynput key events into start/stop/reset intents.

    A press of the trigger key starts recording when idle and stops it when
    capturing. Held-key auto-repeat is ignored until the key is released.

    Usage:
        hotkeys = InputController(config)
        hotkeys.is_recording = lambda: controller.state == SessionState.CAPTURING
        hotkeys.on_start_recording = controller.start
        hotkeys.on_stop_recording = controller.stop
        hotkeys.on_emergency_reset = controller.cancel
        keyboard.Listener(on_press=hotkeys.on_key_press,
                          on_release=hotkeys.on_key_release).start()
    """

    def __init__(self, config: Config):
        self.trigger_key = config.trigger_key.lower()

        self.is_recording: Optional[Callable[[], bool]] = None
        self.on_start_recording: Optional[Callable[[], None]] = None
        self.on_stop_recording: Optional[Callable[[], None]] = None
        self.on_emergency_reset: Optional[Callable[[], None]] = None

        self._guard = threading.Lock()
        self._held = False
        self._shift_down = False

    def on_key_press(self, key) -> None:
        kind = self._classify(key, pressed=True)
        if kind == RESET:
            self._reset()
        elif kind == TRIGGER:
            self._toggle()

    def on_key_release(self, key) -> None:
        if self._classify(key, pressed=False) == TRIGGER:
            with self._guard:
                self._held = False

    def _classify(self, key, pressed: bool) -> Optional[str]:
        from pynput.keyboard import Key

        if key in (Key.shift, Key.shift_r):
            self._shift_down = pressed
            return None
        if key == Key.esc:
            return RESET if pressed and self._shift_down else None
        return TRIGGER if self._matches_trigger(key) else None

    def _matches_trigger(self, key) -> bool:
        from pynput.keyboard import Key, KeyCode

        named = getattr(Key, self.trigger_key, None)
        if named is not None:
            return key == named
        if len(self.trigger_key) == 1 and isinstance(key, KeyCode):
            return (key.char or "").lower() == self.trigger_key
        return False

    def _toggle(self) -> None:
        with self._guard:
            if self._held:
                return
            self._held = True

        recording = bool(self.is_recording and self.is_recording())
        action = self.on_stop_recording if recording else self.on_start_recording
        if action:
            action()

    def _reset(self) -> None:
        with self._guard:
            self._held = False
        logger.warning("[Input] Emergency reset")
        action = self.on_emergency_reset or self.on_stop_recording
        if action:
            action()
