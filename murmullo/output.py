"""
Clipboard-based paste into the focused application.

The clipboard is shared with the rest of the desktop, so every paste
snapshots it first and restores it on every exit path.
"""

import logging
import subprocess
import sys
import threading
import time
from typing import Callable, Optional, Protocol

import pyperclip

from .types import ClipboardSnapshot, PasteResult

logger = logging.getLogger(__name__)


FOCUS_SETTLE_SECONDS = 0.1
CONSUME_SECONDS = 0.15
DEFAULT_PASTE_TIMEOUT = 5.0
HELPER_TIMEOUT = 3.0
MIN_HELPER_TIMEOUT = 0.5
HELPER_MARGIN = 0.25

WINDOWS_SENDKEYS = (
    "Add-Type -AssemblyName System.Windows.Forms; "
    '[System.Windows.Forms.SendKeys]::SendWait("^v")'
)
MAC_KEYSTROKE = 'tell application "System Events" to keystroke "v" using command down'


class Clipboard(Protocol):
    def read(self) -> str: ...

    def write(self, text: str) -> None: ...

    def clear(self) -> None: ...


class PyperclipClipboard:
    """System clipboard through pyperclip."""

    def read(self) -> str:
        return pyperclip.paste() or ""

    def write(self, text: str) -> None:
        pyperclip.copy(text)

    def clear(self) -> None:
        pyperclip.copy("")


# Paste simulators: each sends exactly one "paste" shortcut and nothing else.

class PasteSimulator(Protocol):
    name: str

    def send_paste(self) -> bool: ...


class WindowsPasteSimulator:
    """Ctrl+V through a PowerShell SendKeys helper process."""

    name = "windows-sendkeys"

    def __init__(self, timeout: float = HELPER_TIMEOUT):
        self.timeout = timeout

    def send_paste(self) -> bool:
        completed = subprocess.run(
            ["powershell.exe", "-NoProfile", "-NonInteractive", "-Command", WINDOWS_SENDKEYS],
            capture_output=True,
            timeout=self.timeout,
        )
        logger.debug("[Paste] PowerShell exit code: %d", completed.returncode)
        return completed.returncode == 0


class MacPasteSimulator:
    """Cmd+V through an AppleScript System Events keystroke."""

    name = "macos-osascript"

    def __init__(self, timeout: float = HELPER_TIMEOUT):
        self.timeout = timeout

    def send_paste(self) -> bool:
        completed = subprocess.run(
            ["osascript", "-e", MAC_KEYSTROKE],
            capture_output=True,
            timeout=self.timeout,
        )
        return completed.returncode == 0


class PynputPasteSimulator:
    """Ctrl+V through pynput's keyboard controller (X11 and friends)."""

    name = "pynput"

    def send_paste(self) -> bool:
        from pynput.keyboard import Controller, Key

        keyboard = Controller()
        with keyboard.pressed(Key.ctrl):
            keyboard.press("v")
            keyboard.release("v")
        return True


class NullPasteSimulator:
    """No automation available: the user pastes manually."""

    name = "none"

    def send_paste(self) -> bool:
        return False


def helper_timeout(paste_timeout: float) -> float:
    """Budget left for the helper process once the fixed paste delays are spent."""
    remaining = paste_timeout - FOCUS_SETTLE_SECONDS - CONSUME_SECONDS - HELPER_MARGIN
    return max(remaining, MIN_HELPER_TIMEOUT)


def select_paste_simulator(
    platform: Optional[str] = None, timeout: float = HELPER_TIMEOUT
) -> PasteSimulator:
    """Pick the simulator for this platform once, at startup."""
    platform = platform or sys.platform
    if platform == "win32":
        return WindowsPasteSimulator(timeout)
    if platform == "darwin":
        return MacPasteSimulator(timeout)
    if platform.startswith("linux"):
        try:
            import pynput.keyboard  # noqa: F401
        except Exception as e:  # pynput raises on missing display backends too
            logger.warning("[Paste] pynput unavailable, manual paste only: %s", e)
            return NullPasteSimulator()
        return PynputPasteSimulator()
    return NullPasteSimulator()


class ClipboardPasteOrchestrator:
    """
    Snapshot clipboard, write text, send paste, restore clipboard.

    Focus and paste run on a helper thread bounded by `timeout`. A helper
    that overruns is flagged abandoned and skips the keystroke if it has not
    sent it yet. No later paste touches the clipboard while it is alive.

    Usage:
        orchestrator = ClipboardPasteOrchestrator(
            PyperclipClipboard(), select_paste_simulator(), release_focus=window.hide
        )
        result = orchestrator.paste_and_restore("hola mundo")
    """

    def __init__(
        self,
        clipboard: Clipboard,
        simulator: PasteSimulator,
        release_focus: Optional[Callable[[], None]] = None,
        timeout: float = DEFAULT_PASTE_TIMEOUT,
        focus_settle: float = FOCUS_SETTLE_SECONDS,
        consume_delay: float = CONSUME_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.clipboard = clipboard
        self.simulator = simulator
        self.release_focus = release_focus
        self.timeout = timeout
        self.focus_settle = focus_settle
        self.consume_delay = consume_delay
        self._sleep = sleep
        # Only one paste may touch the clipboard at a time
        self._lock = threading.Lock()
        self._helper: Optional[threading.Thread] = None

    def paste_and_restore(self, text: str) -> PasteResult:
        with self._lock:
            if not self._previous_helper_done():
                logger.warning("[Paste] Previous paste helper still running, skipping")
                return PasteResult(success=False, clipboard_restored=True,
                                   reason="previous paste automation still running")
            try:
                snapshot = self._snapshot()
            except Exception as e:
                logger.error("[Paste] Could not read clipboard: %s", e)
                return PasteResult(success=False, clipboard_restored=True,
                                   reason=f"clipboard unreadable: {e}")

            success = False
            reason = ""
            try:
                self.clipboard.write(text)
                success, reason = self._run_bounded(self._focus_and_paste)
            except Exception as e:
                reason = f"clipboard write failed: {e}"
            finally:
                restored = self._restore(snapshot)

            if success:
                logger.info("[Paste] Pasted %d chars via %s", len(text), self.simulator.name)
            else:
                logger.warning("[Paste] Paste failed (%s)", reason)
            return PasteResult(success=success, clipboard_restored=restored, reason=reason)

    def _previous_helper_done(self) -> bool:
        helper = self._helper
        if helper is None:
            return True
        helper.join(self.timeout)
        return not helper.is_alive()

    def _snapshot(self) -> ClipboardSnapshot:
        content = self.clipboard.read()
        return ClipboardSnapshot(had_content=len(content) > 0, content=content)

    def _focus_and_paste(self, abandoned: threading.Event) -> bool:
        if self.release_focus:
            self.release_focus()
        self._sleep(self.focus_settle)
        if abandoned.is_set():
            return False
        sent = self.simulator.send_paste()
        self._sleep(self.consume_delay)
        return sent

    def _run_bounded(self, fn: Callable[[threading.Event], bool]):
        """
        Run fn on a daemon thread, giving up after self.timeout.

        Returns (success, reason). On timeout the helper's abandoned event is
        set so it stops before sending a keystroke.
        """
        outcome = {}
        abandoned = threading.Event()

        def target() -> None:
            try:
                outcome["sent"] = fn(abandoned)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=target, name="paste-automation", daemon=True)
        self._helper = worker
        worker.start()
        worker.join(self.timeout)

        if worker.is_alive():
            abandoned.set()
            return False, f"paste automation timed out after {self.timeout}s"
        if "error" in outcome:
            return False, f"paste automation failed: {outcome['error']}"
        if not outcome.get("sent"):
            return False, f"paste automation unavailable ({self.simulator.name})"
        return True, "ok"

    def _restore(self, snapshot: ClipboardSnapshot) -> bool:
        try:
            if snapshot.had_content:
                self.clipboard.write(snapshot.content)
            else:
                self.clipboard.clear()
            return True
        except Exception as e:
            logger.error("[Paste] Clipboard restore failed: %s", e)
            return False
