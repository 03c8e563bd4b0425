"""
Tests for clipboard paste and restore.

The system clipboard is replaced by an in-memory fake so the restore
invariant can be checked on every exit path.
"""

import subprocess
import threading
from unittest.mock import Mock, patch

import pytest

from murmullo.output import (
    ClipboardPasteOrchestrator, MacPasteSimulator, NullPasteSimulator, PyperclipClipboard,
    WindowsPasteSimulator, helper_timeout, select_paste_simulator,
)


class FakeClipboard:
    """In-memory clipboard that records every write."""

    def __init__(self, content: str = ""):
        self.content = content
        self.writes = []

    def read(self) -> str:
        return self.content

    def write(self, text: str) -> None:
        self.writes.append(text)
        self.content = text

    def clear(self) -> None:
        self.writes.append("")
        self.content = ""


class RecordingSimulator:
    """Captures what the clipboard held when paste was sent."""

    name = "fake"

    def __init__(self, clipboard: FakeClipboard, result: bool = True):
        self.clipboard = clipboard
        self.result = result
        self.seen = []

    def send_paste(self) -> bool:
        self.seen.append(self.clipboard.content)
        return self.result


def make_orchestrator(clipboard, simulator, **kwargs):
    defaults = {"sleep": Mock(), "timeout": 1.0}
    defaults.update(kwargs)
    return ClipboardPasteOrchestrator(clipboard, simulator, **defaults)


class TestPasteAndRestore:
    """Tests for ClipboardPasteOrchestrator.paste_and_restore."""

    def test_previous_content_restored(self):
        """Scenario D: prior clipboard text survives the paste."""
        clipboard = FakeClipboard("previous clipboard text")
        simulator = RecordingSimulator(clipboard)

        result = make_orchestrator(clipboard, simulator).paste_and_restore("new transcript")

        assert simulator.seen == ["new transcript"]
        assert clipboard.content == "previous clipboard text"
        assert result.success is True
        assert result.clipboard_restored is True

    def test_empty_clipboard_cleared_afterwards(self):
        clipboard = FakeClipboard("")
        simulator = RecordingSimulator(clipboard)

        make_orchestrator(clipboard, simulator).paste_and_restore("texto")

        assert clipboard.content == ""
        assert clipboard.writes == ["texto", ""]

    def test_steps_run_in_order(self):
        calls = []
        clipboard = FakeClipboard("old")
        clipboard.write = lambda text: calls.append(("write", text))
        simulator = Mock()
        simulator.name = "mock"
        simulator.send_paste.side_effect = lambda: calls.append(("paste",)) or True
        sleep = Mock(side_effect=lambda s: calls.append(("sleep", s)))
        release_focus = Mock(side_effect=lambda: calls.append(("focus",)))

        orchestrator = make_orchestrator(clipboard, simulator, sleep=sleep, release_focus=release_focus)
        orchestrator.paste_and_restore("nuevo")

        assert calls == [
            ("write", "nuevo"),
            ("focus",),
            ("sleep", 0.1),
            ("paste",),
            ("sleep", 0.15),
            ("write", "old"),
        ]

    def test_restored_when_simulator_raises(self):
        clipboard = FakeClipboard("keep me")
        simulator = Mock()
        simulator.name = "broken"
        simulator.send_paste.side_effect = OSError("no helper")

        result = make_orchestrator(clipboard, simulator).paste_and_restore("transient")

        assert result.success is False
        assert "no helper" in result.reason
        assert clipboard.content == "keep me"

    def test_restored_when_simulator_reports_failure(self):
        clipboard = FakeClipboard("keep me")

        result = make_orchestrator(clipboard, NullPasteSimulator()).paste_and_restore("transient")

        assert result.success is False
        assert clipboard.content == "keep me"

    def test_restored_when_automation_hangs(self):
        """A hung helper is abandoned after the timeout and the clipboard restored."""
        clipboard = FakeClipboard("keep me")
        release = threading.Event()
        simulator = Mock()
        simulator.name = "hung"
        simulator.send_paste.side_effect = lambda: release.wait(5) or True

        try:
            result = make_orchestrator(clipboard, simulator, timeout=0.1).paste_and_restore("transient")
        finally:
            release.set()

        assert result.success is False
        assert "timed out" in result.reason
        assert clipboard.content == "keep me"

    def test_abandoned_helper_never_sends_late_paste(self):
        """A helper still focusing at the timeout must not paste the restored clipboard."""
        clipboard = FakeClipboard("previous clipboard text")
        simulator = RecordingSimulator(clipboard)
        focus_gate = threading.Event()
        orchestrator = make_orchestrator(
            clipboard, simulator, timeout=0.1, release_focus=lambda: focus_gate.wait(5)
        )

        result = orchestrator.paste_and_restore("new transcript")
        focus_gate.set()
        orchestrator._helper.join(2)

        assert result.success is False
        assert "timed out" in result.reason
        assert simulator.seen == []
        assert clipboard.content == "previous clipboard text"

    def test_waits_out_running_helper_before_next_paste(self):
        clipboard = FakeClipboard("base")
        focus_gate = threading.Event()
        orchestrator = make_orchestrator(
            clipboard, RecordingSimulator(clipboard), timeout=0.1,
            release_focus=lambda: focus_gate.wait(5),
        )

        try:
            orchestrator.paste_and_restore("first")
            writes_after_first = list(clipboard.writes)
            second = orchestrator.paste_and_restore("second")
        finally:
            focus_gate.set()

        assert second.success is False
        assert "still running" in second.reason
        assert clipboard.writes == writes_after_first
        assert clipboard.content == "base"

    def test_restored_when_focus_release_fails(self):
        clipboard = FakeClipboard("")
        release_focus = Mock(side_effect=RuntimeError("window gone"))

        result = make_orchestrator(
            clipboard, RecordingSimulator(clipboard), release_focus=release_focus
        ).paste_and_restore("transient")

        assert result.success is False
        assert clipboard.content == ""

    def test_unreadable_clipboard_never_written(self):
        clipboard = Mock()
        clipboard.read.side_effect = RuntimeError("locked")

        result = make_orchestrator(clipboard, NullPasteSimulator()).paste_and_restore("x")

        assert result.success is False
        clipboard.write.assert_not_called()

    def test_restore_failure_reported(self):
        clipboard = FakeClipboard("old")
        original_write = clipboard.write

        def write(text):
            if text == "old":
                raise RuntimeError("busy")
            original_write(text)

        clipboard.write = write

        result = make_orchestrator(clipboard, RecordingSimulator(clipboard)).paste_and_restore("new")

        assert result.success is True
        assert result.clipboard_restored is False

    def test_pastes_never_interleave(self):
        clipboard = FakeClipboard("base")
        active = []
        overlaps = []

        class SlowSimulator:
            name = "slow"

            def send_paste(self):
                if active:
                    overlaps.append(True)
                active.append(1)
                threading.Event().wait(0.05)
                active.pop()
                return True

        orchestrator = make_orchestrator(clipboard, SlowSimulator())
        threads = [threading.Thread(target=orchestrator.paste_and_restore, args=(f"t{i}",))
                   for i in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []
        assert clipboard.content == "base"


class TestSimulators:
    """Tests for the platform paste simulators."""

    def test_select_by_platform(self):
        assert isinstance(select_paste_simulator("win32"), WindowsPasteSimulator)
        assert isinstance(select_paste_simulator("darwin"), MacPasteSimulator)
        assert isinstance(select_paste_simulator("sunos5"), NullPasteSimulator)

    def test_helper_timeout_follows_paste_budget(self):
        assert helper_timeout(5.0) == pytest.approx(4.5)
        assert helper_timeout(0.2) == 0.5

        simulator = select_paste_simulator("darwin", timeout=helper_timeout(2.0))

        assert simulator.timeout == pytest.approx(1.5)

    def test_windows_sends_ctrl_v_via_powershell(self):
        completed = subprocess.CompletedProcess([], 0)
        with patch("murmullo.output.subprocess.run", return_value=completed) as run:
            assert WindowsPasteSimulator(timeout=2).send_paste() is True

        command = run.call_args.args[0]
        assert command[0] == "powershell.exe"
        assert 'SendWait("^v")' in command[-1]
        assert run.call_args.kwargs["timeout"] == 2

    def test_mac_sends_cmd_v_via_osascript(self):
        completed = subprocess.CompletedProcess([], 1)
        with patch("murmullo.output.subprocess.run", return_value=completed) as run:
            assert MacPasteSimulator().send_paste() is False

        command = run.call_args.args[0]
        assert command[:2] == ["osascript", "-e"]
        assert 'keystroke "v" using command down' in command[2]


class TestPyperclipClipboard:

    def test_delegates_to_pyperclip(self):
        with patch("murmullo.output.pyperclip") as pyperclip:
            pyperclip.paste.return_value = None
            clipboard = PyperclipClipboard()

            assert clipboard.read() == ""
            clipboard.write("hola")
            clipboard.clear()

        assert [c.args for c in pyperclip.copy.call_args_list] == [("hola",), ("",)]


def test_linux_falls_back_without_display():
    """pynput cannot load without an X server; paste becomes manual."""
    with patch.dict("sys.modules", {"pynput.keyboard": None}):
        assert isinstance(select_paste_simulator("linux"), NullPasteSimulator)
