"""Tests for the tmux pane spawner."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from baton.panes.base import PaneError, PaneSpawner
from baton.panes.tmux import PANE_FORMAT, TmuxPaneSpawner


def make_proc(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> MagicMock:
    proc = MagicMock()
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.returncode = returncode
    proc.wait = AsyncMock()
    return proc


def tmux_args(exec_mock) -> list[tuple]:
    """Arguments of each tmux invocation, without the binary name."""
    return [c.args[1:] for c in exec_mock.call_args_list]


@pytest.fixture
def exec_mock():
    with patch("baton.panes.tmux.asyncio.create_subprocess_exec", new_callable=AsyncMock) as mock:
        mock.return_value = make_proc()
        yield mock


class TestTmuxPaneSpawner:
    def test_satisfies_protocol(self):
        assert isinstance(TmuxPaneSpawner(), PaneSpawner)

    def test_agent_commands(self):
        spawner = TmuxPaneSpawner(agent_commands={"claude": "claude --resume", "codex": ""})
        assert spawner.agent_command("cc") == "claude --resume"
        assert spawner.agent_command("codex") == "codex"
        with pytest.raises(PaneError, match="no launch command"):
            spawner.agent_command("aider")

    # --- low level ---

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, exec_mock):
        exec_mock.return_value = make_proc(stderr=b"can't find pane: %5\n", returncode=1)
        with pytest.raises(PaneError, match="tmux kill-pane failed: can't find pane: %5"):
            await TmuxPaneSpawner().kill_pane("%5")

    @pytest.mark.asyncio
    async def test_missing_binary(self, exec_mock):
        exec_mock.side_effect = FileNotFoundError()
        with pytest.raises(PaneError, match="tmux not found"):
            await TmuxPaneSpawner().kill_pane("%5")

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, exec_mock):
        proc = make_proc()
        proc.communicate.side_effect = asyncio.TimeoutError()
        exec_mock.return_value = proc
        with pytest.raises(PaneError, match="timed out"):
            await TmuxPaneSpawner(timeout=0.1).capture_output("%1", 10)
        proc.kill.assert_called_once()

    # --- panes ---

    @pytest.mark.asyncio
    async def test_get_panes(self, exec_mock):
        exec_mock.return_value = make_proc(
            stdout=b"%0\t0\tzsh\n%1\t1\tproj__cc_1\n%2\tx\tbad index\nmalformed\n%3\t2\tproj__gmi_2_flash\n"
        )
        panes = await TmuxPaneSpawner().get_panes("proj")

        assert tmux_args(exec_mock) == [("list-panes", "-s", "-t", "proj", "-F", PANE_FORMAT)]
        assert [p.id for p in panes] == ["%0", "%1", "%3"]
        assert not panes[0].is_agent
        assert panes[1].type == "cc"
        assert panes[2].variant == "flash"

    @pytest.mark.asyncio
    async def test_capture_output(self, exec_mock):
        exec_mock.return_value = make_proc(stdout=b"line one\nline two\n")
        output = await TmuxPaneSpawner().capture_output("%1", 100)
        assert output == "line one\nline two\n"
        assert tmux_args(exec_mock) == [("capture-pane", "-p", "-J", "-t", "%1", "-S", "-100")]

    @pytest.mark.asyncio
    async def test_send_keys_single_line(self, exec_mock):
        await TmuxPaneSpawner().send_keys("%1", "/compact")
        assert tmux_args(exec_mock) == [
            ("send-keys", "-t", "%1", "-l", "/compact"),
            ("send-keys", "-t", "%1", "Enter"),
        ]

    @pytest.mark.asyncio
    async def test_send_keys_without_submit(self, exec_mock):
        await TmuxPaneSpawner().send_keys("%1", "draft", submit=False)
        assert len(exec_mock.call_args_list) == 1

    @pytest.mark.asyncio
    async def test_send_keys_multiline_uses_buffer(self, exec_mock):
        await TmuxPaneSpawner().send_keys("%1", "line one\nline two")

        set_buffer, paste, enter = tmux_args(exec_mock)
        assert set_buffer[:2] == ("set-buffer", "-b")
        buffer = set_buffer[2]
        assert buffer.startswith("baton-")
        assert set_buffer[3:] == ("--", "line one\nline two")
        assert paste == ("paste-buffer", "-d", "-p", "-b", buffer, "-t", "%1")
        assert enter == ("send-keys", "-t", "%1", "Enter")

    # --- spawning ---

    @pytest.mark.asyncio
    async def test_spawn_agent(self, exec_mock):
        exec_mock.side_effect = [make_proc(stdout=b"%7\n")] + [make_proc() for _ in range(4)]

        pane_id = await TmuxPaneSpawner().spawn_agent("proj", "claude", 2, "/src/my proj")

        assert pane_id == "%7"
        calls = tmux_args(exec_mock)
        assert calls[0] == ("split-window", "-t", "proj", "-c", "/src/my proj", "-P", "-F", "#{pane_id}")
        assert calls[1] == ("select-pane", "-t", "%7", "-T", "proj__cc_2")
        assert calls[2] == ("send-keys", "-t", "%7", "-l", "cd '/src/my proj' && claude")
        assert calls[3] == ("send-keys", "-t", "%7", "Enter")
        assert calls[4] == ("select-layout", "-t", "proj", "tiled")

    @pytest.mark.asyncio
    async def test_spawn_cleans_up_on_failure(self, exec_mock):
        exec_mock.side_effect = [
            make_proc(stdout=b"%7\n"),
            make_proc(stderr=b"boom", returncode=1),
            make_proc(),
        ]

        with pytest.raises(PaneError, match="select-pane failed: boom"):
            await TmuxPaneSpawner().spawn_agent("proj", "cc", 1, "/src")

        assert tmux_args(exec_mock)[-1] == ("kill-pane", "-t", "%7")

    @pytest.mark.asyncio
    async def test_spawn_ignores_layout_failure(self, exec_mock):
        exec_mock.side_effect = [make_proc(stdout=b"%7\n")] + [make_proc() for _ in range(3)] + [
            make_proc(stderr=b"no space", returncode=1)
        ]
        assert await TmuxPaneSpawner().spawn_agent("proj", "gemini", 1, "/src") == "%7"

    @pytest.mark.asyncio
    async def test_spawn_unknown_type(self, exec_mock):
        with pytest.raises(PaneError):
            await TmuxPaneSpawner().spawn_agent("proj", "aider", 1, "/src")
        exec_mock.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_spawn_without_pane_id(self, exec_mock):
        exec_mock.return_value = make_proc(stdout=b"\n")
        with pytest.raises(PaneError, match="did not report a pane id"):
            await TmuxPaneSpawner().spawn_agent("proj", "codex", 1, "/src")
