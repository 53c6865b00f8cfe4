"""Shared fixtures: settings reset, temp dir isolation, fake IPC bindings."""

import subprocess
import tempfile

import pytest

import yakuake_config
import yakuake_session
from yakuake_config import Settings
from yakuake_ipc import IpcCallError, IpcInterface


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """Default settings and a private directory for setup scripts."""
    yakuake_config.configure(Settings())
    scripts = tmp_path / "scripts"
    scripts.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scripts))
    return scripts


class FakeIpc(IpcInterface):
    """Records every call; operations named in fail raise IpcCallError."""

    name = "fake"

    def __init__(self, fail=()):
        self.calls = []
        self.fail = set(fail)
        self.initialized = 0

    async def _record(self, op, *args):
        self.calls.append((op, *args))
        if op in self.fail:
            raise IpcCallError(f"{op} failed")

    async def add_session(self):
        await self._record("add_session")

    async def run_command(self, text):
        await self._record("run_command", text)

    async def set_title(self, title):
        await self._record("set_title", title)

    async def show_window(self):
        await self._record("show_window")

    def ops(self):
        return [call[0] for call in self.calls]


def install_ipc(monkeypatch, ipc):
    """Make the orchestrator bind to ipc instead of probing the system."""
    async def init(settings=None):
        ipc.initialized = getattr(ipc, "initialized", 0) + 1
        return ipc

    monkeypatch.setattr(yakuake_session, "init_ipc_interface", init)
    return ipc


@pytest.fixture
def fake_ipc(monkeypatch):
    return install_ipc(monkeypatch, FakeIpc())


class FakeRunner:
    """Stand-in for run_tool: answers dcop calls by method name."""

    def __init__(self, responses=None):
        self.commands = []
        self.responses = responses or {}

    async def __call__(self, command):
        self.commands.append(command)
        method = command[3] if len(command) > 3 else ""
        status, stdout = self.responses.get(method, (0, ""))
        return subprocess.CompletedProcess(command, status, stdout=stdout.encode(), stderr=b"")


@pytest.fixture
def which_without_profile_tool(monkeypatch):
    """Every executable resolves except konsoleprofile and missing-*."""
    def which(name):
        if name == "konsoleprofile" or name.startswith("missing-"):
            return None
        return f"/usr/bin/{name}"

    monkeypatch.setattr(yakuake_session.shutil, "which", which)
    return which
