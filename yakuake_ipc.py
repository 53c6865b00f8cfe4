"""
Yakuake IPC: reach a running Yakuake over D-Bus, or DCOP on old KDE.

Both bindings expose the same four operations:
    add_session()          Open a new session (tab)
    run_command(text)      Type text into the newest session
    set_title(text)        Rename the newest session's tab
    show_window()          Open the window if it is hidden

init_ipc_interface() probes D-Bus first, then DCOP. When neither answers it
launches Yakuake and probes once more.
"""

from __future__ import annotations

import shutil
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

import anyio
from sdbus import DbusInterfaceCommonAsync, dbus_method_async, dbus_property_async
from sdbus.exceptions import SdBusBaseError
from sdbus_async.dbus_daemon import FreedesktopDbus

import yakuake_config as config
from yakuake_config import YAKUAKE_EXECUTABLE, Settings, log, warning

# ============================================================================
# Constants
# ============================================================================

EXIT_NOT_INSTALLED = 20
EXIT_NO_IPC = 22
EXIT_CANNOT_EXECUTE = 126

DBUS_DAEMON_NAME = "org.freedesktop.DBus"
DBUS_DAEMON_PATH = "/org/freedesktop/DBus"

SESSIONS_PATH = "/yakuake/sessions"
TABS_PATH = "/yakuake/tabs"
WINDOW_PATH = "/yakuake/window"
MAIN_WINDOW_PATH = "/yakuake/MainWindow_1"

DCOP_TOOL = "dcop"
DCOP_APP = "yakuake"
DCOP_INTERFACE = "DCOPInterface"
DCOP_MAIN_WINDOW = "yakuake-mainwindow#1"

LAUNCH_POLL_INTERVAL = 0.1

# D-Bus calls fail with sdbus errors, or OSError when no bus can be opened
DBUS_ERRORS = (SdBusBaseError, OSError)


class YakuakeSessionError(Exception):
    """Fatal error; status is the process exit status."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


class IpcCallError(Exception):
    """A remote call to Yakuake failed."""


# ============================================================================
# D-Bus proxies
# ============================================================================

class YakuakeDbus(DbusInterfaceCommonAsync, interface_name="org.kde.yakuake"):
    """
    Yakuake's scripting interface.

    The same interface is exported on /yakuake/sessions, /yakuake/tabs and
    /yakuake/window; each object implements the methods for its own area.
    """

    @dbus_method_async(result_signature="i", method_name="addSession")
    async def add_session(self) -> int:
        raise NotImplementedError

    @dbus_method_async(input_signature="s", method_name="runCommand")
    async def run_command(self, command: str) -> None:
        raise NotImplementedError

    @dbus_method_async(result_signature="s", method_name="sessionIdList")
    async def session_id_list(self) -> str:
        raise NotImplementedError

    @dbus_method_async(input_signature="is", method_name="setTabTitle")
    async def set_tab_title(self, session_id: int, title: str) -> None:
        raise NotImplementedError

    @dbus_method_async(method_name="toggleWindowState")
    async def toggle_window_state(self) -> None:
        raise NotImplementedError


class QtWidget(DbusInterfaceCommonAsync, interface_name="org.qtproject.Qt.QWidget"):
    """Widget properties as exported by Qt 5 and later."""

    @dbus_property_async(property_signature="b", property_name="visible")
    def visible(self) -> bool:
        raise NotImplementedError


class LegacyQtWidget(DbusInterfaceCommonAsync, interface_name="com.trolltech.Qt.QWidget"):
    """Widget properties as exported by Qt 4."""

    @dbus_property_async(property_signature="b", property_name="visible")
    def visible(self) -> bool:
        raise NotImplementedError


# ============================================================================
# IpcInterface - the four operations, bound to one technology
# ============================================================================

class IpcInterface(ABC):
    """Operations a Yakuake binding must provide."""

    name = ""

    @abstractmethod
    async def add_session(self) -> None:
        """Open a new session. Raises IpcCallError on failure."""
        pass

    @abstractmethod
    async def run_command(self, text: str) -> None:
        """Send text to the newest session as if typed. Raises IpcCallError."""
        pass

    @abstractmethod
    async def set_title(self, title: str) -> None:
        """Set the tab title of the newest session."""
        pass

    @abstractmethod
    async def show_window(self) -> None:
        """Toggle the window open if it is currently hidden."""
        pass


def newest_session_id(id_list: str) -> int | None:
    """Pick the highest id from Yakuake's comma-separated session list."""
    ids = [int(part) for part in id_list.split(",") if part.strip().isdigit()]
    return max(ids) if ids else None


class DbusInterface(IpcInterface):
    """Yakuake over the D-Bus session bus."""

    name = "dbus"

    def __init__(self, sessions: Any, tabs: Any, window: Any, widgets: list[Any]):
        self._sessions = sessions
        self._tabs = tabs
        self._window = window
        # Newest Qt naming first
        self._widgets = tuple(widgets)

    @classmethod
    def connect(cls, service: str) -> DbusInterface:
        """Build proxies for the Yakuake objects owned by service."""
        return cls(
            sessions=YakuakeDbus.new_proxy(service, SESSIONS_PATH),
            tabs=YakuakeDbus.new_proxy(service, TABS_PATH),
            window=YakuakeDbus.new_proxy(service, WINDOW_PATH),
            widgets=[
                QtWidget.new_proxy(service, MAIN_WINDOW_PATH),
                LegacyQtWidget.new_proxy(service, MAIN_WINDOW_PATH),
            ],
        )

    async def _remote(self, method: str, call: Awaitable) -> Any:
        log("DBUS", {"method": method})
        try:
            return await call
        except DBUS_ERRORS as e:
            log("DBUS", {"method": method, "error": str(e)})
            raise IpcCallError(f"{method} failed: {e}") from e

    async def add_session(self) -> None:
        await self._remote("addSession", self._sessions.add_session())

    async def run_command(self, text: str) -> None:
        await self._remote("runCommand", self._sessions.run_command(text))

    async def set_title(self, title: str) -> None:
        # Assumes the highest id is the session this process just created
        id_list = await self._remote("sessionIdList", self._sessions.session_id_list())
        session_id = newest_session_id(id_list)
        if session_id is None:
            raise IpcCallError(f"no session ids in {id_list!r}")
        await self._remote("setTabTitle", self._tabs.set_tab_title(session_id, title))

    async def window_visible(self) -> bool | None:
        """Read the main window's visibility, None if no Qt naming answers."""
        for widget in self._widgets:
            try:
                return bool(await widget.visible)
            except DBUS_ERRORS as e:
                log("DBUS", {"property": "visible", "widget": type(widget).__name__, "error": str(e)})
        return None

    async def show_window(self) -> None:
        visible = await self.window_visible()
        if visible is None:
            warning("cannot determine whether the Yakuake window is visible")
            return
        if not visible:
            await self._remote("toggleWindowState", self._window.toggle_window_state())


# ============================================================================
# DCOP - legacy KDE 3 binding through the dcop tool
# ============================================================================

Runner = Callable[[list[str]], Awaitable[subprocess.CompletedProcess]]


async def run_tool(command: list[str]) -> subprocess.CompletedProcess:
    """Run an external tool to completion, capturing its output."""
    log("EXEC", {"command": command})
    result = await anyio.run_process(command, check=False)
    log("EXEC", {"command": command[0], "status": result.returncode})
    return result


class DcopInterface(IpcInterface):
    """Yakuake over DCOP."""

    name = "dcop"

    def __init__(self, run: Runner = run_tool, app: str = DCOP_APP):
        self._run = run
        self._app = app

    async def _dcop(self, *args: str) -> str:
        command = [DCOP_TOOL, self._app, *args]
        try:
            result = await self._run(command)
        except OSError as e:
            raise IpcCallError(f"cannot run {DCOP_TOOL}: {e}") from e
        if result.returncode != 0:
            raise IpcCallError(f"{' '.join(args[:2])} exited with status {result.returncode}")
        return (result.stdout or b"").decode(errors="replace").strip()

    async def add_session(self) -> None:
        await self._dcop(DCOP_INTERFACE, "slotAddSession")

    async def run_command(self, text: str) -> None:
        await self._dcop(DCOP_INTERFACE, "slotRunCommandInSession", text)

    async def set_title(self, title: str) -> None:
        warning("setting the tab title is not supported over DCOP")

    async def show_window(self) -> None:
        try:
            state = await self._dcop(DCOP_MAIN_WINDOW, "visible")
        except IpcCallError as e:
            warning(f"cannot determine whether the Yakuake window is visible: {e}")
            return
        if state == "false":
            await self._dcop(DCOP_INTERFACE, "slotToggleState")


# ============================================================================
# Probing and selection
# ============================================================================

async def probe_dbus(service: str) -> bool:
    """True if service is currently registered on the session bus."""
    try:
        bus = FreedesktopDbus.new_proxy(DBUS_DAEMON_NAME, DBUS_DAEMON_PATH)
        names = await bus.list_names()
    except DBUS_ERRORS as e:
        log("PROBE", {"ipc": "dbus", "available": False, "error": str(e)})
        return False
    available = service in names
    log("PROBE", {"ipc": "dbus", "available": available})
    return available


async def probe_dcop(run: Runner = run_tool) -> bool:
    """True if the dcop tool lists Yakuake among its applications."""
    if shutil.which(DCOP_TOOL) is None:
        log("PROBE", {"ipc": "dcop", "available": False, "error": "dcop not found"})
        return False
    try:
        result = await run([DCOP_TOOL])
    except OSError as e:
        log("PROBE", {"ipc": "dcop", "available": False, "error": str(e)})
        return False
    apps = (result.stdout or b"").decode(errors="replace").split()
    available = result.returncode == 0 and DCOP_APP in apps
    log("PROBE", {"ipc": "dcop", "available": available})
    return available


async def find_interface(settings: Settings) -> IpcInterface | None:
    """Bind to the first technology that reaches Yakuake, or None."""
    if await probe_dbus(settings.service):
        return DbusInterface.connect(settings.service)
    if await probe_dcop():
        return DcopInterface()
    return None


async def launch_yakuake(wait: float) -> None:
    """
    Start Yakuake detached from this process.

    Watches the new process for up to `wait` seconds; an exit with non-zero
    status in that window counts as a failed launch. A process still running
    afterwards is left alone.
    """
    log("LAUNCH", {"command": YAKUAKE_EXECUTABLE, "wait": wait})
    try:
        process = subprocess.Popen(
            [YAKUAKE_EXECUTABLE],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        raise YakuakeSessionError(
            EXIT_CANNOT_EXECUTE, f"Yakuake can not be executed: {e.strerror or e}"
        ) from e

    with anyio.move_on_after(wait):
        while process.poll() is None:
            await anyio.sleep(LAUNCH_POLL_INTERVAL)

    status = process.poll()
    log("LAUNCH", {"pid": process.pid, "status": status})
    if status:
        raise YakuakeSessionError(
            EXIT_CANNOT_EXECUTE, f"Yakuake can not be executed: exit with status {status}"
        )


async def init_ipc_interface(settings: Settings | None = None) -> IpcInterface:
    """Select the IPC binding for this process, launching Yakuake if needed."""
    settings = settings or config.current()

    interface = await find_interface(settings)
    if interface is None:
        if shutil.which(YAKUAKE_EXECUTABLE) is None:
            raise YakuakeSessionError(EXIT_NOT_INSTALLED, "Yakuake is not installed")
        await launch_yakuake(settings.launch_wait)
        interface = await find_interface(settings)

    if interface is None:
        raise YakuakeSessionError(EXIT_NO_IPC, "Cannot connect to Yakuake")

    log("IPC", {"selected": interface.name})
    return interface
