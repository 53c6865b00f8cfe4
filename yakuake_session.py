#!/usr/bin/env python3
"""
yakuake-session - Open a new Yakuake session from the command line

Usage:
    yakuake-session                         New session in the current directory
    yakuake-session -h                      New session in the home directory
    yakuake-session -w <dir>                New session in <dir>
    yakuake-session -e <cmd> [args...]      Run <cmd> in the new session
    yakuake-session -e <cmd> -- -x -y       Pass dashed arguments to <cmd>

Options:
    --help                Show this help and exit
    -h, --homedir         Open the session in the home directory
    -w, --workdir DIR     Open the session in DIR
    --hold, --noclose     Keep the session open after <cmd> exits
    -p KEY=VALUE          Change a Konsole profile property (repeatable)
    -e                    Run CMD (first argument) with the remaining arguments
    -q                    Do not open the Yakuake window
    -t TITLE              Tab title

Exit status:
    0 success, 1 usage error, 2 working directory missing,
    4 session not created, 7 command not sent to the session,
    20 Yakuake not installed, 22 cannot connect to Yakuake,
    126 Yakuake can not be executed, 127 command not found
"""

import argparse
import asyncio
import os
import shutil
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import yakuake_config as config
from yakuake_config import Settings, log, warning
from yakuake_ipc import IpcCallError, YakuakeSessionError, init_ipc_interface

# ============================================================================
# Constants
# ============================================================================

PROG = "yakuake-session"
VERSION = "0.1.0"

EXIT_USAGE = 1
EXIT_INTERNAL = 1
EXIT_NO_WORKDIR = 2
EXIT_ADD_SESSION = 4
EXIT_RUN_COMMAND = 7
EXIT_COMMAND_NOT_FOUND = 127

PROFILE_TOOL = "konsoleprofile"
NOOP = "true"
SETUP_PREFIX = "yakuake-session-"


def shell_quote(text: str) -> str:
    """Single-quote text for a POSIX shell, always adding quotes."""
    return "'" + text.replace("'", "'\\''") + "'"


# ============================================================================
# Request
# ============================================================================

@dataclass
class ProfileSettings:
    """Konsole profile overrides applied inside the new session."""
    properties: list[str] = field(default_factory=list)

    def add(self, prop: str):
        self.properties.append(prop)

    @property
    def joined(self) -> str:
        return ";".join(self.properties)

    def build_setup_line(self) -> str:
        """Shell statement that applies the properties, or a no-op."""
        if not self.properties or shutil.which(PROFILE_TOOL) is None:
            return NOOP
        return f"{PROFILE_TOOL} {shell_quote(self.joined)}"


@dataclass
class InvocationRequest:
    """What the user asked for, after option parsing."""
    workdir: str
    hold: bool = False
    profile: ProfileSettings = field(default_factory=ProfileSettings)
    command: str | None = None
    command_args: list[str] = field(default_factory=list)
    title: str | None = None
    show_window: bool = True


# ============================================================================
# Option parsing
# ============================================================================

class ArgumentParser(argparse.ArgumentParser):
    """argparse with usage errors mapped to exit status 1."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        config.error(message)
        sys.exit(EXIT_USAGE)


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog=PROG,
        description="Open a new Yakuake session",
        add_help=False,
    )
    parser.add_argument("--help", action="help", help="Show this help and exit")
    parser.add_argument("--version", action="version", version=f"{PROG} {VERSION}")
    parser.add_argument("-h", "--homedir", dest="workdir", action="store_const",
                        const=str(Path.home()), help="Open the session in the home directory")
    parser.add_argument("-w", "--workdir", dest="workdir", metavar="DIR",
                        help="Open the session in DIR")
    parser.add_argument("--hold", "--noclose", dest="hold", action="store_true",
                        help="Keep the session open after the command exits")
    parser.add_argument("-p", dest="properties", action="append", default=[],
                        metavar="KEY=VALUE", help="Change a Konsole profile property")
    parser.add_argument("-e", dest="execute", action="store_true",
                        help="Run the first argument as a command, the rest as its arguments")
    parser.add_argument("-q", dest="show_window", action="store_false",
                        help="Do not open the Yakuake window")
    parser.add_argument("-t", dest="title", metavar="TITLE", help="Tab title")
    parser.add_argument("args", nargs="*", default=[], metavar="ARG",
                        help="Command and its arguments (with -e)")
    return parser


def split_double_dash(argv: list[str]) -> tuple[list[str], list[str]]:
    """Split argv at the first '--'; everything after it is positional."""
    if "--" in argv:
        index = argv.index("--")
        return argv[:index], argv[index + 1:]
    return argv, []


def parse_args(argv: list[str] | None = None) -> InvocationRequest:
    """Turn the command line into a request. Exits on --help or bad usage."""
    if argv is None:
        argv = sys.argv[1:]
    head, tail = split_double_dash(list(argv))

    parser = build_parser()
    # Flags may sit anywhere among the command and its arguments
    args = parser.parse_intermixed_args(head)
    positionals = list(args.args) + tail

    command = None
    command_args: list[str] = []
    if args.execute:
        if not positionals:
            parser.error("-e requires a command")
        command, command_args = positionals[0], positionals[1:]

    workdir = args.workdir if args.workdir is not None else os.getcwd()

    return InvocationRequest(
        workdir=os.path.abspath(os.path.expanduser(workdir)),
        hold=args.hold,
        profile=ProfileSettings(list(args.properties)),
        command=command,
        command_args=command_args,
        title=args.title,
        show_window=args.show_window,
    )


def validate_request(request: InvocationRequest):
    if not os.path.isdir(request.workdir):
        raise YakuakeSessionError(
            EXIT_NO_WORKDIR, f"Working directory does not exist: {request.workdir}"
        )


# ============================================================================
# Setup script
# ============================================================================

def build_command(command: str | None, args: list[str], hold: bool) -> str:
    """Shell expression the session runs; exec replaces the shell unless holding."""
    if not command:
        return NOOP
    expression = " ".join([shell_quote(command), *args])
    return expression if hold else f"exec {expression}"


def resolve_command(request: InvocationRequest) -> str:
    if request.command and shutil.which(request.command) is None:
        raise YakuakeSessionError(
            EXIT_COMMAND_NOT_FOUND, f"Command not found: {request.command}"
        )
    return build_command(request.command, request.command_args, request.hold)


def render_setup_script(profile_line: str, workdir: str, command: str, path: str) -> str:
    return (
        "clear\n"
        f"{profile_line} && cd {shell_quote(workdir)} && {command}\n"
        f"rm -f {shell_quote(path)}\n"
    )


def write_setup_script(request: InvocationRequest, command: str,
                       directory: str | None = None) -> Path:
    """Write the script the new session sources. It removes itself when done."""
    try:
        fd, name = tempfile.mkstemp(prefix=SETUP_PREFIX, suffix=".sh", dir=directory)
    except OSError as e:
        raise YakuakeSessionError(
            EXIT_INTERNAL, f"Cannot create the session setup file: {e}"
        ) from e

    script = render_setup_script(
        request.profile.build_setup_line(), request.workdir, command, name
    )
    try:
        with os.fdopen(fd, "w") as f:
            f.write(script)
    except OSError as e:
        Path(name).unlink(missing_ok=True)
        raise YakuakeSessionError(
            EXIT_INTERNAL, f"Cannot write the session setup file {name}: {e}"
        ) from e

    log("SETUP", {"path": name, "command": command})
    return Path(name)


# ============================================================================
# Orchestration
# ============================================================================

async def open_session(request: InvocationRequest, settings: Settings | None = None) -> Path:
    """Open a Yakuake session for request. Returns the setup script path."""
    validate_request(request)
    command = resolve_command(request)

    ipc = await init_ipc_interface(settings)

    try:
        await ipc.add_session()
    except IpcCallError as e:
        raise YakuakeSessionError(
            EXIT_ADD_SESSION, f"Failed to create a new Yakuake session: {e}"
        ) from e

    if request.title:
        try:
            await ipc.set_title(request.title)
        except IpcCallError as e:
            warning(f"cannot set the tab title: {e}")

    script = write_setup_script(request, command)

    # Leading space keeps the line out of the shell history
    try:
        await ipc.run_command(f" . {shell_quote(str(script))}")
    except IpcCallError as e:
        script.unlink(missing_ok=True)
        raise YakuakeSessionError(
            EXIT_RUN_COMMAND, f"Failed to run a command in the Yakuake session: {e}"
        ) from e

    if request.show_window:
        try:
            await ipc.show_window()
        except IpcCallError as e:
            warning(f"cannot open the Yakuake window: {e}")

    return script


# ============================================================================
# CLI
# ============================================================================

def main(argv: list[str] | None = None):
    request = parse_args(argv)
    settings = Settings.from_env()
    config.configure(settings)

    try:
        asyncio.run(open_session(request, settings))
    except YakuakeSessionError as e:
        config.error(e.message)
        sys.exit(e.status)


if __name__ == "__main__":
    main()
