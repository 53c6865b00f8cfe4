"""
Yakuake Session Config: environment-driven settings and stderr logging.

Environment:
    YAKUAKE_SESSION_DEBUG=1              - Trace IPC calls to stderr
    YAKUAKE_SESSION_SERVICE=<name>       - D-Bus service name of Yakuake
    YAKUAKE_SESSION_LAUNCH_WAIT=<secs>   - Grace period after launching Yakuake
"""

from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass

from rich.console import Console
from rich.markup import escape


# ============================================================================
# Constants
# ============================================================================

YAKUAKE_SERVICE = "org.kde.yakuake"
YAKUAKE_EXECUTABLE = "yakuake"
DEFAULT_LAUNCH_WAIT = 2.0

TRUTHY = {"1", "true", "yes", "on"}

# Errors and warnings go to stderr; stdout stays free for --help/--version
console = Console(stderr=True, highlight=False)


# ============================================================================
# Settings
# ============================================================================

@dataclass(frozen=True)
class Settings:
    """Runtime settings for one invocation."""
    debug: bool = False
    service: str = YAKUAKE_SERVICE
    launch_wait: float = DEFAULT_LAUNCH_WAIT

    @classmethod
    def from_env(cls, environ: dict | None = None) -> Settings:
        env = os.environ if environ is None else environ

        launch_wait = DEFAULT_LAUNCH_WAIT
        raw_wait = env.get("YAKUAKE_SESSION_LAUNCH_WAIT", "").strip()
        if raw_wait:
            try:
                launch_wait = max(0.0, float(raw_wait))
            except ValueError:
                warning(f"ignoring invalid YAKUAKE_SESSION_LAUNCH_WAIT: {raw_wait!r}")

        return cls(
            debug=env.get("YAKUAKE_SESSION_DEBUG", "").strip().lower() in TRUTHY,
            service=env.get("YAKUAKE_SESSION_SERVICE", "").strip() or YAKUAKE_SERVICE,
            launch_wait=launch_wait,
        )


_settings = Settings()


def configure(settings: Settings):
    """Install settings for the rest of the process."""
    global _settings
    _settings = settings


def current() -> Settings:
    return _settings


# ============================================================================
# Output
# ============================================================================

def log(tag: str, msg: dict):
    """Trace to stderr when debugging is enabled."""
    if not _settings.debug:
        return
    compact = json.dumps(msg, separators=(",", ":"), default=str)
    print(f"[{tag}] {compact}", file=sys.stderr, flush=True)


def warning(msg: str):
    """Print a non-fatal warning."""
    console.print(f"[yellow]warning:[/yellow] {escape(msg)}")


def error(msg: str):
    """Print a fatal error message (the caller decides the exit status)."""
    console.print(f"[red]error:[/red] {escape(msg)}")
