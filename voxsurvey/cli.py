"""Command-line interface for voxsurvey.

Provides ``voxsurvey start``, ``stop``, ``status``, ``questions`` and
``backend`` commands. The entry point is registered via ``pyproject.toml``
as ``voxsurvey = "voxsurvey.cli:cli"``.
"""

import logging
import os
import signal
import sys
import time

import click
import httpx

from voxsurvey.config import (
    DEFAULT_PORT,
    PID_FILE,
    VOXSURVEY_DIR,
    get_port,
)

logger = logging.getLogger(__name__)

# Log file lives alongside the PID file.
_LOG_FILE = VOXSURVEY_DIR / "server.log"
_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_MIN_PORT = 1024
_MAX_PORT = 65535


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resolve_port(port: int | None) -> int:
    """Return the port to use, falling back to env var / default."""
    if port is not None:
        return port
    return get_port()


def _validate_port(port: int) -> None:
    """Raise ``click.BadParameter`` if *port* is out of range."""
    if not (_MIN_PORT <= port <= _MAX_PORT):
        raise click.BadParameter(
            f"Port must be between {_MIN_PORT} and {_MAX_PORT}, got {port}."
        )


def _read_pid() -> int | None:
    """Read the PID from the PID file, or return ``None``."""
    try:
        return int(PID_FILE.read_text().strip())
    except (FileNotFoundError, ValueError):
        return None


def _is_process_running(pid: int) -> bool:
    """Return ``True`` if a process with *pid* is alive."""
    try:
        os.kill(pid, 0)
        return True
    except OSError:
        return False


def _server_pid() -> int | None:
    """PID of the running server. A PID file left by a dead process is removed."""
    pid = _read_pid()
    if pid is not None and not _is_process_running(pid):
        click.echo(click.style(f"Removing stale PID file (process {pid} is gone).", fg="yellow"))
        PID_FILE.unlink(missing_ok=True)
        return None
    return pid


def _terminate(pid: int, grace: float = 5.0) -> bool:
    """SIGTERM *pid*, escalating to SIGKILL after *grace* seconds.

    Returns False when the process had to be killed.
    """
    os.kill(pid, signal.SIGTERM)
    deadline = time.monotonic() + grace
    while time.monotonic() < deadline:
        if not _is_process_running(pid):
            return True
        time.sleep(0.1)
    try:
        os.kill(pid, signal.SIGKILL)
    except OSError:
        pass
    return False


def _fetch_health(port: int) -> dict | None:
    """Return the health payload, or None when the server is not responding."""
    try:
        resp = httpx.get(f"http://127.0.0.1:{port}/health", timeout=2.0)
    except (httpx.ConnectError, httpx.TimeoutException, OSError):
        return None
    if resp.status_code != 200:
        return None
    return resp.json()


def _setup_console_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=_LOG_FORMAT,
    )


def _setup_logging_to_file() -> None:
    """Configure the root logger to write to the server log file.

    Called in daemon mode so that log output is persisted instead of
    being lost after the terminal detaches.
    """
    VOXSURVEY_DIR.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(_LOG_FILE)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    root.addHandler(handler)


def _run_server(port: int) -> None:
    """Start uvicorn with the voxsurvey FastAPI app.

    This blocks until the server shuts down.
    """
    import uvicorn

    from voxsurvey.server.app import create_app

    app = create_app()
    uvicorn.run(app, host="127.0.0.1", port=port, log_level="info")


def _daemonize(port: int) -> None:
    """Fork into a background daemon process.

    The parent writes the child PID to the PID file and exits.
    The child redirects stdout/stderr to the log file and starts
    the server. Unix-only (macOS / Linux).
    """
    VOXSURVEY_DIR.mkdir(parents=True, exist_ok=True)

    pid = os.fork()
    if pid > 0:
        PID_FILE.write_text(str(pid))
        click.echo(
            click.style(f"Server started in background (PID {pid})", fg="green")
        )
        click.echo(f"  Logs: {_LOG_FILE}")
        click.echo(f"  PID file: {PID_FILE}")
        return

    # Child: detach from terminal.
    os.setsid()

    log_fd = os.open(str(_LOG_FILE), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)
    os.dup2(log_fd, sys.stdout.fileno())
    os.dup2(log_fd, sys.stderr.fileno())
    os.close(log_fd)

    devnull = os.open(os.devnull, os.O_RDONLY)
    os.dup2(devnull, sys.stdin.fileno())
    os.close(devnull)

    _setup_logging_to_file()

    try:
        _run_server(port)
    except Exception:
        logger.exception("Daemon server crashed")
        sys.exit(1)
    finally:
        PID_FILE.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
def cli() -> None:
    """voxsurvey -- voice-driven survey answering in English and Khmer."""


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--port", default=None, type=int, help=f"Server port (default: {DEFAULT_PORT})")
@click.option("--daemon", is_flag=True, help="Run as background process")
@click.option("--verbose", is_flag=True, help="Debug logging in the foreground")
def start(port: int | None, daemon: bool, verbose: bool) -> None:
    """Start the voxsurvey server."""
    port = _resolve_port(port)
    _validate_port(port)

    existing_pid = _server_pid()
    if existing_pid is not None:
        click.echo(
            click.style(
                f"Server is already running (PID {existing_pid}). "
                "Use 'voxsurvey stop' first.",
                fg="yellow",
            )
        )
        raise SystemExit(1)

    click.echo(f"Starting voxsurvey on port {port}...")

    if daemon:
        _daemonize(port)
        return

    _setup_console_logging(verbose)
    VOXSURVEY_DIR.mkdir(parents=True, exist_ok=True)
    PID_FILE.write_text(str(os.getpid()))
    try:
        _run_server(port)
    except OSError as exc:
        if "address already in use" in str(exc).lower():
            click.echo(
                click.style(
                    f"Port {port} is already in use. "
                    "Choose a different port with --port.",
                    fg="red",
                )
            )
            raise SystemExit(1)
        raise
    finally:
        PID_FILE.unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# stop
# ---------------------------------------------------------------------------


@cli.command()
def stop() -> None:
    """Stop the background voxsurvey server."""
    pid = _server_pid()
    if pid is None:
        click.echo(click.style("Server is not running.", fg="yellow"))
        raise SystemExit(1)

    click.echo(f"Stopping voxsurvey server (PID {pid})...")
    if not _terminate(pid):
        click.echo(click.style(f"Process {pid} ignored SIGTERM — killed.", fg="red"))
    PID_FILE.unlink(missing_ok=True)
    click.echo(click.style("Server stopped.", fg="green"))


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--port", default=None, type=int, help="Server port to check")
def status(port: int | None) -> None:
    """Show voxsurvey server status."""
    port = _resolve_port(port)
    pid = _server_pid()
    if pid is None:
        click.echo(click.style("Server is not running.", fg="yellow"))
        raise SystemExit(1)

    click.echo(f"Server process is running (PID {pid}).")

    data = _fetch_health(port)
    if data is None:
        click.echo(
            click.style(f"No answer from /health on port {port}.", fg="yellow")
        )
        return

    click.echo(click.style("Server is healthy.", fg="green"))
    click.echo(f"  Version:  {data.get('version', '?')}")
    click.echo(f"  Port:     {port}")
    click.echo(f"  Session:  {'active' if data.get('session_active') else 'none'}")
    click.echo(f"  Backend:  {data.get('speech_provider', 'none')}")
    click.echo(f"  Voice:    {'on' if data.get('voice_enabled') else 'off'}")


# ---------------------------------------------------------------------------
# questions
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--language",
    type=click.Choice(["en", "km"]),
    default="en",
    show_default=True,
    help="Question bank language",
)
@click.option("--read", is_flag=True, help="Show the text that is read aloud")
def questions(language: str, read: bool) -> None:
    """Print the question bank."""
    from voxsurvey.interaction.prompts import question_text
    from voxsurvey.survey.models import Language
    from voxsurvey.survey.question_bank import QuestionBank, QuestionBankError

    lang = Language(language)
    try:
        bank = QuestionBank.load()
        items = bank.for_language(lang)
    except (OSError, QuestionBankError) as exc:
        click.echo(click.style(f"Could not load question bank: {exc}", fg="red"))
        raise SystemExit(1)

    for number, question in enumerate(items, start=1):
        flag = "" if question.required else " (optional)"
        click.echo(click.style(f"{number}. [{question.id}] {question.kind.value}{flag}", bold=True))
        click.echo(f"   {question_text(question, lang) if read else question.prompt}")
        for option in question.options:
            click.echo(f"     {option.value}: {option.label}")


# ---------------------------------------------------------------------------
# backend
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--user-agent", default="", help="Browser user-agent string (default: this host)")
@click.option("--language", type=click.Choice(["en", "km"]), default="en", show_default=True)
def backend(user_agent: str, language: str) -> None:
    """Show which speech backend a device would get."""
    from voxsurvey.speech.provider_factory import select_backend
    from voxsurvey.speech.types import Capability, PlatformDescriptor
    from voxsurvey.survey.models import Language

    platform = PlatformDescriptor.from_user_agent(user_agent)
    lang = Language(language)
    click.echo(f"Platform:      {platform.os} / {platform.browser}{' (mobile)' if platform.mobile else ''}")
    click.echo(f"Listen:        {select_backend(platform, lang, Capability.LISTEN).value}")
    click.echo(f"Speak:         {select_backend(platform, lang, Capability.SPEAK).value}")
    click.echo(f"Auto-record:   {'yes' if platform.supports_auto_record else 'no (manual trigger)'}")
    click.echo(
        f"Confirmation:  {'voice' if platform.supports_voice_confirmation else 'manual accept'}"
    )
