"""Server process management for ``chatgate start``, ``stop`` and ``status``."""

import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
from rich.console import Console
from rich.table import Table

from chatgate.config.loader import CONFIG_ENV_VAR, ConfigError, load_config
from chatgate.config.schema import ChatGateConfig

STATE_DIR = Path.home() / ".chatgate"

# Detached startup is polled for this long before giving up
STARTUP_TIMEOUT = 15.0
STARTUP_POLL_INTERVAL = 0.5

console = Console()


@dataclass
class ServerState:
    """PID and log files of a server started from the CLI."""

    directory: Path = STATE_DIR

    @property
    def pid_file(self) -> Path:
        return self.directory / "server.pid"

    @property
    def log_file(self) -> Path:
        return self.directory / "server.log"

    def read_pid(self) -> int | None:
        """PID of the running server; a stale PID file is removed."""
        try:
            pid = int(self.pid_file.read_text().strip())
        except (FileNotFoundError, ValueError):
            return None
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            self.clear()
            return None
        except PermissionError:
            # Alive, but owned by another user
            return pid
        return pid

    def write_pid(self, pid: int) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self.pid_file.write_text(str(pid))

    def clear(self) -> None:
        self.pid_file.unlink(missing_ok=True)

    def log_tail(self, lines: int = 10) -> str:
        if not self.log_file.exists():
            return ""
        return "\n".join(self.log_file.read_text(errors="replace").splitlines()[-lines:])


def base_url(config: ChatGateConfig) -> str:
    host = config.server.host
    if host in ("0.0.0.0", "::"):
        host = "127.0.0.1"
    return f"http://{host}:{config.server.port}"


def probe_health(url: str, timeout: float = 3.0) -> dict[str, Any] | None:
    """GET ``/health``; None when the server does not answer healthily."""
    try:
        response = httpx.get(f"{url}/health", timeout=timeout)
        response.raise_for_status()
        return response.json()
    except (httpx.HTTPError, ValueError):
        return None


def _load(config_path: str | None) -> ChatGateConfig | None:
    try:
        return load_config(Path(config_path) if config_path else None)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        return None


def _uvicorn_command(config: ChatGateConfig) -> list[str]:
    return [
        sys.executable,
        "-m",
        "uvicorn",
        "chatgate.server.asgi:app",
        "--host",
        config.server.host,
        "--port",
        str(config.server.port),
        "--log-level",
        config.logging.level.lower(),
    ]


def _start_detached(config: ChatGateConfig, config_path: str | None, state: ServerState) -> None:
    env = dict(os.environ)
    if config_path:
        # asgi.py reads its config location from the environment
        env[CONFIG_ENV_VAR] = str(Path(config_path).resolve())

    state.directory.mkdir(parents=True, exist_ok=True)
    with state.log_file.open("a") as log:
        proc = subprocess.Popen(
            _uvicorn_command(config),
            stdout=log,
            stderr=subprocess.STDOUT,
            start_new_session=True,
            env=env,
        )
    state.write_pid(proc.pid)

    url = base_url(config)
    deadline = time.monotonic() + STARTUP_TIMEOUT
    with console.status("Waiting for server to become healthy..."):
        while time.monotonic() < deadline:
            if proc.poll() is not None:
                state.clear()
                console.print(f"[red]Server exited during startup (code {proc.returncode})[/red]")
                tail = state.log_tail()
                if tail:
                    console.print(tail, markup=False)
                return
            if probe_health(url, timeout=1.0) is not None:
                break
            time.sleep(STARTUP_POLL_INTERVAL)
        else:
            console.print(
                f"[yellow]Server (PID {proc.pid}) not healthy after {STARTUP_TIMEOUT:.0f}s; "
                f"see {state.log_file}[/yellow]"
            )
            return

    console.print(f"[green]chatgate server running in background (PID {proc.pid})[/green]")
    console.print(f"  {url}")
    console.print(f"  Log: {state.log_file}")


def _run_foreground(config: ChatGateConfig, state: ServerState) -> None:
    import uvicorn

    from chatgate.log import setup_logging
    from chatgate.server.app import create_app

    setup_logging(config.logging.level, json_format=config.logging.json_format)
    app = create_app(config)
    state.write_pid(os.getpid())

    console.print(f"[green]Serving {config.model.name} on {base_url(config)}[/green]")
    console.print("Press Ctrl+C to stop")
    try:
        uvicorn.run(
            app,
            host=config.server.host,
            port=config.server.port,
            log_level=config.logging.level.lower(),
        )
    finally:
        state.clear()


def start_command(
    config_path: str | None = None,
    detach: bool = False,
    state: ServerState | None = None,
) -> None:
    """Start the chatgate API server.

    Args:
        config_path: Optional path to config file
        detach: Run server in background and wait for its health check
        state: PID/log file location
    """
    state = state or ServerState()

    running = state.read_pid()
    if running:
        console.print(f"[yellow]Server already running (PID {running}); stop it first.[/yellow]")
        return

    config = _load(config_path)
    if config is None:
        return

    if detach:
        _start_detached(config, config_path, state)
    else:
        _run_foreground(config, state)


def stop_command(state: ServerState | None = None) -> None:
    """Send SIGTERM to the server recorded in the PID file."""
    state = state or ServerState()
    pid = state.read_pid()
    if pid is None:
        console.print("[yellow]No running chatgate server found.[/yellow]")
        return

    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        console.print("[yellow]Server process already exited.[/yellow]")
    else:
        console.print(f"[green]Stopped chatgate server (PID {pid})[/green]")
    finally:
        state.clear()


def status_command(config_path: str | None = None, state: ServerState | None = None) -> None:
    """Report whether the configured server answers its health check."""
    state = state or ServerState()
    config = _load(config_path)
    if config is None:
        return

    url = base_url(config)
    pid = state.read_pid()
    health = probe_health(url)

    if health is None:
        if pid:
            console.print(f"[yellow]PID {pid} is alive but {url}/health does not answer.[/yellow]")
        else:
            console.print("[yellow]Server is not running.[/yellow] Start it with [bold]chatgate start[/bold].")
        return

    table = Table(title="chatgate server", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("URL", url)
    table.add_row("PID", str(pid) if pid else "unmanaged")
    for key in ("status", "model", "version", "tools"):
        table.add_row(key.capitalize(), str(health.get(key, "unknown")))
    console.print(table)
