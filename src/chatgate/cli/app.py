"""Main CLI application using Typer."""

import sys

import typer
from rich.console import Console

from chatgate import __version__

app = typer.Typer(
    name="chatgate",
    help="chatgate - Conversational gateway with streaming tool-calling chat",
    no_args_is_help=True,
)

console = Console()

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to config file (default: ~/.chatgate/chatgate.yaml)",
)


@app.command()
def version():
    """Show chatgate version."""
    console.print(f"chatgate version {__version__}")


@app.command()
def chat(
    config_path: str = ConfigOption,
    session_id: str = typer.Option(None, "--session", "-s", help="Resume an existing session"),
    user_id: str = typer.Option("cli", "--user", "-u", help="User id owning the session"),
):
    """Start interactive streaming chat session."""
    from chatgate.cli.chat import chat_command

    chat_command(config_path=config_path, session_id=session_id, user_id=user_id)


@app.command()
def start(
    config_path: str = ConfigOption,
    detach: bool = typer.Option(False, "--detach", "-d", help="Run server in background"),
):
    """Start chatgate API server."""
    from chatgate.cli.server_cmd import start_command

    start_command(config_path=config_path, detach=detach)


@app.command()
def stop():
    """Stop chatgate API server."""
    from chatgate.cli.server_cmd import stop_command

    stop_command()


@app.command()
def status(config_path: str = ConfigOption):
    """Check chatgate server status."""
    from chatgate.cli.server_cmd import status_command

    status_command(config_path=config_path)


sessions_app = typer.Typer(help="Inspect stored chat sessions")
app.add_typer(sessions_app, name="sessions")


@sessions_app.command("list")
def sessions_list(
    config_path: str = ConfigOption,
    user_id: str = typer.Option(None, "--user", "-u", help="Only sessions owned by this user"),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum sessions to show"),
):
    """List recent sessions."""
    from chatgate.cli.chat import list_sessions_command

    list_sessions_command(config_path=config_path, user_id=user_id, limit=limit)


tools_app = typer.Typer(help="Inspect available tools")
app.add_typer(tools_app, name="tools")


@tools_app.command("list")
def tools_list(config_path: str = ConfigOption):
    """List tools enabled by the configuration."""
    from chatgate.cli.chat import list_tools_command

    list_tools_command(config_path=config_path)


def main():
    """Entry point for the CLI."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
