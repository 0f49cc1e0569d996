"""Interactive chat REPL and inspection commands."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.markup import escape
from rich.prompt import Confirm, Prompt
from rich.table import Table

from chatgate.chat.context import RequestContext
from chatgate.chat.errors import ChatError
from chatgate.chat.models import ChatRequest
from chatgate.chat.orchestrator import ChatOrchestrator
from chatgate.config.loader import ConfigError, load_config
from chatgate.config.schema import ChatGateConfig
from chatgate.llm.factory import create_llm_client
from chatgate.log import setup_logging
from chatgate.memory.manager import MemoryManager
from chatgate.tools import create_tool_registry

console = Console()
logger = logging.getLogger(__name__)

# Messages shown by /history
HISTORY_PREVIEW = 10


def _load(config_path: str | None) -> ChatGateConfig | None:
    try:
        return load_config(Path(config_path) if config_path else None)
    except ConfigError as e:
        console.print(f"[red]{e}[/red]")
        return None


class ChatRepl:
    """Line-oriented chat against one stored session.

    Plain input is sent as a chat message and the reply is printed as it
    streams. Input starting with ``/`` is a REPL command.
    """

    def __init__(self, config: ChatGateConfig, store: MemoryManager, orchestrator: ChatOrchestrator, user_id: str):
        self.config = config
        self.store = store
        self.orchestrator = orchestrator
        self.user_id = user_id
        self.session_id: str | None = None
        self.commands: dict[str, tuple[Callable[[], Awaitable[bool]], str]] = {
            "/help": (self.show_help, "Show this help"),
            "/session": (self.show_session, "Show the current session"),
            "/history": (self.show_history, f"Show the last {HISTORY_PREVIEW} messages"),
            "/new": (self.new_session, "Start a new session"),
            "/tools": (self.show_tools, "List tools offered to the model"),
            "/clear": (self.clear, "Clear the screen"),
            "/exit": (self.exit, "Leave the chat"),
        }

    async def open(self, session_id: str | None) -> bool:
        """Resume ``session_id`` or create a new session."""
        if session_id is None:
            await self.new_session()
            return True

        session = await self.store.get_session(session_id)
        if session is None or session.user_id != self.user_id:
            console.print(f"[red]Session not found: {session_id}[/red]")
            return False
        self.session_id = session.id
        console.print(f"[dim]Resumed session {session.id} ({session.title})[/dim]")
        return True

    async def run(self) -> None:
        while True:
            try:
                line = Prompt.ask("\n[bold cyan]You[/bold cyan]").strip()
                if not line:
                    continue
                if line.startswith("/"):
                    if await self.dispatch(line):
                        break
                    continue
                await self.send(line)
            except KeyboardInterrupt:
                console.print("\n[yellow]Interrupted[/yellow]")
                if Confirm.ask("Exit chat?", default=False):
                    break
            except EOFError:
                break
            except ChatError as e:
                console.print(f"\n[red]{e.code.value}: {e.message}[/red]")
        console.print("\n[cyan]Bye.[/cyan]")

    async def dispatch(self, line: str) -> bool:
        """Run a REPL command; True ends the loop."""
        name = line.split()[0].lower()
        name = {"/quit": "/exit", "/q": "/exit"}.get(name, name)
        if name not in self.commands:
            console.print(f"[red]Unknown command: {name}[/red] (try /help)")
            return False
        handler, _ = self.commands[name]
        return await handler()

    async def send(self, message: str) -> None:
        """Send one message and print the streamed reply."""
        request = ChatRequest(session_id=self.session_id, message=message)
        ctx = RequestContext.create(user_id=self.user_id, session_id=self.session_id)
        stream = await self.orchestrator.start(request, ctx)

        console.print("\n[bold green]assistant[/bold green]")
        async with stream:
            async for chunk in stream:
                if chunk.content:
                    console.print(chunk.content, end="", markup=False, highlight=False)
                for tc in chunk.tool_calls or []:
                    console.print(f"\n[dim]→ {tc.name}({tc.arguments})[/dim]")
        console.print()

    async def show_help(self) -> bool:
        table = Table(show_header=False, box=None)
        for name, (_, description) in self.commands.items():
            table.add_row(f"[cyan]{name}[/cyan]", description)
        console.print(table)
        return False

    async def show_session(self) -> bool:
        session = await self.store.get_session(self.session_id)
        count = await self.store.get_message_count(self.session_id)
        console.print(f"[cyan]Session:[/cyan] {session.id}  [cyan]Title:[/cyan] {session.title}")
        console.print(f"[cyan]Messages:[/cyan] {count}  [cyan]Model:[/cyan] {self.config.model.name}")
        return False

    async def show_history(self) -> bool:
        for record in await self.store.get_messages(self.session_id, limit=HISTORY_PREVIEW):
            if record.tool_calls:
                text = ", ".join(tc.name for tc in record.tool_calls)
                console.print(f"[magenta]{record.role}[/magenta] [dim]calls {text}[/dim]")
            else:
                preview = record.content if len(record.content) <= 120 else record.content[:117] + "..."
                console.print(f"[magenta]{record.role}[/magenta] {escape(preview)}")
        return False

    async def new_session(self) -> bool:
        session = await self.store.create_session(user_id=self.user_id, title="CLI chat")
        self.session_id = session.id
        logger.debug(f"Created CLI session {session.id} for {self.user_id}")
        console.print(f"[dim]New session {session.id}[/dim]")
        return False

    async def show_tools(self) -> bool:
        for schema in self.orchestrator.tools.list():
            marker = " [yellow]⚠[/yellow]" if schema.dangerous else ""
            console.print(f"  {schema.name}{marker}: {schema.description}")
        return False

    async def clear(self) -> bool:
        console.clear()
        return False

    async def exit(self) -> bool:
        return True


def chat_command(
    config_path: str | None = None,
    session_id: str | None = None,
    user_id: str = "cli",
) -> None:
    """Start interactive chat session.

    Args:
        config_path: Optional path to config file
        session_id: Existing session to resume (a new one is created otherwise)
        user_id: User id owning the session
    """
    config = _load(config_path)
    if config is None:
        return
    setup_logging(config.logging.level, json_format=config.logging.json_format)

    console.print(
        Panel.fit(
            f"[bold blue]chatgate[/bold blue] {config.model.name}\n/help lists commands",
            border_style="blue",
        )
    )
    asyncio.run(_run_repl(config, session_id, user_id))


async def _run_repl(config: ChatGateConfig, session_id: str | None, user_id: str) -> None:
    store = MemoryManager(config.memory.storage_path)
    orchestrator = ChatOrchestrator(
        llm=create_llm_client(config),
        store=store,
        tools=create_tool_registry(config.tools),
        chat_config=config.chat,
        model_config=config.model,
    )
    repl = ChatRepl(config, store, orchestrator, user_id)
    if await repl.open(session_id):
        await repl.run()


def list_sessions_command(
    config_path: str | None = None,
    user_id: str | None = None,
    limit: int = 20,
) -> None:
    """Print a table of recent sessions."""
    config = _load(config_path)
    if config is None:
        return

    store = MemoryManager(config.memory.storage_path)
    sessions, total = asyncio.run(store.list_sessions(user_id, limit=limit))

    if not sessions:
        console.print("[yellow]No sessions found.[/yellow]")
        return

    table = Table(title=f"Sessions ({len(sessions)} of {total})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("User")
    table.add_column("Title")
    table.add_column("Updated", style="dim")
    for session in sessions:
        table.add_row(
            session.id,
            session.user_id,
            session.title,
            session.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


def list_tools_command(config_path: str | None = None) -> None:
    """Print a table of tools enabled by the configuration."""
    config = _load(config_path)
    if config is None:
        return

    registry = create_tool_registry(config.tools)
    if len(registry) == 0:
        console.print("[yellow]No tools enabled.[/yellow]")
        return

    table = Table(title="Tools")
    table.add_column("Name", style="cyan")
    table.add_column("Parameters")
    table.add_column("Description")
    for schema in registry.list():
        params = ", ".join(p.name if p.required else f"{p.name}?" for p in schema.parameters)
        name = f"{schema.name} [yellow]⚠[/yellow]" if schema.dangerous else schema.name
        table.add_row(name, params, schema.description)
    console.print(table)
