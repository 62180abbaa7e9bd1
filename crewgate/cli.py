"""CLI and REPL for crewgate."""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from crewgate.config import Config
from crewgate.errors import CrewgateError
from crewgate.models import (
    ErrorEvent,
    QueueErrorEvent,
    QueueUpdatedEvent,
    TextDeltaEvent,
    ToolCallEvent,
    ToolResultEvent,
    TurnCompleteEvent,
    generate_id,
)
from crewgate.providers.routing import ProviderFactory
from crewgate.session.registry import SessionRegistry
from crewgate.utils.logging import configure_logging

app = typer.Typer(help="crewgate - delegate coding turns to Claude, OpenAI or OpenRouter")
console = Console()


class REPL:
    """Interactive REPL over one session.

    Turns run in the background so /stop and queued follow-ups work while
    the model is busy.
    """

    def __init__(self, project_root: Path, config: Config, session_id: str):
        """Initialize REPL.

        Args:
            project_root: Project root directory
            config: Configuration object
            session_id: Session to start or resume
        """
        self.project_root = project_root
        self.config = config
        self.session_id = session_id
        self.registry = SessionRegistry.from_config(config)
        self.registry.events.subscribe(self.render_event)
        self.turn: Optional[asyncio.Task] = None
        self.running = True

    async def start(self) -> None:
        """Start the REPL."""
        result = await self.registry.start(self.session_id, str(self.project_root))
        console.print(Panel.fit(
            "[bold cyan]crewgate[/bold cyan]\n"
            f"Project: {self.project_root}\n"
            f"Session: {self.session_id} ({len(result['messages'])} messages)\n"
            f"Model: {self.current_model()}\n"
            "\n"
            "Type /help for commands or /quit to exit",
            border_style="cyan"
        ))

        while self.running:
            try:
                user_input = (await asyncio.to_thread(console.input, "[bold cyan]crewgate>[/bold cyan] ")).strip()
            except KeyboardInterrupt:
                console.print("\n[dim]Use /quit to exit[/dim]")
                continue
            except EOFError:
                break

            if not user_input:
                continue
            await self.handle_input(user_input)

        await self.registry.stop(self.session_id)
        if self.turn is not None:
            await asyncio.wait({self.turn})
        console.print("\n[cyan]Goodbye![/cyan]")

    def current_model(self) -> str:
        conversation = self.registry.get(self.session_id)
        return (conversation.model if conversation else None) or self.config.default_model

    async def handle_input(self, user_input: str) -> None:
        if user_input.startswith("/"):
            await self.handle_command(user_input)
            return

        conversation = self.registry.get(self.session_id)
        if conversation is not None and conversation.is_running:
            await self.registry.enqueue(self.session_id, user_input)
            return

        self.turn = asyncio.create_task(self.run_turn(user_input))

    async def run_turn(self, message: str) -> None:
        try:
            result = await self.registry.send(self.session_id, message)
        except CrewgateError as e:
            console.print(f"\n[red]Error: {e}[/red]")
            return
        except Exception as e:
            console.print(f"\n[red]Unexpected error: {e}[/red]")
            return
        if result.get("aborted"):
            console.print("\n[yellow]Stopped.[/yellow]")

    async def handle_command(self, command: str) -> None:
        """Handle slash command.

        Args:
            command: Command string (starting with /)
        """
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        args = parts[1] if len(parts) > 1 else ""

        if cmd == "/help":
            self.show_help()
        elif cmd in ("/quit", "/exit"):
            self.running = False
        elif cmd == "/stop":
            await self.registry.stop(self.session_id)
        elif cmd == "/model":
            if args:
                result = await self.registry.set_session_model(self.session_id, args)
                if result["success"]:
                    console.print(f"[green]Switched to model: {args}[/green]")
                else:
                    console.print(f"[red]{result['error']}[/red]")
            else:
                console.print(f"[dim]Current model: {self.current_model()}[/dim]")
                console.print("\nAvailable models:")
                for model in ProviderFactory(self.config.provider_configs()).get_all_available_models():
                    console.print(f"  - {model.id} [dim]({model.provider})[/dim]")
        elif cmd == "/queue":
            if args:
                await self.registry.enqueue(self.session_id, args)
            else:
                self.show_queue()
        elif cmd == "/unqueue":
            if not args:
                console.print("[red]Usage: /unqueue <prompt-id>[/red]")
                return
            result = await self.registry.remove_from_queue(self.session_id, args)
            if not result["success"]:
                console.print(f"[red]{result['error']}[/red]")
        elif cmd == "/clear-queue":
            await self.registry.clear_queue(self.session_id)
        elif cmd == "/history":
            self.show_history()
        elif cmd == "/clear":
            await self.registry.clear_session(self.session_id)
            console.print("[yellow]Conversation cleared[/yellow]")
        elif cmd == "/config":
            config_dict = self.config.to_dict()
            console.print(Panel(
                "\n".join(f"{k}: {v}" for k, v in config_dict.items()),
                title="Configuration",
                border_style="blue"
            ))
        else:
            console.print(f"[red]Unknown command: {cmd}[/red]")
            console.print("[dim]Type /help for available commands[/dim]")

    def render_event(self, session_id: str, event: BaseModel) -> None:
        if session_id != self.session_id:
            return

        if isinstance(event, TextDeltaEvent):
            console.print(event.delta, end="", markup=False, highlight=False)
        elif isinstance(event, ToolCallEvent):
            console.print(f"\n[dim]> {event.name} {event.input}[/dim]")
        elif isinstance(event, ToolResultEvent):
            style = "red" if event.is_error else "dim"
            preview = event.content if len(event.content) <= 200 else event.content[:200] + "..."
            console.print(f"[{style}]{preview}[/{style}]", markup=True, highlight=False)
        elif isinstance(event, TurnCompleteEvent):
            console.print()
        elif isinstance(event, ErrorEvent):
            console.print(f"\n[red]{event.error}[/red]")
        elif isinstance(event, QueueUpdatedEvent):
            console.print(f"[dim]Queue: {len(event.queue)} pending[/dim]")
        elif isinstance(event, QueueErrorEvent):
            console.print(f"[red]Queued prompt {event.prompt_id} failed: {event.error}[/red]")

    def show_queue(self) -> None:
        queue = self.registry.get_queue(self.session_id).get("queue", [])
        if not queue:
            console.print("[dim]Queue is empty[/dim]")
            return
        table = Table(title="Queued prompts")
        table.add_column("ID", style="cyan")
        table.add_column("Message")
        table.add_column("Model", style="dim")
        for prompt in queue:
            table.add_row(prompt.id, prompt.message, prompt.model or "")
        console.print(table)

    def show_history(self) -> None:
        history = self.registry.get_history(self.session_id)
        for message in history.get("messages", []):
            style = "red" if message.is_error else ("cyan" if message.role == "user" else "green")
            console.print(f"[bold {style}]{message.role}[/bold {style}]: {message.content}")

    def show_help(self) -> None:
        """Show help message."""
        help_text = """
**Available Commands:**

- `/model [name]` - Show or switch the session model
- `/stop` - Stop the running turn
- `/queue [prompt]` - Show the queue, or queue a follow-up prompt
- `/unqueue <id>` - Remove a queued prompt
- `/clear-queue` - Drop every queued prompt
- `/history` - Show the conversation
- `/clear` - Clear the conversation
- `/config` - Show current configuration
- `/help` - Show this help message
- `/quit` - Exit crewgate

Anything else is sent to the model. While a turn is running, new prompts
are queued and run in order once it finishes.

**Examples:**

```
/model gpt-4o
/model openrouter/anthropic/claude-3.5-sonnet
/queue Now add tests for it
```
        """
        console.print(Markdown(help_text))


def _load_config(path: Optional[str]) -> tuple[Path, Config]:
    project_root = Path(path).resolve() if path else Path.cwd()

    if not project_root.exists():
        console.print(f"[red]Error: Path does not exist: {project_root}[/red]")
        sys.exit(1)

    if not project_root.is_dir():
        console.print(f"[red]Error: Path is not a directory: {project_root}[/red]")
        sys.exit(1)

    try:
        config = Config.load(project_root)
    except Exception as e:
        console.print(f"[red]Error loading configuration: {e}[/red]")
        sys.exit(1)

    return project_root, config


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    configure_logging(verbose)


@app.command()
def chat(
    path: Optional[str] = typer.Argument(
        None,
        help="Project path (default: current directory)"
    ),
    model: Optional[str] = typer.Option(
        None,
        "--model", "-m",
        help="Model to use (e.g., claude-sonnet-4-5-20250929, gpt-4o, openrouter/auto)"
    ),
    session: Optional[str] = typer.Option(
        None,
        "--session", "-s",
        help="Session id to resume (default: a new session)"
    ),
) -> None:
    """Start an interactive session."""
    project_root, config = _load_config(path)

    if model:
        config.default_model = model

    errors = config.validate()
    if errors:
        console.print("[red]Configuration errors:[/red]")
        for error in errors:
            console.print(f"  - {error}")
        sys.exit(1)

    try:
        repl = REPL(project_root, config, session or generate_id("cli"))
        asyncio.run(repl.start())
    except Exception as e:
        console.print(f"[red]Fatal error: {e}[/red]")
        console.print_exception()
        sys.exit(1)


@app.command()
def sessions(
    path: Optional[str] = typer.Argument(None, help="Project path (default: current directory)"),
    show_all: bool = typer.Option(False, "--all", "-a", help="Include archived sessions"),
) -> None:
    """List saved sessions."""
    _, config = _load_config(path)
    registry = SessionRegistry.from_config(config)
    entries = asyncio.run(registry.list_sessions(include_archived=show_all))["sessions"]

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Model", style="dim")
    table.add_column("Updated", style="dim")
    table.add_column("Archived")
    for entry in entries:
        table.add_row(
            entry.id,
            entry.name,
            entry.model or "",
            entry.updated_at,
            "yes" if entry.archived else "",
        )
    console.print(table)


@app.command()
def models() -> None:
    """List the model catalog."""
    factory = ProviderFactory()
    table = Table(title="Models")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Provider", style="dim")
    table.add_column("Tier")
    table.add_column("Vision")
    for model in factory.get_all_available_models():
        table.add_row(
            model.id, model.name, model.provider, model.tier, "yes" if model.supports_vision else ""
        )
    console.print(table)


@app.command()
def providers(
    path: Optional[str] = typer.Argument(None, help="Project path (default: current directory)"),
) -> None:
    """Show which backends are usable."""
    _, config = _load_config(path)
    statuses = asyncio.run(ProviderFactory(config.provider_configs()).check_all_providers())

    table = Table(title="Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Method")
    table.add_column("API key")
    table.add_column("Ready")
    for name, status in statuses.items():
        table.add_row(
            name,
            status.method,
            "yes" if status.has_api_key else "no",
            "[green]yes[/green]" if status.authenticated else "[red]no[/red]",
        )
    console.print(table)


if __name__ == "__main__":
    app()
