import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from pymaker import __version__
from pymaker.runner import ExecMode, ExecutionRecord
from pymaker.schemas import Turn
from pymaker.session import SessionMetrics

logger = logging.getLogger(__name__)

console = Console()
HISTORY_PREVIEW_CHARS = 100


def get_slash_commands() -> List[str]:
    return list(get_command_descriptions().keys())


def get_command_descriptions() -> Dict[str, str]:
    return {
        "/quit": "exit the program",
        "/exit": "exit the program",
        "/help": "show this help",
        "/clear": "clear conversation history",
        "/refine": "refine the last generated code",
        "/save": "save last code to a file (/save <file>)",
        "/run": "run an existing script (/run <file>)",
        "/deps": "list non-standard imports of the last code",
        "/history": "show conversation history",
        "/stats": "show session statistics",
    }


def _fuzzy_match(needle: str, hay: str) -> bool:
    if not needle:
        return True
    it = iter(hay)
    for ch in needle:
        for h in it:
            if h == ch:
                break
        else:
            return False
    return True


def complete_slash(buffer: str, slash_commands: Sequence[str]) -> List[str]:
    if not buffer.startswith("/"):
        return []
    matches = [c for c in slash_commands if c.startswith(buffer)]
    if not matches:
        needle = buffer.lstrip("/").lower()
        matches = [c for c in slash_commands if _fuzzy_match(needle, c.lower())]
    return matches


def setup_readline(logs_dir: Path, slash_commands: Sequence[str]) -> Tuple[Optional[object], Optional[Path]]:
    try:
        import readline as _readline
    except ImportError:
        # Windows ships without readline; the loop works without completion.
        return None, None

    def completer(_text: str, state: int) -> Optional[str]:
        matches = complete_slash(_readline.get_line_buffer(), slash_commands)
        if state < len(matches):
            return matches[state]
        return None

    _readline.set_completer(completer)
    _readline.parse_and_bind("tab: complete")

    history_path: Optional[Path] = logs_dir / "pymaker_history.txt"
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        if history_path.exists():
            _readline.read_history_file(str(history_path))
        _readline.set_history_length(1000)
    except OSError as exc:
        logger.warning("readline history unavailable: %s", exc)
        history_path = None
    return _readline, history_path


# --- Rendering ---
def print_banner(out: Console = console) -> None:
    out.print(Panel.fit(
        f"[bold bright_cyan]PYTHON MAKER BOT v{__version__}[/]\n"
        "[bright_white]AI-Powered Python Code Generator[/]\n"
        "[dim]Type /help for commands or /quit to exit[/]",
        border_style="bright_cyan",
    ))


def print_help(out: Console = console) -> None:
    table = Table(title="Available Commands", title_style="bold bright_cyan", show_header=False)
    table.add_column("command", style="green")
    table.add_column("description")
    for cmd, desc in get_command_descriptions().items():
        table.add_row(cmd, desc)
    out.print(table)


def display_code(code: str, out: Console = console) -> None:
    syntax = Syntax(code or "", "python", line_numbers=True, word_wrap=True)
    out.print(Panel(syntax, title="Generated Code", border_style="bright_green"))


def display_result(record: ExecutionRecord, out: Console = console) -> None:
    status = "green" if record.ok else "red"
    out.print(f"[dim]Script saved at:[/] {record.script_path}")
    if record.mode is ExecMode.INTERACTIVE:
        out.print(f"[{status}]Interactive run finished with exit code {record.exit_code}[/]")
        return
    body = Table.grid(padding=(0, 1))
    if record.stdout:
        body.add_row("[bold green]STDOUT[/]")
        body.add_row(Text(record.stdout.rstrip()))
    if record.stderr:
        body.add_row("[bold red]STDERR[/]")
        body.add_row(Text(record.stderr.rstrip()))
    if not record.stdout and not record.stderr:
        body.add_row("[dim](no output)[/]")
    out.print(Panel(body, title=f"Execution Result (exit code {record.exit_code})", border_style=status))


def display_stats(metrics: SessionMetrics, out: Console = console) -> None:
    table = Table(title="Session Statistics", title_style="bold bright_cyan")
    table.add_column("metric", style="cyan")
    table.add_column("value", style="white", justify="right")
    for key, value in metrics.as_dict().items():
        table.add_row(key.replace("_", " "), str(value))
    out.print(table)


def preview(text: str, limit: int = HISTORY_PREVIEW_CHARS) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def display_history(turns: Sequence[Turn], out: Console = console) -> None:
    if not turns:
        out.print("[yellow]No conversation history yet.[/]")
        return
    out.print("[bold bright_cyan]Conversation History:[/]")
    for i, turn in enumerate(turns, start=1):
        color = "bright_blue" if turn.role == "user" else "bright_green"
        out.print(f"\n{i}.", Text(f"[{turn.role}]", style=color))
        out.print(preview(turn.content), style="dim", markup=False)


# --- Prompts ---
def ask_user(question: str, out: Console = console) -> str:
    return Prompt.ask(question, console=out, default="", show_default=False).strip()


def confirm(question: str, out: Console = console, default: bool = False) -> bool:
    return Confirm.ask(question, console=out, default=default)


def choose_mode(recommended: ExecMode, out: Console = console) -> ExecMode:
    default = "i" if recommended is ExecMode.INTERACTIVE else "c"
    ans = Prompt.ask(
        "Run mode (c = captured, i = interactive)",
        console=out,
        choices=["c", "i"],
        default=default,
    )
    return ExecMode.INTERACTIVE if ans == "i" else ExecMode.CAPTURED
