import argparse
import json
import logging
import os
import shlex
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape

from pymaker import __version__, chat_ui
from pymaker.config_loader import ensure_dirs, load_config
from pymaker.deps import detect_dependencies, install_packages
from pymaker.errors import (
    ConfigError,
    ExecutionFailure,
    ExecutionInterrupted,
    GenerationError,
    InstallFailure,
    IoFailure,
    PyMakerError,
)
from pymaker.llm_utils import GenerationClient
from pymaker.log_utils import setup_logger
from pymaker.pipeline import Pipeline
from pymaker.runner import CodeExecutor, ExecMode, recommend_mode
from pymaker.schemas import GeneratedArtifact
from pymaker.session import Session, SessionMetrics

EXIT = "exit"


def _logs_dir(cfg: Dict[str, Any]) -> Path:
    return Path(cfg.get("data_paths", {}).get("logs", "logs"))


def _get_cli_logger(cfg: Dict[str, Any]) -> logging.Logger:
    return setup_logger(_logs_dir(cfg) / "pymaker.log", name="pymaker")


def build_pipeline(cfg: Dict[str, Any], client: Optional[GenerationClient] = None) -> Pipeline:
    """Wire a fresh Session, client and executor from config. Raises ConfigError without a credential."""
    ensure_dirs(cfg)
    executor = CodeExecutor(
        cfg.get("data_paths", {}).get("generated", "generated"),
        interpreters=cfg.get("interpreters") or ("python3", "python"),
    )
    return Pipeline(
        session=Session(),
        client=client or GenerationClient.from_config(cfg),
        executor=executor,
        metrics=SessionMetrics(),
        logger=_get_cli_logger(cfg),
    )


# --- Chat loop pieces ---
def offer_execution(pipeline: Pipeline, code: str, out: Console) -> None:
    deps = pipeline.dependencies(code)
    if deps:
        out.print(f"\n[yellow]Detected non-standard dependencies:[/] [bright_yellow]{', '.join(deps)}[/]")
        if chat_ui.confirm("Install these dependencies?", out=out):
            try:
                pipeline.install(deps)
                out.print("[green]Dependencies installed.[/]")
            except InstallFailure as e:
                out.print(f"[yellow]Failed to install dependencies:[/] {escape(str(e))}")
                out.print("[dim]Proceeding anyway...[/]")
    mode = chat_ui.choose_mode(recommend_mode(code), out=out)
    try:
        record = pipeline.execute(code, mode)
    except ExecutionInterrupted as e:
        out.print(f"[yellow]Stopped:[/] {escape(str(e))}")
        return
    except (ExecutionFailure, IoFailure) as e:
        out.print(f"[red]Execution error:[/] {escape(str(e))}")
        return
    chat_ui.display_result(record, out=out)


def handle_generation(pipeline: Pipeline, text: str, out: Console, refine: bool = False) -> Optional[GeneratedArtifact]:
    try:
        with out.status("Generating code..."):
            artifact = pipeline.refine(text) if refine else pipeline.request(text)
    except GenerationError as e:
        out.print(f"[red]API error:[/] {escape(str(e))}")
        return None
    if not artifact.extracted_code:
        out.print("[yellow]The model returned no code.[/]")
        return artifact
    chat_ui.display_code(artifact.extracted_code, out=out)
    if chat_ui.confirm("Execute this script?", out=out):
        offer_execution(pipeline, artifact.extracted_code, out)
    return artifact


def split_command(cmd: str, posix: bool = os.name != "nt") -> List[str]:
    """Shell-style split; on Windows backslashes in paths are kept and only outer quotes dropped."""
    try:
        parts = shlex.split(cmd, posix=posix)
    except ValueError:
        return cmd.split()
    if posix:
        return parts
    return [p[1:-1] if len(p) >= 2 and p[0] == p[-1] and p[0] in "\"'" else p for p in parts]


def handle_slash(cmd: str, pipeline: Pipeline, out: Console) -> Optional[str]:
    """Run one slash command. Returns EXIT when the loop should stop."""
    parts = split_command(cmd)
    name = parts[0].lstrip("/").lower() if parts else "help"
    args = parts[1:]
    session = pipeline.session

    if name in ("quit", "exit"):
        out.print("Goodbye!")
        return EXIT
    if name == "help":
        chat_ui.print_help(out=out)
        return None
    if name == "stats":
        chat_ui.display_stats(pipeline.metrics, out=out)
        return None
    if name == "clear":
        session.clear()
        out.print("[green]Conversation history cleared.[/]")
        return None
    if name == "history":
        chat_ui.display_history(session.history, out=out)
        return None
    if name == "deps":
        if not session.last_code:
            out.print("[yellow]No code yet. Generate some code first![/]")
            return None
        deps = pipeline.dependencies()
        out.print(", ".join(deps) if deps else "[green]Only standard-library imports.[/]")
        return None
    if name == "save":
        if not session.last_code:
            out.print("[yellow]No code to save. Generate some code first![/]")
            return None
        filename = args[0] if args else chat_ui.ask_user("Enter filename (e.g., script.py)", out=out)
        if not filename:
            out.print("[yellow]Save cancelled.[/]")
            return None
        try:
            path = pipeline.save(filename)
        except IoFailure as e:
            out.print(f"[red]Failed to save file:[/] {escape(str(e))}")
            return None
        out.print(f"[green]Code saved to:[/] {path}")
        return None
    if name == "refine":
        if not session.last_code:
            out.print("[yellow]No code to refine. Generate some code first![/]")
            return None
        delta = " ".join(args) if args else chat_ui.ask_user("What would you like to change or add?", out=out)
        if not delta:
            return None
        handle_generation(pipeline, delta, out, refine=True)
        return None
    if name == "run":
        if not args:
            out.print("[yellow]Usage: /run <file>[/]")
            return None
        _run_existing(pipeline, args[0], out)
        return None
    out.print(f"[yellow]Unknown command /{name}. Type /help for commands.[/]")
    return None


def _run_existing(pipeline: Pipeline, path: str, out: Console) -> None:
    try:
        source = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        source = ""
    mode = chat_ui.choose_mode(recommend_mode(source), out=out)
    try:
        record = pipeline.run_file(path, mode)
    except ExecutionInterrupted as e:
        out.print(f"[yellow]Stopped:[/] {escape(str(e))}")
        return
    except ExecutionFailure as e:
        out.print(f"[red]Execution error:[/] {escape(str(e))}")
        return
    chat_ui.display_result(record, out=out)


def handle_input(user_input: str, pipeline: Pipeline, out: Console) -> Optional[str]:
    text = user_input.strip()
    if not text:
        return None
    if text.startswith("/"):
        return handle_slash(text, pipeline, out)
    handle_generation(pipeline, text, out)
    return None


def cmd_chat(cfg: Dict[str, Any], args: argparse.Namespace, pipeline: Optional[Pipeline] = None) -> int:
    out = chat_ui.console
    pipeline = pipeline or build_pipeline(cfg)
    logger = pipeline.logger or logging.getLogger("pymaker")
    readline_mod, history_path = chat_ui.setup_readline(_logs_dir(cfg), chat_ui.get_slash_commands())
    chat_ui.print_banner(out=out)
    logger.info("chat_start version=%s model=%s", __version__, pipeline.client.model)
    reason = "quit"
    try:
        while True:
            try:
                user_input = chat_ui.ask_user("[bold bright_blue]You[/]", out=out)
            except (EOFError, KeyboardInterrupt):
                out.print("\nGoodbye!")
                reason = "interrupt"
                break
            logger.info("chat_input len=%d", len(user_input))
            if handle_input(user_input, pipeline, out) == EXIT:
                break
    except KeyboardInterrupt:
        out.print("\n[yellow]Interrupted.[/]")
        reason = "interrupt"
    finally:
        if readline_mod is not None and history_path is not None:
            try:
                readline_mod.write_history_file(str(history_path))
            except OSError as exc:
                logger.warning("readline history not saved: %s", exc)
    logger.info("chat_end reason=%s metrics=%s", reason, json.dumps(pipeline.metrics.as_dict()))
    out.print("\n[bright_cyan]Session ended.[/]")
    chat_ui.display_stats(pipeline.metrics, out=out)
    return 0


# --- One-shot commands ---
def read_prompt(args: argparse.Namespace) -> str:
    if args.stdin:
        return sys.stdin.read().strip()
    return " ".join(args.prompt or []).strip()


def _parse_mode(value: Optional[str], code: str) -> ExecMode:
    if value == "interactive":
        return ExecMode.INTERACTIVE
    if value == "captured":
        return ExecMode.CAPTURED
    return recommend_mode(code)


def cmd_gen(cfg: Dict[str, Any], args: argparse.Namespace, pipeline: Optional[Pipeline] = None) -> int:
    prompt = read_prompt(args)
    if not prompt:
        print("error: empty prompt", file=sys.stderr)
        return 2
    pipeline = pipeline or build_pipeline(cfg)
    artifact = pipeline.request(prompt)
    code = artifact.extracted_code
    print(code)
    if args.output:
        pipeline.save(args.output)
    if not args.run:
        return 0
    if args.install:
        _install_or_warn(pipeline, pipeline.dependencies(code))
    record = pipeline.execute(code, _parse_mode(args.mode, code))
    _print_record(record)
    return record.exit_code or 0


def cmd_run(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    ensure_dirs(cfg)
    executor = CodeExecutor(
        cfg.get("data_paths", {}).get("generated", "generated"),
        interpreters=cfg.get("interpreters") or ("python3", "python"),
    )
    path = Path(args.file)
    source = path.read_text(encoding="utf-8", errors="replace") if path.is_file() else ""
    if args.install:
        _install_or_warn(None, detect_dependencies(source))
    record = executor.run_file(path, _parse_mode(args.mode, source))
    _print_record(record)
    return record.exit_code or 0


def cmd_deps(cfg: Dict[str, Any], args: argparse.Namespace) -> int:
    path = Path(args.file)
    try:
        source = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise IoFailure(f"cannot read {path}: {e}") from e
    deps = detect_dependencies(source)
    if args.json:
        print(json.dumps({"file": str(path), "external": deps}, ensure_ascii=False))
    else:
        for name in deps:
            print(name)
    if args.install:
        _install_or_warn(None, deps)
    return 0


def _install_or_warn(pipeline: Optional[Pipeline], deps: List[str]) -> None:
    if not deps:
        return
    try:
        if pipeline is not None:
            pipeline.install(deps)
        else:
            install_packages(deps)
    except InstallFailure as e:
        print(f"warning: {e}", file=sys.stderr)


def _print_record(record) -> None:
    if record.mode is ExecMode.CAPTURED:
        if record.stdout:
            sys.stdout.write(record.stdout)
        if record.stderr:
            sys.stderr.write(record.stderr)
    print(f"[script: {record.script_path} exit={record.exit_code}]", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pymaker", description="Generate Python scripts from plain-language requests and run them")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--config", default="config/local.yaml", help="YAML config overrides")
    sub = parser.add_subparsers(dest="command", required=False)

    p_chat = sub.add_parser("chat", help="Interactive session (default)")
    p_chat.set_defaults(func=cmd_chat)

    p_gen = sub.add_parser("gen", help="Generate one script and print it")
    p_gen.add_argument("prompt", nargs="*", help="Request text (or use --stdin)")
    p_gen.add_argument("--stdin", action="store_true", help="Read request from stdin")
    p_gen.add_argument("-o", "--output", default="", help="Also save the code to this file")
    p_gen.add_argument("--run", action="store_true", help="Run the generated script")
    p_gen.add_argument("--install", action="store_true", help="pip install detected dependencies before running")
    p_gen.add_argument("--mode", choices=["auto", "captured", "interactive"], default="auto", help="Execution mode")
    p_gen.set_defaults(func=cmd_gen)

    p_run = sub.add_parser("run", help="Run an existing script")
    p_run.add_argument("file", help="Script path")
    p_run.add_argument("--install", action="store_true", help="pip install detected dependencies first")
    p_run.add_argument("--mode", choices=["auto", "captured", "interactive"], default="auto", help="Execution mode")
    p_run.set_defaults(func=cmd_run)

    p_deps = sub.add_parser("deps", help="List non-standard imports of a script")
    p_deps.add_argument("file", help="Script path")
    p_deps.add_argument("--json", action="store_true", help="Emit JSON output")
    p_deps.add_argument("--install", action="store_true", help="pip install them")
    p_deps.set_defaults(func=cmd_deps)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    if argv is None:
        argv = sys.argv[1:]
    args = parser.parse_args(argv)
    if args.version:
        print(__version__)
        return 0
    try:
        cfg = load_config(Path(args.config))
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    logger = _get_cli_logger(cfg)
    if not getattr(args, "command", None):
        args.command = "chat"
        args.func = cmd_chat
    logger.info("cli_command %s pid=%d", args.command, os.getpid())
    try:
        return args.func(cfg, args)
    except ConfigError as e:
        logger.error("config_error %s", e)
        print(f"error: {e}", file=sys.stderr)
        return 2
    except PyMakerError as e:
        logger.exception("cli_exception %s", args.command)
        print(f"error: {e}", file=sys.stderr)
        return 1
