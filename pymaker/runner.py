import datetime
import enum
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

from pymaker.errors import ExecutionFailure, ExecutionInterrupted, IoFailure, ScriptNotFound

logger = logging.getLogger(__name__)

DEFAULT_INTERPRETERS = ("python3", "python")
INTERACTIVE_PLACEHOLDER = "(interactive session)"
INTERRUPT_GRACE_S = 0.5

# Code that opens windows, draws plots or waits on the keyboard needs the real terminal.
LIKELY_INTERACTIVE_HINTS = (
    re.compile(r"^\s*(import|from)\s+(tkinter|turtle|pygame|curses|kivy|wx|pyglet|arcade)\b", re.MULTILINE),
    re.compile(r"^\s*(import|from)\s+(PyQt5|PyQt6|PySide2|PySide6)\b", re.MULTILINE),
    re.compile(r"\binput\s*\("),
    re.compile(r"\bgetpass\s*\("),
    re.compile(r"\bplt\.show\s*\("),
    re.compile(r"\bcv2\.imshow\s*\("),
    re.compile(r"\.mainloop\s*\("),
)


class ExecMode(enum.Enum):
    CAPTURED = "captured"
    INTERACTIVE = "interactive"


@dataclass
class ExecutionRecord:
    script_path: Path
    stdout: str
    stderr: str
    exit_code: Optional[int]
    mode: ExecMode = ExecMode.CAPTURED
    interpreter: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def recommend_mode(code: str) -> ExecMode:
    """Advisory only: suggest INTERACTIVE when the script looks like it needs a terminal or a display."""
    if any(rx.search(code or "") for rx in LIKELY_INTERACTIVE_HINTS):
        return ExecMode.INTERACTIVE
    return ExecMode.CAPTURED


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S_%f")


class CodeExecutor:
    """Writes generated scripts under `base_dir` and runs them with the first interpreter that starts."""

    def __init__(self, base_dir: Union[str, Path] = "generated", interpreters: Sequence[str] = DEFAULT_INTERPRETERS) -> None:
        self.base_dir = Path(base_dir)
        self.interpreters: Tuple[str, ...] = tuple(interpreters)
        if not self.interpreters:
            raise ValueError("at least one interpreter candidate is required")
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise IoFailure(f"cannot create directory {self.base_dir}: {exc}") from exc

    def _new_script_path(self) -> Path:
        stem = f"script_{_timestamp()}"
        path = self.base_dir / f"{stem}.py"
        n = 1
        while path.exists():
            path = self.base_dir / f"{stem}_{n}.py"
            n += 1
        return path

    def write_script(self, code: str) -> Path:
        script_path = self._new_script_path()
        try:
            script_path.write_text(code, encoding="utf-8")
        except OSError as exc:
            raise IoFailure(f"cannot write script {script_path}: {exc}") from exc
        return script_path

    def write_and_run(self, code: str, mode: ExecMode = ExecMode.CAPTURED) -> ExecutionRecord:
        script_path = self.write_script(code)
        logger.info("script_written path=%s bytes=%d", script_path, len(code))
        return self._run(script_path, mode)

    def run_file(self, path: Union[str, Path], mode: ExecMode = ExecMode.CAPTURED) -> ExecutionRecord:
        script_path = Path(path)
        if not script_path.is_file():
            raise ScriptNotFound(script_path)
        return self._run(script_path, mode)

    def _run(self, script_path: Path, mode: ExecMode) -> ExecutionRecord:
        last_err: Optional[OSError] = None
        for interpreter in self.interpreters:
            try:
                stdout, stderr, rc = _spawn([interpreter, str(script_path)], mode)
            except OSError as exc:
                logger.info("interpreter_unavailable name=%s error=%s", interpreter, exc)
                last_err = exc
                continue
            except KeyboardInterrupt as exc:
                logger.info("script_interrupted path=%s interpreter=%s", script_path, interpreter)
                raise ExecutionInterrupted(script_path) from exc
            logger.info("script_finished path=%s interpreter=%s mode=%s rc=%s", script_path, interpreter, mode.value, rc)
            return ExecutionRecord(script_path, stdout, stderr, rc, mode, interpreter)
        tried = ", ".join(self.interpreters)
        raise ExecutionFailure(f"could not start any interpreter ({tried}); last error: {last_err}") from last_err


def _spawn(cmd: Sequence[str], mode: ExecMode) -> Tuple[str, str, Optional[int]]:
    """
    Run `cmd` to completion. OSError from a missing executable propagates to the caller.
    CAPTURED buffers both streams as text; INTERACTIVE hands the child our stdin/stdout/stderr.
    """
    if mode is ExecMode.INTERACTIVE:
        with subprocess.Popen(list(cmd)) as process:
            try:
                rc = process.wait()
            except KeyboardInterrupt:
                _stop(process)
                raise
        return INTERACTIVE_PLACEHOLDER, INTERACTIVE_PLACEHOLDER, rc
    # Captured children get no stdin; input() sees EOF instead of a hidden prompt.
    with subprocess.Popen(
        list(cmd),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    ) as process:
        try:
            stdout, stderr = process.communicate()
        except KeyboardInterrupt:
            _stop(process)
            raise
    stdout_str = stdout.decode("utf-8", errors="replace") if stdout else ""
    stderr_str = stderr.decode("utf-8", errors="replace") if stderr else ""
    return stdout_str, stderr_str, process.returncode


def _stop(process: subprocess.Popen) -> None:
    """Give a child that also received SIGINT a moment to exit, then kill it."""
    try:
        process.wait(timeout=INTERRUPT_GRACE_S)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()
