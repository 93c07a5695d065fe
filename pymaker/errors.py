"""Exception types raised by the generation-to-execution pipeline."""

from typing import Optional, Sequence


class PyMakerError(Exception):
    """Base exception for pymaker."""


class ConfigError(PyMakerError):
    """Missing credential or unusable configuration. Fatal at startup."""


# --- Generation client ---
class GenerationError(PyMakerError):
    """Any failure of the remote chat-completion call."""


class TransportFailure(GenerationError):
    """Connection error or timeout before a response was received."""


class HttpFailure(GenerationError):
    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}: {body}")


class ParseFailure(GenerationError):
    """The response body was not a usable chat completion."""


# --- Filesystem / execution ---
class IoFailure(PyMakerError):
    """Could not create the base directory or write a script."""


class ExecutionFailure(PyMakerError):
    """No candidate interpreter could be spawned."""


class ScriptNotFound(ExecutionFailure):
    def __init__(self, path) -> None:
        self.path = path
        super().__init__(f"script not found: {path}")


class ExecutionInterrupted(ExecutionFailure):
    def __init__(self, path) -> None:
        self.path = path
        super().__init__(f"run interrupted: {path}")


class InstallFailure(PyMakerError):
    def __init__(self, packages: Sequence[str], stderr: str = "", returncode: Optional[int] = None) -> None:
        self.packages = list(packages)
        self.stderr = stderr
        self.returncode = returncode
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"failed to install {', '.join(self.packages)}: {detail}")


# --- User-facing guards ---
class UsageError(PyMakerError):
    """The requested action has no target yet."""


class NothingToRun(UsageError):
    pass


class NothingToSave(UsageError):
    pass


class NothingToRefine(UsageError):
    pass
