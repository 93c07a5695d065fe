from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

from pymaker.schemas import GeneratedArtifact, Turn

SYSTEM_PROMPT = (
    "You are a Python code generator. Respond only with valid, executable Python code. "
    "No explanations, markdown, or extra text."
)
REFINE_TEMPLATE = "Please refine the previous code: {delta}"


def refine_prompt(delta: str) -> str:
    """A refinement is a plain user turn; the model finds "the previous code" in the history."""
    return REFINE_TEMPLATE.format(delta=delta.strip())


class Session:
    """Conversation history for one interactive run, plus the last generated artifact."""

    def __init__(self, system_prompt: str = SYSTEM_PROMPT) -> None:
        self.system_prompt = system_prompt
        self._turns: List[Turn] = []
        self._last: Optional[GeneratedArtifact] = None

    def __len__(self) -> int:
        return len(self._turns)

    @property
    def history(self) -> Tuple[Turn, ...]:
        return tuple(self._turns)

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def add_user(self, content: str) -> Turn:
        turn = Turn(role="user", content=content)
        self.append(turn)
        return turn

    def add_assistant(self, content: str) -> Turn:
        turn = Turn(role="assistant", content=content)
        self.append(turn)
        return turn

    def snapshot_for_send(self) -> List[Turn]:
        # The system turn is rebuilt on every call and never stored in the history.
        return [Turn(role="system", content=self.system_prompt), *self._turns]

    def rollback_last(self) -> Optional[Turn]:
        if not self._turns:
            return None
        return self._turns.pop()

    def clear(self) -> None:
        self._turns.clear()
        self._last = None

    def remember(self, artifact: GeneratedArtifact) -> None:
        self._last = artifact

    @property
    def last_artifact(self) -> Optional[GeneratedArtifact]:
        return self._last

    @property
    def last_code(self) -> str:
        return self._last.extracted_code if self._last else ""


@dataclass
class SessionMetrics:
    total_requests: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    api_errors: int = 0

    def record_request(self) -> None:
        self.total_requests += 1

    def record_api_error(self) -> None:
        self.api_errors += 1

    def record_execution(self, ok: bool) -> None:
        if ok:
            self.successful_executions += 1
        else:
            self.failed_executions += 1

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)
