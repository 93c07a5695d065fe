"""
One request/response/execute cycle over an owned Session.

Generation errors roll back the user turn and propagate; execution and
install errors are counted and propagate. Reporting is left to the caller.
"""
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

from pymaker import log_utils
from pymaker.deps import InstallResult, detect_dependencies, install_packages
from pymaker.errors import (
    ExecutionFailure,
    GenerationError,
    IoFailure,
    NothingToRefine,
    NothingToRun,
    NothingToSave,
    ScriptNotFound,
)
from pymaker.llm_utils import GenerationClient
from pymaker.runner import CodeExecutor, ExecMode, ExecutionRecord, recommend_mode
from pymaker.schemas import GeneratedArtifact
from pymaker.session import Session, SessionMetrics, refine_prompt


class Pipeline:
    def __init__(
        self,
        session: Session,
        client: GenerationClient,
        executor: CodeExecutor,
        metrics: Optional[SessionMetrics] = None,
        logger: Optional[logging.Logger] = None,
        python: Optional[str] = None,
    ) -> None:
        self.session = session
        self.client = client
        self.executor = executor
        self.metrics = metrics or SessionMetrics()
        self.logger = logger
        self.python = python

    # --- Generation ---
    def request(self, text: str) -> GeneratedArtifact:
        self.session.add_user(text)
        self.metrics.record_request()
        log_utils.log_api_request(self.logger, text, len(self.session))
        try:
            raw = self.client.generate(self.session.snapshot_for_send())
        except GenerationError as exc:
            self.metrics.record_api_error()
            self.session.rollback_last()
            log_utils.log_error(self.logger, f"API error: {exc}")
            raise
        log_utils.log_api_response(self.logger, raw)
        artifact = GeneratedArtifact.from_raw(raw)
        self.session.remember(artifact)
        self.session.add_assistant(artifact.extracted_code)
        return artifact

    def refine(self, delta: str) -> GeneratedArtifact:
        if not self.session.last_code:
            raise NothingToRefine("No code to refine. Generate some code first!")
        return self.request(refine_prompt(delta))

    # --- Dependencies ---
    def dependencies(self, code: Optional[str] = None) -> List[str]:
        return detect_dependencies(self.session.last_code if code is None else code)

    def install(self, packages: Sequence[str]) -> InstallResult:
        return install_packages(packages, python=self.python)

    # --- Execution ---
    def execute(self, code: Optional[str] = None, mode: Optional[ExecMode] = None) -> ExecutionRecord:
        code = self.session.last_code if code is None else code
        if not code.strip():
            raise NothingToRun("No code to run. Generate some code first!")
        mode = mode or recommend_mode(code)
        try:
            record = self.executor.write_and_run(code, mode)
        except (ExecutionFailure, IoFailure) as exc:
            self.metrics.record_execution(False)
            log_utils.log_error(self.logger, f"Execution error: {exc}")
            raise
        self._record(record)
        return record

    def run_file(self, path: Union[str, Path], mode: ExecMode = ExecMode.CAPTURED) -> ExecutionRecord:
        try:
            record = self.executor.run_file(path, mode)
        except ScriptNotFound:
            raise
        except ExecutionFailure as exc:
            self.metrics.record_execution(False)
            log_utils.log_error(self.logger, f"Execution error: {exc}")
            raise
        self._record(record)
        return record

    def _record(self, record: ExecutionRecord) -> None:
        self.metrics.record_execution(record.ok)
        log_utils.log_execution(self.logger, record.ok, record.script_path, record.exit_code, record.stdout)

    def save(self, path: Union[str, Path]) -> Path:
        code = self.session.last_code
        if not code:
            raise NothingToSave("No code to save. Generate some code first!")
        target = Path(path)
        try:
            target.write_text(code, encoding="utf-8")
        except OSError as exc:
            raise IoFailure(f"cannot write {target}: {exc}") from exc
        return target
