import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

PREVIEW_CHARS = 200


def setup_logger(path: Path, name: str = "pymaker", max_bytes: int = 2_000_000, backups: int = 3) -> logging.Logger:
    path.parent.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(logging.INFO)
    fh = RotatingFileHandler(path, encoding="utf-8", maxBytes=max_bytes, backupCount=backups)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    fh.setFormatter(fmt)
    logger.addHandler(fh)
    if os.environ.get("PYMAKER_LOG_STDOUT") == "1":
        sh = logging.StreamHandler()
        sh.setFormatter(fmt)
        logger.addHandler(sh)
    return logger


def _preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    flat = (text or "").replace("\n", "\\n")
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "..."


def log_event(logger: Optional[logging.Logger], msg: str) -> None:
    if logger:
        logger.info(msg)


def log_api_request(logger: Optional[logging.Logger], prompt: str, turns: int) -> None:
    log_event(logger, f"api_request turns={turns} len={len(prompt)} prompt={_preview(prompt)}")


def log_api_response(logger: Optional[logging.Logger], raw: str) -> None:
    log_event(logger, f"api_response len={len(raw)} body={_preview(raw)}")


def log_execution(logger: Optional[logging.Logger], ok: bool, script_path, exit_code: Optional[int], stdout: str) -> None:
    log_event(logger, f"execution ok={ok} rc={exit_code} script={script_path} stdout={_preview(stdout)}")


def log_error(logger: Optional[logging.Logger], msg: str) -> None:
    if logger:
        logger.error(msg)
