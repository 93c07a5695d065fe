import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import find_dotenv, load_dotenv

from pymaker.errors import ConfigError


DEFAULT_CONFIG: Dict[str, Any] = {
    "model": "Qwen/Qwen2.5-Coder-7B-Instruct",
    "api_url": "https://router.huggingface.co/v1/chat/completions",
    "api_key_env": "HF_TOKEN",
    "timeout_s": 60,
    "max_tokens": 4096,
    "temperature": 0.2,
    "show_api_bars": False,
    "interpreters": ["python3", "python"],
    "data_paths": {
        "generated": "generated",
        "logs": "logs",
    },
}

ENV_OVERRIDES = {
    "PYMAKER_MODEL": "model",
    "PYMAKER_API_URL": "api_url",
}


def _merge(base: Dict[str, Any], loaded: Dict[str, Any]) -> Dict[str, Any]:
    cfg = copy.deepcopy(base)
    for key, value in loaded.items():
        if isinstance(value, dict) and isinstance(cfg.get(key), dict):
            cfg[key].update(value)
        else:
            cfg[key] = value
    return cfg


def load_config(path: Path = Path("config/local.yaml")) -> Dict[str, Any]:
    """Defaults, overlaid by the YAML file (if present), then by env overrides."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    if path.exists():
        try:
            with path.open("r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigError(f"cannot read config {path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigError(f"config {path} must be a mapping, got {type(loaded).__name__}")
        cfg = _merge(cfg, loaded)
    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name, "").strip()
        if value:
            cfg[key] = value
    cfg["interpreters"] = _interpreter_list(cfg.get("interpreters"))
    return cfg


def _interpreter_list(value: Any) -> List[str]:
    if value is None:
        return list(DEFAULT_CONFIG["interpreters"])
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        raise ConfigError(f"interpreters must be a command name or a list of them, got {value!r}")
    return value


def ensure_dirs(cfg: Dict[str, Any]) -> None:
    data_paths = cfg.get("data_paths", {})
    for key in ("generated", "logs"):
        p = data_paths.get(key)
        if not p:
            continue
        Path(p).mkdir(parents=True, exist_ok=True)


def load_env_file(path: Optional[Path] = None) -> None:
    # Existing environment variables win over the .env file.
    load_dotenv(dotenv_path=path or find_dotenv(usecwd=True), override=False)


def env_key_set(cfg: Optional[Dict[str, Any]] = None) -> bool:
    name = (cfg or DEFAULT_CONFIG).get("api_key_env", "HF_TOKEN")
    return bool(os.environ.get(name, "").strip())


def require_api_key(cfg: Optional[Dict[str, Any]] = None) -> str:
    """Return the bearer token from the environment or raise ConfigError."""
    name = (cfg or DEFAULT_CONFIG).get("api_key_env", "HF_TOKEN")
    load_env_file()
    token = os.environ.get(name, "").strip()
    if not token:
        raise ConfigError(f"{name} environment variable not set")
    return token
