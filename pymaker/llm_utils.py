import json
import logging
from typing import Any, Dict, Optional, Sequence

import requests
from pydantic import ValidationError
from tqdm import tqdm

from pymaker.config_loader import DEFAULT_CONFIG, require_api_key
from pymaker.errors import HttpFailure, ParseFailure, TransportFailure
from pymaker.schemas import ChatRequest, ChatResponse, Turn

logger = logging.getLogger(__name__)

# --- Constants ---
API_URL = DEFAULT_CONFIG["api_url"]
MODEL_MAIN = DEFAULT_CONFIG["model"]
TIMEOUT_S = DEFAULT_CONFIG["timeout_s"]
MAX_TOKENS = DEFAULT_CONFIG["max_tokens"]
TEMPERATURE = DEFAULT_CONFIG["temperature"]


def build_headers(api_key: str) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Accept": "application/json",
        "Authorization": f"Bearer {api_key}",
    }


class GenerationClient:
    """Chat-completion client: one POST per call, full turn list every time."""

    def __init__(
        self,
        api_key: str,
        model: str = MODEL_MAIN,
        url: str = API_URL,
        timeout: float = TIMEOUT_S,
        max_tokens: int = MAX_TOKENS,
        temperature: float = TEMPERATURE,
        show_bar: bool = False,
    ) -> None:
        self.model = model
        self.url = url
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.show_bar = show_bar
        self._headers = build_headers(api_key)

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None) -> "GenerationClient":
        cfg = cfg or DEFAULT_CONFIG
        return cls(
            api_key=require_api_key(cfg),
            model=cfg.get("model", MODEL_MAIN),
            url=cfg.get("api_url", API_URL),
            timeout=float(cfg.get("timeout_s", TIMEOUT_S)),
            max_tokens=int(cfg.get("max_tokens", MAX_TOKENS)),
            temperature=float(cfg.get("temperature", TEMPERATURE)),
            show_bar=bool(cfg.get("show_api_bars", False)),
        )

    def build_payload(self, turns: Sequence[Turn]) -> Dict[str, Any]:
        req = ChatRequest(
            model=self.model,
            messages=list(turns),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        return req.model_dump()

    def generate(self, turns: Sequence[Turn]) -> str:
        """
        Send `turns` (system turn first) and return the first choice's content.
        Raises TransportFailure, HttpFailure or ParseFailure.
        """
        payload = self.build_payload(turns)
        bar = tqdm(total=1, desc="Generating", unit="call", leave=False) if self.show_bar else None
        try:
            r = requests.post(self.url, headers=self._headers, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("api_transport_error %s", e)
            raise TransportFailure(f"request to {self.url} failed: {e}") from e
        finally:
            if bar:
                bar.update(1)
                bar.close()

        text = r.text or ""
        if not 200 <= r.status_code < 300:
            logger.warning("api_http_error status=%s", r.status_code)
            raise HttpFailure(r.status_code, text)
        return parse_completion(text)


def parse_completion(text: str) -> str:
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseFailure(f"invalid JSON in response: {e}") from e
    try:
        data = ChatResponse.model_validate(raw)
    except ValidationError as e:
        raise ParseFailure(f"unexpected response shape: {e}") from e
    if not data.choices:
        raise ParseFailure("no choices in response")
    return data.choices[0].message.content
