import os
from dataclasses import dataclass
from typing import Dict, Optional

from dotenv import dotenv_values

from .logging import get_logger
from .paths import expand_abs, find_project_root

log = get_logger("config")


BACKENDS = ("openrouter", "openai", "ollama")

DEFAULT_MODELS: Dict[str, str] = {
    "openrouter": "anthropic/claude-sonnet-4",
    "openai": "gpt-4o-mini",
    "ollama": "qwen2.5vl:7b",
}

DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_MAX_TOKENS = 1200
DEFAULT_TIMEOUT_SECONDS = 120
DEFAULT_MAX_UPLOAD_BYTES = 8 * 1024 * 1024


@dataclass(frozen=True)
class AppConfig:
    """Process-wide settings, built once and handed to collaborators."""

    backend: str
    model_name: str
    api_key: Optional[str]
    ollama_url: str = DEFAULT_OLLAMA_URL
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = 0.0
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    root_dir: str = "."


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories (e.g., `src/`) still find
    repository-level config files like `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Return key/value pairs from the nearest .env; does not mutate os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    values = {k: v for k, v in dotenv_values(path).items() if v is not None}
    log.debug(f"Loaded {len(values)} key(s) from .env at {path}")
    return values


class _Settings:
    """Environment first, then .env values."""

    def __init__(self, dotenv_dir: str) -> None:
        self._env = _read_dotenv(dotenv_dir)

    def get(self, *names: str) -> Optional[str]:
        for name in names:
            v = os.environ.get(name)
            if v and v.strip():
                return v.strip()
        for name in names:
            v = self._env.get(name)
            if v and v.strip():
                return v.strip()
        return None

    def get_int(self, name: str, default: int) -> int:
        raw = self.get(name)
        if raw is None:
            return default
        try:
            value = int(raw)
        except ValueError:
            log.warning(f"{name}={raw!r} is not an integer; using {default}")
            return default
        if value <= 0:
            log.warning(f"{name}={raw!r} must be positive; using {default}")
            return default
        return value

    def get_float(self, name: str, default: float) -> float:
        raw = self.get(name)
        if raw is None:
            return default
        try:
            return float(raw)
        except ValueError:
            log.warning(f"{name}={raw!r} is not a number; using {default}")
            return default


def load_config(dotenv_dir: Optional[str] = None) -> AppConfig:
    """Build the AppConfig from env and the nearest .env file."""
    start = dotenv_dir or os.getcwd()
    s = _Settings(start)

    backend = (s.get("RECEIPT_BACKEND") or "openrouter").lower()
    if backend not in BACKENDS:
        log.warning(f"RECEIPT_BACKEND={backend!r} is not one of {BACKENDS}; falling back to 'openrouter'")
        backend = "openrouter"

    if backend == "openrouter":
        model = s.get("RECEIPT_MODEL", "OPENROUTER_MODEL")
        api_key = s.get("OPENROUTER_API_KEY", "OPEN_ROUTER_API_KEY", "open_router_api_key")
    elif backend == "openai":
        model = s.get("RECEIPT_MODEL", "OPENAI_MODEL")
        api_key = s.get("OPENAI_API_KEY", "openai_api_key")
    else:
        model = s.get("RECEIPT_MODEL", "OLLAMA_MODEL")
        api_key = None

    root = s.get("RECEIPT_ROOT")
    root_dir = expand_abs(root) if root else find_project_root(start)

    config = AppConfig(
        backend=backend,
        model_name=model or DEFAULT_MODELS[backend],
        api_key=api_key,
        ollama_url=s.get("OLLAMA_URL") or DEFAULT_OLLAMA_URL,
        max_tokens=s.get_int("RECEIPT_MAX_TOKENS", DEFAULT_MAX_TOKENS),
        temperature=s.get_float("RECEIPT_TEMPERATURE", 0.0),
        timeout_seconds=s.get_int("RECEIPT_TIMEOUT", DEFAULT_TIMEOUT_SECONDS),
        max_upload_bytes=s.get_int("RECEIPT_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
        root_dir=root_dir,
    )
    log.info(f"Config: backend={config.backend} model={config.model_name} root={config.root_dir}")
    if backend != "ollama" and not config.api_key:
        log.warning(f"No API key configured for backend '{backend}'")
    return config
