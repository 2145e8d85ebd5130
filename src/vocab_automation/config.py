import os
from typing import Dict, Optional, Protocol

from dotenv import dotenv_values

from .errors import ValidationError
from .logging import get_logger

log = get_logger("config")

API_KEY_SETTING = "openai_api_key"
DEFAULT_MODEL = "gpt-5-mini"


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    This makes running tools from subdirectories (e.g., `src/`) still find
    the repository-level `.env`.
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
    """Read the nearest .env into a mapping; the environment is not mutated."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug(f"No .env found starting from: {os.path.abspath(dotenv_dir)}")
        return {}
    try:
        values = dotenv_values(path)
    except OSError as e:
        log.warning(f"Failed reading .env: {e}")
        return {}
    env = {k: v.strip() for k, v in values.items() if k and v is not None}
    log.debug(f"Loaded {len(env)} key(s) from .env at {path}")
    return env


def load_openai(dotenv_dir: str) -> Optional[str]:
    """Return OpenAI API key from env or .env.

    Reads OPENAI_API_KEY (or lowercase openai_api_key).
    """
    api_key = os.environ.get("OPENAI_API_KEY")
    if api_key and api_key.strip():
        return api_key.strip()
    env = _read_dotenv(dotenv_dir)
    v = env.get("OPENAI_API_KEY") or env.get("openai_api_key")
    return v.strip() if v else None


def load_base_url(dotenv_dir: str) -> Optional[str]:
    """Optional OPENAI_BASE_URL override (proxies, compatible gateways)."""
    v = os.environ.get("OPENAI_BASE_URL")
    if v:
        return v.strip()
    v = _read_dotenv(dotenv_dir).get("OPENAI_BASE_URL")
    return v.strip() if v else None


def load_model(dotenv_dir: str, fallback: str = DEFAULT_MODEL) -> str:
    v = os.environ.get("VOCAB_OPENAI_MODEL")
    if v:
        return v.strip()
    env = _read_dotenv(dotenv_dir)
    return (env.get("VOCAB_OPENAI_MODEL") or fallback).strip()


class SettingsBackend(Protocol):
    def get_setting(self, key: str) -> Optional[str]: ...

    def set_setting(self, key: str, value: str) -> None: ...

    def delete_setting(self, key: str) -> None: ...


def _mask(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:3]}…{value[-4:]}"


class CredentialSettings:
    """The single mutable extraction credential.

    Last write wins. When bound to a backend (the library database) the value
    survives restarts; the env/.env key only seeds the value when nothing has
    been stored.
    """

    def __init__(
        self,
        backend: Optional[SettingsBackend] = None,
        *,
        fallback: Optional[str] = None,
        key: str = API_KEY_SETTING,
    ) -> None:
        self._backend = backend
        self._key = key
        stored = backend.get_setting(key) if backend is not None else None
        self._value: Optional[str] = stored or (fallback.strip() if fallback and fallback.strip() else None)
        if stored:
            log.info("Using stored extraction API key")
        elif self._value:
            log.info("Using OPENAI_API_KEY from environment/.env")
        else:
            log.debug("No extraction API key configured")

    @classmethod
    def from_environment(cls, backend: Optional[SettingsBackend] = None, *, dotenv_dir: Optional[str] = None) -> "CredentialSettings":
        return cls(backend, fallback=load_openai(dotenv_dir or os.getcwd()))

    def get(self) -> Optional[str]:
        return self._value

    def set(self, value: str) -> None:
        cleaned = (value or "").strip()
        if not cleaned:
            raise ValidationError("Bitte geben Sie einen API-Schlüssel ein.")
        if self._backend is not None:
            self._backend.set_setting(self._key, cleaned)
        self._value = cleaned
        log.info("Extraction API key updated")

    def clear(self) -> None:
        if self._backend is not None:
            self._backend.delete_setting(self._key)
        self._value = None
        log.info("Extraction API key cleared")

    @property
    def configured(self) -> bool:
        return bool(self._value)

    def masked(self) -> Optional[str]:
        return _mask(self._value)
