"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "Settings",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".ragchat"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "OPENAI_API_KEY": "api_key",
    "RAGCHAT_API_KEY": "api_key",
    "RAGCHAT_BASE_URL": "base_url",
    "RAGCHAT_MODEL": "model",
    "RAGCHAT_EMBEDDING_MODEL": "embedding_model",
    "RAGCHAT_INDEX_PATH": "index_path",
    "RAGCHAT_STUDY_ID": "study_id",
    "RAGCHAT_PROXY_TOKEN": "proxy_token",
    "RAGCHAT_PROXY_URL": "proxy_url",
    "RAGCHAT_HOST": "host",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "OUTPUT_RAG_CONTEXT": "output_rag_context",
    "RAGCHAT_DEBUG_LOGGING": "debug_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "RAGCHAT_REQUEST_TIMEOUT": "request_timeout",
    "RAGCHAT_TEMPERATURE": "temperature",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "RAGCHAT_PORT": "port",
    "RAGCHAT_MAX_TOOL_ITERATIONS": "max_tool_iterations",
    "RAGCHAT_RETRIEVAL_LIMIT": "retrieval_limit",
}
_LIST_ENV_OVERRIDES: Mapping[str, str] = {
    "RAGCHAT_CORS_ORIGINS": "cors_origins",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_SECRET_FIELDS: tuple[str, ...] = ("api_key", "proxy_token")


@dataclass(slots=True)
class Settings:
    """Proxy and client settings resolved from disk, CLI, and environment."""

    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    temperature: float | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    max_tool_iterations: int = 8
    embedding_model: str = "text-embedding-3-small"
    index_path: str = str(_SETTINGS_DIR / "rag-chunks.sqlite3")
    study_id: str = "default"
    retrieval_limit: int = 5
    chunk_max_length: int = 2200
    chunk_overlap: int = 200
    output_rag_context: bool = False
    proxy_token: str = ""
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    host: str = "127.0.0.1"
    port: int = 8080
    proxy_url: str = "http://127.0.0.1:8080/v1"
    debug_logging: bool = False


def redact_secret(secret: str | None) -> str:
    """Return a short hint for ``secret`` that is safe to log."""

    if not secret:
        return ""
    if len(secret) <= 8:
        return "*" * len(secret)
    return f"{secret[:3]}…{secret[-4:]}"


class SecretVault:
    """Encrypts and decrypts sensitive strings for settings persistence."""

    name = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        return self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._get_fernet().decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Stored secret could not be decrypted with the current key") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        if self._key_path.exists():
            return self._key_path.read_bytes().strip()
        key = Fernet.generate_key()
        self._key_path.parent.mkdir(parents=True, exist_ok=True)
        self._key_path.write_bytes(key)
        try:
            os.chmod(self._key_path, 0o600)
        except OSError:  # pragma: no cover - platform dependent
            LOGGER.debug("Unable to restrict permissions on %s", self._key_path)
        return key


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            secrets = self._decrypt_secrets(payload)
            data = _filter_fields(payload)
            data.update(secrets)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            LOGGER.debug("Settings loaded from %s", self._path)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        for name in _SECRET_FIELDS:
            secret = data.pop(name, "") or ""
            if secret:
                data[f"{name}_ciphertext"] = self._vault.encrypt(secret)
        data["version"] = _SETTINGS_VERSION
        return data

    def _decrypt_secrets(self, payload: Mapping[str, Any]) -> Dict[str, str]:
        secrets: Dict[str, str] = {}
        for name in _SECRET_FIELDS:
            ciphertext = payload.get(f"{name}_ciphertext")
            if ciphertext:
                try:
                    secrets[name] = self._vault.decrypt(str(ciphertext))
                except ValueError as exc:
                    LOGGER.warning("Unable to decrypt %s: %s", name, exc)
            elif payload.get(name):
                LOGGER.info("Detected plaintext %s in settings; it will be encrypted on next save.", name)
                secrets[name] = str(payload[name])
        return secrets

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            return json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _LIST_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = [item.strip() for item in value.split(",") if item.strip()]
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid integer",
                    env_name,
                    value,
                )
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning(
                    "Environment override %s=%s is not a valid float", env_name, value
                )
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - set(_SECRET_FIELDS)
    return {key: value for key, value in payload.items() if key in allowed}
