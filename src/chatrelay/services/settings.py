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
    "EndpointSettings",
    "SettingsStore",
    "SecretVault",
    "DEFAULT_AGENT_ID",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".chatrelay"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_TOKEN_FIELD = "api_token_ciphertext"
_ENV_OVERRIDES: Mapping[str, str] = {
    "CHATRELAY_BASE_URL": "base_url",
    "CHATRELAY_API_TOKEN": "api_token",
    "CHATRELAY_MODEL": "model_id",
    "CHATRELAY_DEFAULT_AGENT": "default_agent_id",
    "CHATRELAY_DEFAULT_NOTEBOOK": "default_notebook_id",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "CHATRELAY_DEBUG_LOGGING": "debug_logging",
    "CHATRELAY_DEBUG_EVENT_LOGGING": "debug_event_logging",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "CHATRELAY_REQUEST_TIMEOUT": "request_timeout",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
DEFAULT_AGENT_ID = "gruenerator-universal"


@dataclass(slots=True)
class EndpointSettings:
    """Relative paths of the backend endpoints the engine talks to."""

    chat_stream: str = "/api/chat-graph/stream"
    deep_stream: str = "/api/chat-deep/stream"
    resume: str = "/api/chat-deep/resume"
    catalog_agents: str = "/api/custom_generator"
    catalog_notebooks: str = "/api/notebook-collections"


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    base_url: str = "http://localhost:3001"
    api_token: str = ""
    model_id: str = "auto"
    default_agent_id: str = DEFAULT_AGENT_ID
    default_notebook_id: str | None = None
    request_timeout: float | None = 120.0
    catalog_max_retries: int = 3
    catalog_retry_min_seconds: float = 0.5
    catalog_retry_max_seconds: float = 6.0
    enabled_tools: dict[str, bool] = field(
        default_factory=lambda: {
            "search": True,
            "web": True,
            "research": True,
            "examples": True,
            "image": True,
        }
    )
    default_headers: dict[str, str] = field(default_factory=dict)
    debug_logging: bool = False
    debug_event_logging: bool = False
    endpoints: EndpointSettings = field(default_factory=EndpointSettings)


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
        needs_migration = False

        if payload:
            token, migrated = self._decrypt_token(
                payload.pop(_TOKEN_FIELD, None), payload.pop("api_token", None)
            )
            needs_migration = migrated
            data = _filter_fields(payload)
            endpoint_payload = data.get("endpoints")
            if isinstance(endpoint_payload, Mapping):
                try:
                    data["endpoints"] = EndpointSettings(**endpoint_payload)
                except TypeError:
                    LOGGER.warning("Ignoring malformed endpoint settings: %s", sorted(endpoint_payload))
                    data["endpoints"] = EndpointSettings()
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if token:
                settings = replace(settings, api_token=token)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

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
        token = data.pop("api_token", "") or ""
        if token:
            data[_TOKEN_FIELD] = self._vault.encrypt(token)
        data["version"] = _SETTINGS_VERSION
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
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
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
        tools_override = filtered.get("enabled_tools")
        if isinstance(tools_override, Mapping):
            merged = dict(settings.enabled_tools)
            merged.update({str(key): bool(value) for key, value in tools_override.items()})
            filtered["enabled_tools"] = merged
        if filtered:
            shown = {key: redact_secret(value) if key == "api_token" else value for key, value in filtered.items()}
            LOGGER.debug("Applying %s settings overrides: %s", source, shown)
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _decrypt_token(self, ciphertext: str | None, legacy_plaintext: str | None) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API token: %s", exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected plaintext API token; migrating to encrypted storage.")
            return legacy_plaintext, True
        return "", False


class SecretVault:
    """Encrypts and decrypts the API token with a Fernet key stored beside the settings."""

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        return self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        try:
            return self._get_fernet().decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_name(f"{path.name}.tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - {"api_token"}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
