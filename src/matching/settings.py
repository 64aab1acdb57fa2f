"""Scoring-service settings: admin read/update and decrypted resolution.

The settings live in a single document. The stored credential is an
encrypted blob; only :class:`SettingsResolver` ever holds the plaintext,
and only in memory for the duration of a scoring attempt.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from elasticsearch import ApiError, Elasticsearch, NotFoundError, TransportError

from src.config import Config
from src.data.schemas import (
    ActiveSettings,
    ScoringSettings,
    SettingsUpdate,
    SettingsView,
)
from src.events.audit import AuditLog
from src.security.secret_codec import SecretCodec

logger = logging.getLogger(__name__)

SETTINGS_ID = "scoring_settings"


class SettingsStore:
    """Persistence and admin projection for :class:`ScoringSettings`.

    Args:
        es_client: Connected Elasticsearch client.
        codec: Codec used to encrypt a newly supplied API key.
        config: Supplies index name and defaults.
        audit: Optional sink for ``settings_updated`` events.
    """

    def __init__(
        self,
        es_client: Elasticsearch,
        codec: SecretCodec,
        config: Config,
        audit: AuditLog | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.es = es_client
        self.codec = codec
        self.config = config
        self.audit = audit
        self.clock = clock
        self.index_name = config.settings_index

    def load(self) -> ScoringSettings | None:
        """Return the stored settings, or None when never saved."""
        try:
            resp = self.es.get(index=self.index_name, id=SETTINGS_ID)
        except NotFoundError:
            return None
        return ScoringSettings(**resp["_source"])

    def view(self) -> SettingsView:
        """Non-secret projection, with defaults when nothing is stored."""
        return self._project(self.load())

    def update(self, update: SettingsUpdate, actor_id: str | None = None) -> SettingsView:
        """Merge *update* into the stored settings and return the new view.

        Only fields present in the update are changed. A blank ``model`` is
        ignored, a blank ``base_url`` clears it, and a non-blank ``api_key``
        is encrypted before it reaches storage.

        Raises:
            ConfigurationError: If a key is supplied but no encryption secret is set.
        """
        current = self.load() or ScoringSettings()
        changes: dict = {}
        fields = update.model_fields_set

        if update.model is not None and update.model.strip():
            changes["model"] = update.model.strip()
        if "base_url" in fields:
            base_url = (update.base_url or "").strip()
            changes["base_url"] = base_url or None
        if update.max_tokens is not None:
            changes["max_tokens"] = update.max_tokens
        if update.temperature is not None:
            changes["temperature"] = update.temperature
        if update.enabled is not None:
            changes["enabled"] = update.enabled
        if update.api_key is not None and update.api_key.strip():
            changes["api_key_encrypted"] = self.codec.encrypt(update.api_key.strip())

        changes["updated_by"] = actor_id
        changes["updated_at"] = self.clock()
        stored = current.model_copy(update=changes)

        self.es.index(
            index=self.index_name,
            id=SETTINGS_ID,
            document=stored.model_dump(mode="json"),
            refresh="wait_for",
        )
        logger.info(
            "Scoring settings updated by %s (fields: %s)",
            actor_id, sorted(k for k in changes if k != "api_key_encrypted"),
        )
        if self.audit is not None:
            self.audit.record(
                "settings_updated", "success", actor=actor_id,
                message="Scoring settings updated",
            )
        return self._project(stored)

    def _project(self, stored: ScoringSettings | None) -> SettingsView:
        stored = stored or ScoringSettings()
        return SettingsView(
            model=stored.model or self.config.default_model,
            base_url=stored.base_url,
            max_tokens=stored.max_tokens or self.config.default_max_tokens,
            temperature=(
                stored.temperature
                if stored.temperature is not None
                else self.config.default_temperature
            ),
            enabled=stored.enabled,
            has_api_key=bool(stored.api_key_encrypted),
        )


class SettingsResolver:
    """Resolve the settings a scoring call should use right now.

    ``None`` means "scoring unavailable"; callers degrade to a fallback.
    """

    def __init__(self, store: SettingsStore) -> None:
        self.store = store

    def get_active_settings(self) -> ActiveSettings | None:
        try:
            stored = self.store.load()
        except (ApiError, TransportError) as exc:
            logger.warning("Scoring settings unreadable: %s", exc)
            return None

        if stored is None or not stored.api_key_encrypted or not stored.enabled:
            return None

        api_key = self.store.codec.decrypt(stored.api_key_encrypted)
        if not api_key:
            logger.warning("Stored scoring credential could not be decrypted")
            return None

        defaults = self.store.config
        return ActiveSettings(
            api_key=api_key,
            model=stored.model or defaults.default_model,
            base_url=stored.base_url or None,
            max_tokens=stored.max_tokens or defaults.default_max_tokens,
            temperature=(
                stored.temperature
                if stored.temperature is not None
                else defaults.default_temperature
            ),
        )
