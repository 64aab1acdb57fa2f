"""Write-once cache of compatibility scores.

Records are keyed by (adopter, pet, profile fingerprint). A changed
profile produces a new fingerprint and therefore a new key; existing
records are never updated in place. Anonymous lookups bypass the cache
entirely in both directions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from elasticsearch import ConflictError, Elasticsearch, NotFoundError

from src.data.schemas import CompatibilityScore, ScoreRecord

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(adopter_id: str, pet_id: str, fingerprint: str) -> str:
    return f"{adopter_id}:{pet_id}:{fingerprint}"


class ScoreCache:
    """Score records stored one document per key.

    Args:
        es_client: Connected Elasticsearch client.
        index_name: Index holding score records.
        ttl: Retention window; None keeps records forever.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        es_client: Elasticsearch,
        index_name: str = "match_results",
        ttl: timedelta | None = DEFAULT_TTL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.es = es_client
        self.index_name = index_name
        self.ttl = ttl
        self.clock = clock

    def new_record(
        self,
        adopter_id: str | None,
        pet_id: str,
        fingerprint: str,
        result: CompatibilityScore,
    ) -> ScoreRecord:
        """Stamp a fresh scoring result with its key and retention window."""
        now = self.clock()
        return ScoreRecord(
            **result.model_dump(),
            adopter_id=adopter_id,
            pet_id=pet_id,
            profile_hash=fingerprint,
            created_at=now,
            expires_at=now + self.ttl if self.ttl is not None else None,
        )

    def _is_expired(self, record: ScoreRecord) -> bool:
        return record.expires_at is not None and record.expires_at <= self.clock()

    def get(self, adopter_id: str | None, pet_id: str, fingerprint: str) -> ScoreRecord | None:
        """Return the live record for the key, or None on a miss or expiry."""
        if not adopter_id:
            return None
        try:
            resp = self.es.get(index=self.index_name, id=cache_key(adopter_id, pet_id, fingerprint))
        except NotFoundError:
            return None
        record = ScoreRecord(**resp["_source"])
        if self._is_expired(record):
            logger.debug("Score record %s expired", record.cache_key)
            return None
        return record

    def put(self, record: ScoreRecord) -> bool:
        """Store *record* unless its key already holds a live record.

        Returns:
            True if the record was written.
        """
        if not record.adopter_id:
            return False
        doc_id = record.cache_key
        document = record.model_dump(mode="json")
        try:
            self.es.index(index=self.index_name, id=doc_id, document=document, op_type="create")
            return True
        except ConflictError:
            pass

        # Key taken: an expired record is deleted, then the key is created afresh.
        try:
            existing = self.es.get(index=self.index_name, id=doc_id)
        except NotFoundError:
            existing = None
        if existing is not None:
            if not self._is_expired(ScoreRecord(**existing["_source"])):
                logger.debug("Score record %s already cached", doc_id)
                return False
            try:
                self.es.delete(
                    index=self.index_name,
                    id=doc_id,
                    if_seq_no=existing["_seq_no"],
                    if_primary_term=existing["_primary_term"],
                )
            except (ConflictError, NotFoundError):
                logger.debug("Expired score record %s changed concurrently", doc_id)
                return False
        try:
            self.es.index(index=self.index_name, id=doc_id, document=document, op_type="create")
        except ConflictError:
            logger.debug("Score record %s recreated concurrently", doc_id)
            return False
        return True
