"""Read access to the shelter-owned pet directory, plus a bulk loader for seeding."""

from __future__ import annotations

import logging

from elasticsearch import Elasticsearch, NotFoundError
from elasticsearch.helpers import bulk
from pydantic import ValidationError

from src.data.schemas import PetCandidate

logger = logging.getLogger(__name__)

PET_INDEX_NAME = "pets"


class PetDirectory:
    """Query pets that are eligible for matching and adoption.

    Args:
        es_client: Connected Elasticsearch client.
        index_name: Index holding pet documents.
        max_candidates: Upper bound on pets returned by one listing.
    """

    def __init__(
        self,
        es_client: Elasticsearch,
        index_name: str = PET_INDEX_NAME,
        max_candidates: int = 500,
    ) -> None:
        self.es = es_client
        self.index_name = index_name
        self.max_candidates = max_candidates

    def list_available(self) -> list[PetCandidate]:
        """Return non-archived, available pets in a stable order (by pet id)."""
        resp = self.es.search(
            index=self.index_name,
            query=_available_pets_query(),
            sort=[{"pet_id": {"order": "asc"}}],
            size=self.max_candidates,
        )
        pets = []
        for hit in resp["hits"]["hits"]:
            try:
                pets.append(PetCandidate(**hit["_source"]))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed pet document %s (%d error(s))",
                    hit.get("_id"), exc.error_count(),
                )
        logger.debug("Pet directory returned %d candidates", len(pets))
        return pets

    def get(self, pet_id: str) -> PetCandidate | None:
        """Fetch one pet by id, or None if it does not exist."""
        try:
            resp = self.es.get(index=self.index_name, id=pet_id)
        except NotFoundError:
            return None
        return PetCandidate(**resp["_source"])


def _available_pets_query() -> dict:
    return {
        "bool": {
            "filter": [
                {"term": {"archived": False}},
                {"term": {"available": True}},
            ]
        }
    }


def index_pets(
    es: Elasticsearch,
    pets: list[PetCandidate],
    index_name: str = PET_INDEX_NAME,
    batch_size: int = 100,
) -> int:
    """Bulk index pet documents keyed by ``pet_id``.

    Args:
        es: Elasticsearch client.
        pets: Pets to write.
        index_name: Target index name.
        batch_size: Bulk indexing batch size.

    Returns:
        Number of successfully indexed documents.
    """

    def _generate_actions():
        for pet in pets:
            yield {
                "_index": index_name,
                "_id": pet.pet_id,
                "_source": pet.model_dump(),
            }

    success, errors = bulk(
        es, _generate_actions(), chunk_size=batch_size, refresh="wait_for"
    )

    if errors:
        logger.error("Bulk indexing errors: %s", errors)

    logger.info("Indexed %d pets into '%s'", success, index_name)
    return success
