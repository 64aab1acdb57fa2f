"""Index mappings for every document type the core stores."""

from __future__ import annotations

import logging

from elasticsearch import Elasticsearch

from src.config import Config

logger = logging.getLogger(__name__)

_SETTINGS = {"number_of_shards": 1, "number_of_replicas": 0}

PETS_MAPPING = {
    "properties": {
        "pet_id": {"type": "keyword"},
        "shelter_id": {"type": "keyword"},
        "name": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
        "species": {"type": "keyword"},
        "breed": {"type": "text", "fields": {"keyword": {"type": "keyword"}}},
        "age": {"type": "float"},
        "living_space": {"type": "keyword"},
        "energy_level": {"type": "keyword"},
        "experience": {"type": "keyword"},
        "kids": {"type": "keyword"},
        "special_care": {"type": "keyword"},
        "size": {"type": "keyword"},
        "description": {"type": "text", "analyzer": "standard"},
        "cat_friendly": {"type": "boolean"},
        "image": {"type": "keyword", "index": False},
        "archived": {"type": "boolean"},
        "available": {"type": "boolean"},
    }
}

MATCH_RESULTS_MAPPING = {
    "properties": {
        "adopter_id": {"type": "keyword"},
        "pet_id": {"type": "keyword"},
        "profile_hash": {"type": "keyword"},
        "score": {"type": "integer"},
        "label": {"type": "keyword"},
        "reasons": {"type": "text", "index": False},
        "risks": {"type": "text", "index": False},
        "missing_info": {"type": "text", "index": False},
        "version": {"type": "keyword"},
        "created_at": {"type": "date"},
        "expires_at": {"type": "date"},
    }
}

SCORING_SETTINGS_MAPPING = {
    "properties": {
        "model": {"type": "keyword"},
        "base_url": {"type": "keyword", "index": False},
        "max_tokens": {"type": "integer"},
        "temperature": {"type": "float"},
        "enabled": {"type": "boolean"},
        "api_key_encrypted": {"type": "keyword", "index": False},
        "updated_by": {"type": "keyword"},
        "updated_at": {"type": "date"},
    }
}

ADOPTION_REQUESTS_MAPPING = {
    "properties": {
        "request_id": {"type": "keyword"},
        "adopter_id": {"type": "keyword"},
        "adopter_name": {"type": "text"},
        "adopter_email": {"type": "keyword"},
        "adopter_address": {"type": "text", "index": False},
        "pet_id": {"type": "keyword"},
        "pet_name": {"type": "text"},
        "shelter_id": {"type": "keyword"},
        "status": {"type": "keyword"},
        "compatibility_score": {"type": "integer"},
        "ai_reasons": {"type": "text", "index": False},
        "message": {"type": "text"},
        "escalated": {"type": "boolean"},
        "escalated_at": {"type": "date"},
        "created_at": {"type": "date"},
        "updated_at": {"type": "date"},
    }
}

# One document per pet holding the id of its approved request.
PET_APPROVALS_MAPPING = {
    "properties": {
        "pet_id": {"type": "keyword"},
        "request_id": {"type": "keyword"},
        "approved_by": {"type": "keyword"},
        "approved_at": {"type": "date"},
    }
}

# One document per (adopter, pet) while that adopter's request is active.
ACTIVE_REQUESTS_MAPPING = {
    "properties": {
        "adopter_id": {"type": "keyword"},
        "pet_id": {"type": "keyword"},
        "request_id": {"type": "keyword"},
    }
}

INTEGRATION_EVENTS_MAPPING = {
    "properties": {
        "type": {"type": "keyword"},
        "outcome": {"type": "keyword"},
        "latency_ms": {"type": "integer"},
        "actor": {"type": "keyword"},
        "message": {"type": "text"},
        "created_at": {"type": "date"},
    }
}


def index_mappings(config: Config) -> dict[str, dict]:
    """Map each configured index name to its mapping."""
    return {
        config.pets_index: PETS_MAPPING,
        config.match_results_index: MATCH_RESULTS_MAPPING,
        config.settings_index: SCORING_SETTINGS_MAPPING,
        config.adoption_requests_index: ADOPTION_REQUESTS_MAPPING,
        config.pet_approvals_index: PET_APPROVALS_MAPPING,
        config.active_requests_index: ACTIVE_REQUESTS_MAPPING,
        config.integration_events_index: INTEGRATION_EVENTS_MAPPING,
    }


def ensure_indices(es: Elasticsearch, config: Config) -> list[str]:
    """Create any missing index. Existing indices and their data are left alone.

    Returns:
        Names of the indices that were created.
    """
    created = []
    for name, mapping in index_mappings(config).items():
        if es.indices.exists(index=name):
            continue
        es.indices.create(index=name, settings=_SETTINGS, mappings=mapping)
        logger.info("Created index '%s'", name)
        created.append(name)
    return created
