#!/usr/bin/env python3
"""Adopt-a-Pet matching service: single entry point.

Waits for Elasticsearch, creates any missing index, optionally seeds the
pet directory from a JSON file, and launches the FastAPI service.

Usage:
    python main.py
    python main.py --seed-pets data/pets.json
    python main.py --port 8000
    python main.py --es-url http://localhost:9200
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger("adopt-a-pet")


def _load_pets(path: Path) -> list:
    """Read a JSON array of pet documents into PetCandidate objects."""
    from src.data.schemas import PetCandidate

    with path.open(encoding="utf-8") as fh:
        raw = json.load(fh)
    if not isinstance(raw, list):
        raise ValueError(f"{path} must contain a JSON array of pets")
    return [PetCandidate(**item) for item in raw]


def main() -> None:
    """Orchestrate startup: elasticsearch -> indices -> seed -> serve."""
    parser = argparse.ArgumentParser(
        description="Adopt-a-Pet compatibility matching service"
    )
    parser.add_argument(
        "--seed-pets",
        type=Path,
        default=None,
        help="JSON file of pets to bulk index before serving",
    )
    parser.add_argument(
        "--port", type=int, default=None, help="Server port"
    )
    parser.add_argument(
        "--host", type=str, default=None, help="Server host"
    )
    parser.add_argument(
        "--es-url", type=str, default=None, help="Elasticsearch URL"
    )
    args = parser.parse_args()

    if args.es_url:
        os.environ["ELASTICSEARCH_URL"] = args.es_url

    from src.config import get_config

    config = get_config()
    host = args.host or config.host
    port = args.port or config.port

    if not config.encryption_secret:
        logger.error(
            "SCORING_KEY_ENC_SECRET (or JWT_SECRET) must be set; "
            "the scoring credential cannot be stored or read without it."
        )
        sys.exit(1)

    # Step 1: Ensure Elasticsearch is running
    logger.info("Step 1/4: Waiting for Elasticsearch")
    from src.storage.es_client import create_es_client, wait_for_elasticsearch

    if not wait_for_elasticsearch(config):
        logger.error("Elasticsearch not available after waiting. Exiting.")
        sys.exit(1)

    es = create_es_client(config)

    # Step 2: Indices
    logger.info("Step 2/4: Ensuring indices exist")
    from src.storage.indices import ensure_indices

    created = ensure_indices(es, config)
    logger.info("Created %d new index(es)", len(created))

    # Step 3: Optional pet seed
    if args.seed_pets:
        logger.info("Step 3/4: Seeding pets from %s", args.seed_pets)
        from src.storage.pets import index_pets

        try:
            pets = _load_pets(args.seed_pets)
        except (OSError, ValueError) as exc:
            logger.error("Could not read pets from %s: %s", args.seed_pets, exc)
            sys.exit(1)
        indexed = index_pets(es, pets, index_name=config.pets_index)
        logger.info("Indexed %d pets", indexed)
    else:
        logger.info("Step 3/4: No pet seed file given, skipping")
    es.close()

    # Step 4: Launch FastAPI server
    logger.info("Step 4/4: Launching service on %s:%d", host, port)
    import uvicorn

    from src.api.app import create_app

    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
