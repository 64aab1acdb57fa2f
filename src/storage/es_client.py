"""Elasticsearch client construction and readiness checks."""

from __future__ import annotations

import logging
import time

from elasticsearch import Elasticsearch

from src.config import Config

logger = logging.getLogger(__name__)


def build_es_client(config: Config, url: str | None = None) -> Elasticsearch:
    """Build a client for a local node or an Elastic Cloud deployment.

    Args:
        config: Application config supplying URL / cloud credentials.
        url: Overrides ``config.elasticsearch_url`` (ignored for cloud).

    Returns:
        Elasticsearch client instance (not yet verified).
    """
    if config.elasticsearch_cloud_id:
        return Elasticsearch(
            cloud_id=config.elasticsearch_cloud_id,
            api_key=config.elasticsearch_api_key,
        )
    return Elasticsearch(url or config.elasticsearch_url)


def _target(config: Config, url: str | None) -> str:
    return config.elasticsearch_cloud_id or url or config.elasticsearch_url


def create_es_client(config: Config, url: str | None = None) -> Elasticsearch:
    """Create and verify an Elasticsearch client connection.

    Raises:
        ConnectionError: If the cluster does not answer a ping.
    """
    es = build_es_client(config, url)
    target = _target(config, url)
    if not es.ping():
        raise ConnectionError(f"Cannot connect to Elasticsearch at {target}")
    logger.info("Connected to Elasticsearch at %s", target)
    return es


def wait_for_elasticsearch(
    config: Config,
    url: str | None = None,
    timeout: int = 120,
    interval: float = 5.0,
) -> bool:
    """Poll until Elasticsearch answers a ping or *timeout* seconds pass.

    Returns:
        True if ES became reachable, False if the timeout was reached.
    """
    es = build_es_client(config, url)
    target = _target(config, url)
    start = time.monotonic()

    while time.monotonic() - start < timeout:
        try:
            if es.ping():
                logger.info("Elasticsearch is ready at %s", target)
                return True
        except Exception as exc:
            logger.debug("Ping to %s failed: %s", target, exc)
        logger.info("Waiting for Elasticsearch...")
        time.sleep(interval)

    logger.error("Elasticsearch not available at %s after %ds", target, timeout)
    return False
