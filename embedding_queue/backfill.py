"""Find records without embeddings and queue them."""

import logging
from typing import Dict, Iterator, List, Set

from tqdm import tqdm

from .config import (
    CANDIDATE_TABLE, JOB_POSTING_TABLE,
    CANDIDATE_EMBEDDINGS_TABLE, JOB_POSTING_EMBEDDINGS_TABLE
)
from .models import EntityType
from .queue_store import QueueStore

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000

# entity type -> (source table, embeddings table, embeddings foreign key)
SOURCES = {
    EntityType.CANDIDATE: (CANDIDATE_TABLE, CANDIDATE_EMBEDDINGS_TABLE, "candidate_id"),
    EntityType.JOB_POSTING: (JOB_POSTING_TABLE, JOB_POSTING_EMBEDDINGS_TABLE, "job_posting_id"),
}


def _paginate(query_factory, column: str, page_size: int) -> Iterator[str]:
    """Yield one column across all pages of a query."""
    start = 0
    while True:
        response = query_factory().range(start, start + page_size - 1).execute()
        rows = response.data or []
        for row in rows:
            yield str(row[column])
        if len(rows) < page_size:
            break
        start += page_size


def find_missing_embeddings(client, entity_type: EntityType, page_size: int = PAGE_SIZE) -> List[str]:
    """Ids of source records that have no stored embedding.

    Only open job postings are considered; closed jobs have their
    embeddings removed on purpose.
    """
    source_table, embeddings_table, foreign_key = SOURCES[entity_type]

    def source_query():
        query = client.table(source_table).select("id").order("id")
        if entity_type is EntityType.JOB_POSTING:
            query = query.eq("status", "open")
        return query

    def embedded_query():
        return client.table(embeddings_table).select(foreign_key).order(foreign_key)

    embedded: Set[str] = set(_paginate(embedded_query, foreign_key, page_size))
    return [entity_id for entity_id in _paginate(source_query, "id", page_size)
            if entity_id not in embedded]


def enqueue_entities(store: QueueStore, entity_type: EntityType, entity_ids: List[str],
                     show_progress: bool = False) -> Dict[str, int]:
    """Queue a list of entities.

    Returns:
        Dictionary with 'added' and 'skipped' counts
    """
    stats = {"added": 0, "skipped": 0}

    for entity_id in tqdm(entity_ids, desc=f"Enqueue {entity_type.value}",
                          unit="item", disable=not show_progress):
        if store.enqueue(entity_type, entity_id) is None:
            stats["skipped"] += 1
        else:
            stats["added"] += 1

    return stats


def backfill(store: QueueStore, client, entity_type: EntityType,
             show_progress: bool = False) -> Dict[str, int]:
    """Queue every record of one type that is missing an embedding."""
    missing = find_missing_embeddings(client, entity_type)
    logger.info(f"Found {len(missing)} {entity_type.value} records without embeddings")
    return enqueue_entities(store, entity_type, missing, show_progress=show_progress)
