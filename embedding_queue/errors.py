"""Exceptions raised by the embedding queue worker."""


class EmbeddingQueueError(Exception):
    """Base class for embedding queue errors."""


class ConfigurationError(EmbeddingQueueError):
    """Required configuration is missing or invalid. Fatal at startup."""


class UnknownEntityType(EmbeddingQueueError):
    """Queue item refers to an entity type with no payload builder."""


class EntityNotFound(EmbeddingQueueError):
    """Source record for a queue item does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")
