"""Client for the embedding generation edge functions.

The embedding model itself runs behind Supabase edge functions:
- candidates: generate-embeddings
- job postings: generate-job-embeddings

Every failure is reported back as a result so the worker can decide
whether to retry.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import CANDIDATE_EMBEDDING_FUNCTION, JOB_EMBEDDING_FUNCTION
from .models import EntityType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvocationResult:
    """Normalized outcome of one embedding function call."""
    success: bool
    error: Optional[str] = None


class EmbeddingInvoker:
    """Invoke the embedding function for a queue item's entity type."""

    def __init__(
        self,
        client,
        candidate_function: str = CANDIDATE_EMBEDDING_FUNCTION,
        job_function: str = JOB_EMBEDDING_FUNCTION
    ):
        """Initialize the invoker.

        Args:
            client: Supabase client; its function timeout bounds each call
            candidate_function: Edge function for candidates
            job_function: Edge function for job postings
        """
        self.client = client
        self.functions = {
            EntityType.CANDIDATE: candidate_function,
            EntityType.JOB_POSTING: job_function,
        }

    def function_for(self, entity_type: EntityType) -> str:
        try:
            return self.functions[entity_type]
        except KeyError:
            raise ValueError(f"No embedding function for entity type: {entity_type}")

    def invoke(self, entity_type: EntityType, payload: Dict[str, Any]) -> InvocationResult:
        """Call the embedding function.

        Args:
            entity_type: Selects the target function
            payload: Request body from the payload builder

        Returns:
            InvocationResult; transport errors and non-success responses
            are failures, never exceptions
        """
        try:
            function_name = self.function_for(entity_type)
            response = self.client.functions.invoke(
                function_name,
                invoke_options={"body": payload}
            )
        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            logger.debug(f"Embedding function call failed: {error_msg}")
            return InvocationResult(success=False, error=error_msg)

        return self._normalize(response)

    def _normalize(self, response: Any) -> InvocationResult:
        """Interpret the function's response body."""
        body = response
        if isinstance(body, (bytes, bytearray)):
            body = body.decode("utf-8", errors="replace")
        if isinstance(body, str):
            try:
                body = json.loads(body) if body.strip() else {}
            except ValueError:
                # Plain-text bodies ('ok') count as success
                return InvocationResult(success=True)

        if isinstance(body, dict) and body.get("success") is False:
            error = body.get("error") or body.get("message") or "embedding function reported failure"
            return InvocationResult(success=False, error=str(error))

        return InvocationResult(success=True)
