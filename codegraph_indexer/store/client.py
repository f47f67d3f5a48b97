"""
HTTP client for the remote knowledge store.

Every request goes through :meth:`KnowledgeStoreClient._request`, which
retries transport errors, 5xx and 429 responses with jittered exponential
backoff and raises :class:`~codegraph_indexer.errors.PublishError` once the
retries are exhausted.
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import requests

from ..errors import PublishError
from ..graph.models import GraphSnapshot

logger = logging.getLogger(__name__)


class KnowledgeStoreClient:
    """
    Thin wrapper over the store's REST API.

    Parameters
    ----------
    base_url:
        Service root, e.g. ``https://memory.papr.ai``.
    api_key:
        Sent as ``X-API-Key``.
    client_type:
        Sent as ``X-Client-Type``.
    timeout:
        Per-request timeout in seconds.
    max_retries / retry_delay:
        Attempts per request and the initial backoff in seconds.
    session:
        Optional pre-configured ``requests.Session``.
    sleep:
        Backoff sleep function; tests pass a no-op.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        client_type: str = "codegraph_indexer",
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client_type = client_type
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_config(cls, config) -> "KnowledgeStoreClient":
        config.require_credentials()
        return cls(
            base_url=config.BASE_URL,
            api_key=config.API_KEY,
            client_type=config.CLIENT_TYPE,
            timeout=config.TIMEOUT,
            max_retries=config.MAX_RETRIES,
            retry_delay=config.RETRY_DELAY,
        )

    def _headers(self) -> dict:
        return {
            "X-API-Key": self.api_key,
            "X-Client-Type": self.client_type,
            "Content-Type": "application/json",
            "Accept-Encoding": "gzip",
        }

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def add(self, content: str, metadata: dict, graph: GraphSnapshot) -> str:
        """
        Publish one document together with its graph fragment.

        Returns
        -------
        str
            The memory ID assigned by the store.

        Raises
        ------
        PublishError
            When the store rejects the request, is unreachable after all
            retries, or answers without a memory ID.
        """
        payload: dict[str, Any] = {
            "content": content,
            "type": "text",
            "metadata": {
                "topics": metadata.get("topics", []),
                "emoji tags": metadata.get("tags", ["💻"]),
                "sourceType": "code_indexer",
                "customMetadata": {
                    "file_path": metadata.get("filePath"),
                    "language": metadata.get("language"),
                    "node_count": len(graph.nodes),
                    "relationship_count": len(graph.relationships),
                    "indexed_at": datetime.now(timezone.utc).isoformat(),
                },
            },
        }
        if graph.nodes:
            payload["graph_generation"] = {"mode": "manual", "manual": graph.to_payload()}

        result = self._request("POST", "/v1/memory", payload)
        data = result.get("data")
        if isinstance(data, list):
            data = data[0] if data else {}
        memory_id = (data or {}).get("memoryId") if isinstance(data, dict) else None
        if not memory_id:
            raise PublishError(
                f"store did not return a memory id for {metadata.get('filePath')}: "
                f"{result.get('error') or result.get('status')}"
            )
        logger.debug(
            "Published %s as %s (%d nodes, %d relationships)",
            metadata.get("filePath"), memory_id, len(graph.nodes), len(graph.relationships),
        )
        return memory_id

    def delete_memory(self, memory_id: str) -> bool:
        """Delete a memory; returns False if the store no longer has it."""
        try:
            self._request("DELETE", f"/v1/memory/{memory_id}")
        except PublishError as exc:
            if exc.status_code == 404:
                return False
            raise
        return True

    # ------------------------------------------------------------------
    # Schemas
    # ------------------------------------------------------------------

    def list_schemas(self) -> list[dict]:
        result = self._request("GET", "/v1/schemas")
        data = result.get("data") or []
        return data if isinstance(data, list) else []

    def create_schema(self, schema: dict) -> str:
        """Register *schema*; returns the new schema ID."""
        result = self._request("POST", "/v1/schemas", schema)
        data = result.get("data") or {}
        schema_id = data.get("id") if isinstance(data, dict) else None
        if not schema_id:
            raise PublishError(f"schema creation returned no id: {result}")
        return schema_id

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}"
        last_error: Optional[Exception] = None
        status: Optional[int] = None

        for attempt in range(1, self.max_retries + 1):
            status = None
            try:
                response = self._session.request(
                    method, url, headers=self._headers(), json=payload, timeout=self.timeout,
                )
            except requests.exceptions.RequestException as exc:
                last_error = exc
            else:
                status = response.status_code
                if status < 400:
                    return _json_body(response)
                last_error = PublishError(f"HTTP {status}: {_text_body(response)}", status)
                if status < 500 and status != 429:
                    raise last_error

            if attempt < self.max_retries:
                # Jittered exponential backoff
                wait = self.retry_delay * (2 ** (attempt - 1))
                jitter = wait * 0.1 * random.random()
                if status == 429:
                    wait *= 2
                    logger.info("Rate limited (429); backing off for %.1fs", wait)
                logger.warning(
                    "%s %s failed on attempt %d/%d: %s",
                    method, path, attempt, self.max_retries, last_error,
                )
                self._sleep(wait + jitter)

        raise PublishError(
            f"{method} {path} failed after {self.max_retries} attempts: {last_error}",
            status,
        )


def _json_body(response) -> dict:
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {"data": body}


def _text_body(response) -> str:
    return (response.text or "")[:500]
