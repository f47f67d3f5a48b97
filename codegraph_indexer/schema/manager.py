"""
One-time registration of the code schema with the knowledge store.

Lookup order: on-disk cache (if fresh and the ID still exists on the
server) → existing schema with the same name → create.  The resolved ID is
memoized on the manager, so a process talks to the schema endpoint at most
once per manager.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..errors import ConfigurationError, PublishError
from .registry import SchemaRegistry

logger = logging.getLogger(__name__)

_CACHE_VERSION = "1.0"


class SchemaManager:
    """
    Parameters
    ----------
    client:
        A :class:`~codegraph_indexer.store.client.KnowledgeStoreClient`.
    registry:
        The schema to register.
    cache_file:
        JSON file remembering schema IDs by schema name.
    ttl_days:
        Cache entries older than this are ignored.
    """

    def __init__(
        self,
        client,
        registry: SchemaRegistry,
        cache_file: Optional[str] = None,
        ttl_days: int = 30,
    ) -> None:
        self.client = client
        self.registry = registry
        self.cache_file = cache_file
        self.ttl = timedelta(days=ttl_days)
        self._schema_id: Optional[str] = None
        self._lock = threading.Lock()

    @property
    def schema_id(self) -> Optional[str]:
        return self._schema_id

    def ensure_schema(self) -> str:
        """
        Return the store's ID for the schema, registering it if needed.

        Raises
        ------
        ConfigurationError
            If the schema endpoint cannot be reached or refuses the schema.
        """
        with self._lock:
            if self._schema_id is None:
                try:
                    self._schema_id = self._resolve()
                except PublishError as exc:
                    raise ConfigurationError(
                        f"cannot register schema {self.registry.name}: {exc}"
                    ) from exc
            return self._schema_id

    def _resolve(self) -> str:
        name = self.registry.name
        cached = self._load_cached()
        schemas = self.client.list_schemas()
        if cached and any(s.get("id") == cached for s in schemas):
            logger.info("Using cached schema %s (%s)", name, cached)
            return cached
        if cached:
            logger.warning("Cached schema %s no longer exists on the server", cached)

        existing = _find_by_name(schemas, name)
        if existing:
            logger.info("Found existing schema %s (%s)", name, existing)
            self._save_cached(existing)
            return existing

        logger.info("Creating schema %s", name)
        try:
            schema_id = self.client.create_schema(self.registry.to_payload())
        except PublishError as exc:
            text = str(exc).lower()
            if "already exists" not in text and "duplicate" not in text:
                raise
            schema_id = _find_by_name(self.client.list_schemas(), name)
            if not schema_id:
                raise
        self._save_cached(schema_id)
        return schema_id

    # ------------------------------------------------------------------
    # Disk cache
    # ------------------------------------------------------------------

    def _read_cache(self) -> dict:
        if not self.cache_file or not os.path.isfile(self.cache_file):
            return {}
        try:
            with open(self.cache_file, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.debug("Ignoring unreadable schema cache %s: %s", self.cache_file, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _load_cached(self) -> Optional[str]:
        entry = self._read_cache().get(self.registry.name)
        if not isinstance(entry, dict) or not entry.get("schemaId"):
            return None
        try:
            stamp = datetime.fromisoformat(str(entry.get("timestamp")))
        except ValueError:
            return None
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        if datetime.now(timezone.utc) - stamp >= self.ttl:
            logger.debug("Schema cache entry for %s expired", self.registry.name)
            return None
        return entry["schemaId"]

    def _save_cached(self, schema_id: str) -> None:
        if not self.cache_file:
            return
        data = self._read_cache()
        data[self.registry.name] = {
            "schemaId": schema_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": _CACHE_VERSION,
        }
        try:
            os.makedirs(os.path.dirname(self.cache_file) or ".", exist_ok=True)
            with open(self.cache_file, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
        except OSError as exc:
            logger.warning("Failed to write schema cache %s: %s", self.cache_file, exc)

    def clear_cache(self) -> None:
        """Forget the cached ID for this schema (disk and memory)."""
        with self._lock:
            self._schema_id = None
        data = self._read_cache()
        if data.pop(self.registry.name, None) is None:
            return
        try:
            with open(self.cache_file, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
        except OSError as exc:
            logger.warning("Failed to update schema cache %s: %s", self.cache_file, exc)


def _find_by_name(schemas: list[dict], name: str) -> Optional[str]:
    for schema in schemas:
        if schema.get("name") == name and schema.get("id"):
            return schema["id"]
    return None
