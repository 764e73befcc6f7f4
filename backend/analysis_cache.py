"""Content-addressed cache of completed analyses.

A request's fingerprint is the first 16 hex characters of the SHA-256 of:

    normalized description | stages JSON | team size | prompt version | model id

The description is trimmed, whitespace runs are collapsed to single spaces,
and the result is lowercased. Only the team size is taken from the cost
context: hourly rate and hours per step affect downstream cost estimates,
not the analysis itself.

The cache is never the source of truth (decompositions are persisted
separately by the workflow store), so every backend failure is absorbed and
treated as a miss.

Usage:
    >>> from analysis_cache import AnalysisCache, compute_analysis_hash
    >>> cache = AnalysisCache(store)
    >>> fingerprint = compute_analysis_hash(request, PROMPT_VERSION, model_id)
    >>> entry = await cache.get(fingerprint)
"""

import hashlib
import json
import re
from datetime import UTC, datetime

import structlog
from pydantic import ValidationError

from models.database import KeyValueStore
from models.schemas import CacheEntry, Decomposition, DecomposeMetadata, DecomposeRequest

logger = structlog.get_logger(__name__)

CACHE_TTL_SECONDS = 604800  # 7 days
CACHE_KEY_PREFIX = "cache:"
FINGERPRINT_LENGTH = 16

_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_description(description: str) -> str:
    """Trim, collapse internal whitespace to single spaces, and lowercase."""
    return _WHITESPACE_RUN.sub(" ", description.strip()).lower()


def compute_analysis_hash(
    request: DecomposeRequest,
    prompt_version: str,
    model_id: str,
) -> str:
    """Fingerprint the inputs that determine an analysis result.

    Args:
        request: The decompose request.
        prompt_version: Version tag of the decomposition prompt.
        model_id: Identifier of the model producing the analysis.

    Returns:
        A 16-character lowercase hex string.
    """
    stages = [stage.model_dump(mode="json") for stage in request.stages or []]
    team_size = request.team_size
    parts = [
        normalize_description(request.description),
        json.dumps(stages, sort_keys=True, separators=(",", ":")),
        "" if team_size is None else str(team_size),
        prompt_version,
        model_id,
    ]
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


class AnalysisCache:
    """Fingerprint-keyed cache over a KeyValueStore.

    Entries are stored as JSON, so ``get`` always returns an independent
    copy. The hit counter is advisory: on the memory backend two overlapping
    lookups of one fingerprint can lose an increment.

    Attributes:
        store: Backend holding the serialized entries.
        ttl_seconds: Lifetime applied on every write.
    """

    def __init__(self, store: KeyValueStore, ttl_seconds: int = CACHE_TTL_SECONDS) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(fingerprint: str) -> str:
        return f"{CACHE_KEY_PREFIX}{fingerprint}"

    async def get(self, fingerprint: str) -> CacheEntry | None:
        """Look up an entry and count the hit.

        Returns:
            A copy of the entry with its incremented hit count, or None on a
            miss, an unreadable entry, or a backend error.
        """
        key = self._key(fingerprint)
        try:
            raw = await self.store.get(key)
        except Exception as e:
            logger.warning("analysis_cache_get_failed", fingerprint=fingerprint, error=str(e))
            return None

        if raw is None:
            logger.debug("analysis_cache_miss", fingerprint=fingerprint)
            return None

        try:
            entry = CacheEntry.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "analysis_cache_entry_invalid",
                fingerprint=fingerprint,
                error_count=e.error_count(),
            )
            return None

        entry.hit_count += 1
        try:
            await self.store.set(key, entry.model_dump_json(by_alias=True), self.ttl_seconds)
        except Exception as e:
            logger.warning(
                "analysis_cache_hit_count_update_failed",
                fingerprint=fingerprint,
                error=str(e),
            )

        logger.info("analysis_cache_hit", fingerprint=fingerprint, hit_count=entry.hit_count)
        return entry

    async def set(
        self,
        fingerprint: str,
        decomposition: Decomposition,
        metadata: DecomposeMetadata,
        hit_count: int = 0,
    ) -> CacheEntry:
        """Store an analysis under ``fingerprint``, replacing any previous entry.

        Returns:
            The entry as stored. Write failures are logged, not raised.
        """
        entry = CacheEntry(
            hash=fingerprint,
            decomposition=decomposition,
            metadata=metadata,
            cached_at=datetime.now(UTC).isoformat(),
            hit_count=hit_count,
        )
        try:
            await self.store.set(
                self._key(fingerprint),
                entry.model_dump_json(by_alias=True),
                self.ttl_seconds,
            )
            logger.debug("analysis_cache_stored", fingerprint=fingerprint)
        except Exception as e:
            logger.warning("analysis_cache_set_failed", fingerprint=fingerprint, error=str(e))
        return entry

    async def delete(self, fingerprint: str) -> bool:
        """Evict an entry. Returns True if one was removed."""
        try:
            return await self.store.delete(self._key(fingerprint))
        except Exception as e:
            logger.warning("analysis_cache_delete_failed", fingerprint=fingerprint, error=str(e))
            return False
