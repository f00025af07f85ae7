import logging
from datetime import datetime
from typing import Dict, List, Optional

import redis

from cliptrail.database.base import (
    UNSET,
    DuplicateFingerprintError,
    HistoryStore,
    matches_query,
)
from cliptrail.models.entry import ContentKind, EntrySummary, HistoryEntry
from cliptrail.utils.archive import encode_payload

logger = logging.getLogger(__name__)


class RedisHistoryStore(HistoryStore):
    """History kept in Redis.

    Layout, all keys under ``prefix``:

    * ``entry:<id>``     hash with the summary fields
    * ``payload:<id>``   archived payload blob, read only on demand
    * ``order``          sorted set of ids scored by sort key
    * ``fingerprints``   hash of fingerprint -> id, claimed with HSETNX
    """

    _SCAN_BATCH = 200

    def __init__(self, host: str = 'localhost', port: int = 6379, db: int = 0,
                 password: Optional[str] = None, prefix: str = "cliptrail",
                 client: Optional[redis.Redis] = None):
        self.client = client or redis.Redis(
            host=host,
            port=port,
            db=db,
            password=password,
            decode_responses=True
        )
        self.prefix = prefix
        self._test_connection()

    def _test_connection(self):
        try:
            self.client.ping()
        except redis.ConnectionError:
            logger.error(f"Cannot reach Redis for history store '{self.prefix}'")
            raise

    def _entry_key(self, entry_id: str) -> str:
        return f"{self.prefix}:entry:{entry_id}"

    def _payload_key(self, entry_id: str) -> str:
        return f"{self.prefix}:payload:{entry_id}"

    @property
    def _order_key(self) -> str:
        return f"{self.prefix}:order"

    @property
    def _fingerprint_key(self) -> str:
        return f"{self.prefix}:fingerprints"

    def find_by_fingerprint(self, fingerprint: str) -> Optional[str]:
        return self.client.hget(self._fingerprint_key, fingerprint)

    def insert(self, entry: HistoryEntry) -> str:
        payload = encode_payload(entry.raw_payload)

        if not self.client.hsetnx(self._fingerprint_key, entry.fingerprint, entry.id):
            existing = self.client.hget(self._fingerprint_key, entry.fingerprint)
            raise DuplicateFingerprintError(entry.fingerprint, existing or "")

        sort_key = entry.effective_sort_key()
        record = {
            "id": entry.id,
            "text": entry.display_text,
            "created_at": entry.created_at.isoformat(),
            "sort_key": sort_key.isoformat(),
            "content_kind": entry.content_kind.value,
            "source_application": entry.source_application or "",
            "fingerprint": entry.fingerprint,
        }

        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.hset(self._entry_key(entry.id), mapping=record)
            pipe.set(self._payload_key(entry.id), payload)
            pipe.zadd(self._order_key, {entry.id: sort_key.timestamp()})
            pipe.execute()
        except redis.RedisError:
            self.client.hdel(self._fingerprint_key, entry.fingerprint)
            raise

        return entry.id

    def fetch_page(self, offset: int, limit: int, query: Optional[str] = None) -> List[EntrySummary]:
        if limit <= 0:
            return []
        offset = max(offset, 0)

        if not query:
            ids = self.client.zrevrange(self._order_key, offset, offset + limit - 1)
            return self._load_summaries(ids)

        results: List[EntrySummary] = []
        skipped = 0
        start = 0
        while len(results) < limit:
            ids = self.client.zrevrange(self._order_key, start, start + self._SCAN_BATCH - 1)
            if not ids:
                break
            for summary in self._load_summaries(ids):
                if not matches_query(summary.display_text, query):
                    continue
                if skipped < offset:
                    skipped += 1
                    continue
                results.append(summary)
                if len(results) == limit:
                    break
            start += self._SCAN_BATCH
        return results

    def fetch_summary(self, entry_id: str) -> Optional[EntrySummary]:
        data = self.client.hgetall(self._entry_key(entry_id))
        if not data:
            return None
        return self._to_summary(data)

    def fetch_payload(self, entry_id: str) -> Optional[str]:
        return self.client.get(self._payload_key(entry_id))

    def update_sort_key(self, entry_id: str, sort_key: datetime, source_application=UNSET) -> bool:
        key = self._entry_key(entry_id)
        if not self.client.exists(key):
            return False

        update_data = {"sort_key": sort_key.isoformat()}
        if source_application is not UNSET:
            update_data["source_application"] = source_application or ""

        pipe = self.client.pipeline(transaction=True)
        pipe.hset(key, mapping=update_data)
        pipe.zadd(self._order_key, {entry_id: sort_key.timestamp()})
        pipe.execute()
        return True

    def release_fingerprint(self, fingerprint: str, entry_id: str) -> bool:
        with self.client.pipeline(transaction=True) as pipe:
            try:
                pipe.watch(self._fingerprint_key, self._entry_key(entry_id))
                if pipe.hget(self._fingerprint_key, fingerprint) != entry_id:
                    return False
                if pipe.exists(self._entry_key(entry_id)):
                    return False
                pipe.multi()
                pipe.hdel(self._fingerprint_key, fingerprint)
                pipe.execute()
            except redis.WatchError:
                return False
        logger.warning(f"Released stale fingerprint claim of {entry_id}")
        return True

    def delete(self, entry_id: str) -> bool:
        key = self._entry_key(entry_id)
        fingerprint = self.client.hget(key, "fingerprint")
        if fingerprint is None:
            return False

        pipe = self.client.pipeline(transaction=True)
        pipe.delete(key)
        pipe.delete(self._payload_key(entry_id))
        pipe.zrem(self._order_key, entry_id)
        pipe.execute()

        if self.client.hget(self._fingerprint_key, fingerprint) == entry_id:
            self.client.hdel(self._fingerprint_key, fingerprint)
        return True

    def clear_all(self) -> int:
        entry_ids = self.client.zrange(self._order_key, 0, -1)

        pipe = self.client.pipeline(transaction=True)
        for entry_id in entry_ids:
            pipe.delete(self._entry_key(entry_id))
            pipe.delete(self._payload_key(entry_id))
        pipe.delete(self._order_key)
        pipe.delete(self._fingerprint_key)
        pipe.execute()
        return len(entry_ids)

    def count(self) -> int:
        return int(self.client.zcard(self._order_key))

    def close(self):
        self.client.close()

    def _load_summaries(self, entry_ids: List[str]) -> List[EntrySummary]:
        if not entry_ids:
            return []
        pipe = self.client.pipeline(transaction=False)
        for entry_id in entry_ids:
            pipe.hgetall(self._entry_key(entry_id))
        rows = pipe.execute()
        return [self._to_summary(row) for row in rows if row]

    @staticmethod
    def _to_summary(data: Dict[str, str]) -> EntrySummary:
        return EntrySummary(
            id=data["id"],
            display_text=data.get("text", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            sort_key=datetime.fromisoformat(data["sort_key"]),
            content_kind=ContentKind(data.get("content_kind", ContentKind.OPAQUE.value)),
            fingerprint=data.get("fingerprint", ""),
            source_application=data.get("source_application") or None,
        )
