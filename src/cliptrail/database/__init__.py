from cliptrail.database.base import UNSET, DuplicateFingerprintError, HistoryStore
from cliptrail.database.memory_store import MemoryHistoryStore
from cliptrail.database.redis_store import RedisHistoryStore

__all__ = [
    'UNSET',
    'DuplicateFingerprintError',
    'HistoryStore',
    'MemoryHistoryStore',
    'RedisHistoryStore',
]
