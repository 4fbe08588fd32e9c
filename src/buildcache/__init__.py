"""
Build Cache
History-keyed dependency cache for CI builds: restore, classify, reclaim, save.
"""

from .action import CacheAction
from .history import HistoryMiner, find_clear_marker, truncate_at
from .keys import CacheKeyPair, derive_keys, hash_files
from .reclaim import UsageReclaimer
from .restore import RestoreClassifier, RestoreOutcome, RestoreResult, classify

__all__ = [
    'CacheAction',
    'HistoryMiner', 'find_clear_marker', 'truncate_at',
    'CacheKeyPair', 'derive_keys', 'hash_files',
    'UsageReclaimer',
    'RestoreClassifier', 'RestoreOutcome', 'RestoreResult', 'classify',
]
