"""In-process locks for per-channel shared records."""
from collections import defaultdict
from typing import DefaultDict, Tuple
import threading


_registry_lock = threading.Lock()
_locks: DefaultDict[Tuple[str, str], threading.Lock] = defaultdict(threading.Lock)


def channel_lock(scope: str, channel: str) -> threading.Lock:
    """Return the lock guarding ``scope`` records (rate limits, health, metrics) of one channel.

    Row locks (``SELECT ... FOR UPDATE``) cover other processes on databases
    that support them; this lock covers worker threads of the same process,
    including on SQLite.
    """
    with _registry_lock:
        return _locks[(scope, str(channel))]
