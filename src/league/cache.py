"""
Process-local query cache between the resource hooks and the document store.

Keys combine a resource type with serialized parameters. For each key at most
one fetch is in flight; concurrent readers share it. Fresh entries are served
without touching the store, stale entries are served immediately while one
background refresh runs (stale-while-revalidate). A failed fetch never evicts
the last good value. ``invalidate(resource_type)`` evicts every entry of that
type after a successful mutation.
"""
import json
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass

logger = logging.getLogger(__name__)

LOADING = 'loading'
ERROR = 'error'
SUCCESS = 'success'


class QueryResult:
    """Tri-state outcome of a read: loading, error(reason) or success(data).

    An error result may still carry the last good ``data`` for its key.
    """

    __slots__ = ('status', 'data', 'error')

    def __init__(self, status: str, data=None, error: Exception = None):
        self.status = status
        self.data = data
        self.error = error

    @classmethod
    def loading(cls):
        return cls(LOADING)

    @classmethod
    def success(cls, data):
        return cls(SUCCESS, data=data)

    @classmethod
    def failure(cls, error: Exception, data=None):
        return cls(ERROR, data=data, error=error)

    @property
    def is_loading(self) -> bool:
        return self.status == LOADING

    @property
    def is_error(self) -> bool:
        return self.status == ERROR

    @property
    def is_success(self) -> bool:
        return self.status == SUCCESS

    @property
    def is_empty(self) -> bool:
        """Successful read that produced nothing (distinct from an error)."""
        return self.is_success and not self.data

    @property
    def reason(self) -> str:
        return str(self.error) if self.error is not None else ''

    def map(self, fn):
        """Apply ``fn`` to the data of a successful result."""
        if self.is_success:
            return QueryResult.success(fn(self.data))
        return self

    def to_dict(self, serialize=None) -> dict:
        out = {'status': self.status}
        if self.data is not None:
            out['data'] = serialize(self.data) if serialize else self.data
        if self.error is not None:
            out['error'] = self.reason
            out['kind'] = getattr(self.error, 'kind', 'error')
        return out

    def __repr__(self):
        if self.is_error:
            return f'QueryResult(error={self.reason!r})'
        if self.is_loading:
            return 'QueryResult(loading)'
        return f'QueryResult(success={self.data!r})'


@dataclass
class CacheConfig:
    stale_after_ms: int = 30_000
    retry_on_error: bool = False


def make_key(resource_type: str, *params) -> tuple:
    """Cache key: (resource type, serialized parameters)."""
    return (resource_type, json.dumps(list(params), sort_keys=True, default=str))


class _Entry:
    __slots__ = ('value', 'has_value', 'updated_at', 'error')

    def __init__(self):
        self.value = None
        self.has_value = False
        self.updated_at = None
        self.error = None


class QueryCache:
    def __init__(self, config: CacheConfig = None, clock=None, executor=None):
        self.config = config or CacheConfig()
        self._clock = clock or time.monotonic
        self._executor = executor
        self._owns_executor = False
        self._lock = threading.Lock()
        self._entries = {}
        self._inflight = {}
        self._generations = {}

    def _is_fresh(self, entry: _Entry) -> bool:
        age_ms = (self._clock() - entry.updated_at) * 1000
        return age_ms < self.config.stale_after_ms

    def _get_executor(self):
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix='cache-refresh')
            self._owns_executor = True
        return self._executor

    def read(self, key: tuple, fetcher, wait: bool = True) -> QueryResult:
        """Read ``key``, fetching through ``fetcher`` when needed.

        With ``wait=False`` a read that has nothing to serve yet returns
        ``loading`` and leaves the fetch running in the background.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.has_value and entry.error is None and self._is_fresh(entry):
                return QueryResult.success(entry.value)
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future
                generation = self._generations.get(key[0], 0)
            has_value = entry is not None and entry.has_value
            last_value = entry.value if has_value else None
            last_error = entry.error if entry is not None else None

        if has_value:
            if owner:
                logger.debug(f'Serving stale {key[0]} while refreshing')
                self._get_executor().submit(self._run, key, fetcher, future, generation)
            if last_error is not None:
                return QueryResult.failure(last_error, data=last_value)
            return QueryResult.success(last_value)

        if not wait:
            if owner:
                self._get_executor().submit(self._run, key, fetcher, future, generation)
            return QueryResult.loading()

        if owner:
            self._run(key, fetcher, future, generation)
        try:
            return QueryResult.success(future.result())
        except Exception as e:
            return QueryResult.failure(e, data=self.peek(key))

    def fetch(self, key: tuple, fetcher):
        """Blocking read that raises the fetch error instead of wrapping it."""
        result = self.read(key, fetcher, wait=True)
        if result.is_error:
            raise result.error
        return result.data

    def _run(self, key: tuple, fetcher, future: Future, generation: int):
        attempts = 2 if self.config.retry_on_error else 1
        value = None
        error = None
        for attempt in range(1, attempts + 1):
            try:
                value = fetcher()
                error = None
                break
            except Exception as e:
                error = e
                logger.warning(f'Fetch of {key[0]} failed (attempt {attempt}/{attempts}): {e}')

        with self._lock:
            if self._inflight.get(key) is future:
                del self._inflight[key]
            # A fetch that raced an invalidation must not repopulate the cache
            if self._generations.get(key[0], 0) == generation:
                entry = self._entries.setdefault(key, _Entry())
                if error is None:
                    entry.value = value
                    entry.has_value = True
                    entry.updated_at = self._clock()
                    entry.error = None
                else:
                    entry.error = error

        if error is None:
            future.set_result(value)
        else:
            future.set_exception(error)

    def peek(self, key: tuple):
        """Return the cached value for ``key`` (fresh or stale) or None."""
        with self._lock:
            entry = self._entries.get(key)
            return entry.value if entry is not None and entry.has_value else None

    def is_fetching(self, key: tuple) -> bool:
        with self._lock:
            return key in self._inflight

    def invalidate(self, resource_type: str) -> int:
        """Evict every entry of ``resource_type``; returns how many were dropped."""
        with self._lock:
            self._generations[resource_type] = self._generations.get(resource_type, 0) + 1
            stale_keys = [k for k in self._entries if k[0] == resource_type]
            for k in stale_keys:
                del self._entries[k]
            # Waiters on detached fetches still get their result
            for k in [k for k in self._inflight if k[0] == resource_type]:
                del self._inflight[k]
        logger.debug(f'Invalidated {len(stale_keys)} cached {resource_type} entries')
        return len(stale_keys)

    def clear(self):
        with self._lock:
            for resource_type in {k[0] for k in self._entries} | {k[0] for k in self._inflight}:
                self._generations[resource_type] = self._generations.get(resource_type, 0) + 1
            self._entries.clear()
            self._inflight.clear()

    def close(self):
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
            self._owns_executor = False
