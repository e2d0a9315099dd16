import time
import threading

from datavision.entities import SessionContext
from datavision.exceptions import SessionNotFoundError
from datavision.google_helpers import SESSION_TTL_SECONDS


class SessionCache:
    """
    In-memory, per-session state (analysis result, selection, chat history) with:
    - sliding TTL (expires ttl_seconds after last touch)
    - no windowing: history is stored and replayed in full
    - thread-safe operations (request handlers run on a thread pool)

    Nothing is persisted; a process restart forgets every session.
    """

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        # session_id -> {"session": SessionContext, "expires_at": float}
        self._items: dict[str, dict[str, object]] = {}

    def _get_unlocked(self, session_id: str) -> SessionContext:
        now = time.time()
        item = self._items.get(session_id)

        if item is None:
            raise SessionNotFoundError(f"Unknown session '{session_id}'")

        if float(item["expires_at"]) <= now:
            # expired -> forget
            del self._items[session_id]
            raise SessionNotFoundError(f"Session '{session_id}' has expired")

        item["expires_at"] = now + self.ttl_seconds
        return item["session"]  # type: ignore[return-value]

    def _store_unlocked(self, session: SessionContext) -> None:
        self._items[session.session_id] = {
            "session": session,
            "expires_at": time.time() + self.ttl_seconds,
        }

    def create(self) -> SessionContext:
        session = SessionContext()
        with self._lock:
            self._store_unlocked(session)
        return session

    def get(self, session_id: str) -> SessionContext:
        with self._lock:
            return self._get_unlocked(str(session_id))

    def commit(self, session: SessionContext) -> bool:
        """
        Store `session` as the latest value for its id.

        Returns False (and stores nothing) when the stored session has moved to a
        different epoch, i.e. it was reset while `session` was being produced.
        """
        with self._lock:
            current = self._get_unlocked(session.session_id)
            if current.epoch != session.epoch:
                return False
            self._store_unlocked(session)
            return True

    def commit_if_current(self, expected: SessionContext, session: SessionContext) -> bool:
        """
        Store `session` only if `expected` is still the stored value (nothing else
        committed in between). Used to start a chat turn or change the selection.
        """
        with self._lock:
            current = self._get_unlocked(session.session_id)
            if current is not expected:
                return False
            self._store_unlocked(session)
            return True

    def replace(self, session: SessionContext) -> None:
        """Store `session` unconditionally (e.g. a new upload starts a new epoch)."""
        with self._lock:
            self._get_unlocked(session.session_id)
            self._store_unlocked(session)

    def reset(self, session_id: str) -> SessionContext:
        """Discard result, selection and history; in-flight streams become stale."""
        with self._lock:
            self._get_unlocked(str(session_id))
            fresh = SessionContext(session_id=str(session_id))
            self._store_unlocked(fresh)
            return fresh

    def sweep_expired(self) -> int:
        """
        Delete expired sessions. Returns how many entries were removed.
        """
        now = time.time()
        removed = 0
        with self._lock:
            expired = [k for k, v in self._items.items() if float(v["expires_at"]) <= now]
            for k in expired:
                del self._items[k]
                removed += 1
        return removed


GLOBAL_SESSION_CACHE = SessionCache(ttl_seconds=SESSION_TTL_SECONDS)
