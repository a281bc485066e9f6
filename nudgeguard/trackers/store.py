"""Per-key session container with time-window reset semantics.

Every tracker owns one store. The store knows nothing about what is being
accumulated; it only creates sessions, resets expired windows, and finds
sessions that have gone stale.
"""

from nudgeguard.models import Session


class SessionStore:
    def __init__(self, window_seconds: float) -> None:
        self.window_seconds = window_seconds
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    def get(self, key: str) -> Session | None:
        return self._sessions.get(key)

    def get_or_create(self, key: str, now: float) -> tuple[Session, bool]:
        """Return the session for ``key``, creating it if needed. The bool is True on creation."""
        session = self._sessions.get(key)
        if session is not None:
            return session, False
        session = Session(key=key, window_start=now, last_activity=now)
        self._sessions[key] = session
        return session, True

    def window_expired(self, session: Session, now: float) -> bool:
        return now - session.window_start > self.window_seconds

    def reset_window(self, session: Session, now: float) -> None:
        session.window_start = now
        session.window_accumulator = 0.0
        session.classification = "none"

    def delete(self, key: str) -> Session | None:
        return self._sessions.pop(key, None)

    def stale_keys(self, now: float, staleness_seconds: float) -> list[str]:
        return [key for key, s in self._sessions.items() if now - s.last_activity > staleness_seconds]

    def live(self) -> list[Session]:
        """Live session objects, for the owning tracker only."""
        return list(self._sessions.values())

    def snapshot(self) -> list[Session]:
        """Deep copies, safe to hand to readers outside the tracker."""
        return [s.model_copy(deep=True) for s in self._sessions.values()]
