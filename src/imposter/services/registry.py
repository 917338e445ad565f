"""Registry of live sessions keyed by their short join code."""

from __future__ import annotations

import random
import time
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

import structlog

from ..core.errors import JoinError, JoinFailure, SessionNotFound, StateConflict
from ..core.schemas import SessionSettings, SettingsPatch
from ..core.session import Lifecycle, Seat, Session
from ..utils.rng import build_rng, generate_code
from ..utils.timers import AsyncioScheduler, Scheduler

LOGGER = structlog.get_logger(__name__)

MAX_SEATS = 10
INACTIVITY_TIMEOUT = 60 * 60
DISCONNECT_GRACE = 30.0

CloseListener = Callable[[Session, str], None]


class SessionRegistry:
    """Owns every live :class:`Session`.

    Operations are synchronous and do no I/O. Timers come from the injected
    scheduler, codes from the injected random source and timestamps from the
    injected clock, so tests can drive the registry without real time.
    """

    def __init__(
        self,
        *,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        scheduler: Optional[Scheduler] = None,
        max_seats: int = MAX_SEATS,
        inactivity_timeout: float = INACTIVITY_TIMEOUT,
        disconnect_grace: float = DISCONNECT_GRACE,
    ) -> None:
        self._sessions: Dict[str, Session] = {}
        self._rng = rng or build_rng()
        self._clock = clock
        self._scheduler = scheduler or AsyncioScheduler()
        self._listeners: List[CloseListener] = []
        self.max_seats = max_seats
        self.inactivity_timeout = inactivity_timeout
        self.disconnect_grace = disconnect_grace

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, code: object) -> bool:
        return code in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def get(self, code: str) -> Optional[Session]:
        return self._sessions.get(code)

    def require(self, code: str) -> Session:
        session = self._sessions.get(code)
        if session is None:
            raise SessionNotFound(code)
        return session

    def find_by_identity(self, identity: str) -> Optional[Session]:
        """Return the session where ``identity`` holds a seat, preferring a connected one."""

        fallback = None
        for session in self._sessions.values():
            seat = session.seat_for(identity)
            if seat is None:
                continue
            if seat.connected:
                return session
            fallback = fallback or session
        return fallback

    def add_close_listener(self, listener: CloseListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _new_code(self) -> str:
        code = generate_code(self._rng)
        while code in self._sessions:
            code = generate_code(self._rng)
        return code

    def create(self, host_identity: str, host_name: str) -> Session:
        now = self._clock()
        session = Session(
            code=self._new_code(),
            seats=[Seat(identity=host_identity, name=host_name, is_host=True)],
            settings=SessionSettings(),
            created_at=now,
            last_activity=now,
        )
        self._sessions[session.code] = session
        self._arm_inactivity_timer(session)
        LOGGER.info("session.created", code=session.code, host=host_name)
        return session

    def join(self, code: str, identity: str, name: str) -> Session:
        """Seat ``identity`` in the session, reconnecting it in place if it already holds a seat."""

        session = self._sessions.get(code)
        if session is None:
            raise JoinError(JoinFailure.NOT_FOUND)
        if session.state != Lifecycle.WAITING:
            raise JoinError(JoinFailure.IN_PROGRESS)

        seat = session.seat_for(identity)
        if seat is None and session.seat_count >= self.max_seats:
            raise JoinError(JoinFailure.FULL)

        if seat is not None:
            LOGGER.info("session.reconnected", code=code, name=seat.name)
        else:
            seat = Seat(identity=identity, name=name)
            session.seats.append(seat)
            LOGGER.info("session.joined", code=code, name=name, seats=session.seat_count)

        self._attach(session, seat)
        return session

    def reconnect(self, code: str, identity: str) -> Session:
        """Reattach a seat ``identity`` already holds, whatever the lifecycle state.

        Unlike :meth:`join` this never adds a seat, so it is the way back into
        a game that has already started. An identity without a seat gets
        ``NOT_FOUND``.
        """

        session = self._sessions.get(code)
        if session is None:
            raise JoinError(JoinFailure.NOT_FOUND)
        seat = session.seat_for(identity)
        if seat is None:
            raise JoinError(JoinFailure.NOT_FOUND)

        LOGGER.info("session.reconnected", code=code, name=seat.name, state=session.state.value)
        self._attach(session, seat)
        return session

    def _attach(self, session: Session, seat: Seat) -> None:
        """Mark ``seat`` connected, hand it the host flag if the host is away, and stop the grace timer."""

        seat.connected = True
        host_index = session.host_index()
        if host_index is None or not session.seats[host_index].connected:
            if host_index is not None:
                session.seats[host_index].is_host = False
            seat.is_host = True
            LOGGER.info("session.host_changed", code=session.code, host=seat.name)
        self._cancel_grace_timer(session)
        self.touch(session)

    def leave(self, identity: str, code: Optional[str] = None) -> Optional[Session]:
        """Mark the seat held by ``identity`` disconnected; seats are never removed mid-session."""

        session = self._sessions.get(code) if code is not None else self.find_by_identity(identity)
        if session is None:
            return None
        seat = session.seat_for(identity)
        if seat is None:
            return None

        seat.connected = False
        LOGGER.info("session.left", code=session.code, name=seat.name)

        if seat.is_host:
            successor = next((other for other in session.seats if other.connected and not other.is_host), None)
            if successor is not None:
                seat.is_host = False
                successor.is_host = True
                LOGGER.info("session.host_changed", code=session.code, host=successor.name)

        if not session.connected_seats():
            self._arm_grace_timer(session)

        self.touch(session)
        return session

    def update_settings(
        self,
        code: str,
        requester_identity: str,
        patch: SettingsPatch | Mapping[str, Any],
    ) -> Optional[Session]:
        """Merge ``patch`` into the settings; returns ``None`` unless the requester is host.

        Settings only change in the lobby: a host updating a started game gets
        :class:`StateConflict`.
        """

        session = self._sessions.get(code)
        if session is None or not session.is_host(requester_identity):
            return None
        if session.state != Lifecycle.WAITING:
            raise StateConflict("Settings can only change in the lobby")
        if not isinstance(patch, SettingsPatch):
            patch = SettingsPatch.model_validate(patch)
        session.settings = session.settings.merge(patch)
        self.touch(session)
        LOGGER.info("session.settings_updated", code=code, settings=session.settings.to_payload())
        return session

    def touch(self, session: Session) -> None:
        """Stamp activity and restart the inactivity timer."""

        session.touch(self._clock())
        self._arm_inactivity_timer(session)

    def close(self, code: str, reason: str = "Session closed") -> Optional[Session]:
        session = self._sessions.pop(code, None)
        if session is None:
            return None
        if session.close_timer is not None:
            session.close_timer.cancel()
            session.close_timer = None
        self._cancel_grace_timer(session)
        LOGGER.info("session.closed", code=code, reason=reason)
        for listener in list(self._listeners):
            listener(session, reason)
        return session

    def stats(self) -> Dict[str, Any]:
        sessions = [session.to_stats() for session in self._sessions.values()]
        return {"count": len(sessions), "sessions": sessions}

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def _arm_inactivity_timer(self, session: Session) -> None:
        if session.close_timer is not None:
            session.close_timer.cancel()
        code = session.code

        def _expire() -> None:
            if self._sessions.get(code) is session:
                self.close(code, "Session timed out after inactivity")

        session.close_timer = self._scheduler.call_later(self.inactivity_timeout, _expire)

    def _arm_grace_timer(self, session: Session) -> None:
        self._cancel_grace_timer(session)
        code = session.code

        def _expire() -> None:
            session.grace_timer = None
            if self._sessions.get(code) is session and not session.connected_seats():
                self.close(code, "All players disconnected")

        session.grace_timer = self._scheduler.call_later(self.disconnect_grace, _expire)

    @staticmethod
    def _cancel_grace_timer(session: Session) -> None:
        if session.grace_timer is not None:
            session.grace_timer.cancel()
            session.grace_timer = None
