"""Real-time synchronization between connected seats and the game state.

The hub maps inbound events to registry and round-engine operations and
fans the results out as targeted or broadcast events. It owns the checks
the engine deliberately skips: host-only actions, seat membership and
turn ownership.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set

import structlog
from pydantic import ValidationError

from ..core.errors import (
    GameError,
    InvalidPayload,
    JoinError,
    PermissionDenied,
    StateConflict,
    TurnViolation,
)
from ..core.fsm import RoundEngine
from ..core.schemas import (
    EVENT_PAYLOADS,
    ChatPayload,
    CreateSessionPayload,
    JoinSessionPayload,
    SessionCodePayload,
    SubmitTurnPayload,
    UpdateSettingsPayload,
    serialize_for_logging,
    validate_payload,
)
from ..core.session import Lifecycle, Session
from .registry import SessionRegistry

LOGGER = structlog.get_logger(__name__)


class Connection(Protocol):
    """Anything that can push a JSON-compatible message to one client."""

    async def send_json(self, data: Any) -> None:
        ...


def envelope(event: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"event": event, "data": data or {}}


class ConnectionManager:
    """Tracks one connection per seat identity and room membership per session code."""

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[str, Set[str]] = {}

    def connect(self, identity: str, connection: Connection) -> None:
        self._connections[identity] = connection

    def disconnect(self, identity: str, connection: Optional[Connection] = None) -> List[str]:
        """Forget ``identity`` and return the codes of the rooms it was in.

        When ``connection`` is given and ``identity`` has since reconnected on a
        different connection, nothing is forgotten.
        """

        if connection is not None and self._connections.get(identity) is not connection:
            return []
        self._connections.pop(identity, None)
        codes = [code for code, members in self._rooms.items() if identity in members]
        for code in codes:
            self.leave_room(code, identity)
        return codes

    def is_connected(self, identity: str) -> bool:
        return identity in self._connections

    def join_room(self, code: str, identity: str) -> None:
        self._rooms.setdefault(code, set()).add(identity)

    def leave_room(self, code: str, identity: str) -> None:
        members = self._rooms.get(code)
        if members is None:
            return
        members.discard(identity)
        if not members:
            self._rooms.pop(code, None)

    def members(self, code: str) -> Set[str]:
        return set(self._rooms.get(code, set()))

    def drop_room(self, code: str) -> Set[str]:
        return self._rooms.pop(code, set())

    async def send_to(self, identity: str, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Send a private message to a single seat."""
        connection = self._connections.get(identity)
        if connection is None:
            return
        try:
            await connection.send_json(envelope(event, data))
        except Exception as exc:
            LOGGER.warning("hub.send_failed", identity=identity, hub_event=event, error=str(exc))
            self.disconnect(identity)

    async def broadcast(self, code: str, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Send a message to every connected member of a session."""
        for identity in sorted(self.members(code)):
            await self.send_to(identity, event, data)


# Handlers return the code of the session they seated the caller in, if any.
Handler = Callable[[str, Any], Awaitable[Optional[str]]]


class SessionHub:
    """Dispatches inbound events for every connected seat."""

    def __init__(
        self,
        registry: SessionRegistry,
        engine: RoundEngine,
        connections: Optional[ConnectionManager] = None,
    ) -> None:
        self.registry = registry
        self.engine = engine
        self.connections = connections or ConnectionManager()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._pending: Set[asyncio.Task[Any]] = set()
        self._handlers: Dict[str, Handler] = {
            "create-session": self._create_session,
            "join-session": self._join_session,
            "update-settings": self._update_settings,
            "start-session": self._start_session,
            "submit-turn": self._submit_turn,
            "request-reveal": self._request_reveal,
            "send-chat": self._send_chat,
            "leave-session": self._leave_session,
            "play-again": self._play_again,
            "back-to-lobby": self._back_to_lobby,
            "end-session": self._end_session,
            "get-session": self._get_session,
            "ping": self._ping,
        }
        registry.add_close_listener(self._on_session_closed)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self, identity: str, connection: Connection) -> None:
        self.connections.connect(identity, connection)
        LOGGER.debug("hub.connected", identity=identity)

    async def disconnect(self, identity: str, connection: Optional[Connection] = None) -> None:
        codes = self.connections.disconnect(identity, connection)
        for code in codes:
            async with self._lock_for(code):
                await self._leave(identity, code)
        LOGGER.debug("hub.disconnected", identity=identity)

    async def drain(self) -> None:
        """Wait for pending close notices to be delivered."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle(self, identity: str, event: str, data: Any = None) -> None:
        """Apply one inbound event; failures are reported to the caller only."""

        handler = self._handlers.get(event)
        if handler is None:
            await self.connections.send_to(
                identity, "error", {"message": f"Unknown event {event}", "code": "UNKNOWN_EVENT"}
            )
            return

        try:
            payload = validate_payload(event=event, payload=data if data is not None else {}) if event in EVENT_PAYLOADS else None
            if payload is not None:
                LOGGER.debug(
                    "hub.event_received", identity=identity, hub_event=event, payload=serialize_for_logging(payload)
                )
            code = getattr(payload, "code", None)
            if code is None:
                seated_in = await handler(identity, payload)
            else:
                async with self._lock_for(code):
                    seated_in = await handler(identity, payload)
            if seated_in is not None:
                await self._detach_elsewhere(identity, keep=seated_in)
        except JoinError as exc:
            LOGGER.info("hub.join_rejected", identity=identity, reason=exc.reason.value)
            await self.connections.send_to(identity, "join-error", exc.to_payload())
        except GameError as exc:
            LOGGER.info("hub.event_rejected", identity=identity, hub_event=event, code=exc.code, error=exc.message)
            await self.connections.send_to(identity, "error", exc.to_payload())
        except Exception:
            LOGGER.exception("hub.event_failed", identity=identity, hub_event=event)
            await self.connections.send_to(
                identity, "error", {"message": f"Failed to handle {event}", "code": "SERVER_ERROR"}
            )

    def _lock_for(self, code: str) -> asyncio.Lock:
        """Return the session's lock; unknown codes get a throwaway lock that is never stored."""
        lock = self._locks.get(code)
        if lock is None:
            lock = asyncio.Lock()
            if code in self.registry:
                self._locks[code] = lock
        return lock

    def _require_session(self, code: str) -> Session:
        return self.registry.require(code)

    @staticmethod
    def _require_seat(session: Session, identity: str) -> int:
        seat_index = session.seat_index(identity)
        if seat_index is None:
            raise PermissionDenied("You are not seated in this session")
        return seat_index

    @staticmethod
    def _require_host(session: Session, identity: str, action: str) -> None:
        if not session.is_host(identity):
            raise PermissionDenied(f"Only the host can {action}")

    def _seats_payload(self, session: Session) -> Dict[str, Any]:
        return {"seats": session.public_seats(), "hostIndex": session.host_index()}

    def _turn_payload(self, session: Session) -> Dict[str, Any]:
        seat_index = self.engine.current_turn_seat(session)
        return {
            "roundIndex": session.current_round,
            "currentSeatIndex": seat_index,
            "currentSeatName": session.seats[seat_index].name,
        }

    async def _detach_elsewhere(self, identity: str, keep: str) -> None:
        """Leave every other session where ``identity`` still holds a connected seat.

        Runs after the caller's own session lock is released and takes each
        other session's lock in turn, so no two session locks are ever held together.
        """
        for session in self.registry:
            if session.code == keep or session.seat_for(identity) is None:
                continue
            async with self._lock_for(session.code):
                seat = session.seat_for(identity)
                if seat.connected:
                    await self._leave(identity, session.code)

    async def _leave(self, identity: str, code: str) -> None:
        session = self.registry.get(code)
        seat_index = session.seat_index(identity) if session is not None else None
        self.connections.leave_room(code, identity)
        if session is None or seat_index is None:
            return
        self.registry.leave(identity, code)
        await self.connections.broadcast(code, "seat-left", {"seatIndex": seat_index, **self._seats_payload(session)})

    # ------------------------------------------------------------------
    # Lobby events
    # ------------------------------------------------------------------

    async def _create_session(self, identity: str, payload: CreateSessionPayload) -> str:
        session = self.registry.create(identity, payload.display_name)
        self.connections.join_room(session.code, identity)
        await self.connections.send_to(
            identity, "session-created", {"code": session.code, "session": session.to_client(identity)}
        )
        return session.code

    async def _join_session(self, identity: str, payload: JoinSessionPayload) -> str:
        current = self.registry.get(payload.code)
        if current is not None and current.state != Lifecycle.WAITING and current.seat_for(identity) is not None:
            return await self._rejoin_game(identity, payload.code)

        session = self.registry.join(payload.code, identity, payload.display_name)
        self.connections.join_room(session.code, identity)
        await self.connections.send_to(identity, "session-joined", {"session": session.to_client(identity)})
        await self.connections.broadcast(session.code, "seats-updated", self._seats_payload(session))
        return session.code

    async def _rejoin_game(self, identity: str, code: str) -> str:
        """Bring a seat back into a started game with its own card and whose turn it is."""

        session = self.registry.reconnect(code, identity)
        seat_index = session.seat_index(identity)
        self.connections.join_room(code, identity)
        await self.connections.send_to(identity, "session-joined", {"session": session.to_client(identity)})
        card = session.card_for(seat_index)
        if card is not None:
            await self.connections.send_to(
                identity, "card-assigned", {"item": card.to_payload(), "seatIndex": seat_index}
            )
        if session.state == Lifecycle.IN_PROGRESS:
            await self.connections.send_to(identity, "turn-changed", self._turn_payload(session))
        await self.connections.broadcast(code, "seats-updated", self._seats_payload(session))
        return code

    async def _update_settings(self, identity: str, payload: UpdateSettingsPayload) -> None:
        session = self._require_session(payload.code)
        self._require_host(session, identity, "update settings")
        try:
            self.registry.update_settings(payload.code, identity, payload.patch)
        except ValidationError as exc:
            raise InvalidPayload("update-settings", exc.errors(include_url=False)) from exc
        await self.connections.broadcast(session.code, "settings-updated", {"settings": session.settings.to_payload()})

    async def _leave_session(self, identity: str, payload: SessionCodePayload) -> None:
        session = self._require_session(payload.code)
        self._require_seat(session, identity)
        await self._leave(identity, session.code)

    async def _get_session(self, identity: str, payload: SessionCodePayload) -> None:
        session = self._require_session(payload.code)
        await self.connections.send_to(identity, "session-info", {"session": session.to_client(identity)})

    async def _ping(self, identity: str, payload: None) -> None:
        await self.connections.send_to(identity, "pong")

    # ------------------------------------------------------------------
    # Game events
    # ------------------------------------------------------------------

    async def _start_session(self, identity: str, payload: SessionCodePayload) -> None:
        session = self._require_session(payload.code)
        self._require_host(session, identity, "start the game")
        self.engine.start(session)
        self.registry.touch(session)

        for seat_index, seat in enumerate(session.seats):
            card = session.seat_cards[seat_index]
            await self.connections.send_to(
                seat.identity, "card-assigned", {"item": card.to_payload(), "seatIndex": seat_index}
            )

        await self.connections.broadcast(
            session.code,
            "session-started",
            {
                **self._turn_payload(session),
                "state": session.state.value,
                "seatCount": session.seat_count,
                "roundCount": session.settings.round_count,
                "revealOrder": list(session.reveal_order),
            },
        )

        if session.settings.skip_discussion:
            result = self.engine.skip_to_reveal(session)
            await self.connections.broadcast(
                session.code,
                "round-advanced",
                {"roundIndex": session.current_round, "phase": result.phase, "state": session.state.value},
            )

    async def _submit_turn(self, identity: str, payload: SubmitTurnPayload) -> None:
        session = self._require_session(payload.code)
        seat_index = session.seat_index(identity)
        if seat_index is None:
            raise StateConflict("You are not seated in this session")
        if session.state != Lifecycle.IN_PROGRESS:
            raise StateConflict("No game in progress")
        if not self.engine.is_turn(session, seat_index):
            raise TurnViolation("Not your turn!")
        if payload.round_index != session.current_round:
            raise StateConflict(f"Round {payload.round_index} is not the current round")

        self.engine.submit_turn(session, seat_index, payload.round_index, payload.text)
        self.registry.touch(session)

        await self.connections.broadcast(
            session.code,
            "turn-recorded",
            {
                "seatIndex": seat_index,
                "seatName": session.seats[seat_index].name,
                "text": payload.text,
                "roundIndex": payload.round_index,
            },
        )
        await self.connections.send_to(
            identity, "turn-submitted", {"roundIndex": payload.round_index, "text": payload.text}
        )

        advance = self.engine.advance_turn(session)
        if not advance.round_complete:
            await self.connections.broadcast(session.code, "turn-changed", self._turn_payload(session))
            return

        result = self.engine.advance_round(session)
        data: Dict[str, Any] = {
            "roundIndex": session.current_round,
            "phase": result.phase,
            "state": session.state.value,
        }
        if result.phase == "discussion":
            data.update(self._turn_payload(session))
        await self.connections.broadcast(session.code, "round-advanced", data)

    async def _request_reveal(self, identity: str, payload: SessionCodePayload) -> None:
        session = self._require_session(payload.code)
        self._require_seat(session, identity)
        if session.state != Lifecycle.ENDED:
            raise StateConflict("Reveal is only available once the game has ended")
        await self.connections.send_to(identity, "reveal-data", self.engine.reveal_data(session))

    async def _send_chat(self, identity: str, payload: ChatPayload) -> None:
        session = self._require_session(payload.code)
        message = self.engine.add_chat_message(session, identity, payload.text)
        if message is None:
            raise PermissionDenied("You are not seated in this session")
        self.registry.touch(session)
        await self.connections.broadcast(session.code, "chat-message", message.to_payload())

    async def _reset(self, identity: str, payload: SessionCodePayload, event: str) -> None:
        session = self._require_session(payload.code)
        self._require_seat(session, identity)
        self.engine.reset(session)
        self.registry.touch(session)
        for member in sorted(self.connections.members(session.code)):
            await self.connections.send_to(member, event, {"session": session.to_client(member)})

    async def _play_again(self, identity: str, payload: SessionCodePayload) -> None:
        await self._reset(identity, payload, "game-restarted")

    async def _back_to_lobby(self, identity: str, payload: SessionCodePayload) -> None:
        await self._reset(identity, payload, "returned-to-lobby")

    async def _end_session(self, identity: str, payload: SessionCodePayload) -> None:
        session = self._require_session(payload.code)
        self._require_seat(session, identity)
        self.registry.close(session.code, "Game ended")
        await self.drain()

    # ------------------------------------------------------------------
    # Registry callbacks
    # ------------------------------------------------------------------

    def _on_session_closed(self, session: Session, reason: str) -> None:
        members = self.connections.drop_room(session.code)
        self._locks.pop(session.code, None)
        if not members:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.warning("hub.close_notice_skipped", code=session.code, reason=reason, members=len(members))
            return
        task = loop.create_task(self._notify_closed(members, reason))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _notify_closed(self, members: Set[str], reason: str) -> None:
        for identity in sorted(members):
            await self.connections.send_to(identity, "session-closed", {"reason": reason})
