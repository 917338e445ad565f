"""Session aggregate: seats, settings, assignment and round state."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..utils.timers import TimerHandle
from .catalog import CatalogItem, ImposterMarker
from .schemas import SessionSettings

Card = Union[CatalogItem, ImposterMarker]


class Lifecycle(str, Enum):
    """Session lifecycle states."""

    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    ENDED = "ended"


@dataclass
class Seat:
    """One participant slot. The identity is never recycled within a session."""

    identity: str
    name: str
    is_host: bool = False
    connected: bool = True

    def to_public(self, index: int) -> Dict[str, Any]:
        return {
            "index": index,
            "name": self.name,
            "isHost": self.is_host,
            "connected": self.connected,
        }


@dataclass
class ChatMessage:
    id: str
    seat_identity: str
    seat_index: int
    seat_name: str
    text: str
    timestamp: float

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "seatIndex": self.seat_index,
            "seatName": self.seat_name,
            "text": self.text,
            "timestamp": self.timestamp,
        }


@dataclass
class Session:
    """Aggregate root for one lobby and the game played in it."""

    code: str
    seats: List[Seat] = field(default_factory=list)
    settings: SessionSettings = field(default_factory=SessionSettings)
    state: Lifecycle = Lifecycle.WAITING

    imposter_seats: List[int] = field(default_factory=list)
    seat_cards: List[Card] = field(default_factory=list)
    real_item: Optional[CatalogItem] = None
    decoy_item: Optional[CatalogItem] = None

    reveal_order: List[int] = field(default_factory=list)
    discussion_orders: List[List[int]] = field(default_factory=list)
    current_round: int = 0
    current_turn: int = 0
    discussion: List[List[str]] = field(default_factory=list)
    chat_log: List[ChatMessage] = field(default_factory=list)

    created_at: float = 0.0
    last_activity: float = 0.0
    close_timer: Optional[TimerHandle] = field(default=None, repr=False)
    grace_timer: Optional[TimerHandle] = field(default=None, repr=False)

    # ------------------------------------------------------------------
    # Seat lookups
    # ------------------------------------------------------------------

    @property
    def seat_count(self) -> int:
        return len(self.seats)

    def seat_index(self, identity: str) -> Optional[int]:
        for index, seat in enumerate(self.seats):
            if seat.identity == identity:
                return index
        return None

    def seat_for(self, identity: str) -> Optional[Seat]:
        index = self.seat_index(identity)
        return self.seats[index] if index is not None else None

    def host_index(self) -> Optional[int]:
        for index, seat in enumerate(self.seats):
            if seat.is_host:
                return index
        return None

    def is_host(self, identity: str) -> bool:
        seat = self.seat_for(identity)
        return bool(seat and seat.is_host)

    def connected_seats(self) -> List[Seat]:
        return [seat for seat in self.seats if seat.connected]

    def card_for(self, seat_index: int) -> Optional[Card]:
        if 0 <= seat_index < len(self.seat_cards):
            return self.seat_cards[seat_index]
        return None

    # ------------------------------------------------------------------
    # Mutation helpers
    # ------------------------------------------------------------------

    def touch(self, now: float) -> None:
        self.last_activity = now

    def clear_game_data(self) -> None:
        self.imposter_seats = []
        self.seat_cards = []
        self.real_item = None
        self.decoy_item = None
        self.reveal_order = []
        self.discussion_orders = []
        self.current_round = 0
        self.current_turn = 0
        self.discussion = []
        self.chat_log = []

    def public_seats(self) -> List[Dict[str, Any]]:
        return [seat.to_public(index) for index, seat in enumerate(self.seats)]

    def to_client(self, identity: Optional[str]) -> Dict[str, Any]:
        """Snapshot of the session as seen by ``identity``: only its own card is included."""

        my_index = self.seat_index(identity) if identity is not None else None
        card = self.card_for(my_index) if my_index is not None else None
        return {
            "code": self.code,
            "seats": self.public_seats(),
            "hostIndex": self.host_index(),
            "state": self.state.value,
            "settings": self.settings.to_payload(),
            "currentRound": self.current_round,
            "roundCount": self.settings.round_count,
            "myCard": card.to_payload() if card is not None else None,
            "myIndex": my_index if my_index is not None else -1,
            "chatLog": [message.to_payload() for message in self.chat_log],
            "createdAt": self.created_at,
        }

    def to_stats(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "seatCount": self.seat_count,
            "state": self.state.value,
            "createdAt": self.created_at,
        }
