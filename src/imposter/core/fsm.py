"""Finite state machine driving deals, turn order and rounds for a session.

Lifecycle edges: ``WAITING -> IN_PROGRESS -> ENDED`` plus the reset edges
``IN_PROGRESS -> WAITING`` and ``ENDED -> WAITING``. Illegal transitions
raise :class:`StateConflict`; they are caller errors.

Turn ownership is *not* checked here. :meth:`RoundEngine.submit_turn`
writes unconditionally and relies on the hub to reject out-of-turn
submissions before calling it.
"""

from __future__ import annotations

import random
import time
import uuid
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional

import structlog

from ..utils.rng import build_rng, sample_imposters, shuffle_seats
from .catalog import IMPOSTER_MARKER, Catalog
from .errors import CatalogLoadError, StateConflict
from .schemas import ImposterMode
from .session import Card, ChatMessage, Lifecycle, Session
from .similarity import find_decoy

LOGGER = structlog.get_logger(__name__)

MIN_SEATS = 3


@dataclass(frozen=True)
class TurnAdvance:
    """Result of moving to the next turn within a round."""

    next_seat: Optional[int]
    round_complete: bool


@dataclass(frozen=True)
class RoundAdvance:
    """Result of moving past a completed round."""

    phase: Literal["discussion", "reveal"]


@dataclass(frozen=True)
class SummaryEntry:
    seat_index: int
    seat_name: str
    joined_words: str

    def to_payload(self) -> dict:
        return {"seatIndex": self.seat_index, "seatName": self.seat_name, "words": self.joined_words}


class RoundEngine:
    """Applies game transitions to a :class:`Session`.

    The catalog, random source and clock are injected so deals are
    reproducible under a seeded ``random.Random``.
    """

    def __init__(
        self,
        catalog: Catalog,
        *,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        min_seats: int = MIN_SEATS,
    ) -> None:
        self.catalog = catalog
        self.rng = rng or build_rng()
        self.clock = clock
        self.min_seats = min_seats

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def start(self, session: Session) -> Session:
        """Deal cards, draw turn orders and open round 0."""

        if session.state != Lifecycle.WAITING:
            raise StateConflict(f"Cannot start a session that is {session.state.value}")
        seat_count = session.seat_count
        if seat_count < self.min_seats:
            raise StateConflict(f"Need at least {self.min_seats} players to start")
        settings = session.settings
        if settings.imposter_count >= seat_count:
            raise StateConflict("Imposter count must be lower than the number of players")
        items = self.catalog.load()
        if not items:
            raise CatalogLoadError(self.catalog.load_error or "Catalog is empty")

        reveal_order = shuffle_seats(self.rng, seat_count)
        discussion_orders = [shuffle_seats(self.rng, seat_count) for _ in range(settings.round_count)]
        imposters = sample_imposters(self.rng, total_seats=seat_count, count=settings.imposter_count)

        real_item = self.catalog.random_item(self.rng)
        decoy_item = None
        imposter_card: Card = IMPOSTER_MARKER
        if settings.imposter_mode == ImposterMode.DECOY:
            decoy_item = find_decoy(real_item, settings.similarity_floor, items, self.rng)
            imposter_card = decoy_item

        imposter_set = set(imposters)
        session.seat_cards = [imposter_card if index in imposter_set else real_item for index in range(seat_count)]
        session.imposter_seats = imposters
        session.real_item = real_item
        session.decoy_item = decoy_item
        session.reveal_order = reveal_order
        session.discussion_orders = discussion_orders
        session.discussion = [["" for _ in range(seat_count)] for _ in range(settings.round_count)]
        session.chat_log = []
        session.state = Lifecycle.IN_PROGRESS
        session.current_round = 0
        session.current_turn = 0
        session.touch(self.clock())

        LOGGER.info(
            "game.started",
            code=session.code,
            seats=seat_count,
            imposters=len(imposters),
            mode=settings.imposter_mode.value,
            rounds=settings.round_count,
        )
        return session

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def current_turn_seat(self, session: Session) -> int:
        return session.discussion_orders[session.current_round][session.current_turn]

    def is_turn(self, session: Session, seat_index: int) -> bool:
        if session.state != Lifecycle.IN_PROGRESS or not session.discussion_orders:
            return False
        return self.current_turn_seat(session) == seat_index

    def submit_turn(self, session: Session, seat_index: int, round_index: int, text: str) -> Session:
        """Record a seat's contribution for a round.

        Writes without checking whose turn it is; the hub validates turn
        ownership before calling this.
        """

        session.discussion[round_index][seat_index] = text
        session.touch(self.clock())
        LOGGER.debug("turn.recorded", code=session.code, seat=seat_index, round=round_index)
        return session

    def advance_turn(self, session: Session) -> TurnAdvance:
        session.current_turn += 1
        if session.current_turn >= session.seat_count:
            session.current_turn = 0
            return TurnAdvance(next_seat=None, round_complete=True)
        return TurnAdvance(next_seat=self.current_turn_seat(session), round_complete=False)

    def advance_round(self, session: Session) -> RoundAdvance:
        if session.state != Lifecycle.IN_PROGRESS:
            raise StateConflict(f"Cannot advance rounds while {session.state.value}")
        next_round = session.current_round + 1
        if next_round < session.settings.round_count:
            session.current_round = next_round
            session.current_turn = 0
            LOGGER.info("round.advanced", code=session.code, round=next_round)
            return RoundAdvance(phase="discussion")

        session.state = Lifecycle.ENDED
        LOGGER.info("game.ended", code=session.code)
        return RoundAdvance(phase="reveal")

    def skip_to_reveal(self, session: Session) -> RoundAdvance:
        """End an in-progress game without any discussion rounds."""

        if session.state != Lifecycle.IN_PROGRESS:
            raise StateConflict(f"Cannot reveal a session that is {session.state.value}")
        session.state = Lifecycle.ENDED
        session.touch(self.clock())
        LOGGER.info("game.ended", code=session.code, skipped_discussion=True)
        return RoundAdvance(phase="reveal")

    # ------------------------------------------------------------------
    # Reset and chat
    # ------------------------------------------------------------------

    def reset(self, session: Session) -> Session:
        """Return to the lobby keeping seats and settings."""

        if session.state == Lifecycle.WAITING:
            raise StateConflict("Session is already waiting")
        session.clear_game_data()
        session.state = Lifecycle.WAITING
        session.touch(self.clock())
        LOGGER.info("game.reset", code=session.code)
        return session

    def add_chat_message(self, session: Session, seat_identity: str, text: str) -> Optional[ChatMessage]:
        seat_index = session.seat_index(seat_identity)
        if seat_index is None:
            return None
        now = self.clock()
        message = ChatMessage(
            id=uuid.uuid4().hex,
            seat_identity=seat_identity,
            seat_index=seat_index,
            seat_name=session.seats[seat_index].name,
            text=text,
            timestamp=now,
        )
        session.chat_log.append(message)
        session.touch(now)
        return message

    # ------------------------------------------------------------------
    # Reveal
    # ------------------------------------------------------------------

    def format_discussion_summary(self, session: Session) -> List[SummaryEntry]:
        """List every seat's contributions, ordered by the first round's turn order."""

        if session.discussion_orders:
            display_order = session.discussion_orders[0]
        else:
            display_order = session.reveal_order or list(range(session.seat_count))

        summary: List[SummaryEntry] = []
        for seat_index in display_order:
            words = [
                row[seat_index]
                for row in session.discussion
                if seat_index < len(row) and row[seat_index] and row[seat_index].strip()
            ]
            summary.append(
                SummaryEntry(
                    seat_index=seat_index,
                    seat_name=session.seats[seat_index].name,
                    joined_words=", ".join(words),
                )
            )
        return summary

    def reveal_data(self, session: Session) -> dict:
        """Full disclosure payload; only meaningful once the game has ended."""

        return {
            "summary": [entry.to_payload() for entry in self.format_discussion_summary(session)],
            "imposterSeats": [
                {"index": index, "name": session.seats[index].name} for index in session.imposter_seats
            ],
            "realItem": session.real_item.to_payload() if session.real_item else None,
            "decoyItem": session.decoy_item.to_payload() if session.decoy_item else None,
            "mode": session.settings.imposter_mode.value,
            "chatLog": [message.to_payload() for message in session.chat_log],
            "seatNames": [seat.name for seat in session.seats],
        }
