"""Tests for the round engine state machine."""

from __future__ import annotations

import pytest

from imposter.core.catalog import IMPOSTER_MARKER, Catalog
from imposter.core.errors import CatalogLoadError, StateConflict
from imposter.core.fsm import RoundEngine
from imposter.core.schemas import ImposterMode, SessionSettings
from imposter.core.session import Lifecycle, Seat, Session
from imposter.utils.rng import build_rng
from tests.helpers.fakes import FakeClock, sample_catalog


def make_session(seat_count: int, **settings) -> Session:
    seats = [Seat(identity=f"id-{index}", name=f"P{index}", is_host=index == 0) for index in range(seat_count)]
    return Session(code="ABCDEF", seats=seats, settings=SessionSettings(**settings))


def make_engine(seed: int = 1) -> RoundEngine:
    return RoundEngine(sample_catalog(), rng=build_rng(seed=seed), clock=FakeClock())


def play_round(engine: RoundEngine, session: Session, word: str = "word") -> None:
    for _ in range(session.seat_count):
        seat = engine.current_turn_seat(session)
        engine.submit_turn(session, seat, session.current_round, f"{word}-{seat}")
        engine.advance_turn(session)


class TestStart:
    @pytest.mark.parametrize("seed", range(20))
    def test_assignment_invariants(self, seed: int) -> None:
        session = make_session(7, imposter_count=3, round_count=3)
        make_engine(seed).start(session)

        imposters = session.imposter_seats
        assert len(imposters) == 3
        assert imposters == sorted(set(imposters))
        assert all(0 <= index < 7 for index in imposters)

        for index, card in enumerate(session.seat_cards):
            if index in imposters:
                assert card is IMPOSTER_MARKER
            else:
                assert card == session.real_item
        assert session.decoy_item is None

    @pytest.mark.parametrize("seed", range(20))
    def test_turn_orders_are_permutations(self, seed: int) -> None:
        session = make_session(6, round_count=4)
        make_engine(seed).start(session)

        assert sorted(session.reveal_order) == list(range(6))
        assert len(session.discussion_orders) == 4
        for order in session.discussion_orders:
            assert sorted(order) == list(range(6))

    def test_discussion_matrix_dimensions(self) -> None:
        session = make_session(5, round_count=3)
        make_engine().start(session)

        assert len(session.discussion) == 3
        assert all(row == [""] * 5 for row in session.discussion)
        assert session.state == Lifecycle.IN_PROGRESS
        assert (session.current_round, session.current_turn) == (0, 0)

    @pytest.mark.parametrize("seed", range(20))
    def test_decoy_mode_deals_one_decoy_to_every_imposter(self, seed: int) -> None:
        session = make_session(8, imposter_count=2, imposter_mode=ImposterMode.DECOY, similarity_floor=4)
        make_engine(seed).start(session)

        assert session.decoy_item is not None
        assert session.decoy_item.name != session.real_item.name
        for index, card in enumerate(session.seat_cards):
            expected = session.decoy_item if index in session.imposter_seats else session.real_item
            assert card == expected

    def test_requires_three_seats(self) -> None:
        with pytest.raises(StateConflict):
            make_engine().start(make_session(2))

    def test_imposter_count_must_be_below_seat_count(self) -> None:
        with pytest.raises(StateConflict):
            make_engine().start(make_session(3, imposter_count=3))

    def test_empty_catalog_is_fatal(self) -> None:
        engine = RoundEngine(Catalog.from_items([]), rng=build_rng(seed=1))
        with pytest.raises(CatalogLoadError):
            engine.start(make_session(4))

    def test_cannot_start_twice(self) -> None:
        engine = make_engine()
        session = make_session(3)
        engine.start(session)
        with pytest.raises(StateConflict):
            engine.start(session)

    def test_same_seed_same_deal(self) -> None:
        first, second = make_session(5, imposter_count=2), make_session(5, imposter_count=2)
        make_engine(99).start(first)
        make_engine(99).start(second)

        assert first.imposter_seats == second.imposter_seats
        assert first.real_item == second.real_item
        assert first.discussion_orders == second.discussion_orders


class TestTurns:
    def test_advance_turn_completes_round_on_last_call(self) -> None:
        engine = make_engine()
        session = make_session(5)
        engine.start(session)

        results = [engine.advance_turn(session) for _ in range(5)]

        assert [result.round_complete for result in results] == [False] * 4 + [True]
        assert results[-1].next_seat is None
        assert results[0].next_seat == session.discussion_orders[0][1]
        assert session.current_turn == 0

    def test_is_turn_follows_round_order(self) -> None:
        engine = make_engine()
        session = make_session(4)
        engine.start(session)

        first = session.discussion_orders[0][0]
        assert engine.is_turn(session, first)
        assert not any(engine.is_turn(session, seat) for seat in range(4) if seat != first)

    def test_is_turn_false_outside_a_game(self) -> None:
        assert not make_engine().is_turn(make_session(3), 0)

    def test_submit_turn_trusts_the_caller(self) -> None:
        engine = make_engine()
        session = make_session(3)
        engine.start(session)
        not_their_turn = next(seat for seat in range(3) if not engine.is_turn(session, seat))

        engine.submit_turn(session, not_their_turn, 0, "sneaky")

        assert session.discussion[0][not_their_turn] == "sneaky"

    def test_advance_round_ends_on_final_round(self) -> None:
        engine = make_engine()
        session = make_session(3, round_count=3)
        engine.start(session)

        phases = [engine.advance_round(session).phase for _ in range(3)]

        assert phases == ["discussion", "discussion", "reveal"]
        assert session.state == Lifecycle.ENDED

    def test_advance_round_after_end_is_a_caller_error(self) -> None:
        engine = make_engine()
        session = make_session(3, round_count=1)
        engine.start(session)
        engine.advance_round(session)
        with pytest.raises(StateConflict):
            engine.advance_round(session)

    def test_three_seat_generic_scenario(self) -> None:
        engine = make_engine(5)
        session = make_session(3, imposter_count=1, imposter_mode=ImposterMode.GENERIC, round_count=1)
        engine.start(session)

        real_count = sum(1 for card in session.seat_cards if card == session.real_item)
        marker_count = sum(1 for card in session.seat_cards if card is IMPOSTER_MARKER)
        assert (real_count, marker_count) == (2, 1)

        first = engine.current_turn_seat(session)
        engine.submit_turn(session, first, 0, "tall")
        results = [engine.advance_turn(session) for _ in range(3)]
        assert results[-1].round_complete

        assert engine.advance_round(session).phase == "reveal"
        assert session.state == Lifecycle.ENDED

    def test_skip_to_reveal(self) -> None:
        engine = make_engine()
        session = make_session(3, skip_discussion=True)
        engine.start(session)

        assert engine.skip_to_reveal(session).phase == "reveal"
        assert session.state == Lifecycle.ENDED
        assert len(engine.format_discussion_summary(session)) == 3


class TestSummary:
    @pytest.mark.parametrize("seats,rounds", [(3, 1), (4, 2), (7, 5), (10, 3)])
    def test_one_entry_per_seat(self, seats: int, rounds: int) -> None:
        engine = make_engine()
        session = make_session(seats, round_count=rounds)
        engine.start(session)
        play_round(engine, session)

        summary = engine.format_discussion_summary(session)

        assert len(summary) == seats
        assert [entry.seat_index for entry in summary] == session.discussion_orders[0]

    def test_joins_non_empty_words_across_rounds(self) -> None:
        engine = make_engine()
        session = make_session(3, round_count=3)
        engine.start(session)
        session.discussion[0][1] = "red"
        session.discussion[1][1] = "  "
        session.discussion[2][1] = "round"

        entry = next(entry for entry in engine.format_discussion_summary(session) if entry.seat_index == 1)

        assert entry.joined_words == "red, round"
        assert entry.seat_name == "P1"

    def test_falls_back_to_reveal_order(self) -> None:
        session = make_session(3)
        session.reveal_order = [2, 0, 1]

        summary = make_engine().format_discussion_summary(session)

        assert [entry.seat_index for entry in summary] == [2, 0, 1]
        assert all(entry.joined_words == "" for entry in summary)

    def test_reveal_data_discloses_everything(self) -> None:
        engine = make_engine()
        session = make_session(4, imposter_count=1, imposter_mode=ImposterMode.DECOY, round_count=1)
        engine.start(session)
        play_round(engine, session)
        engine.advance_round(session)

        data = engine.reveal_data(session)

        assert data["realItem"]["name"] == session.real_item.name
        assert data["decoyItem"]["name"] == session.decoy_item.name
        assert data["mode"] == "decoy"
        assert [entry["index"] for entry in data["imposterSeats"]] == session.imposter_seats
        assert data["seatNames"] == ["P0", "P1", "P2", "P3"]
        assert len(data["summary"]) == 4


class TestResetAndChat:
    def test_reset_then_start_again(self) -> None:
        engine = make_engine(3)
        session = make_session(5, imposter_count=2, round_count=2)
        engine.start(session)
        engine.add_chat_message(session, "id-1", "hi")
        play_round(engine, session)

        engine.reset(session)

        assert session.state == Lifecycle.WAITING
        assert session.seat_cards == [] and session.imposter_seats == []
        assert session.real_item is None and session.decoy_item is None
        assert session.discussion == [] and session.discussion_orders == []
        assert session.chat_log == []
        assert session.seat_count == 5
        assert session.settings.imposter_count == 2

        engine.start(session)
        assert len(session.imposter_seats) == 2
        assert all(sorted(order) == list(range(5)) for order in session.discussion_orders)

    def test_reset_from_ended(self) -> None:
        engine = make_engine()
        session = make_session(3, round_count=1)
        engine.start(session)
        engine.advance_round(session)

        engine.reset(session)

        assert session.state == Lifecycle.WAITING

    def test_reset_while_waiting_is_a_caller_error(self) -> None:
        with pytest.raises(StateConflict):
            make_engine().reset(make_session(3))

    def test_chat_message_requires_a_seat(self) -> None:
        engine = make_engine()
        session = make_session(3)

        assert engine.add_chat_message(session, "stranger", "hello") is None

        message = engine.add_chat_message(session, "id-2", "hello")
        assert message is not None
        assert (message.seat_index, message.seat_name, message.text) == (2, "P2", "hello")
        assert session.chat_log == [message]
        assert "seatIdentity" not in message.to_payload()
