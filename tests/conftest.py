"""Shared fixtures wiring the registry, engine and hub to deterministic fakes."""

from __future__ import annotations

import pytest

from imposter.core.fsm import RoundEngine
from imposter.services.hub import SessionHub
from imposter.services.registry import SessionRegistry
from imposter.utils.rng import build_rng
from tests.helpers.fakes import FakeClock, ManualScheduler, sample_catalog


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def catalog():
    return sample_catalog()


@pytest.fixture
def registry(clock: FakeClock, scheduler: ManualScheduler) -> SessionRegistry:
    return SessionRegistry(rng=build_rng(seed=7), clock=clock, scheduler=scheduler)


@pytest.fixture
def engine(catalog, clock: FakeClock) -> RoundEngine:
    return RoundEngine(catalog, rng=build_rng(seed=42), clock=clock)


@pytest.fixture
def hub(registry: SessionRegistry, engine: RoundEngine) -> SessionHub:
    return SessionHub(registry, engine)
