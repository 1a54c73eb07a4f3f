from __future__ import annotations

from datetime import date

import pytest
import structlog

from family_graph.cache import CacheFacade, MemoryCache
from family_graph.engine import FamilyGraphEngine
from family_graph.models import Gender, Individual
from family_graph.repository import MemoryRepository


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo logging configuration made by CLI tests so later tests do not
    write to a stderr stream the CLI runner has already closed."""
    yield
    structlog.reset_defaults()


@pytest.fixture()
def repo() -> MemoryRepository:
    return MemoryRepository()


@pytest.fixture()
def cache() -> CacheFacade:
    return CacheFacade(MemoryCache(), ttl=60)


@pytest.fixture()
def engine(repo: MemoryRepository, cache: CacheFacade) -> FamilyGraphEngine:
    return FamilyGraphEngine(repo, cache)


@pytest.fixture()
def person(repo: MemoryRepository):
    """Write an individual straight to the repository, bypassing validation."""

    def make(
        name: str,
        gender: Gender = Gender.MALE,
        father: Individual | None = None,
        mother: Individual | None = None,
        born: str | None = None,
    ) -> Individual:
        return repo.create_individual(
            Individual(
                full_name=name,
                gender=gender,
                father_id=father.id if father else None,
                mother_id=mother.id if mother else None,
                birth_date=date.fromisoformat(born) if born else None,
            )
        )

    return make
