"""Relationship queries over the persisted family graph.

Provides:
- Parents, children, siblings (full and half)
- Spouses ordered by marriage order
- Ancestor and descendant walks with a generation cap
"""
from __future__ import annotations

import structlog

from .cancellation import CancellationToken, checkpoint
from .config import CONFIG, EngineConfig
from .exceptions import InvalidInput, NotFound
from .models import Individual, Parents, PedigreeEntry, SpouseRecord
from .repository import Repository

logger = structlog.get_logger(__name__)


def clamp_generations(generations: int | None, default: int, maximum: int) -> int:
    """Out-of-range depths are clamped, never rejected."""
    if generations is None or generations <= 0:
        return default
    return min(generations, maximum)


class RelationshipQueryEngine:
    """Derived relationship views for a single individual.

    Example:
        >>> queries = RelationshipQueryEngine(repository)
        >>> for entry in await queries.get_ancestors(person_id, generations=4):
        ...     print(entry.relationship_label, entry.individual.full_name)
    """

    def __init__(self, repository: Repository, config: EngineConfig = CONFIG) -> None:
        self.repo = repository
        self.config = config

    def subject(self, individual_id: int) -> Individual:
        if individual_id is None or individual_id <= 0:
            raise InvalidInput("Invalid individual id", details=f"id={individual_id}")
        individual = self.repo.get_individual(individual_id)
        if individual is None:
            raise NotFound("Individual not found", details=f"id={individual_id}")
        return individual

    def parents_of(self, individual: Individual) -> Parents:
        father = self.repo.get_individual(individual.father_id) if individual.father_id else None
        mother = self.repo.get_individual(individual.mother_id) if individual.mother_id else None
        return Parents(father=father, mother=mother)

    async def get_parents(self, individual_id: int) -> Parents:
        """Father and mother, each absent when unknown or dangling."""
        return self.parents_of(self.subject(individual_id))

    async def get_children(self, individual_id: int) -> list[Individual]:
        self.subject(individual_id)
        return self.repo.list_children(individual_id)

    async def get_siblings(self, individual_id: int) -> list[Individual]:
        """Children of the father plus children of the mother, minus the subject."""
        individual = self.subject(individual_id)
        siblings: list[Individual] = []
        seen: set[int] = {individual_id}

        for parent_id in individual.parent_ids:
            for child in self.repo.list_children(parent_id):
                if child.id not in seen:
                    seen.add(child.id)
                    siblings.append(child)
        return siblings

    async def get_spouses(self, individual_id: int) -> list[SpouseRecord]:
        """Other party of every union, earliest marriage order first."""
        self.subject(individual_id)
        return self._spouses_of(individual_id)

    def _spouses_of(self, individual_id: int) -> list[SpouseRecord]:
        records: list[SpouseRecord] = []
        unions = sorted(
            self.repo.list_unions_for(individual_id),
            key=lambda u: (u.marriage_order, u.created_at, u.id or 0),
        )
        for union in unions:
            other_id = union.other_party(individual_id)
            if other_id is None:
                continue
            spouse = self.repo.get_individual(other_id)
            if spouse is None:
                logger.warning("queries.dangling_spouse", union_id=union.id, spouse_id=other_id)
                continue
            records.append(
                SpouseRecord(spouse=spouse, union_id=union.id, marriage_order=union.marriage_order)
            )
        return records

    def first_spouse(self, individual_id: int) -> Individual | None:
        records = self._spouses_of(individual_id)
        return records[0].spouse if records else None

    async def get_ancestors(
        self,
        individual_id: int,
        generations: int | None = None,
        token: CancellationToken | None = None,
    ) -> list[PedigreeEntry]:
        """Walk upward, father before mother at each level.

        Entries are in visitation order. Each ancestor is expanded and
        reported once even when reachable along several lines.
        """
        self.subject(individual_id)
        depth = clamp_generations(generations, self.config.default_generations, self.config.max_generations)

        entries: list[PedigreeEntry] = []
        visited: set[int] = set()
        await self._walk_up(individual_id, 1, depth, None, visited, entries, token)

        logger.debug("queries.ancestors", individual_id=individual_id, generations=depth, found=len(entries))
        return entries

    async def _walk_up(
        self,
        current_id: int,
        generation: int,
        depth: int,
        lineage: str | None,
        visited: set[int],
        entries: list[PedigreeEntry],
        token: CancellationToken | None,
    ) -> None:
        if generation > depth or current_id in visited:
            return
        await checkpoint(token)
        visited.add(current_id)

        current = self.repo.get_individual(current_id)
        if current is None:
            return
        parents = self.parents_of(current)
        for parent, side in ((parents.father, "paternal"), (parents.mother, "maternal")):
            if parent is None or parent.id in visited:
                continue
            entries.append(PedigreeEntry(individual=parent, generation=generation, lineage=lineage or side))
            await self._walk_up(parent.id, generation + 1, depth, lineage or side, visited, entries, token)

    async def get_descendants(
        self,
        individual_id: int,
        generations: int | None = None,
        token: CancellationToken | None = None,
    ) -> list[PedigreeEntry]:
        """Walk downward through children, depth first."""
        self.subject(individual_id)
        depth = clamp_generations(generations, self.config.default_generations, self.config.max_generations)

        entries: list[PedigreeEntry] = []
        visited: set[int] = set()
        await self._walk_down(individual_id, 1, depth, visited, entries, token)

        logger.debug("queries.descendants", individual_id=individual_id, generations=depth, found=len(entries))
        return entries

    async def _walk_down(
        self,
        current_id: int,
        generation: int,
        depth: int,
        visited: set[int],
        entries: list[PedigreeEntry],
        token: CancellationToken | None,
    ) -> None:
        if generation > depth or current_id in visited:
            return
        await checkpoint(token)
        visited.add(current_id)

        for child in self.repo.list_children(current_id):
            if child.id in visited:
                continue
            entries.append(PedigreeEntry(individual=child, generation=generation))
            await self._walk_down(child.id, generation + 1, depth, visited, entries, token)
