"""Engine facade used by transport layers.

``FamilyGraphEngine`` wires the validator, query engine, union manager,
individual service and tree materializer around one repository, and wraps
reads with the cache facade. Collaborators are passed in explicitly.

Example:
    >>> engine = FamilyGraphEngine(SQLiteRepository("family.db"), CacheFacade(MemoryCache()))
    >>> async with engine:
    ...     union = await engine.add_spouse(husband_id, wife_id)
    ...     tree = await engine.build_tree(husband_id, generations=4)
"""
from __future__ import annotations

from collections.abc import Iterable

import structlog

from .cache import CacheFacade, MemoryCache
from .cancellation import CancellationToken
from .config import CONFIG, EngineConfig
from .exceptions import InvalidInput
from .individuals import IndividualService
from .models import (
    AddParentResult,
    ChildLink,
    Individual,
    IndividualDraft,
    IndividualPatch,
    ParentDraft,
    ParentRole,
    Parents,
    PedigreeEntry,
    SearchPage,
    SpouseRecord,
    TreeNode,
    Union,
    UnionDraft,
)
from .queries import RelationshipQueryEngine
from .repository import MemoryRepository, Repository, SQLiteRepository
from .tree import TreeMaterializer
from .unions import KeyedLocks, UnionManager
from .validator import ConsistencyValidator

logger = structlog.get_logger(__name__)


class FamilyGraphEngine:
    """Single entry point for all family graph operations."""

    def __init__(
        self,
        repository: Repository,
        cache: CacheFacade | None = None,
        config: EngineConfig = CONFIG,
    ) -> None:
        self.repo = repository
        self.cache = cache
        self.config = config

        self.validator = ConsistencyValidator(repository)
        self.queries = RelationshipQueryEngine(repository, config)
        self.unions = UnionManager(repository, self.validator, config, KeyedLocks())
        self.individuals = IndividualService(repository, self.validator, self.unions, config)
        self.trees = TreeMaterializer(repository, self.queries, config)

    async def __aenter__(self) -> FamilyGraphEngine:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self.cache is not None:
            await self.cache.aclose()
        self.repo.close()

    # ---------------------------- Invalidation ----------------------------

    def _neighbourhood(self, individual_ids: Iterable[int | None]) -> set[int]:
        """The given ids plus their parents and spouses."""
        ids = {i for i in individual_ids if i is not None}
        expanded = set(ids)
        for individual_id in ids:
            individual = self.repo.get_individual(individual_id)
            if individual is not None:
                expanded.update(individual.parent_ids)
            for union in self.repo.list_unions_for(individual_id):
                expanded.update(union.party_ids)
        return expanded

    def _invalidate(self, individual_ids: Iterable[int | None] = (), union_ids: Iterable[int | None] = ()) -> None:
        if self.cache is None:
            return
        self.cache.invalidate_individuals(self._neighbourhood(individual_ids))
        self.cache.invalidate_unions(union_ids)

    # ----------------------------- Validation -----------------------------

    async def validate_parent(
        self,
        child_id: int | None,
        candidate_parent_id: int,
        role: ParentRole,
        token: CancellationToken | None = None,
    ) -> Individual:
        return await self.validator.validate_parent(child_id, candidate_parent_id, ParentRole(role), token)

    async def validate_union(
        self,
        husband_id: int | None,
        wife_id: int | None,
        token: CancellationToken | None = None,
    ) -> tuple[Individual | None, Individual | None]:
        return self.validator.validate_union(husband_id, wife_id)

    # ----------------------------- Individuals -----------------------------

    async def create_individual(self, draft: IndividualDraft, token: CancellationToken | None = None) -> Individual:
        individual = await self.individuals.create_individual(draft, token)
        links = self.repo.list_links_for_child(individual.id)
        self._invalidate([individual.id, individual.father_id, individual.mother_id], [link.union_id for link in links])
        return individual

    async def get_individual(self, individual_id: int, token: CancellationToken | None = None) -> Individual:
        if self.cache is None:
            return self.queries.subject(individual_id)
        if individual_id is None or individual_id <= 0:
            raise InvalidInput("Invalid individual id", details=f"id={individual_id}")

        async def load() -> Individual:
            return self.queries.subject(individual_id)

        return await self.cache.individual(individual_id, load)

    async def update_individual(
        self,
        individual_id: int,
        patch: IndividualPatch,
        token: CancellationToken | None = None,
    ) -> Individual:
        before, after = await self.individuals.update_individual(individual_id, patch, token)
        children = [c.id for c in self.repo.list_children(individual_id)]
        self._invalidate([individual_id, *before.parent_ids, *after.parent_ids, *children])
        return after

    async def delete_individual(self, individual_id: int, token: CancellationToken | None = None) -> None:
        links = self.repo.list_links_for_child(individual_id) if individual_id and individual_id > 0 else []
        deleted = self.individuals.delete_individual(individual_id)
        self._invalidate([individual_id, *deleted.parent_ids], [link.union_id for link in links])

    async def search_individuals(
        self,
        query: str,
        limit: int = 0,
        offset: int = 0,
        token: CancellationToken | None = None,
    ) -> SearchPage:
        return self.individuals.search_individuals(query, limit, offset)

    async def add_parent(
        self,
        child_id: int,
        draft: ParentDraft,
        role: ParentRole,
        token: CancellationToken | None = None,
    ) -> AddParentResult:
        result = await self.individuals.add_parent(child_id, draft, role, token)
        child = self.repo.get_individual(child_id)
        touched = [result.parent.id, child_id, *result.updated_ids]
        if child is not None:
            touched.extend(child.parent_ids)
        self._invalidate(touched, [result.union.id] if result.union else [])
        return result

    # ------------------------------ Queries ------------------------------

    async def get_parents(self, individual_id: int, token: CancellationToken | None = None) -> Parents:
        return await self.queries.get_parents(individual_id)

    async def get_children(self, individual_id: int, token: CancellationToken | None = None) -> list[Individual]:
        return await self.queries.get_children(individual_id)

    async def get_siblings(self, individual_id: int, token: CancellationToken | None = None) -> list[Individual]:
        return await self.queries.get_siblings(individual_id)

    async def get_spouses(self, individual_id: int, token: CancellationToken | None = None) -> list[SpouseRecord]:
        return await self.queries.get_spouses(individual_id)

    async def get_ancestors(
        self,
        individual_id: int,
        generations: int | None = None,
        token: CancellationToken | None = None,
    ) -> list[PedigreeEntry]:
        return await self.queries.get_ancestors(individual_id, generations, token)

    async def get_descendants(
        self,
        individual_id: int,
        generations: int | None = None,
        token: CancellationToken | None = None,
    ) -> list[PedigreeEntry]:
        return await self.queries.get_descendants(individual_id, generations, token)

    async def build_tree(
        self,
        root_id: int,
        generations: int | None = None,
        token: CancellationToken | None = None,
    ) -> TreeNode:
        if self.cache is None:
            return await self.trees.build_tree(root_id, generations, token)
        if root_id is None or root_id <= 0:
            raise InvalidInput("Invalid individual id", details=f"id={root_id}")

        depth = self.trees.clamp(generations)

        async def build() -> TreeNode:
            return await self.trees.build_tree(root_id, depth, token)

        return await self.cache.tree(root_id, depth, build)

    # ------------------------------- Unions -------------------------------

    async def create_union(self, draft: UnionDraft, token: CancellationToken | None = None) -> Union:
        union = await self.unions.create_union(draft, token)
        self._invalidate(union.party_ids, [union.id])
        return union

    async def get_union(self, union_id: int, token: CancellationToken | None = None) -> Union:
        if self.cache is None:
            return self.unions.get_union(union_id)
        if union_id is None or union_id <= 0:
            raise InvalidInput("Invalid union id", details=f"id={union_id}")

        async def load() -> Union:
            return self.unions.get_union(union_id)

        return await self.cache.union(union_id, load)

    async def update_union(self, union_id: int, draft: UnionDraft, token: CancellationToken | None = None) -> Union:
        before, after = await self.unions.update_union(union_id, draft)
        self._invalidate([*before.party_ids, *after.party_ids], [union_id])
        return after

    async def delete_union(self, union_id: int, token: CancellationToken | None = None) -> None:
        deleted = self.unions.delete_union(union_id)
        self._invalidate(deleted.party_ids, [union_id])

    async def add_spouse(self, individual_id: int, spouse_id: int, token: CancellationToken | None = None) -> Union:
        union = await self.unions.add_spouse(individual_id, spouse_id)
        self._invalidate(union.party_ids, [union.id])
        return union

    async def get_unions_for(self, individual_id: int, token: CancellationToken | None = None) -> list[Union]:
        return self.unions.get_unions_for(individual_id)

    async def get_union_by_spouses(
        self,
        first_id: int,
        second_id: int,
        token: CancellationToken | None = None,
    ) -> Union:
        return self.unions.get_union_by_spouses(first_id, second_id)

    async def add_child(
        self,
        union_id: int,
        child_id: int,
        relationship_label: str = "",
        token: CancellationToken | None = None,
    ) -> ChildLink:
        link = await self.unions.add_child(union_id, child_id, relationship_label, token)
        union = self.repo.get_union(union_id)
        self._invalidate([child_id, *(union.party_ids if union else [])], [union_id])
        return link

    async def remove_child(self, union_id: int, child_id: int, token: CancellationToken | None = None) -> None:
        self.unions.remove_child(union_id, child_id)
        union = self.repo.get_union(union_id)
        self._invalidate([child_id, *(union.party_ids if union else [])], [union_id])

    async def list_union_children(self, union_id: int, token: CancellationToken | None = None) -> list[ChildLink]:
        return self.unions.list_union_children(union_id)


def build_engine(config: EngineConfig = CONFIG, in_memory: bool = False) -> FamilyGraphEngine:
    """Engine over the configured SQLite file (or memory) with an in-process cache."""
    repository: Repository = MemoryRepository() if in_memory else SQLiteRepository(config.sqlite_path)
    cache = CacheFacade(MemoryCache(), ttl=config.cache_ttl_seconds, max_pending=config.cache_queue_size)
    logger.debug("engine.built", sqlite_path=None if in_memory else config.sqlite_path)
    return FamilyGraphEngine(repository, cache, config)
