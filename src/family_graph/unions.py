"""Union management: creation, spouses, marriage order and child links.

Marriage order is ``max(existing order for the husband) + 1``. The read and
the write happen under a per-husband lock so concurrent creations for the
same husband can never observe the same maximum.
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from .cancellation import CancellationToken
from .config import CONFIG, EngineConfig
from .exceptions import AlreadyExists, HasChildren, InvalidInput, InvalidRelation, NotFound
from .models import ChildLink, Gender, Union, UnionDraft
from .repository import Repository
from .validator import ConsistencyValidator

logger = structlog.get_logger(__name__)


class KeyedLocks:
    """Registry of per-key asyncio locks.

    A lock lives only while some caller holds or waits for it, so the registry
    stays as small as the number of keys in use.
    """

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}
        self._users: dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: int | None) -> AsyncIterator[None]:
        if key is None:
            yield
            return
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


def _require_id(value: int | None, label: str) -> int:
    if value is None or value <= 0:
        raise InvalidInput(f"Invalid {label} id", details=f"id={value}")
    return value


class UnionManager:
    """Creates and maintains unions and their child links."""

    def __init__(
        self,
        repository: Repository,
        validator: ConsistencyValidator,
        config: EngineConfig = CONFIG,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.repo = repository
        self.validator = validator
        self.config = config
        self.locks = locks or KeyedLocks()

    # ---------------------------- Marriage order ----------------------------

    def next_marriage_order(self, husband_id: int | None) -> int:
        if husband_id is None:
            return 1
        orders = [
            u.marriage_order
            for u in self.repo.list_unions_for(husband_id)
            if u.husband_id == husband_id
        ]
        return max(orders, default=0) + 1

    def find_union(self, first_id: int, second_id: int) -> Union | None:
        for union in self.repo.list_unions_for(first_id):
            if union.joins(first_id, second_id):
                return union
        return None

    async def _create_locked(self, draft: UnionDraft, reject_duplicate: bool) -> Union:
        async with self.locks.hold(draft.husband_id):
            if reject_duplicate and draft.husband_id is not None and draft.wife_id is not None:
                existing = self.find_union(draft.husband_id, draft.wife_id)
                if existing is not None:
                    raise AlreadyExists(
                        "A union between these individuals already exists",
                        details=f"union_id={existing.id}",
                    )
            union = Union(
                **draft.model_dump(),
                marriage_order=self.next_marriage_order(draft.husband_id),
            )
            created = self.repo.create_union(union)

        logger.info(
            "union.created",
            union_id=created.id,
            husband_id=created.husband_id,
            wife_id=created.wife_id,
            marriage_order=created.marriage_order,
        )
        return created

    # ------------------------------- Unions --------------------------------

    async def create_union(self, draft: UnionDraft, token: CancellationToken | None = None) -> Union:
        """Create a union after validating the pair; assigns the marriage order."""
        self.validator.validate_union(draft.husband_id, draft.wife_id)
        return await self._create_locked(draft, reject_duplicate=False)

    async def add_spouse(self, individual_id: int, spouse_id: int) -> Union:
        """Create a union between two individuals, inferring roles from gender."""
        _require_id(individual_id, "individual")
        _require_id(spouse_id, "spouse")
        if individual_id == spouse_id:
            raise InvalidRelation("An individual cannot be their own spouse", details=f"id={individual_id}")

        individual = self.validator.require_individual(individual_id)
        spouse = self.validator.require_individual(spouse_id, label="Spouse")

        genders = (individual.gender, spouse.gender)
        if genders == (Gender.MALE, Gender.FEMALE):
            draft = UnionDraft(husband_id=individual_id, wife_id=spouse_id)
        elif genders == (Gender.FEMALE, Gender.MALE):
            draft = UnionDraft(husband_id=spouse_id, wife_id=individual_id)
        else:
            raise InvalidRelation(
                "A spouse pairing needs one male and one female",
                details=f"genders={individual.gender.value},{spouse.gender.value}",
            )

        self.validator.validate_union(draft.husband_id, draft.wife_id)
        return await self._create_locked(draft, reject_duplicate=True)

    async def ensure_union(self, father_id: int, mother_id: int) -> tuple[Union, bool]:
        """Return the union joining two parents, creating it when absent."""
        self.validator.validate_union(father_id, mother_id)
        async with self.locks.hold(father_id):
            existing = self.find_union(father_id, mother_id)
            if existing is not None:
                return existing, False
            union = Union(
                husband_id=father_id,
                wife_id=mother_id,
                marriage_order=self.next_marriage_order(father_id),
            )
            created = self.repo.create_union(union)

        logger.info(
            "union.created",
            union_id=created.id,
            husband_id=father_id,
            wife_id=mother_id,
            marriage_order=created.marriage_order,
            implicit=True,
        )
        return created, True

    def get_union(self, union_id: int) -> Union:
        _require_id(union_id, "union")
        union = self.repo.get_union(union_id)
        if union is None:
            raise NotFound("Union not found", details=f"id={union_id}")
        return union

    async def update_union(self, union_id: int, draft: UnionDraft) -> tuple[Union, Union]:
        """Update a union in place. Returns (previous, updated).

        The marriage order is kept while the husband stays the same; a new
        husband gets his own next order.
        """
        current = self.get_union(union_id)
        self.validator.validate_union(draft.husband_id, draft.wife_id)

        async with self.locks.hold(draft.husband_id):
            if draft.husband_id is not None and draft.wife_id is not None:
                existing = self.find_union(draft.husband_id, draft.wife_id)
                if existing is not None and existing.id != union_id:
                    raise AlreadyExists(
                        "A union between these individuals already exists",
                        details=f"union_id={existing.id}",
                    )
            order = current.marriage_order
            if draft.husband_id != current.husband_id:
                order = self.next_marriage_order(draft.husband_id)
            updated = current.model_copy(update={**draft.model_dump(), "marriage_order": order})
            saved = self.repo.update_union(updated)

        logger.info("union.updated", union_id=union_id, marriage_order=saved.marriage_order)
        return current, saved

    def delete_union(self, union_id: int) -> Union:
        """Delete a union with no children. Returns the deleted record."""
        union = self.get_union(union_id)
        links = self.repo.list_child_links(union_id)
        if links:
            raise HasChildren(
                "Union still has children; remove them first",
                details=f"union_id={union_id} children={len(links)}",
            )
        self.repo.delete_union(union_id)
        logger.info("union.deleted", union_id=union_id)
        return union

    def get_unions_for(self, individual_id: int) -> list[Union]:
        self.validator.require_individual(individual_id)
        return self.repo.list_unions_for(individual_id)

    def get_union_by_spouses(self, first_id: int, second_id: int) -> Union:
        _require_id(first_id, "individual")
        _require_id(second_id, "individual")
        union = self.find_union(first_id, second_id)
        if union is None:
            raise NotFound("No union joins these individuals", details=f"ids={first_id},{second_id}")
        return union

    # ----------------------------- Child links -----------------------------

    async def add_child(
        self,
        union_id: int,
        child_id: int,
        relationship_label: str = "",
        token: CancellationToken | None = None,
    ) -> ChildLink:
        """Link a child to a union.

        Raises:
            NotFound: union or child does not exist
            InvalidRelation: the child is a party of the union
            CircularRelation: the child is an ancestor of a party
            AlreadyExists: the child is already linked here, or to another
                union while re-parenting is disabled
        """
        union = self.get_union(union_id)
        _require_id(child_id, "child")
        self.validator.require_individual(child_id, label="Child")

        if union.involves(child_id):
            raise InvalidRelation("A union party cannot be its own child", details=f"id={child_id}")
        for party_id in union.party_ids:
            await self.validator.check_no_circular(child_id, party_id, token)

        for link in self.repo.list_links_for_child(child_id):
            if link.union_id == union_id:
                raise AlreadyExists("Child is already linked to this union", details=f"union_id={union_id}")
            if not self.config.allow_reparenting:
                raise AlreadyExists(
                    "Child already belongs to another union",
                    details=f"union_id={link.union_id}",
                )

        link = self.repo.create_child_link(
            ChildLink(union_id=union_id, individual_id=child_id, relationship_label=relationship_label)
        )
        logger.info("union.child_added", union_id=union_id, child_id=child_id, label=relationship_label)
        return link

    def remove_child(self, union_id: int, child_id: int) -> None:
        _require_id(union_id, "union")
        _require_id(child_id, "child")
        if not self.repo.delete_child_link(union_id, child_id):
            raise NotFound("Child is not linked to this union", details=f"union_id={union_id} child_id={child_id}")
        logger.info("union.child_removed", union_id=union_id, child_id=child_id)

    def list_union_children(self, union_id: int) -> list[ChildLink]:
        self.get_union(union_id)
        return self.repo.list_child_links(union_id)
