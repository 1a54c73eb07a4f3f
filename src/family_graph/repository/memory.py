"""In-process repository for tests, demos and single-process deployments."""
from __future__ import annotations

import threading
from datetime import UTC, date, datetime

from ..exceptions import AlreadyExists
from ..models import ChildLink, Individual, Union
from .base import Repository


def _child_sort_key(individual: Individual) -> tuple[bool, date, int]:
    # Unknown birth dates sort last
    return (
        individual.birth_date is None,
        individual.birth_date or date.min,
        individual.id or 0,
    )


class MemoryRepository(Repository):
    """Dictionary-backed storage.

    Records are copied on the way in and on the way out, so callers only
    ever hold request-scoped copies.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._individuals: dict[int, Individual] = {}
        self._unions: dict[int, Union] = {}
        self._links: dict[int, ChildLink] = {}
        self._next_individual_id = 1
        self._next_union_id = 1
        self._next_link_id = 1

    # --------------------------- Individuals ---------------------------

    def create_individual(self, individual: Individual) -> Individual:
        with self._lock:
            stored = individual.model_copy(deep=True)
            stored.id = self._next_individual_id
            self._next_individual_id += 1
            self._individuals[stored.id] = stored
            return stored.model_copy(deep=True)

    def get_individual(self, individual_id: int) -> Individual | None:
        with self._lock:
            found = self._individuals.get(individual_id)
            return found.model_copy(deep=True) if found else None

    def update_individual(self, individual: Individual) -> Individual:
        with self._lock:
            if individual.id not in self._individuals:
                raise KeyError(f"Individual {individual.id} does not exist")
            stored = individual.model_copy(deep=True)
            stored.updated_at = datetime.now(UTC)
            self._individuals[stored.id] = stored
            return stored.model_copy(deep=True)

    def delete_individual(self, individual_id: int) -> bool:
        with self._lock:
            return self._individuals.pop(individual_id, None) is not None

    def list_children(self, parent_id: int) -> list[Individual]:
        with self._lock:
            children = [
                ind for ind in self._individuals.values()
                if parent_id in (ind.father_id, ind.mother_id)
            ]
            return [c.model_copy(deep=True) for c in sorted(children, key=_child_sort_key)]

    def search_individuals(self, query: str, limit: int, offset: int) -> tuple[list[Individual], int]:
        needle = query.strip().lower()
        with self._lock:
            matches = [
                ind for ind in sorted(self._individuals.values(), key=lambda i: i.id or 0)
                if not needle
                or needle in ind.full_name.lower()
                or needle in ind.notes.lower()
            ]
            page = matches[offset : offset + limit]
            return [m.model_copy(deep=True) for m in page], len(matches)

    # ----------------------------- Unions ------------------------------

    def _check_marriage_order(self, union: Union) -> None:
        if union.husband_id is None:
            return
        for existing in self._unions.values():
            if (
                existing.id != union.id
                and existing.husband_id == union.husband_id
                and existing.marriage_order == union.marriage_order
            ):
                raise AlreadyExists(
                    "Marriage order already used for this husband",
                    details=f"husband_id={union.husband_id} marriage_order={union.marriage_order}",
                )

    def create_union(self, union: Union) -> Union:
        with self._lock:
            self._check_marriage_order(union)
            stored = union.model_copy(deep=True)
            stored.id = self._next_union_id
            self._next_union_id += 1
            self._unions[stored.id] = stored
            return stored.model_copy(deep=True)

    def get_union(self, union_id: int) -> Union | None:
        with self._lock:
            found = self._unions.get(union_id)
            return found.model_copy(deep=True) if found else None

    def update_union(self, union: Union) -> Union:
        with self._lock:
            if union.id not in self._unions:
                raise KeyError(f"Union {union.id} does not exist")
            self._check_marriage_order(union)
            stored = union.model_copy(deep=True)
            stored.updated_at = datetime.now(UTC)
            self._unions[stored.id] = stored
            return stored.model_copy(deep=True)

    def delete_union(self, union_id: int) -> bool:
        with self._lock:
            return self._unions.pop(union_id, None) is not None

    def list_unions_for(self, individual_id: int) -> list[Union]:
        with self._lock:
            unions = [u for u in self._unions.values() if u.involves(individual_id)]
            unions.sort(key=lambda u: (u.marriage_order, u.created_at, u.id or 0))
            return [u.model_copy(deep=True) for u in unions]

    # --------------------------- Child links ---------------------------

    def create_child_link(self, link: ChildLink) -> ChildLink:
        with self._lock:
            for existing in self._links.values():
                if existing.union_id == link.union_id and existing.individual_id == link.individual_id:
                    raise AlreadyExists(
                        "Child is already linked to this union",
                        details=f"union_id={link.union_id} individual_id={link.individual_id}",
                    )
            stored = link.model_copy(deep=True)
            stored.id = self._next_link_id
            self._next_link_id += 1
            self._links[stored.id] = stored
            return stored.model_copy(deep=True)

    def delete_child_link(self, union_id: int, individual_id: int) -> bool:
        with self._lock:
            for link_id, link in list(self._links.items()):
                if link.union_id == union_id and link.individual_id == individual_id:
                    del self._links[link_id]
                    return True
            return False

    def list_child_links(self, union_id: int) -> list[ChildLink]:
        with self._lock:
            links = [l for l in self._links.values() if l.union_id == union_id]
            return [l.model_copy(deep=True) for l in sorted(links, key=lambda l: l.id or 0)]

    def list_links_for_child(self, individual_id: int) -> list[ChildLink]:
        with self._lock:
            links = [l for l in self._links.values() if l.individual_id == individual_id]
            return [l.model_copy(deep=True) for l in sorted(links, key=lambda l: l.id or 0)]
