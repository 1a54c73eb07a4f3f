"""Persistence contract consumed by the engine.

All records are keyed by integer ids assigned by the repository on creation.
Lookups return ``None`` for missing rows; the engine decides whether that is
a ``NotFound``.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from ..models import ChildLink, Individual, Union


class Repository(ABC):
    """Abstract base class for family graph storage."""

    # --------------------------- Individuals ---------------------------

    @abstractmethod
    def create_individual(self, individual: Individual) -> Individual:
        """Store a new individual and return it with its assigned id."""
        ...

    @abstractmethod
    def get_individual(self, individual_id: int) -> Individual | None:
        """Get an individual by id."""
        ...

    @abstractmethod
    def update_individual(self, individual: Individual) -> Individual:
        """Overwrite an existing individual."""
        ...

    @abstractmethod
    def delete_individual(self, individual_id: int) -> bool:
        """Delete an individual."""
        ...

    @abstractmethod
    def list_children(self, parent_id: int) -> list[Individual]:
        """Individuals naming ``parent_id`` as father or mother, oldest first."""
        ...

    @abstractmethod
    def search_individuals(self, query: str, limit: int, offset: int) -> tuple[list[Individual], int]:
        """Substring search over names and notes. Returns (page, total)."""
        ...

    # ----------------------------- Unions ------------------------------

    @abstractmethod
    def create_union(self, union: Union) -> Union:
        """Store a new union and return it with its assigned id."""
        ...

    @abstractmethod
    def get_union(self, union_id: int) -> Union | None:
        """Get a union by id."""
        ...

    @abstractmethod
    def update_union(self, union: Union) -> Union:
        """Overwrite an existing union."""
        ...

    @abstractmethod
    def delete_union(self, union_id: int) -> bool:
        """Delete a union."""
        ...

    @abstractmethod
    def list_unions_for(self, individual_id: int) -> list[Union]:
        """Unions where the individual is husband or wife, by marriage order."""
        ...

    # --------------------------- Child links ---------------------------

    @abstractmethod
    def create_child_link(self, link: ChildLink) -> ChildLink:
        """Link a child to a union."""
        ...

    @abstractmethod
    def delete_child_link(self, union_id: int, individual_id: int) -> bool:
        """Remove a child link."""
        ...

    @abstractmethod
    def list_child_links(self, union_id: int) -> list[ChildLink]:
        """Child links owned by a union."""
        ...

    @abstractmethod
    def list_links_for_child(self, individual_id: int) -> list[ChildLink]:
        """Child links pointing at an individual."""
        ...

    def close(self) -> None:
        """Release any held resources."""
