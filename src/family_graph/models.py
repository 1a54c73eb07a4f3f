"""Pydantic data layer for the family graph.

Records are plain values: the repository owns durable storage and the
engine works on request-scoped copies that it reads and writes back whole.
"""
from __future__ import annotations

from datetime import UTC, date, datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, model_validator


# =============================================================================
# Enums
# =============================================================================

class Gender(str, Enum):
    """Recorded gender of an individual."""
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNKNOWN = "unknown"


class ParentRole(str, Enum):
    """Parental slot on an individual record."""
    FATHER = "father"
    MOTHER = "mother"

    @property
    def required_gender(self) -> Gender:
        return Gender.MALE if self is ParentRole.FATHER else Gender.FEMALE

    @property
    def other(self) -> ParentRole:
        return ParentRole.MOTHER if self is ParentRole.FATHER else ParentRole.FATHER

    @property
    def field_name(self) -> str:
        return f"{self.value}_id"


def _now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Stored records
# =============================================================================

class Individual(BaseModel):
    """A person in the family graph.

    ``father_id`` and ``mother_id`` are weak references: a lookup key into
    the repository, never an owned object.
    """
    id: int | None = None
    full_name: str
    gender: Gender = Gender.UNKNOWN

    birth_date: date | None = None
    birth_place: str = ""
    death_date: date | None = None
    death_place: str = ""

    occupation: str = ""
    notes: str = ""
    photo_url: str = ""

    father_id: int | None = None
    mother_id: int | None = None

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    def parent_id(self, role: ParentRole) -> int | None:
        return self.father_id if role is ParentRole.FATHER else self.mother_id

    def set_parent_id(self, role: ParentRole, parent_id: int | None) -> None:
        if role is ParentRole.FATHER:
            self.father_id = parent_id
        else:
            self.mother_id = parent_id

    @property
    def parent_ids(self) -> list[int]:
        return [pid for pid in (self.father_id, self.mother_id) if pid is not None]


class Union(BaseModel):
    """A marital or partnership record between up to two individuals.

    ``marriage_order`` ranks the union among all unions of the same husband,
    starting at 1 in creation order.
    """
    id: int | None = None
    husband_id: int | None = None
    wife_id: int | None = None
    marriage_order: Annotated[int, Field(ge=1)] = 1
    marriage_date: date | None = None
    marriage_place: str = ""
    divorce_date: date | None = None
    notes: str = ""
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @model_validator(mode="after")
    def validate_parties(self) -> "Union":
        if self.husband_id is None and self.wife_id is None:
            raise ValueError("A union needs a husband or a wife")
        if self.husband_id is not None and self.husband_id == self.wife_id:
            raise ValueError("Husband and wife cannot be the same individual")
        return self

    @property
    def party_ids(self) -> list[int]:
        return [pid for pid in (self.husband_id, self.wife_id) if pid is not None]

    def involves(self, individual_id: int) -> bool:
        return individual_id in (self.husband_id, self.wife_id)

    def other_party(self, individual_id: int) -> int | None:
        if self.husband_id == individual_id:
            return self.wife_id
        if self.wife_id == individual_id:
            return self.husband_id
        return None

    def joins(self, first_id: int, second_id: int) -> bool:
        """True when the union links the two individuals in either role."""
        return {self.husband_id, self.wife_id} == {first_id, second_id}


class ChildLink(BaseModel):
    """Association of a child with the union that produced them."""
    id: int | None = None
    union_id: int
    individual_id: int
    relationship_label: str = ""
    created_at: datetime = Field(default_factory=_now)


# =============================================================================
# Requests
# =============================================================================

class IndividualDraft(BaseModel):
    """Fields for creating an individual."""
    full_name: str
    gender: Gender = Gender.UNKNOWN
    birth_date: date | None = None
    birth_place: str = ""
    death_date: date | None = None
    death_place: str = ""
    occupation: str = ""
    notes: str = ""
    photo_url: str = ""
    father_id: int | None = None
    mother_id: int | None = None


class ParentDraft(BaseModel):
    """Fields for a parent created by ``add_parent``; gender follows the role."""
    full_name: str
    birth_date: date | None = None
    birth_place: str = ""
    death_date: date | None = None
    death_place: str = ""
    occupation: str = ""
    notes: str = ""
    photo_url: str = ""


class IndividualPatch(BaseModel):
    """Partial update. Only fields explicitly set are applied.

    Setting ``father_id`` or ``mother_id`` to ``None`` clears that parent.
    """
    full_name: str | None = None
    gender: Gender | None = None
    birth_date: date | None = None
    birth_place: str | None = None
    death_date: date | None = None
    death_place: str | None = None
    occupation: str | None = None
    notes: str | None = None
    photo_url: str | None = None
    father_id: int | None = None
    mother_id: int | None = None

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class UnionDraft(BaseModel):
    """Fields for creating or updating a union."""
    husband_id: int | None = None
    wife_id: int | None = None
    marriage_date: date | None = None
    marriage_place: str = ""
    divorce_date: date | None = None
    notes: str = ""


# =============================================================================
# Derived views
# =============================================================================

class Parents(BaseModel):
    father: Individual | None = None
    mother: Individual | None = None


class SpouseRecord(BaseModel):
    """The other party of a union, annotated with the union's order."""
    spouse: Individual
    union_id: int
    marriage_order: int


class PedigreeEntry(BaseModel):
    """Single ancestor or descendant with generation distance."""
    individual: Individual
    generation: int  # 1=parent/child, 2=grand..., etc.
    lineage: str | None = None  # "paternal" or "maternal" for ancestors

    @property
    def is_ancestor(self) -> bool:
        return self.lineage is not None

    @property
    def relationship_label(self) -> str:
        """Human-readable relationship label."""
        base = "parent" if self.is_ancestor else "child"
        if self.generation == 1:
            return base
        greats = self.generation - 2
        return f"{'great-' * greats}grand{base}"


class TreeNode(BaseModel):
    """Node of a materialized family tree."""
    individual: Individual
    spouse: Individual | None = None
    parents: list[Individual] = Field(default_factory=list)
    children: list[TreeNode] = Field(default_factory=list)

    def count(self) -> int:
        """Number of nodes in this subtree."""
        return 1 + sum(child.count() for child in self.children)


class SearchPage(BaseModel):
    items: list[Individual] = Field(default_factory=list)
    total: int = 0
    limit: int = 10
    offset: int = 0


class ReparentFailure(BaseModel):
    individual_id: int
    full_name: str
    reason: str


class AddParentResult(BaseModel):
    """Outcome of ``add_parent``.

    Sibling re-parenting is best effort: failures are listed, not rolled back.
    """
    parent: Individual
    updated_ids: list[int] = Field(default_factory=list)
    skipped_ids: list[int] = Field(default_factory=list)
    failures: list[ReparentFailure] = Field(default_factory=list)
    union: Union | None = None
    union_error: str | None = None

    @property
    def failure_count(self) -> int:
        return len(self.failures)


TreeNode.model_rebuild()
