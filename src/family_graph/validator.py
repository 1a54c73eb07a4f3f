"""Consistency checks run before every mutation.

All checks are read-only queries against the repository.
"""
from __future__ import annotations

import structlog

from .cancellation import CancellationToken, checkpoint
from .exceptions import CircularRelation, GenderMismatch, InvalidInput, InvalidRelation, NotFound
from .models import Gender, Individual, ParentRole
from .repository import Repository

logger = structlog.get_logger(__name__)


class ConsistencyValidator:
    """Gender, self-reference and acyclic-ancestry checks."""

    def __init__(self, repository: Repository) -> None:
        self.repo = repository

    def require_individual(self, individual_id: int, label: str = "Individual") -> Individual:
        if individual_id is None or individual_id <= 0:
            raise InvalidInput(f"Invalid {label.lower()} id", details=f"id={individual_id}")
        individual = self.repo.get_individual(individual_id)
        if individual is None:
            raise NotFound(f"{label} not found", details=f"id={individual_id}")
        return individual

    async def validate_parent(
        self,
        child_id: int | None,
        candidate_parent_id: int,
        role: ParentRole,
        token: CancellationToken | None = None,
    ) -> Individual:
        """Check that ``candidate_parent_id`` may fill ``role`` for ``child_id``.

        ``child_id`` is ``None`` for an individual that does not exist yet;
        only existence and gender are checked then.

        Raises:
            InvalidRelation: candidate is the child itself
            NotFound: candidate does not exist
            GenderMismatch: candidate's gender does not fit the role
            CircularRelation: candidate descends from the child
        """
        if child_id is not None and candidate_parent_id == child_id:
            raise InvalidRelation(
                f"An individual cannot be their own {role.value}",
                details=f"id={child_id}",
            )

        parent = self.require_individual(candidate_parent_id, label=role.value.capitalize())
        required = role.required_gender
        if parent.gender != required:
            raise GenderMismatch(
                f"The {role.value} must be {required.value}",
                details=f"id={parent.id} gender={parent.gender.value}",
            )

        if child_id is not None:
            await self.check_no_circular(child_id, candidate_parent_id, token)
        return parent

    async def validate_parents(
        self,
        child_id: int | None,
        father_id: int | None,
        mother_id: int | None,
        token: CancellationToken | None = None,
    ) -> tuple[Individual | None, Individual | None]:
        if father_id is not None and father_id == mother_id:
            raise InvalidRelation("Father and mother cannot be the same individual", details=f"id={father_id}")

        father = None
        mother = None
        if father_id is not None:
            father = await self.validate_parent(child_id, father_id, ParentRole.FATHER, token)
        if mother_id is not None:
            mother = await self.validate_parent(child_id, mother_id, ParentRole.MOTHER, token)
        return father, mother

    async def check_no_circular(
        self,
        child_id: int,
        candidate_parent_id: int,
        token: CancellationToken | None = None,
    ) -> None:
        """Fail if ``child_id`` is reachable upward from ``candidate_parent_id``.

        Depth-first over father/mother edges with an explicit stack. Reaching
        the child, or any id already visited, is rejected, so a shared
        ancestor on two lines fails too and every walk terminates.
        """
        visited: set[int] = set()
        stack: list[int] = [candidate_parent_id]

        while stack:
            current_id = stack.pop()
            await checkpoint(token)

            if current_id == child_id or current_id in visited:
                logger.info(
                    "validator.circular_relation",
                    child_id=child_id,
                    candidate_parent_id=candidate_parent_id,
                    at=current_id,
                )
                raise CircularRelation(
                    "Relation would make an individual their own ancestor",
                    details=f"child_id={child_id} parent_id={candidate_parent_id}",
                )
            visited.add(current_id)

            individual = self.repo.get_individual(current_id)
            if individual is None:
                continue
            # Mother pushed first so the father's line is walked first
            if individual.mother_id is not None:
                stack.append(individual.mother_id)
            if individual.father_id is not None:
                stack.append(individual.father_id)

    def validate_union(self, husband_id: int | None, wife_id: int | None) -> tuple[Individual | None, Individual | None]:
        """Check a husband/wife pairing.

        Raises:
            InvalidInput: neither party given
            InvalidRelation: both parties are the same individual
            NotFound: a party does not exist
            GenderMismatch: husband is not male or wife is not female
        """
        if husband_id is None and wife_id is None:
            raise InvalidInput("A union needs a husband or a wife")
        if husband_id is not None and husband_id == wife_id:
            raise InvalidRelation("Husband and wife cannot be the same individual", details=f"id={husband_id}")

        husband = None
        wife = None
        if husband_id is not None:
            husband = self.require_individual(husband_id, label="Husband")
            if husband.gender != Gender.MALE:
                raise GenderMismatch("The husband must be male", details=f"id={husband_id} gender={husband.gender.value}")
        if wife_id is not None:
            wife = self.require_individual(wife_id, label="Wife")
            if wife.gender != Gender.FEMALE:
                raise GenderMismatch("The wife must be female", details=f"id={wife_id} gender={wife.gender.value}")
        return husband, wife
