"""Individual lifecycle: create, update, delete, search and add-parent.

Parent references are validated before every write. ``add_parent`` is the
one operation with best-effort semantics: sibling re-parenting failures are
collected and reported, never rolled back.
"""
from __future__ import annotations

import structlog

from .cancellation import CancellationToken, checkpoint
from .config import CONFIG, EngineConfig
from .exceptions import (
    AlreadyExists,
    FamilyGraphError,
    GenderMismatch,
    HasChildren,
    InFamily,
    InvalidInput,
    InvalidRelation,
    OperationCancelled,
)
from .models import (
    AddParentResult,
    ChildLink,
    Gender,
    Individual,
    IndividualDraft,
    IndividualPatch,
    ParentDraft,
    ParentRole,
    ReparentFailure,
    SearchPage,
)
from .repository import Repository
from .unions import UnionManager
from .validator import ConsistencyValidator

logger = structlog.get_logger(__name__)


def child_label(gender: Gender) -> str:
    """Relationship label recorded on the child link of a new individual."""
    if gender == Gender.MALE:
        return "son"
    if gender == Gender.FEMALE:
        return "daughter"
    return "child"


def _require_name(full_name: str | None) -> str:
    name = (full_name or "").strip()
    if not name:
        raise InvalidInput("Full name is required")
    return name


class IndividualService:
    """Validated mutations on individual records."""

    def __init__(
        self,
        repository: Repository,
        validator: ConsistencyValidator,
        unions: UnionManager,
        config: EngineConfig = CONFIG,
    ) -> None:
        self.repo = repository
        self.validator = validator
        self.unions = unions
        self.config = config

    # ------------------------------ Create ------------------------------

    async def create_individual(
        self,
        draft: IndividualDraft,
        token: CancellationToken | None = None,
    ) -> Individual:
        """Create an individual.

        When both parents are given the parents' union is ensured first and
        the new individual is linked to it.
        """
        name = _require_name(draft.full_name)
        await self.validator.validate_parents(None, draft.father_id, draft.mother_id, token)

        union = None
        if draft.father_id is not None and draft.mother_id is not None:
            union, _ = await self.unions.ensure_union(draft.father_id, draft.mother_id)

        individual = self.repo.create_individual(
            Individual(**{**draft.model_dump(), "full_name": name})
        )
        logger.info(
            "individual.created",
            individual_id=individual.id,
            father_id=individual.father_id,
            mother_id=individual.mother_id,
        )

        if union is not None:
            self.repo.create_child_link(
                ChildLink(
                    union_id=union.id,
                    individual_id=individual.id,
                    relationship_label=child_label(individual.gender),
                )
            )
            logger.debug("individual.child_linked", individual_id=individual.id, union_id=union.id)
        return individual

    # ------------------------------ Update ------------------------------

    async def update_individual(
        self,
        individual_id: int,
        patch: IndividualPatch,
        token: CancellationToken | None = None,
    ) -> tuple[Individual, Individual]:
        """Apply a partial update. Returns (previous, updated)."""
        current = self.validator.require_individual(individual_id)
        changes = patch.changes()
        if not changes:
            return current, current

        if "full_name" in changes:
            changes["full_name"] = _require_name(changes["full_name"])
        if "gender" in changes and changes["gender"] is None:
            raise InvalidInput("Gender cannot be cleared")

        father_id = changes.get("father_id", current.father_id)
        mother_id = changes.get("mother_id", current.mother_id)
        if individual_id in (father_id, mother_id):
            raise InvalidRelation("An individual cannot be their own parent", details=f"id={individual_id}")
        if father_id is not None and father_id == mother_id:
            raise InvalidRelation("Father and mother cannot be the same individual", details=f"id={father_id}")

        # Only newly assigned parents are checked; existing ones were checked on write
        new_father = father_id if father_id != current.father_id else None
        new_mother = mother_id if mother_id != current.mother_id else None
        await self.validator.validate_parents(individual_id, new_father, new_mother, token)

        new_gender = changes.get("gender", current.gender)
        moved: list[Individual] = []
        if new_gender != current.gender:
            self._check_union_roles(current, new_gender)
            moved = self._plan_gender_change(current, new_gender)

        updated = self.repo.update_individual(current.model_copy(update=changes))
        for child in moved:
            self.repo.update_individual(child)
            logger.info(
                "individual.child_reparented",
                child_id=child.id,
                parent_id=individual_id,
                gender=new_gender.value,
            )

        logger.info("individual.updated", individual_id=individual_id, fields=sorted(changes))
        return current, updated

    def _check_union_roles(self, current: Individual, new_gender: Gender) -> None:
        for union in self.repo.list_unions_for(current.id):
            if union.husband_id == current.id and new_gender != Gender.MALE:
                raise GenderMismatch(
                    "Individual is the husband of a union and must stay male",
                    details=f"union_id={union.id}",
                )
            if union.wife_id == current.id and new_gender != Gender.FEMALE:
                raise GenderMismatch(
                    "Individual is the wife of a union and must stay female",
                    details=f"union_id={union.id}",
                )

    def _plan_gender_change(self, current: Individual, new_gender: Gender) -> list[Individual]:
        """Children whose parent slot must move for the new gender.

        Every child is checked before any is written so the change applies
        to all children or to none.
        """
        moved: list[Individual] = []
        for child in self.repo.list_children(current.id):
            role = ParentRole.FATHER if child.father_id == current.id else ParentRole.MOTHER
            target = role.other
            if new_gender != target.required_gender:
                raise GenderMismatch(
                    f"Individual is recorded as a {role.value} and cannot become {new_gender.value}",
                    details=f"child_id={child.id}",
                )
            if child.parent_id(target) is not None:
                raise GenderMismatch(
                    f"Child already has a {target.value}",
                    details=f"child_id={child.id} {target.field_name}={child.parent_id(target)}",
                )
            child.set_parent_id(role, None)
            child.set_parent_id(target, current.id)
            moved.append(child)
        return moved

    # ------------------------------ Delete ------------------------------

    def delete_individual(self, individual_id: int) -> Individual:
        """Delete an individual with no dependents. Returns the deleted record."""
        individual = self.validator.require_individual(individual_id)

        children = self.repo.list_children(individual_id)
        if children:
            raise HasChildren(
                "Individual is recorded as a parent; reassign the children first",
                details=f"id={individual_id} children={len(children)}",
            )
        unions = self.repo.list_unions_for(individual_id)
        if unions:
            raise InFamily(
                "Individual is a party of a union; delete the union first",
                details=f"id={individual_id} unions={[u.id for u in unions]}",
            )

        for link in self.repo.list_links_for_child(individual_id):
            self.repo.delete_child_link(link.union_id, individual_id)
        self.repo.delete_individual(individual_id)
        logger.info("individual.deleted", individual_id=individual_id)
        return individual

    # ------------------------------ Search ------------------------------

    def search_individuals(self, query: str, limit: int = 0, offset: int = 0) -> SearchPage:
        if limit <= 0:
            limit = self.config.default_search_limit
        limit = min(limit, self.config.max_search_limit)
        offset = max(offset, 0)

        items, total = self.repo.search_individuals(query or "", limit, offset)
        return SearchPage(items=items, total=total, limit=limit, offset=offset)

    # ---------------------------- Add parent ----------------------------

    async def add_parent(
        self,
        child_id: int,
        draft: ParentDraft,
        role: ParentRole,
        token: CancellationToken | None = None,
    ) -> AddParentResult:
        """Create the missing parent of ``child_id`` and share it with siblings.

        Every child of the other known parent whose ``role`` slot is empty is
        pointed at the new parent. Children whose slot already holds someone
        else are skipped. Afterwards a union between the two parents is
        ensured. Neither step rolls back the parent creation.
        """
        name = _require_name(draft.full_name)
        child = self.validator.require_individual(child_id, label="Child")
        role = ParentRole(role)
        if child.parent_id(role) is not None:
            raise AlreadyExists(
                f"Child already has a {role.value}",
                details=f"{role.field_name}={child.parent_id(role)}",
            )

        parent = self.repo.create_individual(
            Individual(**{**draft.model_dump(), "full_name": name, "gender": role.required_gender})
        )
        logger.info("add_parent.created", child_id=child_id, parent_id=parent.id, role=role.value)
        result = AddParentResult(parent=parent)

        other_id = child.parent_id(role.other)
        siblings = [child]
        if other_id is not None:
            siblings += [s for s in self.repo.list_children(other_id) if s.id != child_id]

        for sibling in siblings:
            await checkpoint(token)
            if sibling.parent_id(role) is not None:
                result.skipped_ids.append(sibling.id)
                continue
            try:
                await self.update_individual(sibling.id, IndividualPatch(**{role.field_name: parent.id}), token)
            except OperationCancelled:
                raise
            except (FamilyGraphError, KeyError) as e:
                logger.warning(
                    "add_parent.reparent_failed",
                    child_id=sibling.id,
                    parent_id=parent.id,
                    error=str(e),
                )
                result.failures.append(
                    ReparentFailure(individual_id=sibling.id, full_name=sibling.full_name, reason=str(e))
                )
            else:
                result.updated_ids.append(sibling.id)

        if other_id is not None:
            father_id, mother_id = (parent.id, other_id) if role is ParentRole.FATHER else (other_id, parent.id)
            try:
                result.union, _ = await self.unions.ensure_union(father_id, mother_id)
            except OperationCancelled:
                raise
            except FamilyGraphError as e:
                logger.warning("add_parent.union_failed", father_id=father_id, mother_id=mother_id, error=str(e))
                result.union_error = str(e)

        if result.failures:
            logger.warning(
                "add_parent.partial",
                parent_id=parent.id,
                updated=len(result.updated_ids),
                failed=result.failure_count,
            )
        return result
