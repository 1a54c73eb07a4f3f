"""Tests for individual lifecycle operations and add-parent."""
from __future__ import annotations

import pytest

from family_graph.exceptions import (
    AlreadyExists,
    CircularRelation,
    GenderMismatch,
    HasChildren,
    InFamily,
    InvalidInput,
    InvalidRelation,
    NotFound,
)
from family_graph.engine import FamilyGraphEngine
from family_graph.individuals import child_label
from family_graph.models import (
    Gender,
    IndividualDraft,
    IndividualPatch,
    ParentDraft,
    ParentRole,
    UnionDraft,
)
from family_graph.repository import MemoryRepository


async def _couple(engine):
    father = await engine.create_individual(IndividualDraft(full_name="Walter Durham", gender=Gender.MALE))
    mother = await engine.create_individual(IndividualDraft(full_name="Ruth Durham", gender=Gender.FEMALE))
    return father, mother


class TestCreateIndividual:
    @pytest.mark.asyncio
    async def test_both_parents_create_union_and_link(self, engine, repo):
        father, mother = await _couple(engine)

        son = await engine.create_individual(
            IndividualDraft(full_name="Archie Durham", gender=Gender.MALE, father_id=father.id, mother_id=mother.id)
        )
        daughter = await engine.create_individual(
            IndividualDraft(full_name="Mae Durham", gender=Gender.FEMALE, father_id=father.id, mother_id=mother.id)
        )

        unions = await engine.get_unions_for(father.id)
        assert len(unions) == 1
        assert unions[0].marriage_order == 1
        links = await engine.list_union_children(unions[0].id)
        assert [(l.individual_id, l.relationship_label) for l in links] == [
            (son.id, "son"),
            (daughter.id, "daughter"),
        ]

    @pytest.mark.asyncio
    async def test_single_parent_creates_no_union(self, engine):
        father, _ = await _couple(engine)
        child = await engine.create_individual(IndividualDraft(full_name="Child", father_id=father.id))
        assert child.father_id == father.id
        assert await engine.get_unions_for(father.id) == []

    @pytest.mark.asyncio
    async def test_existing_union_is_reused(self, engine):
        father, mother = await _couple(engine)
        union = await engine.add_spouse(father.id, mother.id)

        await engine.create_individual(IndividualDraft(full_name="Child", father_id=father.id, mother_id=mother.id))
        unions = await engine.get_unions_for(father.id)
        assert [u.id for u in unions] == [union.id]

    @pytest.mark.asyncio
    async def test_parent_validation(self, engine):
        father, mother = await _couple(engine)
        with pytest.raises(GenderMismatch):
            await engine.create_individual(IndividualDraft(full_name="Child", father_id=mother.id))
        with pytest.raises(NotFound):
            await engine.create_individual(IndividualDraft(full_name="Child", mother_id=404))
        with pytest.raises(InvalidRelation):
            await engine.create_individual(
                IndividualDraft(full_name="Child", father_id=father.id, mother_id=father.id)
            )

    @pytest.mark.asyncio
    async def test_name_required(self, engine):
        with pytest.raises(InvalidInput):
            await engine.create_individual(IndividualDraft(full_name="   "))

    @pytest.mark.asyncio
    async def test_children_and_siblings_scenario(self, engine):
        a, b = await _couple(engine)
        d = await engine.create_individual(IndividualDraft(full_name="D", father_id=a.id, mother_id=b.id))

        assert d.id in [c.id for c in await engine.get_children(a.id)]
        assert d.id in [c.id for c in await engine.get_children(b.id)]
        assert await engine.get_siblings(d.id) == []

    def test_child_labels(self):
        assert child_label(Gender.MALE) == "son"
        assert child_label(Gender.FEMALE) == "daughter"
        assert child_label(Gender.UNKNOWN) == "child"


class TestUpdateIndividual:
    @pytest.mark.asyncio
    async def test_partial_update(self, engine):
        father, _ = await _couple(engine)
        updated = await engine.update_individual(father.id, IndividualPatch(occupation="Miner"))
        assert updated.occupation == "Miner"
        assert updated.full_name == "Walter Durham"

        fetched = await engine.get_individual(father.id)
        assert fetched.occupation == "Miner"

    @pytest.mark.asyncio
    async def test_empty_patch_is_noop(self, engine):
        father, _ = await _couple(engine)
        assert (await engine.update_individual(father.id, IndividualPatch())).id == father.id

    @pytest.mark.asyncio
    async def test_descendant_cannot_become_father(self, engine):
        a, b = await _couple(engine)
        d = await engine.create_individual(
            IndividualDraft(full_name="D", gender=Gender.MALE, father_id=a.id, mother_id=b.id)
        )
        with pytest.raises(CircularRelation):
            await engine.update_individual(a.id, IndividualPatch(father_id=d.id))

    @pytest.mark.asyncio
    async def test_self_parent_and_same_parents(self, engine):
        father, mother = await _couple(engine)
        child = await engine.create_individual(IndividualDraft(full_name="Child", mother_id=mother.id))
        with pytest.raises(InvalidRelation):
            await engine.update_individual(father.id, IndividualPatch(father_id=father.id))
        with pytest.raises(InvalidRelation):
            await engine.update_individual(child.id, IndividualPatch(father_id=mother.id))

    @pytest.mark.asyncio
    async def test_set_and_clear_parent(self, engine):
        father, _ = await _couple(engine)
        child = await engine.create_individual(IndividualDraft(full_name="Child"))

        updated = await engine.update_individual(child.id, IndividualPatch(father_id=father.id))
        assert updated.father_id == father.id
        cleared = await engine.update_individual(child.id, IndividualPatch(father_id=None))
        assert cleared.father_id is None
        assert await engine.get_children(father.id) == []

    @pytest.mark.asyncio
    async def test_blank_name_and_cleared_gender(self, engine):
        father, _ = await _couple(engine)
        with pytest.raises(InvalidInput):
            await engine.update_individual(father.id, IndividualPatch(full_name=""))
        with pytest.raises(InvalidInput):
            await engine.update_individual(father.id, IndividualPatch(gender=None))

    @pytest.mark.asyncio
    async def test_gender_change_moves_parent_slot(self, engine):
        parent = await engine.create_individual(IndividualDraft(full_name="Sam", gender=Gender.MALE))
        child = await engine.create_individual(IndividualDraft(full_name="Child", father_id=parent.id))

        await engine.update_individual(parent.id, IndividualPatch(gender=Gender.FEMALE))
        parents = await engine.get_parents(child.id)
        assert parents.father is None
        assert parents.mother.id == parent.id

    @pytest.mark.asyncio
    async def test_gender_change_blocked_when_slot_taken(self, engine):
        father, mother = await _couple(engine)
        child = await engine.create_individual(IndividualDraft(full_name="Child", father_id=father.id))
        await engine.update_individual(child.id, IndividualPatch(mother_id=mother.id))

        with pytest.raises(GenderMismatch):
            await engine.update_individual(father.id, IndividualPatch(gender=Gender.FEMALE))
        assert (await engine.get_individual(father.id)).gender == Gender.MALE

    @pytest.mark.asyncio
    async def test_gender_change_to_unknown_blocked_for_parent(self, engine):
        father, _ = await _couple(engine)
        await engine.create_individual(IndividualDraft(full_name="Child", father_id=father.id))
        with pytest.raises(GenderMismatch):
            await engine.update_individual(father.id, IndividualPatch(gender=Gender.UNKNOWN))

    @pytest.mark.asyncio
    async def test_gender_change_blocked_for_husband(self, engine):
        father, mother = await _couple(engine)
        await engine.add_spouse(father.id, mother.id)
        with pytest.raises(GenderMismatch):
            await engine.update_individual(father.id, IndividualPatch(gender=Gender.FEMALE))


class TestDeleteIndividual:
    @pytest.mark.asyncio
    async def test_blocked_by_children(self, engine):
        father, _ = await _couple(engine)
        await engine.create_individual(IndividualDraft(full_name="Child", father_id=father.id))
        with pytest.raises(HasChildren):
            await engine.delete_individual(father.id)

    @pytest.mark.asyncio
    async def test_blocked_by_union(self, engine):
        father, mother = await _couple(engine)
        await engine.add_spouse(father.id, mother.id)
        with pytest.raises(InFamily):
            await engine.delete_individual(mother.id)

    @pytest.mark.asyncio
    async def test_removes_own_child_links(self, engine, repo):
        father, mother = await _couple(engine)
        child = await engine.create_individual(
            IndividualDraft(full_name="Child", father_id=father.id, mother_id=mother.id)
        )
        union = (await engine.get_unions_for(father.id))[0]

        # Detach from parents first so nothing references the child
        await engine.update_individual(child.id, IndividualPatch(father_id=None, mother_id=None))
        await engine.delete_individual(child.id)

        assert repo.list_child_links(union.id) == []
        with pytest.raises(NotFound):
            await engine.get_individual(child.id)
        await engine.delete_union(union.id)

    @pytest.mark.asyncio
    async def test_missing(self, engine):
        with pytest.raises(NotFound):
            await engine.delete_individual(55)


class TestSearch:
    @pytest.mark.asyncio
    async def test_paging_policy(self, engine):
        for i in range(120):
            await engine.create_individual(IndividualDraft(full_name=f"Durham {i}"))
        await engine.create_individual(IndividualDraft(full_name="Someone", notes="married a Durham"))

        page = await engine.search_individuals("durham", limit=0, offset=-5)
        assert (page.limit, page.offset, page.total) == (10, 0, 121)
        assert len(page.items) == 10

        page = await engine.search_individuals("DURHAM", limit=500)
        assert page.limit == 100
        assert len(page.items) == 100

        page = await engine.search_individuals("durham", limit=10, offset=115)
        assert len(page.items) == 6

    @pytest.mark.asyncio
    async def test_no_match(self, engine):
        page = await engine.search_individuals("nobody")
        assert page.items == []
        assert page.total == 0


class _FlakyRepository(MemoryRepository):
    """Fails updates for selected ids."""

    def __init__(self, failing: set[int]):
        super().__init__()
        self.failing = failing

    def update_individual(self, individual):
        if individual.id in self.failing:
            raise KeyError(f"Individual {individual.id} is locked")
        return super().update_individual(individual)


class TestAddParent:
    @pytest.mark.asyncio
    async def test_shares_new_father_with_siblings(self, engine):
        mother = await engine.create_individual(IndividualDraft(full_name="Ruth", gender=Gender.FEMALE))
        other_father = await engine.create_individual(IndividualDraft(full_name="Other", gender=Gender.MALE))
        child = await engine.create_individual(IndividualDraft(full_name="Archie", mother_id=mother.id))
        sibling = await engine.create_individual(IndividualDraft(full_name="Mae", mother_id=mother.id))
        half = await engine.create_individual(
            IndividualDraft(full_name="Half", father_id=other_father.id, mother_id=mother.id)
        )

        result = await engine.add_parent(child.id, ParentDraft(full_name="Walter"), ParentRole.FATHER)

        assert result.parent.gender == Gender.MALE
        assert sorted(result.updated_ids) == sorted([child.id, sibling.id])
        assert result.skipped_ids == [half.id]
        assert result.failures == []
        assert result.union is not None
        assert (result.union.husband_id, result.union.wife_id) == (result.parent.id, mother.id)
        assert result.union.marriage_order == 1
        assert (await engine.get_parents(sibling.id)).father.id == result.parent.id
        assert (await engine.get_parents(half.id)).father.id == other_father.id

    @pytest.mark.asyncio
    async def test_add_mother_without_known_father(self, engine):
        child = await engine.create_individual(IndividualDraft(full_name="Archie"))
        result = await engine.add_parent(child.id, ParentDraft(full_name="Ruth"), "mother")

        assert result.parent.gender == Gender.FEMALE
        assert result.updated_ids == [child.id]
        assert result.union is None
        assert result.union_error is None

    @pytest.mark.asyncio
    async def test_existing_parent_rejected(self, engine):
        father, _ = await _couple(engine)
        child = await engine.create_individual(IndividualDraft(full_name="Child", father_id=father.id))
        with pytest.raises(AlreadyExists):
            await engine.add_parent(child.id, ParentDraft(full_name="Another"), ParentRole.FATHER)

    @pytest.mark.asyncio
    async def test_name_and_child_required(self, engine):
        child = await engine.create_individual(IndividualDraft(full_name="Child"))
        with pytest.raises(InvalidInput):
            await engine.add_parent(child.id, ParentDraft(full_name=""), ParentRole.FATHER)
        with pytest.raises(NotFound):
            await engine.add_parent(999, ParentDraft(full_name="Walter"), ParentRole.FATHER)

    @pytest.mark.asyncio
    async def test_new_mother_union_takes_next_order(self, engine):
        father, mother = await _couple(engine)
        union = await engine.create_union(UnionDraft(husband_id=father.id, wife_id=mother.id))
        child = await engine.create_individual(IndividualDraft(full_name="Child", father_id=father.id))

        result = await engine.add_parent(child.id, ParentDraft(full_name="New Mother"), ParentRole.MOTHER)
        assert result.union.id != union.id
        assert result.union.marriage_order == 2

    @pytest.mark.asyncio
    async def test_partial_failure_is_reported_not_rolled_back(self):
        repo = _FlakyRepository(failing=set())
        engine = FamilyGraphEngine(repo)
        mother = await engine.create_individual(IndividualDraft(full_name="Ruth", gender=Gender.FEMALE))
        child = await engine.create_individual(IndividualDraft(full_name="Archie", mother_id=mother.id))
        stuck = await engine.create_individual(IndividualDraft(full_name="Stuck", mother_id=mother.id))
        repo.failing.add(stuck.id)

        result = await engine.add_parent(child.id, ParentDraft(full_name="Walter"), ParentRole.FATHER)

        assert result.updated_ids == [child.id]
        assert result.failure_count == 1
        assert result.failures[0].individual_id == stuck.id
        assert result.failures[0].full_name == "Stuck"
        assert (await engine.get_parents(child.id)).father.id == result.parent.id
        assert (await engine.get_parents(stuck.id)).father is None
        assert result.union is not None

    @pytest.mark.asyncio
    async def test_union_failure_is_reported(self, engine, monkeypatch):
        mother = await engine.create_individual(IndividualDraft(full_name="Ruth", gender=Gender.FEMALE))
        child = await engine.create_individual(IndividualDraft(full_name="Archie", mother_id=mother.id))

        async def refuse(father_id, mother_id):
            raise AlreadyExists("Marriage order already used for this husband")

        monkeypatch.setattr(engine.unions, "ensure_union", refuse)
        result = await engine.add_parent(child.id, ParentDraft(full_name="Walter"), ParentRole.FATHER)

        assert result.union is None
        assert "Marriage order" in result.union_error
        assert result.updated_ids == [child.id]
