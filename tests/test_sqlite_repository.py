"""Tests for the SQLite repository and the engine running on it."""
from __future__ import annotations

import asyncio
import sqlite3
from datetime import date
from pathlib import Path

import pytest

from family_graph.engine import FamilyGraphEngine
from family_graph.exceptions import AlreadyExists, CircularRelation
from family_graph.models import ChildLink, Gender, Individual, IndividualDraft, IndividualPatch, Union, UnionDraft
from family_graph.repository import MemoryRepository, SQLiteRepository


@pytest.fixture()
def sqlite_repo(tmp_path: Path) -> SQLiteRepository:
    return SQLiteRepository(tmp_path / "family.db")


class TestSQLiteRepository:
    def test_individual_round_trip(self, sqlite_repo):
        created = sqlite_repo.create_individual(
            Individual(
                full_name="Archie Durham",
                gender=Gender.MALE,
                birth_date=date(1927, 3, 14),
                occupation="Carpenter",
            )
        )
        assert created.id is not None

        loaded = sqlite_repo.get_individual(created.id)
        assert loaded.full_name == "Archie Durham"
        assert loaded.gender == Gender.MALE
        assert loaded.birth_date == date(1927, 3, 14)
        assert loaded.occupation == "Carpenter"
        assert sqlite_repo.get_individual(999) is None

    def test_update_and_delete(self, sqlite_repo):
        created = sqlite_repo.create_individual(Individual(full_name="Ruth"))
        created.notes = "Born in Kentucky"
        sqlite_repo.update_individual(created)
        assert sqlite_repo.get_individual(created.id).notes == "Born in Kentucky"

        assert sqlite_repo.delete_individual(created.id)
        assert not sqlite_repo.delete_individual(created.id)
        with pytest.raises(KeyError):
            sqlite_repo.update_individual(created)

    def test_children_sorted_unknown_birth_last(self, sqlite_repo):
        father = sqlite_repo.create_individual(Individual(full_name="Walter", gender=Gender.MALE))
        for name, born in (("Unknown", None), ("Late", date(1935, 1, 1)), ("Early", date(1925, 1, 1))):
            sqlite_repo.create_individual(Individual(full_name=name, father_id=father.id, birth_date=born))

        names = [c.full_name for c in sqlite_repo.list_children(father.id)]
        assert names == ["Early", "Late", "Unknown"]

    def test_search(self, sqlite_repo):
        sqlite_repo.create_individual(Individual(full_name="Archie Durham"))
        sqlite_repo.create_individual(Individual(full_name="Ruth Smith", notes="née Durham"))
        sqlite_repo.create_individual(Individual(full_name="Walter Jones"))

        items, total = sqlite_repo.search_individuals("durham", limit=1, offset=0)
        assert total == 2
        assert [i.full_name for i in items] == ["Archie Durham"]

    def test_search_treats_wildcards_literally(self, sqlite_repo):
        sqlite_repo.create_individual(Individual(full_name="Walter Jones", notes="100% verified"))
        sqlite_repo.create_individual(Individual(full_name="Ruth_Smith"))
        sqlite_repo.create_individual(Individual(full_name="Ruth Smith"))

        items, total = sqlite_repo.search_individuals("%", limit=10, offset=0)
        assert total == 1
        assert [i.full_name for i in items] == ["Walter Jones"]

        items, total = sqlite_repo.search_individuals("ruth_", limit=10, offset=0)
        assert [i.full_name for i in items] == ["Ruth_Smith"]

        memory = MemoryRepository()
        for item in sqlite_repo.search_individuals("", limit=10, offset=0)[0]:
            memory.create_individual(item.model_copy(update={"id": None}))
        for query in ("%", "ruth_", "_", "\\"):
            assert [i.full_name for i in memory.search_individuals(query, 10, 0)[0]] == [
                i.full_name for i in sqlite_repo.search_individuals(query, 10, 0)[0]
            ]

    def test_missing_party_is_not_reported_as_duplicate(self, sqlite_repo):
        with pytest.raises(sqlite3.IntegrityError):
            sqlite_repo.create_union(Union(husband_id=404, marriage_order=1))

        husband = sqlite_repo.create_individual(Individual(full_name="Abraham", gender=Gender.MALE))
        union = sqlite_repo.create_union(Union(husband_id=husband.id))
        with pytest.raises(sqlite3.IntegrityError):
            sqlite_repo.create_child_link(ChildLink(union_id=union.id, individual_id=404))

    def test_marriage_order_unique_per_husband(self, sqlite_repo):
        husband = sqlite_repo.create_individual(Individual(full_name="Abraham", gender=Gender.MALE))
        first = sqlite_repo.create_individual(Individual(full_name="Sarah", gender=Gender.FEMALE))
        second = sqlite_repo.create_individual(Individual(full_name="Hagar", gender=Gender.FEMALE))

        sqlite_repo.create_union(Union(husband_id=husband.id, wife_id=first.id, marriage_order=1))
        with pytest.raises(AlreadyExists):
            sqlite_repo.create_union(Union(husband_id=husband.id, wife_id=second.id, marriage_order=1))

        # Wife-only unions are outside the husband index
        sqlite_repo.create_union(Union(wife_id=first.id))
        sqlite_repo.create_union(Union(wife_id=second.id))

    def test_unions_for_participant(self, sqlite_repo):
        husband = sqlite_repo.create_individual(Individual(full_name="Abraham", gender=Gender.MALE))
        wife = sqlite_repo.create_individual(Individual(full_name="Sarah", gender=Gender.FEMALE))
        union = sqlite_repo.create_union(
            Union(husband_id=husband.id, wife_id=wife.id, marriage_date=date(1950, 6, 1))
        )

        assert [u.id for u in sqlite_repo.list_unions_for(wife.id)] == [union.id]
        assert sqlite_repo.get_union(union.id).marriage_date == date(1950, 6, 1)

        union.notes = "Church wedding"
        sqlite_repo.update_union(union)
        assert sqlite_repo.get_union(union.id).notes == "Church wedding"

    def test_child_links(self, sqlite_repo):
        husband = sqlite_repo.create_individual(Individual(full_name="Abraham", gender=Gender.MALE))
        child = sqlite_repo.create_individual(Individual(full_name="Isaac", father_id=husband.id))
        union = sqlite_repo.create_union(Union(husband_id=husband.id))

        link = sqlite_repo.create_child_link(ChildLink(union_id=union.id, individual_id=child.id, relationship_label="son"))
        assert link.id is not None
        with pytest.raises(AlreadyExists):
            sqlite_repo.create_child_link(ChildLink(union_id=union.id, individual_id=child.id))

        assert [l.relationship_label for l in sqlite_repo.list_child_links(union.id)] == ["son"]
        assert [l.union_id for l in sqlite_repo.list_links_for_child(child.id)] == [union.id]
        assert sqlite_repo.delete_child_link(union.id, child.id)
        assert not sqlite_repo.delete_child_link(union.id, child.id)


class TestEngineOnSQLite:
    @pytest.mark.asyncio
    async def test_family_scenario(self, sqlite_repo):
        engine = FamilyGraphEngine(sqlite_repo)
        a = await engine.create_individual(IndividualDraft(full_name="A", gender=Gender.MALE))
        b = await engine.create_individual(IndividualDraft(full_name="B", gender=Gender.FEMALE))
        c = await engine.create_individual(IndividualDraft(full_name="C", gender=Gender.FEMALE))

        assert (await engine.create_union(UnionDraft(husband_id=a.id, wife_id=b.id))).marriage_order == 1
        assert (await engine.create_union(UnionDraft(husband_id=a.id, wife_id=c.id))).marriage_order == 2

        d = await engine.create_individual(
            IndividualDraft(full_name="D", gender=Gender.MALE, father_id=a.id, mother_id=b.id)
        )
        assert [s.spouse.id for s in await engine.get_spouses(a.id)] == [b.id, c.id]
        assert await engine.get_siblings(d.id) == []
        with pytest.raises(CircularRelation):
            await engine.update_individual(a.id, IndividualPatch(father_id=d.id))

        tree = await engine.build_tree(a.id)
        assert tree.spouse.id == b.id
        assert [n.individual.id for n in tree.children] == [d.id]

    @pytest.mark.asyncio
    async def test_concurrent_unions_for_one_husband(self, sqlite_repo):
        engine = FamilyGraphEngine(sqlite_repo)
        husband = await engine.create_individual(IndividualDraft(full_name="H", gender=Gender.MALE))
        wives = [
            await engine.create_individual(IndividualDraft(full_name=f"W{i}", gender=Gender.FEMALE))
            for i in range(5)
        ]

        unions = await asyncio.gather(*(engine.add_spouse(husband.id, w.id) for w in wives))
        assert sorted(u.marriage_order for u in unions) == [1, 2, 3, 4, 5]
