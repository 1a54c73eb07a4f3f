"""SQLite-backed repository."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..exceptions import AlreadyExists
from ..models import ChildLink, Individual, Union
from .base import Repository

_INDIVIDUAL_COLUMNS = (
    "full_name",
    "gender",
    "birth_date",
    "birth_place",
    "death_date",
    "death_place",
    "occupation",
    "notes",
    "photo_url",
    "father_id",
    "mother_id",
    "created_at",
    "updated_at",
)

_UNION_COLUMNS = (
    "husband_id",
    "wife_id",
    "marriage_order",
    "marriage_date",
    "marriage_place",
    "divorce_date",
    "notes",
    "created_at",
    "updated_at",
)


def _iso(value: Any) -> Any:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def _is_unique_violation(error: sqlite3.IntegrityError) -> bool:
    return str(error).startswith("UNIQUE constraint failed")


def _like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SQLiteRepository(Repository):
    """Durable storage for individuals, unions and child links.

    Storage-level guards:
    - unique (husband_id, marriage_order) for unions with a husband
    - unique (union_id, individual_id) for child links
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        # Enforce PRAGMAs per-connection
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA busy_timeout=5000;")
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._get_conn() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS individuals (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    full_name TEXT NOT NULL,
                    gender TEXT NOT NULL DEFAULT 'unknown',
                    birth_date TEXT,
                    birth_place TEXT NOT NULL DEFAULT '',
                    death_date TEXT,
                    death_place TEXT NOT NULL DEFAULT '',
                    occupation TEXT NOT NULL DEFAULT '',
                    notes TEXT NOT NULL DEFAULT '',
                    photo_url TEXT NOT NULL DEFAULT '',
                    father_id INTEGER REFERENCES individuals(id),
                    mother_id INTEGER REFERENCES individuals(id),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_individuals_father ON individuals(father_id);
                CREATE INDEX IF NOT EXISTS idx_individuals_mother ON individuals(mother_id);
                CREATE INDEX IF NOT EXISTS idx_individuals_name ON individuals(full_name);

                CREATE TABLE IF NOT EXISTS unions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    husband_id INTEGER REFERENCES individuals(id),
                    wife_id INTEGER REFERENCES individuals(id),
                    marriage_order INTEGER NOT NULL DEFAULT 1,
                    marriage_date TEXT,
                    marriage_place TEXT NOT NULL DEFAULT '',
                    divorce_date TEXT,
                    notes TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_unions_husband ON unions(husband_id);
                CREATE INDEX IF NOT EXISTS idx_unions_wife ON unions(wife_id);
                CREATE UNIQUE INDEX IF NOT EXISTS idx_unions_husband_order
                    ON unions(husband_id, marriage_order) WHERE husband_id IS NOT NULL;

                CREATE TABLE IF NOT EXISTS child_links (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    union_id INTEGER NOT NULL REFERENCES unions(id),
                    individual_id INTEGER NOT NULL REFERENCES individuals(id),
                    relationship_label TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    UNIQUE (union_id, individual_id)
                );

                CREATE INDEX IF NOT EXISTS idx_child_links_individual ON child_links(individual_id);
                """
            )
            conn.commit()

    # --------------------------- Individuals ---------------------------

    @staticmethod
    def _individual_params(individual: Individual) -> tuple:
        data = individual.model_dump()
        data["gender"] = individual.gender.value
        return tuple(_iso(data[col]) for col in _INDIVIDUAL_COLUMNS)

    def create_individual(self, individual: Individual) -> Individual:
        placeholders = ", ".join("?" for _ in _INDIVIDUAL_COLUMNS)
        with self._get_conn() as conn:
            cur = conn.execute(
                f"INSERT INTO individuals ({', '.join(_INDIVIDUAL_COLUMNS)}) VALUES ({placeholders})",
                self._individual_params(individual),
            )
            conn.commit()
            created = individual.model_copy(deep=True)
            created.id = cur.lastrowid
            return created

    def get_individual(self, individual_id: int) -> Individual | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM individuals WHERE id = ?",
                (individual_id,),
            ).fetchone()
            return Individual.model_validate(dict(row)) if row else None

    def update_individual(self, individual: Individual) -> Individual:
        updated = individual.model_copy(deep=True)
        updated.updated_at = datetime.now(UTC)
        assignments = ", ".join(f"{col} = ?" for col in _INDIVIDUAL_COLUMNS)
        with self._get_conn() as conn:
            cur = conn.execute(
                f"UPDATE individuals SET {assignments} WHERE id = ?",
                (*self._individual_params(updated), updated.id),
            )
            conn.commit()
            if cur.rowcount == 0:
                raise KeyError(f"Individual {updated.id} does not exist")
        return updated

    def delete_individual(self, individual_id: int) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute("DELETE FROM individuals WHERE id = ?", (individual_id,))
            conn.commit()
            return cur.rowcount > 0

    def list_children(self, parent_id: int) -> list[Individual]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """
                SELECT * FROM individuals
                WHERE father_id = ? OR mother_id = ?
                ORDER BY birth_date IS NULL, birth_date, id
                """,
                (parent_id, parent_id),
            ).fetchall()
            return [Individual.model_validate(dict(r)) for r in rows]

    def search_individuals(self, query: str, limit: int, offset: int) -> tuple[list[Individual], int]:
        pattern = _like_pattern(query.strip())
        with self._get_conn() as conn:
            total = conn.execute(
                "SELECT COUNT(*) FROM individuals WHERE full_name LIKE ? ESCAPE '\\' OR notes LIKE ? ESCAPE '\\'",
                (pattern, pattern),
            ).fetchone()[0]
            rows = conn.execute(
                """
                SELECT * FROM individuals
                WHERE full_name LIKE ? ESCAPE '\\' OR notes LIKE ? ESCAPE '\\'
                ORDER BY id
                LIMIT ? OFFSET ?
                """,
                (pattern, pattern, limit, offset),
            ).fetchall()
            return [Individual.model_validate(dict(r)) for r in rows], total

    # ----------------------------- Unions ------------------------------

    @staticmethod
    def _union_params(union: Union) -> tuple:
        data = union.model_dump()
        return tuple(_iso(data[col]) for col in _UNION_COLUMNS)

    def create_union(self, union: Union) -> Union:
        placeholders = ", ".join("?" for _ in _UNION_COLUMNS)
        with self._get_conn() as conn:
            try:
                cur = conn.execute(
                    f"INSERT INTO unions ({', '.join(_UNION_COLUMNS)}) VALUES ({placeholders})",
                    self._union_params(union),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                if not _is_unique_violation(e):
                    raise
                raise AlreadyExists(
                    "Marriage order already used for this husband",
                    details=str(e),
                ) from e
            created = union.model_copy(deep=True)
            created.id = cur.lastrowid
            return created

    def get_union(self, union_id: int) -> Union | None:
        with self._get_conn() as conn:
            row = conn.execute("SELECT * FROM unions WHERE id = ?", (union_id,)).fetchone()
            return Union.model_validate(dict(row)) if row else None

    def update_union(self, union: Union) -> Union:
        updated = union.model_copy(deep=True)
        updated.updated_at = datetime.now(UTC)
        assignments = ", ".join(f"{col} = ?" for col in _UNION_COLUMNS)
        with self._get_conn() as conn:
            try:
                cur = conn.execute(
                    f"UPDATE unions SET {assignments} WHERE id = ?",
                    (*self._union_params(updated), updated.id),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                if not _is_unique_violation(e):
                    raise
                raise AlreadyExists(
                    "Marriage order already used for this husband",
                    details=str(e),
                ) from e
            if cur.rowcount == 0:
                raise KeyError(f"Union {updated.id} does not exist")
        return updated

    def delete_union(self, union_id: int) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute("DELETE FROM unions WHERE id = ?", (union_id,))
            conn.commit()
            return cur.rowcount > 0

    def list_unions_for(self, individual_id: int) -> list[Union]:
        with self._get_conn() as conn:
            rows = conn.execute(
                """
                SELECT * FROM unions
                WHERE husband_id = ? OR wife_id = ?
                ORDER BY marriage_order, created_at, id
                """,
                (individual_id, individual_id),
            ).fetchall()
            return [Union.model_validate(dict(r)) for r in rows]

    # --------------------------- Child links ---------------------------

    def create_child_link(self, link: ChildLink) -> ChildLink:
        with self._get_conn() as conn:
            try:
                cur = conn.execute(
                    """
                    INSERT INTO child_links (union_id, individual_id, relationship_label, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        link.union_id,
                        link.individual_id,
                        link.relationship_label,
                        link.created_at.isoformat(),
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                if not _is_unique_violation(e):
                    raise
                raise AlreadyExists("Child is already linked to this union", details=str(e)) from e
            created = link.model_copy(deep=True)
            created.id = cur.lastrowid
            return created

    def delete_child_link(self, union_id: int, individual_id: int) -> bool:
        with self._get_conn() as conn:
            cur = conn.execute(
                "DELETE FROM child_links WHERE union_id = ? AND individual_id = ?",
                (union_id, individual_id),
            )
            conn.commit()
            return cur.rowcount > 0

    def list_child_links(self, union_id: int) -> list[ChildLink]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM child_links WHERE union_id = ? ORDER BY id",
                (union_id,),
            ).fetchall()
            return [ChildLink.model_validate(dict(r)) for r in rows]

    def list_links_for_child(self, individual_id: int) -> list[ChildLink]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM child_links WHERE individual_id = ? ORDER BY id",
                (individual_id,),
            ).fetchall()
            return [ChildLink.model_validate(dict(r)) for r in rows]
