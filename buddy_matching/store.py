"""SQLite persistence for assessments, mood entries, connections and buddy groups.

Each public method opens its own connection, so a store instance can be shared
across threads. Group membership writes run inside `BEGIN IMMEDIATE`
transactions, and a trigger rejects any insert into a full or inactive group.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from .data_models import (
    BuddyGroup,
    GroupMembership,
    GroupStatus,
    LeisureCategory,
    LonelinessCategory,
    MatchingCriteria,
    MemberRole,
)
from .errors import CapacityRace, PersistenceUnavailable

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS profiles (
    user_id TEXT PRIMARY KEY,
    display_name TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS loneliness_assessments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    scores TEXT NOT NULL,
    total_score INTEGER NOT NULL,
    loneliness_category TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_loneliness_user ON loneliness_assessments (user_id, created_at);

CREATE TABLE IF NOT EXISTS leisure_assessments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    section1_scores TEXT NOT NULL,
    combined_scores TEXT NOT NULL,
    top_categories TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_leisure_user ON leisure_assessments (user_id, created_at);

CREATE TABLE IF NOT EXISTS mood_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    mood INTEGER NOT NULL CHECK (mood BETWEEN 1 AND 5),
    notes TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_mood_user ON mood_entries (user_id, created_at);

CREATE TABLE IF NOT EXISTS connections (
    user1_id TEXT NOT NULL,
    user2_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (user1_id, user2_id)
);

CREATE TABLE IF NOT EXISTS buddy_groups (
    id TEXT PRIMARY KEY,
    created_by TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    capacity INTEGER NOT NULL DEFAULT 5 CHECK (capacity >= 1),
    matching_criteria TEXT NOT NULL,
    loneliness_category TEXT NOT NULL,
    is_ai_matched INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_groups_category ON buddy_groups (status, loneliness_category);

CREATE TABLE IF NOT EXISTS buddy_group_members (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    group_id TEXT NOT NULL REFERENCES buddy_groups (id),
    user_id TEXT NOT NULL,
    role TEXT NOT NULL,
    joined_at TEXT NOT NULL,
    UNIQUE (group_id, user_id)
);
CREATE INDEX IF NOT EXISTS idx_members_user ON buddy_group_members (user_id);

CREATE TRIGGER IF NOT EXISTS enforce_group_capacity
BEFORE INSERT ON buddy_group_members
BEGIN
    SELECT RAISE(ABORT, 'group is not active')
    WHERE (SELECT status FROM buddy_groups WHERE id = NEW.group_id) IS NOT 'active';
    SELECT RAISE(ABORT, 'group is full')
    WHERE (SELECT COUNT(*) FROM buddy_group_members WHERE group_id = NEW.group_id)
        >= (SELECT capacity FROM buddy_groups WHERE id = NEW.group_id);
END;
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _timestamp(value: Optional[Union[datetime, str]]) -> str:
    if value is None:
        return _now()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return str(value)


class SQLiteStore:
    def __init__(self, db_path: Union[str, Path], timeout: float = 5.0):
        self.db_path = Path(db_path)
        self.timeout = timeout

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(
                str(self.db_path), timeout=self.timeout, isolation_level=None, check_same_thread=False
            )
        except sqlite3.Error as e:
            raise PersistenceUnavailable() from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            logger.error("SQLite failure on %s: %s", self.db_path, e)
            raise PersistenceUnavailable() from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialized write transaction; rolled back on any error."""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    # ---- profiles ----
    def _upsert_user(self, conn: sqlite3.Connection, user_id: str, display_name: Optional[str]) -> None:
        conn.execute(
            """
            INSERT INTO profiles (user_id, display_name, created_at) VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                display_name = COALESCE(excluded.display_name, profiles.display_name)
            """,
            (user_id, display_name, _now()),
        )

    def add_user(self, user_id: str, display_name: Optional[str] = None) -> None:
        with self._connect() as conn:
            self._upsert_user(conn, user_id, display_name)

    def list_user_ids(self, limit: Optional[int] = None) -> List[str]:
        sql = "SELECT user_id FROM profiles ORDER BY created_at, rowid"
        params: Tuple[Any, ...] = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        with self._connect() as conn:
            return [row["user_id"] for row in conn.execute(sql, params)]

    def display_names(self, user_ids: Sequence[str]) -> Dict[str, str]:
        if not user_ids:
            return {}
        marks = ",".join("?" * len(user_ids))
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT user_id, display_name FROM profiles WHERE user_id IN ({marks})",
                tuple(user_ids),
            ).fetchall()
        return {row["user_id"]: row["display_name"] for row in rows if row["display_name"]}

    def assessed_user_ids(self) -> List[str]:
        """Users with at least one assessment, in profile creation order."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT p.user_id FROM profiles p
                WHERE EXISTS (SELECT 1 FROM loneliness_assessments l WHERE l.user_id = p.user_id)
                   OR EXISTS (SELECT 1 FROM leisure_assessments s WHERE s.user_id = p.user_id)
                ORDER BY p.created_at, p.rowid
                """
            ).fetchall()
        return [row["user_id"] for row in rows]

    # ---- assessments ----
    def _insert_loneliness(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        responses: Sequence[int],
        total_score: int,
        category: LonelinessCategory,
        created_at: Optional[Union[datetime, str]] = None,
    ) -> int:
        cur = conn.execute(
            """
            INSERT INTO loneliness_assessments (user_id, scores, total_score, loneliness_category, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user_id, json.dumps(list(responses)), total_score, category.value, _timestamp(created_at)),
        )
        return int(cur.lastrowid)

    def _insert_leisure(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        responses: Sequence[Union[str, LeisureCategory]],
        combined_scores: Mapping[LeisureCategory, int],
        top_categories: Sequence[LeisureCategory],
        created_at: Optional[Union[datetime, str]] = None,
    ) -> int:
        section1 = [getattr(r, "value", r) for r in responses]
        combined = {c.value: int(n) for c, n in combined_scores.items()}
        cur = conn.execute(
            """
            INSERT INTO leisure_assessments (user_id, section1_scores, combined_scores, top_categories, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                user_id,
                json.dumps(section1),
                json.dumps(combined),
                json.dumps([c.value for c in top_categories]),
                _timestamp(created_at),
            ),
        )
        return int(cur.lastrowid)

    def add_loneliness_assessment(
        self,
        user_id: str,
        responses: Sequence[int],
        total_score: int,
        category: LonelinessCategory,
        created_at: Optional[Union[datetime, str]] = None,
    ) -> int:
        with self._transaction() as conn:
            self._upsert_user(conn, user_id, None)
            return self._insert_loneliness(conn, user_id, responses, total_score, category, created_at)

    def add_leisure_assessment(
        self,
        user_id: str,
        responses: Sequence[Union[str, LeisureCategory]],
        combined_scores: Mapping[LeisureCategory, int],
        top_categories: Sequence[LeisureCategory],
        created_at: Optional[Union[datetime, str]] = None,
    ) -> int:
        with self._transaction() as conn:
            self._upsert_user(conn, user_id, None)
            return self._insert_leisure(conn, user_id, responses, combined_scores, top_categories, created_at)

    def add_survey_results(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        loneliness: Optional[Tuple[Sequence[int], int, LonelinessCategory]] = None,
        leisure: Optional[
            Tuple[Sequence[Union[str, LeisureCategory]], Mapping[LeisureCategory, int], Sequence[LeisureCategory]]
        ] = None,
    ) -> None:
        """Write a user and their survey results in one transaction; all or nothing."""
        with self._transaction() as conn:
            self._upsert_user(conn, user_id, display_name)
            if loneliness is not None:
                self._insert_loneliness(conn, user_id, *loneliness)
            if leisure is not None:
                self._insert_leisure(conn, user_id, *leisure)

    def latest_loneliness(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT total_score, loneliness_category, created_at FROM loneliness_assessments
                WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT 1
                """,
                (user_id,),
            ).fetchone()
        return dict(row) if row else None

    def latest_leisure(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT combined_scores, top_categories, created_at FROM leisure_assessments
                WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT 1
                """,
                (user_id,),
            ).fetchone()
        if not row:
            return None
        return {
            "combined_scores": json.loads(row["combined_scores"]),
            "top_categories": json.loads(row["top_categories"]),
            "created_at": row["created_at"],
        }

    def has_assessments(self, user_id: str) -> Tuple[bool, bool]:
        """(has loneliness assessment, has leisure assessment)"""
        with self._connect() as conn:
            loneliness = conn.execute(
                "SELECT 1 FROM loneliness_assessments WHERE user_id = ? LIMIT 1", (user_id,)
            ).fetchone()
            leisure = conn.execute(
                "SELECT 1 FROM leisure_assessments WHERE user_id = ? LIMIT 1", (user_id,)
            ).fetchone()
        return loneliness is not None, leisure is not None

    # ---- mood ----
    def add_mood_entry(
        self,
        user_id: str,
        mood: int,
        notes: Optional[str] = None,
        created_at: Optional[Union[datetime, str]] = None,
    ) -> int:
        self.add_user(user_id)
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO mood_entries (user_id, mood, notes, created_at) VALUES (?, ?, ?, ?)",
                (user_id, mood, notes or None, _timestamp(created_at)),
            )
            return int(cur.lastrowid)

    def recent_moods(self, user_id: str, limit: int = 10) -> List[int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT mood FROM mood_entries WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [int(row["mood"]) for row in rows]

    def mood_entries_since(self, user_id: str, since: datetime) -> List[Tuple[int, str]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT mood, created_at FROM mood_entries
                WHERE user_id = ? AND created_at >= ? ORDER BY created_at ASC, id ASC
                """,
                (user_id, _timestamp(since)),
            ).fetchall()
        return [(int(row["mood"]), row["created_at"]) for row in rows]

    # ---- connections ----
    def add_connection(self, user_a: str, user_b: str) -> None:
        first, second = sorted((user_a, user_b))
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO connections (user1_id, user2_id, created_at) VALUES (?, ?, ?)",
                (first, second, _now()),
            )

    def connected_user_ids(self, user_id: str) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT CASE WHEN user1_id = ? THEN user2_id ELSE user1_id END AS other
                FROM connections WHERE user1_id = ? OR user2_id = ?
                """,
                (user_id, user_id, user_id),
            ).fetchall()
        return [row["other"] for row in rows]

    # ---- groups ----
    def _members(self, conn: sqlite3.Connection, group_id: str) -> List[GroupMembership]:
        rows = conn.execute(
            "SELECT group_id, user_id, role, joined_at FROM buddy_group_members WHERE group_id = ? ORDER BY joined_at, id",
            (group_id,),
        ).fetchall()
        return [GroupMembership(**dict(row)) for row in rows]

    def _group(self, conn: sqlite3.Connection, row: sqlite3.Row) -> BuddyGroup:
        return BuddyGroup(
            group_id=row["id"],
            created_by=row["created_by"],
            status=GroupStatus(row["status"]),
            capacity=row["capacity"],
            matching_criteria=MatchingCriteria.model_validate_json(row["matching_criteria"]),
            is_ai_matched=bool(row["is_ai_matched"]),
            created_at=row["created_at"],
            members=self._members(conn, row["id"]),
        )

    def _active_membership(self, conn: sqlite3.Connection, user_id: str) -> Optional[GroupMembership]:
        row = conn.execute(
            """
            SELECT m.group_id, m.user_id, m.role, m.joined_at FROM buddy_group_members m
            JOIN buddy_groups g ON g.id = m.group_id
            WHERE m.user_id = ? AND g.status = 'active'
            ORDER BY m.joined_at DESC, m.id DESC LIMIT 1
            """,
            (user_id,),
        ).fetchone()
        return GroupMembership(**dict(row)) if row else None

    def active_membership(self, user_id: str) -> Optional[GroupMembership]:
        with self._connect() as conn:
            return self._active_membership(conn, user_id)

    def get_group(self, group_id: str) -> Optional[BuddyGroup]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM buddy_groups WHERE id = ?", (group_id,)).fetchone()
            return self._group(conn, row) if row else None

    def groups_with_capacity(self, category: LonelinessCategory) -> List[BuddyGroup]:
        """Active groups for a loneliness category that still have a free seat, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT g.* FROM buddy_groups g
                WHERE g.status = 'active' AND g.loneliness_category = ?
                  AND (SELECT COUNT(*) FROM buddy_group_members m WHERE m.group_id = g.id) < g.capacity
                ORDER BY g.created_at, g.rowid
                """,
                (category.value,),
            ).fetchall()
            return [self._group(conn, row) for row in rows]

    def users_without_active_group(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT p.user_id FROM profiles p
                WHERE NOT EXISTS (
                    SELECT 1 FROM buddy_group_members m JOIN buddy_groups g ON g.id = m.group_id
                    WHERE m.user_id = p.user_id AND g.status = 'active'
                )
                ORDER BY p.created_at, p.rowid
                """
            ).fetchall()
        return [row["user_id"] for row in rows]

    def join_group(self, group_id: str, user_id: str) -> Tuple[GroupMembership, bool]:
        """Add `user_id` to `group_id` as a member.

        Returns the membership and whether it was created. If the user already
        holds an active membership, that one is returned and nothing is written.

        Raises:
            CapacityRace: the group is full or no longer active.
        """
        try:
            with self._transaction() as conn:
                existing = self._active_membership(conn, user_id)
                if existing is not None:
                    return existing, False
                joined_at = _now()
                conn.execute(
                    "INSERT INTO buddy_group_members (group_id, user_id, role, joined_at) VALUES (?, ?, ?, ?)",
                    (group_id, user_id, MemberRole.MEMBER.value, joined_at),
                )
        except sqlite3.IntegrityError as e:
            logger.info("Join of %s into group %s rejected: %s", user_id, group_id, e)
            raise CapacityRace(group_id) from e
        return GroupMembership(group_id=group_id, user_id=user_id, role=MemberRole.MEMBER, joined_at=joined_at), True

    def create_group(
        self, user_id: str, criteria: MatchingCriteria, capacity: int = 5
    ) -> Tuple[BuddyGroup, GroupMembership, bool]:
        """Create an active group with `user_id` as its creator.

        Returns (group, membership, created). When the user already holds an
        active membership nothing is written and that group is returned.
        """
        group_id = uuid.uuid4().hex
        try:
            with self._transaction() as conn:
                existing = self._active_membership(conn, user_id)
                if existing is None:
                    created_at = _now()
                    conn.execute(
                        """
                        INSERT INTO buddy_groups
                            (id, created_by, status, capacity, matching_criteria, loneliness_category, is_ai_matched, created_at)
                        VALUES (?, ?, 'active', ?, ?, ?, 1, ?)
                        """,
                        (
                            group_id,
                            user_id,
                            capacity,
                            criteria.model_dump_json(),
                            criteria.loneliness_category.value,
                            created_at,
                        ),
                    )
                    conn.execute(
                        "INSERT INTO buddy_group_members (group_id, user_id, role, joined_at) VALUES (?, ?, ?, ?)",
                        (group_id, user_id, MemberRole.CREATOR.value, created_at),
                    )
                    group_id_out = group_id
                else:
                    group_id_out = existing.group_id
                row = conn.execute("SELECT * FROM buddy_groups WHERE id = ?", (group_id_out,)).fetchone()
                group = self._group(conn, row)
        except sqlite3.IntegrityError as e:
            raise CapacityRace(group_id) from e

        membership = next(m for m in group.members if m.user_id == user_id)
        return group, membership, existing is None

    def set_group_status(self, group_id: str, status: GroupStatus) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE buddy_groups SET status = ? WHERE id = ?", (status.value, group_id))
