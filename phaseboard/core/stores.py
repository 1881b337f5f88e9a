from __future__ import annotations

import os
import sqlite3
import threading
from collections import defaultdict
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from phaseboard.core.config import StorageConfig
from phaseboard.core.deadline import Deadline
from phaseboard.core.errors import Unavailable
from phaseboard.core.models import AssetIdentity, ReviewEvent, format_utc, parse_utc, to_utc
from phaseboard.pivot.ordering import (
    CurrentEvents,
    Ordering,
    OrderKey,
    SortField,
    sort_identities,
)
from phaseboard.pivot.predicate import QueryPredicate


DEFAULT_SQLITE_BUSY_TIMEOUT_MS = 5000
SQLITE_PROGRESS_STEPS = 1000
SCAN_DEADLINE_CHECK_EVERY = 1000


def _env(name: str, default: str) -> str:
    return os.getenv(name, default)


def default_sqlite_path() -> str:
    return StorageConfig.from_env().sqlite_path


def sqlite_busy_timeout_ms() -> int:
    raw = _env("PHASEBOARD_SQLITE_BUSY_TIMEOUT_MS", str(DEFAULT_SQLITE_BUSY_TIMEOUT_MS))
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_SQLITE_BUSY_TIMEOUT_MS
    return max(0, value)


def open_sqlite_connection(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {sqlite_busy_timeout_ms()}")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def ensure_sqlite_schema_meta(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_meta (
          component TEXT PRIMARY KEY,
          version INTEGER NOT NULL,
          updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )


def ensure_sqlite_component_schema(conn: sqlite3.Connection, component: str, target_version: int) -> int:
    ensure_sqlite_schema_meta(conn)
    row = conn.execute("SELECT version FROM schema_meta WHERE component = ?", (component,)).fetchone()
    if row is None:
        conn.execute(
            """
            INSERT INTO schema_meta (component, version, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            """,
            (component, target_version),
        )
        return target_version

    current_version = int(row["version"])
    if current_version > target_version:
        raise RuntimeError(
            f"Unsupported newer schema for component '{component}': {current_version} > {target_version}"
        )
    if current_version < target_version:
        conn.execute(
            """
            UPDATE schema_meta
            SET version = ?, updated_at = CURRENT_TIMESTAMP
            WHERE component = ?
            """,
            (target_version, component),
        )
    return target_version


def normalize_event(event: ReviewEvent, seq: int) -> ReviewEvent:
    return replace(
        event,
        phase=str(event.phase or "").strip().lower(),
        modified_at=to_utc(event.modified_at) or event.modified_at,
        submitted_at=to_utc(event.submitted_at),
        leaf_group=str(event.leaf_group or "").strip(),
        seq=seq,
    )


def _is_newer(candidate: ReviewEvent, current: ReviewEvent) -> bool:
    return (candidate.modified_at, candidate.seq) > (current.modified_at, current.seq)


class InMemoryReviewEventStore:
    def __init__(self) -> None:
        self._events: List[ReviewEvent] = []
        self._lock = threading.Lock()

    def append(self, event: ReviewEvent) -> ReviewEvent:
        with self._lock:
            stored = normalize_event(event, len(self._events) + 1)
            self._events.append(stored)
            return stored

    def extend(self, events: Iterable[ReviewEvent]) -> List[ReviewEvent]:
        return [self.append(event) for event in events]

    def _snapshot(self) -> List[ReviewEvent]:
        with self._lock:
            return list(self._events)

    def project_exists(self, project: str, root: str) -> bool:
        return any(e.project == project and e.root == root for e in self._snapshot())

    def _current_by_identity(
        self,
        predicate: QueryPredicate,
        deadline: Optional[Deadline],
    ) -> Dict[AssetIdentity, Dict[str, ReviewEvent]]:
        current: Dict[AssetIdentity, Dict[str, ReviewEvent]] = defaultdict(dict)
        for idx, event in enumerate(self._snapshot()):
            if deadline is not None and idx % SCAN_DEADLINE_CHECK_EVERY == 0:
                deadline.check("scan")
            if event.deleted:
                continue
            identity = event.identity
            if not predicate.matches_identity(identity):
                continue
            phases = current[identity]
            existing = phases.get(event.phase)
            if existing is None or _is_newer(event, existing):
                phases[event.phase] = event
        return current

    def _matching(
        self,
        predicate: QueryPredicate,
        deadline: Optional[Deadline],
    ) -> List[Tuple[AssetIdentity, CurrentEvents]]:
        current = self._current_by_identity(predicate, deadline)
        if not predicate.has_status_filter:
            return list(current.items())
        return [
            (identity, phases)
            for identity, phases in current.items()
            if any(predicate.matches_event(event) for event in phases.values())
        ]

    def select_keys(
        self,
        predicate: QueryPredicate,
        ordering: Ordering,
        limit: int,
        offset: int = 0,
        deadline: Optional[Deadline] = None,
    ) -> List[AssetIdentity]:
        entries = self._matching(predicate, deadline)
        if deadline is not None:
            deadline.check("sort")
        ordered = sort_identities(entries, ordering)
        return ordered[offset : offset + limit]

    def count_keys(self, predicate: QueryPredicate, deadline: Optional[Deadline] = None) -> int:
        return len(self._matching(predicate, deadline))

    def fetch_current_events(
        self,
        identities: Sequence[AssetIdentity],
        deadline: Optional[Deadline] = None,
    ) -> List[ReviewEvent]:
        wanted = set(identities)
        if not wanted:
            return []
        current: Dict[Tuple[AssetIdentity, str], ReviewEvent] = {}
        for idx, event in enumerate(self._snapshot()):
            if deadline is not None and idx % SCAN_DEADLINE_CHECK_EVERY == 0:
                deadline.check("fetch_phases")
            if event.deleted or event.identity not in wanted:
                continue
            slot = (event.identity, event.phase)
            existing = current.get(slot)
            if existing is None or _is_newer(event, existing):
                current[slot] = event
        return list(current.values())

    def ping(self) -> bool:
        return True


def _py_lower(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value).lower()


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _order_key_sql(key: OrderKey) -> Tuple[str, List[Any]]:
    """Aggregate expression over one asset's current events for an order key."""
    def fold(column: str) -> str:
        return f"PY_LOWER({column})" if key.case_insensitive else column

    if key.field == SortField.NAME:
        return fold("c.name"), []
    if key.field == SortField.RELATION:
        return fold("c.relation"), []
    if key.field == SortField.PHASE_PRESENCE:
        return "MIN(CASE WHEN c.phase = ? THEN 0 ELSE 1 END)", [key.phase.value]
    if key.field == SortField.SUBMITTED_AT and key.phase is None:
        return "MAX(c.submitted_at)", []
    column = {
        SortField.SUBMITTED_AT: "c.submitted_at",
        SortField.WORK_STATUS: fold("c.work_status"),
        SortField.APPROVAL_STATUS: fold("c.approval_status"),
    }.get(key.field)
    if column is None or key.phase is None:
        raise ValueError(f"Unsupported sort key: {key}")
    return f"MAX(CASE WHEN c.phase = ? THEN {column} END)", [key.phase.value]


class SQLiteReviewEventStore:
    SCHEMA_COMPONENT = "review_events"
    SCHEMA_VERSION = 1

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = db_path or default_sqlite_path()
        self._write_lock = threading.Lock()
        self._init_db()

    def _connect(self, deadline: Optional[Deadline] = None) -> sqlite3.Connection:
        conn = open_sqlite_connection(self.db_path)
        conn.create_function("PY_LOWER", 1, _py_lower, deterministic=True)
        if deadline is not None:
            conn.set_progress_handler(deadline.sqlite_progress_handler, SQLITE_PROGRESS_STEPS)
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            ensure_sqlite_component_schema(conn, self.SCHEMA_COMPONENT, self.SCHEMA_VERSION)
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS review_events (
                  seq INTEGER PRIMARY KEY AUTOINCREMENT,
                  project TEXT NOT NULL,
                  root TEXT NOT NULL,
                  name TEXT NOT NULL,
                  relation TEXT NOT NULL,
                  phase TEXT NOT NULL,
                  work_status TEXT,
                  approval_status TEXT,
                  submitted_at TEXT,
                  modified_at TEXT NOT NULL,
                  deleted INTEGER NOT NULL DEFAULT 0,
                  leaf_group TEXT NOT NULL DEFAULT ''
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_review_events_scope
                ON review_events (project, root, deleted, name, relation, phase, modified_at)
                """
            )

    def append(self, event: ReviewEvent) -> ReviewEvent:
        stored = normalize_event(event, 0)
        with self._write_lock:
            with self._connect() as conn:
                cur = conn.execute(
                    """
                    INSERT INTO review_events (
                      project, root, name, relation, phase, work_status, approval_status,
                      submitted_at, modified_at, deleted, leaf_group
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        stored.project,
                        stored.root,
                        stored.name,
                        stored.relation,
                        stored.phase,
                        stored.work_status,
                        stored.approval_status,
                        format_utc(stored.submitted_at),
                        format_utc(stored.modified_at),
                        1 if stored.deleted else 0,
                        stored.leaf_group,
                    ),
                )
                seq = int(cur.lastrowid)
        return replace(stored, seq=seq)

    def extend(self, events: Iterable[ReviewEvent]) -> List[ReviewEvent]:
        return [self.append(event) for event in events]

    def _run(self, sql: str, params: Sequence[Any], deadline: Optional[Deadline]) -> List[sqlite3.Row]:
        try:
            with self._connect(deadline) as conn:
                return conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.OperationalError as exc:
            if deadline is not None and deadline.expired():
                raise Unavailable() from exc
            raise

    def _row_to_event(self, row: sqlite3.Row) -> ReviewEvent:
        return ReviewEvent(
            project=row["project"],
            root=row["root"],
            name=row["name"],
            relation=row["relation"],
            phase=row["phase"],
            work_status=row["work_status"],
            approval_status=row["approval_status"],
            submitted_at=parse_utc(row["submitted_at"]),
            modified_at=parse_utc(row["modified_at"]),
            deleted=bool(row["deleted"]),
            leaf_group=row["leaf_group"] or "",
            seq=int(row["seq"]),
        )

    def project_exists(self, project: str, root: str) -> bool:
        rows = self._run(
            "SELECT 1 FROM review_events WHERE project = ? AND root = ? LIMIT 1",
            (project, root),
            None,
        )
        return bool(rows)

    def _scope_where(self, predicate: QueryPredicate) -> Tuple[str, List[Any]]:
        clauses = ["e.project = ?", "e.root = ?", "e.deleted = 0"]
        params: List[Any] = [predicate.project, predicate.root]
        if predicate.name_prefix:
            clauses.append("PY_LOWER(e.name) LIKE ? ESCAPE '\\'")
            params.append(_escape_like(predicate.name_prefix) + "%")
        return " AND ".join(clauses), params

    def _status_where(self, predicate: QueryPredicate) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for column, values in (
            ("approval_status", predicate.approval_statuses),
            ("work_status", predicate.work_statuses),
        ):
            if not values:
                continue
            ordered = sorted(values)
            placeholders = ", ".join("?" for _ in ordered)
            clauses.append(f"PY_LOWER(TRIM({column})) IN ({placeholders})")
            params.extend(ordered)
        if not clauses:
            return "1 = 1", []
        return " AND ".join(clauses), params

    def _matched_cte(self, predicate: QueryPredicate) -> Tuple[str, List[Any]]:
        scope_sql, scope_params = self._scope_where(predicate)
        status_sql, status_params = self._status_where(predicate)
        sql = f"""
            WITH current_events AS (
              SELECT project, root, name, relation, phase, work_status, approval_status,
                     submitted_at, modified_at, leaf_group
              FROM (
                SELECT e.*, ROW_NUMBER() OVER (
                  PARTITION BY e.project, e.root, e.name, e.relation, e.phase
                  ORDER BY e.modified_at DESC, e.seq DESC
                ) AS rn
                FROM review_events e
                WHERE {scope_sql}
              )
              WHERE rn = 1
            ),
            matched AS (
              SELECT DISTINCT project, root, name, relation
              FROM current_events
              WHERE {status_sql}
            )
        """
        return sql, scope_params + status_params

    def select_keys(
        self,
        predicate: QueryPredicate,
        ordering: Ordering,
        limit: int,
        offset: int = 0,
        deadline: Optional[Deadline] = None,
    ) -> List[AssetIdentity]:
        cte_sql, params = self._matched_cte(predicate)
        select_exprs: List[str] = []
        order_terms: List[str] = []
        for idx, key in enumerate(ordering):
            expr, expr_params = _order_key_sql(key)
            select_exprs.append(f"{expr} AS k{idx}")
            params.extend(expr_params)
            direction = "DESC" if key.descending else "ASC"
            order_terms.append(f"(k{idx} IS NULL) ASC, k{idx} {direction}")
        key_columns = "".join(f", {expr}" for expr in select_exprs)
        order_sql = ", ".join(order_terms) if order_terms else "name ASC, relation ASC"
        sql = f"""
            {cte_sql},
            keyed AS (
              SELECT c.project, c.root, c.name, c.relation{key_columns}
              FROM current_events c
              JOIN matched m
                ON c.project = m.project AND c.root = m.root
               AND c.name = m.name AND c.relation = m.relation
              GROUP BY c.project, c.root, c.name, c.relation
            )
            SELECT project, root, name, relation
            FROM keyed
            ORDER BY {order_sql}
            LIMIT ? OFFSET ?
        """
        params.extend([int(limit), int(offset)])
        rows = self._run(sql, params, deadline)
        return [AssetIdentity(row["project"], row["root"], row["name"], row["relation"]) for row in rows]

    def count_keys(self, predicate: QueryPredicate, deadline: Optional[Deadline] = None) -> int:
        if not predicate.has_status_filter:
            scope_sql, params = self._scope_where(predicate)
            sql = f"""
                SELECT COUNT(*) AS total FROM (
                  SELECT DISTINCT e.project, e.root, e.name, e.relation
                  FROM review_events e
                  WHERE {scope_sql}
                )
            """
        else:
            cte_sql, params = self._matched_cte(predicate)
            sql = f"{cte_sql} SELECT COUNT(*) AS total FROM matched"
        rows = self._run(sql, params, deadline)
        return int(rows[0]["total"]) if rows else 0

    def fetch_current_events(
        self,
        identities: Sequence[AssetIdentity],
        deadline: Optional[Deadline] = None,
    ) -> List[ReviewEvent]:
        scoped: Dict[Tuple[str, str], List[AssetIdentity]] = defaultdict(list)
        for identity in dict.fromkeys(identities):
            scoped[(identity.project, identity.root)].append(identity)

        events: List[ReviewEvent] = []
        for (project, root), members in scoped.items():
            values_sql = ", ".join("(?, ?)" for _ in members)
            params: List[Any] = [project, root]
            for identity in members:
                params.extend([identity.name, identity.relation])
            sql = f"""
                SELECT * FROM (
                  SELECT e.*, ROW_NUMBER() OVER (
                    PARTITION BY e.name, e.relation, e.phase
                    ORDER BY e.modified_at DESC, e.seq DESC
                  ) AS rn
                  FROM review_events e
                  WHERE e.project = ? AND e.root = ? AND e.deleted = 0
                    AND (e.name, e.relation) IN (VALUES {values_sql})
                )
                WHERE rn = 1
            """
            events.extend(self._row_to_event(row) for row in self._run(sql, params, deadline))
        return events

    def ping(self) -> bool:
        rows = self._run("SELECT 1 AS ok", (), None)
        return bool(rows)


class InMemoryCategoryProvider:
    def __init__(self) -> None:
        self._paths: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def set(self, root: str, leaf_group_name: str, path: str) -> None:
        with self._lock:
            self._paths[(root, leaf_group_name)] = path

    def lookup(self, root: str, leaf_group_names: Iterable[str]) -> Dict[str, str]:
        with self._lock:
            return {
                name: self._paths[(root, name)]
                for name in set(leaf_group_names)
                if (root, name) in self._paths
            }


class SQLiteCategoryProvider:
    SCHEMA_COMPONENT = "group_categories"
    SCHEMA_VERSION = 1

    def __init__(self, db_path: Optional[str] = None) -> None:
        self.db_path = db_path or default_sqlite_path()
        self._write_lock = threading.Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return open_sqlite_connection(self.db_path)

    def _init_db(self) -> None:
        with self._connect() as conn:
            ensure_sqlite_component_schema(conn, self.SCHEMA_COMPONENT, self.SCHEMA_VERSION)
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS group_categories (
                  root TEXT NOT NULL,
                  leaf_group_name TEXT NOT NULL,
                  path TEXT NOT NULL,
                  deleted INTEGER NOT NULL DEFAULT 0,
                  updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                  PRIMARY KEY (root, leaf_group_name)
                )
                """
            )

    def set(self, root: str, leaf_group_name: str, path: str) -> None:
        with self._write_lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO group_categories (root, leaf_group_name, path, deleted, updated_at)
                    VALUES (?, ?, ?, 0, CURRENT_TIMESTAMP)
                    ON CONFLICT(root, leaf_group_name) DO UPDATE SET
                      path=excluded.path,
                      deleted=0,
                      updated_at=CURRENT_TIMESTAMP
                    """,
                    (root, leaf_group_name, path),
                )

    def lookup(self, root: str, leaf_group_names: Iterable[str]) -> Dict[str, str]:
        names = sorted(set(leaf_group_names))
        if not names:
            return {}
        placeholders = ", ".join("?" for _ in names)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT leaf_group_name, path
                FROM group_categories
                WHERE deleted = 0 AND root = ? AND leaf_group_name IN ({placeholders})
                """,
                (root, *names),
            ).fetchall()
        return {str(row["leaf_group_name"]): str(row["path"]) for row in rows}


def create_event_store_from_env(
    storage: Optional[StorageConfig] = None,
) -> InMemoryReviewEventStore | SQLiteReviewEventStore:
    storage = storage or StorageConfig.from_env()
    if storage.event_store == "sqlite":
        return SQLiteReviewEventStore(storage.sqlite_path)
    return InMemoryReviewEventStore()


def create_category_provider_from_env(
    storage: Optional[StorageConfig] = None,
) -> InMemoryCategoryProvider | SQLiteCategoryProvider:
    storage = storage or StorageConfig.from_env()
    if storage.category_store == "sqlite":
        return SQLiteCategoryProvider(storage.sqlite_path)
    return InMemoryCategoryProvider()
