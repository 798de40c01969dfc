"""Persistence helpers backed by SQLite."""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from ..config import AppConfig


VIDEO_TYPES: Tuple[str, ...] = ("youtube", "direct")
LIVE_CLASS_STATUSES: Tuple[str, ...] = ("scheduled", "live", "completed")
DEFAULT_SUBJECT_COLOR = "bg-blue-500"

# Ordered parent-first so inserts on restore satisfy foreign keys.
CONTENT_TABLES: Tuple[str, ...] = (
    "batches",
    "subjects",
    "chapters",
    "lectures",
    "live_classes",
)


class PersistenceError(RuntimeError):
    """Raised when the backing store rejects or fails an operation."""


class IntegrityViolation(PersistenceError):
    """Raised when a write breaks a uniqueness or foreign-key constraint."""


@dataclass
class BatchRecord:
    id: int
    name: str
    description: str
    created_at: str


@dataclass
class SubjectRecord:
    id: int
    batch_id: int
    name: str
    color: str
    created_at: str


@dataclass
class ChapterRecord:
    id: int
    subject_id: int
    title: str
    order_index: int
    created_at: str


@dataclass
class LectureRecord:
    id: int
    chapter_id: int
    title: str
    video_url: str
    video_type: str
    notes_url: Optional[str]
    dpp_url: Optional[str]
    uploaded_by: str
    created_at: str


@dataclass
class LiveClassRecord:
    id: int
    title: str
    batch_id: int
    subject_id: int
    chapter_id: int
    scheduled_at: str
    live_url: str
    status: str
    created_at: str


@dataclass
class UserProfileRecord:
    id: int
    email: str
    role: str
    password_hash: str
    assigned_batches: List[int]
    created_at: str


@dataclass
class BackupRecord:
    id: int
    backup_date: str
    backup_data: Dict[str, Any]
    created_at: str


@dataclass(frozen=True)
class ChapterNode:
    chapter: ChapterRecord
    lectures: Tuple[LectureRecord, ...] = ()


@dataclass(frozen=True)
class SubjectNode:
    subject: SubjectRecord
    chapters: Tuple[ChapterNode, ...] = ()


@dataclass(frozen=True)
class BatchNode:
    batch: BatchRecord
    subjects: Tuple[SubjectNode, ...] = field(default_factory=tuple)


_BATCH_COLUMNS = "id, name, description, created_at"
_SUBJECT_COLUMNS = "id, batch_id, name, color, created_at"
_CHAPTER_COLUMNS = "id, subject_id, title, order_index, created_at"
_LECTURE_COLUMNS = (
    "id, chapter_id, title, video_url, video_type, notes_url, dpp_url, uploaded_by, created_at"
)
_LIVE_CLASS_COLUMNS = (
    "id, title, batch_id, subject_id, chapter_id, scheduled_at, live_url, status, created_at"
)
_USER_COLUMNS = "id, email, role, password_hash, assigned_batches, created_at"


LOGGER = logging.getLogger(__name__)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _decode_id_list(raw: Optional[str]) -> List[int]:
    if not raw:
        return []
    try:
        values = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.warning("Ignoring malformed id list %r", raw)
        return []
    if not isinstance(values, list):
        return []
    decoded: List[int] = []
    for value in values:
        try:
            decoded.append(int(value))
        except (TypeError, ValueError):
            continue
    return decoded


def _user_from_row(row: sqlite3.Row) -> UserProfileRecord:
    data = dict(row)
    data["assigned_batches"] = _decode_id_list(data.get("assigned_batches"))
    return UserProfileRecord(**data)


class ContentRepository:
    """CRUD access to the portal's record collections."""

    def __init__(
        self,
        config: AppConfig,
        *,
        event_emitter: Optional[Callable[..., None]] = None,
    ) -> None:
        self._db_path = config.database_file
        self._event_emitter: Optional[Callable[..., None]] = event_emitter

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting query events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_db_event(self, action: str, **payload: Any):
        """Emit a structured event capturing execution time for a DB action."""

        if self._event_emitter is None:
            yield payload
            return

        start = time.perf_counter()
        event_payload: Dict[str, Any] = dict(payload)
        error: BaseException | None = None
        try:
            yield event_payload
        except Exception as exc:
            error = exc
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000.0
            if error is None:
                event_payload.setdefault("status", "ok")
            filtered = {
                key: value for key, value in event_payload.items() if value is not None
            }
            self._event_emitter(
                "DB_QUERY",
                action,
                payload=filtered,
                duration_ms=duration_ms,
            )

    @staticmethod
    def _summarize_sql(statement: str) -> str:
        collapsed = " ".join(statement.strip().split())
        return collapsed[:180] + ("…" if len(collapsed) > 180 else "")

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] | None = None,
        *,
        action: str,
        table: Optional[str] = None,
    ) -> sqlite3.Cursor:
        params = tuple(parameters) if parameters is not None else ()
        with self._track_db_event(
            action,
            table=table,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            cursor = connection.execute(statement, params)
            if cursor.rowcount is not None and cursor.rowcount >= 0:
                event.setdefault("rowcount", int(cursor.rowcount))
            return cursor

    def _connect(self) -> sqlite3.Connection:
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        connection = sqlite3.connect(self._db_path)
        connection.row_factory = sqlite3.Row
        self._execute(connection, "PRAGMA foreign_keys = ON", action="pragma_foreign_keys")
        return connection

    @contextlib.contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection wrapped in a transaction and translate driver errors."""

        try:
            connection = self._connect()
        except sqlite3.Error as error:
            raise PersistenceError(f"Could not open database: {error}") from error
        try:
            with connection:
                yield connection
        except sqlite3.IntegrityError as error:
            raise IntegrityViolation(str(error)) from error
        except sqlite3.Error as error:
            raise PersistenceError(str(error)) from error
        finally:
            connection.close()

    def _insert(self, table: str, values: Dict[str, Any], *, action: str) -> int:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with self._track_db_event(action, table=table) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    f"INSERT INTO {table}({columns}) VALUES ({placeholders})",
                    tuple(values.values()),
                    action=f"{table}.insert",
                    table=table,
                )
                row_id = int(cursor.lastrowid)
            event["row_id"] = row_id
            LOGGER.debug("Inserted %s row id=%s", table, row_id)
            return row_id

    def _delete(self, table: str, row_id: int, *, action: str) -> bool:
        with self._track_db_event(action, table=table, row_id=row_id) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    f"DELETE FROM {table} WHERE id = ?",
                    (row_id,),
                    action=f"{table}.delete",
                    table=table,
                )
                affected = cursor.rowcount if cursor.rowcount and cursor.rowcount > 0 else 0
            event["result"] = "deleted" if affected else "missing"
            LOGGER.debug("Removed %s id=%s (rows=%s)", table, row_id, affected)
            return bool(affected)

    def _fetch_all(
        self,
        statement: str,
        parameters: Sequence[Any] | None = None,
        *,
        action: str,
        table: str,
    ) -> List[sqlite3.Row]:
        with self._session() as connection:
            cursor = self._execute(
                connection, statement, parameters, action=action, table=table
            )
            return cursor.fetchall()

    def _fetch_one(
        self,
        statement: str,
        parameters: Sequence[Any] | None = None,
        *,
        action: str,
        table: str,
    ) -> Optional[sqlite3.Row]:
        rows = self._fetch_all(statement, parameters, action=action, table=table)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------
    def add_batch(self, name: str, description: str = "") -> int:
        LOGGER.debug("Adding batch '%s'", name)
        return self._insert(
            "batches",
            {"name": name, "description": description, "created_at": utcnow_iso()},
            action="add_batch",
        )

    def get_batch(self, batch_id: int) -> Optional[BatchRecord]:
        row = self._fetch_one(
            f"SELECT {_BATCH_COLUMNS} FROM batches WHERE id = ?",
            (batch_id,),
            action="batches.get",
            table="batches",
        )
        return BatchRecord(**row) if row else None

    def list_batches(self) -> List[BatchRecord]:
        rows = self._fetch_all(
            f"SELECT {_BATCH_COLUMNS} FROM batches ORDER BY created_at DESC, id DESC",
            action="batches.list",
            table="batches",
        )
        return [BatchRecord(**row) for row in rows]

    def update_batch(
        self,
        batch_id: int,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> bool:
        assignments: List[str] = []
        params: List[Any] = []
        if name is not None:
            assignments.append("name = ?")
            params.append(name)
        if description is not None:
            assignments.append("description = ?")
            params.append(description)
        if not assignments:
            LOGGER.debug("No changes requested for batch id=%s", batch_id)
            return False
        params.append(batch_id)
        with self._track_db_event("update_batch", table="batches", batch_id=batch_id) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "UPDATE batches SET " + ", ".join(assignments) + " WHERE id = ?",
                    params,
                    action="batches.update",
                    table="batches",
                )
                affected = cursor.rowcount if cursor.rowcount and cursor.rowcount > 0 else 0
            event.update({"fields_changed": len(assignments), "rowcount": affected})
            return bool(affected)

    def remove_batch(self, batch_id: int) -> bool:
        return self._delete("batches", batch_id, action="remove_batch")

    # ------------------------------------------------------------------
    # Subjects
    # ------------------------------------------------------------------
    def add_subject(self, batch_id: int, name: str, color: str = DEFAULT_SUBJECT_COLOR) -> int:
        LOGGER.debug("Adding subject '%s' to batch_id=%s", name, batch_id)
        return self._insert(
            "subjects",
            {
                "batch_id": batch_id,
                "name": name,
                "color": color or DEFAULT_SUBJECT_COLOR,
                "created_at": utcnow_iso(),
            },
            action="add_subject",
        )

    def get_subject(self, subject_id: int) -> Optional[SubjectRecord]:
        row = self._fetch_one(
            f"SELECT {_SUBJECT_COLUMNS} FROM subjects WHERE id = ?",
            (subject_id,),
            action="subjects.get",
            table="subjects",
        )
        return SubjectRecord(**row) if row else None

    def list_subjects(self, batch_id: Optional[int] = None) -> List[SubjectRecord]:
        where = ""
        params: Tuple[Any, ...] = ()
        if batch_id is not None:
            where = " WHERE batch_id = ?"
            params = (batch_id,)
        rows = self._fetch_all(
            f"SELECT {_SUBJECT_COLUMNS} FROM subjects{where} ORDER BY created_at, id",
            params,
            action="subjects.list",
            table="subjects",
        )
        return [SubjectRecord(**row) for row in rows]

    def remove_subject(self, subject_id: int) -> bool:
        return self._delete("subjects", subject_id, action="remove_subject")

    # ------------------------------------------------------------------
    # Chapters
    # ------------------------------------------------------------------
    def _next_order_index(self, connection: sqlite3.Connection, subject_id: int) -> int:
        cursor = self._execute(
            connection,
            "SELECT COALESCE(MAX(order_index), 0) + 1 FROM chapters WHERE subject_id = ?",
            (subject_id,),
            action="chapters.next_order_index",
            table="chapters",
        )
        row = cursor.fetchone()
        next_value = int(row[0]) if row and row[0] is not None else 1
        LOGGER.debug("Next chapter order for subject_id=%s -> %s", subject_id, next_value)
        return next_value

    def add_chapter(self, subject_id: int, title: str) -> int:
        LOGGER.debug("Adding chapter '%s' to subject_id=%s", title, subject_id)
        with self._track_db_event("add_chapter", table="chapters", subject_id=subject_id) as event:
            with self._session() as connection:
                order_index = self._next_order_index(connection, subject_id)
                cursor = self._execute(
                    connection,
                    "INSERT INTO chapters(subject_id, title, order_index, created_at)"
                    " VALUES (?, ?, ?, ?)",
                    (subject_id, title, order_index, utcnow_iso()),
                    action="chapters.insert",
                    table="chapters",
                )
                chapter_id = int(cursor.lastrowid)
            event.update({"chapter_id": chapter_id, "order_index": order_index})
            return chapter_id

    def get_chapter(self, chapter_id: int) -> Optional[ChapterRecord]:
        row = self._fetch_one(
            f"SELECT {_CHAPTER_COLUMNS} FROM chapters WHERE id = ?",
            (chapter_id,),
            action="chapters.get",
            table="chapters",
        )
        return ChapterRecord(**row) if row else None

    def list_chapters(self, subject_id: Optional[int] = None) -> List[ChapterRecord]:
        where = ""
        params: Tuple[Any, ...] = ()
        if subject_id is not None:
            where = " WHERE subject_id = ?"
            params = (subject_id,)
        rows = self._fetch_all(
            f"SELECT {_CHAPTER_COLUMNS} FROM chapters{where} ORDER BY order_index, id",
            params,
            action="chapters.list",
            table="chapters",
        )
        return [ChapterRecord(**row) for row in rows]

    def remove_chapter(self, chapter_id: int) -> bool:
        return self._delete("chapters", chapter_id, action="remove_chapter")

    # ------------------------------------------------------------------
    # Lectures
    # ------------------------------------------------------------------
    def add_lecture(
        self,
        chapter_id: int,
        title: str,
        video_url: str,
        *,
        video_type: str = "youtube",
        notes_url: Optional[str] = None,
        dpp_url: Optional[str] = None,
        uploaded_by: str = "",
    ) -> int:
        if video_type not in VIDEO_TYPES:
            raise ValueError(f"Unsupported video type '{video_type}'")
        LOGGER.debug(
            "Adding lecture '%s' to chapter_id=%s (type=%s, notes=%s, dpp=%s)",
            title,
            chapter_id,
            video_type,
            bool(notes_url),
            bool(dpp_url),
        )
        return self._insert(
            "lectures",
            {
                "chapter_id": chapter_id,
                "title": title,
                "video_url": video_url,
                "video_type": video_type,
                "notes_url": notes_url or None,
                "dpp_url": dpp_url or None,
                "uploaded_by": uploaded_by,
                "created_at": utcnow_iso(),
            },
            action="add_lecture",
        )

    def get_lecture(self, lecture_id: int) -> Optional[LectureRecord]:
        row = self._fetch_one(
            f"SELECT {_LECTURE_COLUMNS} FROM lectures WHERE id = ?",
            (lecture_id,),
            action="lectures.get",
            table="lectures",
        )
        return LectureRecord(**row) if row else None

    def list_lectures(self, chapter_id: Optional[int] = None) -> List[LectureRecord]:
        where = ""
        params: Tuple[Any, ...] = ()
        if chapter_id is not None:
            where = " WHERE chapter_id = ?"
            params = (chapter_id,)
        rows = self._fetch_all(
            f"SELECT {_LECTURE_COLUMNS} FROM lectures{where} ORDER BY created_at, id",
            params,
            action="lectures.list",
            table="lectures",
        )
        return [LectureRecord(**row) for row in rows]

    def remove_lecture(self, lecture_id: int) -> bool:
        return self._delete("lectures", lecture_id, action="remove_lecture")

    # ------------------------------------------------------------------
    # Content tree
    # ------------------------------------------------------------------
    def load_tree(self) -> List[BatchNode]:
        """Return every batch with its nested subjects, chapters and lectures."""

        with self._track_db_event("load_tree") as event:
            batches = self.list_batches()
            subjects = self.list_subjects()
            chapters = self.list_chapters()
            lectures = self.list_lectures()

            lectures_by_chapter: Dict[int, List[LectureRecord]] = {}
            for lecture in lectures:
                lectures_by_chapter.setdefault(lecture.chapter_id, []).append(lecture)
            chapters_by_subject: Dict[int, List[ChapterNode]] = {}
            for chapter in chapters:
                chapters_by_subject.setdefault(chapter.subject_id, []).append(
                    ChapterNode(chapter, tuple(lectures_by_chapter.get(chapter.id, ())))
                )
            subjects_by_batch: Dict[int, List[SubjectNode]] = {}
            for subject in subjects:
                subjects_by_batch.setdefault(subject.batch_id, []).append(
                    SubjectNode(subject, tuple(chapters_by_subject.get(subject.id, ())))
                )
            tree = [
                BatchNode(batch, tuple(subjects_by_batch.get(batch.id, ())))
                for batch in batches
            ]
            event.update(
                {
                    "batch_count": len(batches),
                    "subject_count": len(subjects),
                    "chapter_count": len(chapters),
                    "lecture_count": len(lectures),
                }
            )
            return tree

    # ------------------------------------------------------------------
    # Live classes
    # ------------------------------------------------------------------
    def add_live_class(
        self,
        *,
        title: str,
        batch_id: int,
        subject_id: int,
        chapter_id: int,
        scheduled_at: str,
        live_url: str,
        status: str = "scheduled",
    ) -> int:
        if status not in LIVE_CLASS_STATUSES:
            raise ValueError(f"Unsupported live class status '{status}'")
        LOGGER.debug("Scheduling live class '%s' for batch_id=%s at %s", title, batch_id, scheduled_at)
        return self._insert(
            "live_classes",
            {
                "title": title,
                "batch_id": batch_id,
                "subject_id": subject_id,
                "chapter_id": chapter_id,
                "scheduled_at": scheduled_at,
                "live_url": live_url,
                "status": status,
                "created_at": utcnow_iso(),
            },
            action="add_live_class",
        )

    def get_live_class(self, live_class_id: int) -> Optional[LiveClassRecord]:
        row = self._fetch_one(
            f"SELECT {_LIVE_CLASS_COLUMNS} FROM live_classes WHERE id = ?",
            (live_class_id,),
            action="live_classes.get",
            table="live_classes",
        )
        return LiveClassRecord(**row) if row else None

    def list_live_classes(self) -> List[LiveClassRecord]:
        rows = self._fetch_all(
            f"SELECT {_LIVE_CLASS_COLUMNS} FROM live_classes ORDER BY scheduled_at, id",
            action="live_classes.list",
            table="live_classes",
        )
        return [LiveClassRecord(**row) for row in rows]

    def update_live_class_status(self, live_class_id: int, status: str) -> bool:
        if status not in LIVE_CLASS_STATUSES:
            raise ValueError(f"Unsupported live class status '{status}'")
        with self._track_db_event(
            "update_live_class_status",
            table="live_classes",
            live_class_id=live_class_id,
            status=status,
        ) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "UPDATE live_classes SET status = ? WHERE id = ?",
                    (status, live_class_id),
                    action="live_classes.update_status",
                    table="live_classes",
                )
                affected = cursor.rowcount if cursor.rowcount and cursor.rowcount > 0 else 0
            event["rowcount"] = affected
            return bool(affected)

    def remove_live_class(self, live_class_id: int) -> bool:
        return self._delete("live_classes", live_class_id, action="remove_live_class")

    # ------------------------------------------------------------------
    # User profiles
    # ------------------------------------------------------------------
    def add_user(
        self,
        email: str,
        role: str,
        password_hash: str,
        *,
        assigned_batches: Sequence[int] = (),
    ) -> int:
        LOGGER.debug("Adding user '%s' with role=%s", email, role)
        return self._insert(
            "user_profiles",
            {
                "email": email,
                "role": role,
                "password_hash": password_hash,
                "assigned_batches": json.dumps([int(value) for value in assigned_batches]),
                "created_at": utcnow_iso(),
            },
            action="add_user",
        )

    def get_user(self, user_id: int) -> Optional[UserProfileRecord]:
        row = self._fetch_one(
            f"SELECT {_USER_COLUMNS} FROM user_profiles WHERE id = ?",
            (user_id,),
            action="user_profiles.get",
            table="user_profiles",
        )
        return _user_from_row(row) if row else None

    def find_user_by_email(self, email: str) -> Optional[UserProfileRecord]:
        row = self._fetch_one(
            f"SELECT {_USER_COLUMNS} FROM user_profiles WHERE email = ?",
            (email,),
            action="user_profiles.lookup_by_email",
            table="user_profiles",
        )
        if row is None:
            LOGGER.debug("User '%s' not found", email)
        return _user_from_row(row) if row else None

    def list_users(self) -> List[UserProfileRecord]:
        rows = self._fetch_all(
            f"SELECT {_USER_COLUMNS} FROM user_profiles ORDER BY created_at, id",
            action="user_profiles.list",
            table="user_profiles",
        )
        return [_user_from_row(row) for row in rows]

    def update_user_assignments(self, user_id: int, batch_ids: Sequence[int]) -> bool:
        encoded = json.dumps([int(value) for value in batch_ids])
        with self._track_db_event(
            "update_user_assignments", table="user_profiles", user_id=user_id
        ) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "UPDATE user_profiles SET assigned_batches = ? WHERE id = ?",
                    (encoded, user_id),
                    action="user_profiles.update_assignments",
                    table="user_profiles",
                )
                affected = cursor.rowcount if cursor.rowcount and cursor.rowcount > 0 else 0
            event["rowcount"] = affected
            return bool(affected)

    def remove_user(self, user_id: int) -> bool:
        return self._delete("user_profiles", user_id, action="remove_user")

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def get_setting(self, key: str) -> Optional[Dict[str, Any]]:
        row = self._fetch_one(
            "SELECT value FROM settings WHERE key = ?",
            (key,),
            action="settings.get",
            table="settings",
        )
        if row is None:
            return None
        try:
            value = json.loads(row["value"])
        except json.JSONDecodeError:
            LOGGER.warning("Setting '%s' holds malformed JSON; ignoring it", key)
            return None
        return value if isinstance(value, dict) else None

    def put_setting(self, key: str, value: Dict[str, Any]) -> None:
        """Store *value* under *key* as a single row; the last write wins."""

        encoded = json.dumps(value, sort_keys=True)
        with self._track_db_event("put_setting", table="settings", key=key):
            with self._session() as connection:
                self._execute(
                    connection,
                    "INSERT INTO settings(key, value, updated_at) VALUES (?, ?, ?)"
                    " ON CONFLICT(key) DO UPDATE SET value = excluded.value,"
                    " updated_at = excluded.updated_at",
                    (key, encoded, utcnow_iso()),
                    action="settings.upsert",
                    table="settings",
                )
        LOGGER.debug("Setting '%s' stored (%s bytes)", key, len(encoded))

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------
    def dump_content(self) -> Dict[str, List[Dict[str, Any]]]:
        """Return raw rows for every content table plus user batch assignments."""

        with self._track_db_event("dump_content") as event:
            dump: Dict[str, List[Dict[str, Any]]] = {}
            with self._session() as connection:
                for table in CONTENT_TABLES:
                    cursor = self._execute(
                        connection,
                        f"SELECT * FROM {table} ORDER BY id",
                        action=f"{table}.dump",
                        table=table,
                    )
                    dump[table] = [dict(row) for row in cursor.fetchall()]
                cursor = self._execute(
                    connection,
                    "SELECT email, assigned_batches FROM user_profiles ORDER BY id",
                    action="user_profiles.dump_assignments",
                    table="user_profiles",
                )
                dump["user_assignments"] = [
                    {
                        "email": row["email"],
                        "assigned_batches": _decode_id_list(row["assigned_batches"]),
                    }
                    for row in cursor.fetchall()
                ]
            event.update({table: len(rows) for table, rows in dump.items()})
            return dump

    def replace_content(self, dump: Dict[str, List[Dict[str, Any]]]) -> Dict[str, int]:
        """Replace every content table with *dump* inside one transaction."""

        counts: Dict[str, int] = {}
        with self._track_db_event("replace_content") as event:
            with self._session() as connection:
                for table in reversed(CONTENT_TABLES):
                    self._execute(
                        connection,
                        f"DELETE FROM {table}",
                        action=f"{table}.clear",
                        table=table,
                    )
                for table in CONTENT_TABLES:
                    rows = dump.get(table) or []
                    for row in rows:
                        columns = ", ".join(row)
                        placeholders = ", ".join("?" for _ in row)
                        self._execute(
                            connection,
                            f"INSERT INTO {table}({columns}) VALUES ({placeholders})",
                            tuple(row.values()),
                            action=f"{table}.restore",
                            table=table,
                        )
                    counts[table] = len(rows)
                for assignment in dump.get("user_assignments") or []:
                    self._execute(
                        connection,
                        "UPDATE user_profiles SET assigned_batches = ? WHERE email = ?",
                        (
                            json.dumps(assignment.get("assigned_batches") or []),
                            assignment.get("email"),
                        ),
                        action="user_profiles.restore_assignments",
                        table="user_profiles",
                    )
            event.update(counts)
        LOGGER.info("Content replaced from snapshot: %s", counts)
        return counts

    def save_backup(self, backup_date: str, data: Dict[str, Any]) -> int:
        """Store *data* as the snapshot for *backup_date*, replacing an earlier one."""

        encoded = json.dumps(data, sort_keys=True)
        with self._track_db_event("save_backup", table="daily_backups", backup_date=backup_date) as event:
            with self._session() as connection:
                self._execute(
                    connection,
                    "INSERT INTO daily_backups(backup_date, backup_data, created_at)"
                    " VALUES (?, ?, ?) ON CONFLICT(backup_date) DO UPDATE SET"
                    " backup_data = excluded.backup_data, created_at = excluded.created_at",
                    (backup_date, encoded, utcnow_iso()),
                    action="daily_backups.upsert",
                    table="daily_backups",
                )
                cursor = self._execute(
                    connection,
                    "SELECT id FROM daily_backups WHERE backup_date = ?",
                    (backup_date,),
                    action="daily_backups.lookup",
                    table="daily_backups",
                )
                backup_id = int(cursor.fetchone()[0])
            event.update({"backup_id": backup_id, "size": len(encoded)})
            return backup_id

    def get_backup(self, backup_date: str) -> Optional[BackupRecord]:
        row = self._fetch_one(
            "SELECT id, backup_date, backup_data, created_at FROM daily_backups"
            " WHERE backup_date = ?",
            (backup_date,),
            action="daily_backups.get",
            table="daily_backups",
        )
        if row is None:
            return None
        data = dict(row)
        try:
            data["backup_data"] = json.loads(data["backup_data"])
        except json.JSONDecodeError as error:
            LOGGER.warning("Backup %s holds malformed JSON", backup_date)
            raise PersistenceError(f"Backup {backup_date} is corrupt") from error
        return BackupRecord(**data)

    def list_backup_dates(self) -> List[Tuple[str, str]]:
        rows = self._fetch_all(
            "SELECT backup_date, created_at FROM daily_backups ORDER BY backup_date DESC",
            action="daily_backups.list",
            table="daily_backups",
        )
        return [(row["backup_date"], row["created_at"]) for row in rows]


__all__ = [
    "BackupRecord",
    "BatchNode",
    "BatchRecord",
    "CONTENT_TABLES",
    "ChapterNode",
    "ChapterRecord",
    "ContentRepository",
    "DEFAULT_SUBJECT_COLOR",
    "IntegrityViolation",
    "LIVE_CLASS_STATUSES",
    "LectureRecord",
    "LiveClassRecord",
    "PersistenceError",
    "SubjectNode",
    "SubjectRecord",
    "UserProfileRecord",
    "VIDEO_TYPES",
    "utcnow_iso",
]
