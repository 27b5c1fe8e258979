"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from backend.domain.models import (
    Amenity,
    Reservation,
    ReservationStatus,
    TimeWindow,
    UserRecord,
    UserRole,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


_RESERVATION_SELECT = """
    SELECT
        r.id,
        r.user_id,
        r.amenity_id,
        r.start_time,
        r.end_time,
        s.name AS status,
        r.created_at,
        r.hidden_from_user,
        a.name AS amenity_name
    FROM Reservations AS r
    INNER JOIN ReservationStatuses AS s ON s.id = r.status_id
    INNER JOIN Amenities AS a ON a.id = r.amenity_id
"""

_STATUS_ID = "(SELECT id FROM ReservationStatuses WHERE name = ?)"


def encode_instant(value: datetime) -> str:
    """Fixed-width UTC text so SQL string comparison orders instants."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def decode_instant(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_amenity(row: sqlite3.Row) -> Amenity:
    return Amenity(
        amenity_id=int(row["id"]),
        name=str(row["name"]),
        capacity=int(row["capacity"]),
        max_duration_minutes=int(row["max_duration_minutes"]),
        open_time=row["open_time"],
        close_time=row["close_time"],
        is_active=bool(row["is_active"]),
        requires_approval=bool(row["requires_approval"]),
    )


def _row_to_reservation(row: sqlite3.Row) -> Reservation:
    return Reservation(
        reservation_id=int(row["id"]),
        user_id=int(row["user_id"]),
        amenity_id=int(row["amenity_id"]),
        start_time=decode_instant(str(row["start_time"])),
        end_time=decode_instant(str(row["end_time"])),
        status=ReservationStatus(str(row["status"])),
        created_at=decode_instant(str(row["created_at"])),
        hidden_from_user=bool(row["hidden_from_user"]),
        amenity_name=row["amenity_name"],
    )


def _row_to_user(row: sqlite3.Row) -> UserRecord:
    return UserRecord(
        user_id=int(row["id"]),
        name=str(row["name"]),
        email=str(row["email"]),
        role=UserRole(str(row["role"])),
    )


class ReservationStore:
    """All reservation SQL, bound to one connection.

    Holding the connection lets a caller run several checks and a write inside
    the same transaction.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    # --- Amenity catalog (read side) ---

    def get_amenity(self, amenity_id: int) -> Optional[Amenity]:
        row = self._conn.execute(
            "SELECT * FROM Amenities WHERE id = ?;",
            (amenity_id,),
        ).fetchone()
        return _row_to_amenity(row) if row is not None else None

    def list_amenities(self, only_active: bool = False) -> list[Amenity]:
        query = "SELECT * FROM Amenities"
        if only_active:
            query += " WHERE is_active = 1"
        rows = self._conn.execute(query + " ORDER BY id ASC;").fetchall()
        return [_row_to_amenity(row) for row in rows]

    def create_amenity(
        self,
        *,
        name: str,
        capacity: int,
        max_duration_minutes: int,
        open_time: str | None = None,
        close_time: str | None = None,
        is_active: bool = True,
        requires_approval: bool = False,
    ) -> Amenity:
        cursor = self._conn.execute(
            """
            INSERT INTO Amenities (
                name,
                capacity,
                max_duration_minutes,
                open_time,
                close_time,
                is_active,
                requires_approval
            )
            VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (
                name,
                capacity,
                max_duration_minutes,
                open_time,
                close_time,
                int(is_active),
                int(requires_approval),
            ),
        )
        amenity = self.get_amenity(int(cursor.lastrowid))
        assert amenity is not None
        return amenity

    # --- Identity (read side) ---

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        row = self._conn.execute(
            "SELECT id, name, email, role FROM Users WHERE id = ?;",
            (user_id,),
        ).fetchone()
        return _row_to_user(row) if row is not None else None

    def create_user(self, *, name: str, email: str, role: UserRole = UserRole.USER) -> UserRecord:
        cursor = self._conn.execute(
            "INSERT INTO Users (name, email, role) VALUES (?, ?, ?);",
            (name, email, role.value),
        )
        user = self.get_user(int(cursor.lastrowid))
        assert user is not None
        return user

    # --- Reservations ---

    def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        row = self._conn.execute(
            _RESERVATION_SELECT + " WHERE r.id = ?;",
            (reservation_id,),
        ).fetchone()
        return _row_to_reservation(row) if row is not None else None

    def count_confirmed_overlaps(
        self,
        amenity_id: int,
        window: TimeWindow,
        exclude_reservation_id: int | None = None,
    ) -> int:
        row = self._conn.execute(
            f"""
            SELECT COUNT(*) AS count
            FROM Reservations
            WHERE amenity_id = ?
              AND status_id = {_STATUS_ID}
              AND start_time < ?
              AND end_time > ?
              AND (? IS NULL OR id != ?);
            """,
            (
                amenity_id,
                ReservationStatus.CONFIRMED.value,
                encode_instant(window.end),
                encode_instant(window.start),
                exclude_reservation_id,
                exclude_reservation_id,
            ),
        ).fetchone()
        return int(row["count"])

    def find_user_overlap(self, user_id: int, window: TimeWindow) -> Optional[Reservation]:
        row = self._conn.execute(
            _RESERVATION_SELECT
            + f"""
            WHERE r.user_id = ?
              AND r.status_id = {_STATUS_ID}
              AND r.start_time < ?
              AND r.end_time > ?
            ORDER BY r.start_time ASC
            LIMIT 1;
            """,
            (
                user_id,
                ReservationStatus.CONFIRMED.value,
                encode_instant(window.end),
                encode_instant(window.start),
            ),
        ).fetchone()
        return _row_to_reservation(row) if row is not None else None

    def find_user_amenity_booking_starting_in(
        self,
        user_id: int,
        amenity_id: int,
        day: TimeWindow,
    ) -> Optional[Reservation]:
        row = self._conn.execute(
            _RESERVATION_SELECT
            + f"""
            WHERE r.user_id = ?
              AND r.amenity_id = ?
              AND r.status_id = {_STATUS_ID}
              AND r.start_time >= ?
              AND r.start_time < ?
            LIMIT 1;
            """,
            (
                user_id,
                amenity_id,
                ReservationStatus.CONFIRMED.value,
                encode_instant(day.start),
                encode_instant(day.end),
            ),
        ).fetchone()
        return _row_to_reservation(row) if row is not None else None

    def insert_reservation(
        self,
        *,
        user_id: int,
        amenity_id: int,
        window: TimeWindow,
        status: ReservationStatus,
        created_at: datetime,
    ) -> Reservation:
        cursor = self._conn.execute(
            f"""
            INSERT INTO Reservations (
                user_id,
                amenity_id,
                start_time,
                end_time,
                status_id,
                created_at
            )
            VALUES (?, ?, ?, ?, {_STATUS_ID}, ?);
            """,
            (
                user_id,
                amenity_id,
                encode_instant(window.start),
                encode_instant(window.end),
                status.value,
                encode_instant(created_at),
            ),
        )
        reservation = self.get_reservation(int(cursor.lastrowid))
        assert reservation is not None
        return reservation

    def update_status(
        self,
        reservation_id: int,
        expected: ReservationStatus,
        target: ReservationStatus,
    ) -> bool:
        """Compare-and-set the status; False when another writer got there first."""
        cursor = self._conn.execute(
            f"""
            UPDATE Reservations
            SET status_id = {_STATUS_ID}
            WHERE id = ? AND status_id = {_STATUS_ID};
            """,
            (target.value, reservation_id, expected.value),
        )
        return cursor.rowcount == 1

    def set_hidden_from_user(self, reservation_id: int, hidden: bool = True) -> None:
        self._conn.execute(
            "UPDATE Reservations SET hidden_from_user = ? WHERE id = ?;",
            (int(hidden), reservation_id),
        )

    def finalize_expired(self, now: datetime) -> int:
        cursor = self._conn.execute(
            f"""
            UPDATE Reservations
            SET status_id = {_STATUS_ID}
            WHERE status_id = {_STATUS_ID}
              AND end_time < ?;
            """,
            (
                ReservationStatus.FINALIZED.value,
                ReservationStatus.CONFIRMED.value,
                encode_instant(now),
            ),
        )
        return int(cursor.rowcount)

    def list_user_reservations(self, user_id: int) -> list[Reservation]:
        rows = self._conn.execute(
            _RESERVATION_SELECT
            + """
            WHERE r.user_id = ? AND r.hidden_from_user = 0
            ORDER BY r.start_time ASC, r.id ASC;
            """,
            (user_id,),
        ).fetchall()
        return [_row_to_reservation(row) for row in rows]

    def list_confirmed_for_amenity(
        self,
        amenity_id: int,
        window: TimeWindow | None = None,
    ) -> list[Reservation]:
        query = _RESERVATION_SELECT + f" WHERE r.amenity_id = ? AND r.status_id = {_STATUS_ID}"
        params: list[object] = [amenity_id, ReservationStatus.CONFIRMED.value]
        if window is not None:
            query += " AND r.start_time < ? AND r.end_time > ?"
            params.extend([encode_instant(window.end), encode_instant(window.start)])
        rows = self._conn.execute(
            query + " ORDER BY r.start_time ASC, r.id ASC;",
            tuple(params),
        ).fetchall()
        return [_row_to_reservation(row) for row in rows]

    def list_reservations(
        self,
        *,
        status: ReservationStatus | None = None,
        amenity_id: int | None = None,
        limit: int | None = None,
    ) -> list[Reservation]:
        clauses: list[str] = []
        params: list[object] = []
        if status is not None:
            clauses.append("s.name = ?")
            params.append(status.value)
        if amenity_id is not None:
            clauses.append("r.amenity_id = ?")
            params.append(amenity_id)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        # SQLite treats a negative LIMIT as unbounded.
        params.append(limit if limit is not None else -1)
        rows = self._conn.execute(
            _RESERVATION_SELECT + where + " ORDER BY r.created_at DESC, r.id DESC LIMIT ?;",
            tuple(params),
        ).fetchall()
        return [_row_to_reservation(row) for row in rows]

    def list_confirmed_reservations(self) -> list[Reservation]:
        rows = self._conn.execute(
            _RESERVATION_SELECT + f" WHERE r.status_id = {_STATUS_ID} ORDER BY r.id ASC;",
            (ReservationStatus.CONFIRMED.value,),
        ).fetchall()
        return [_row_to_reservation(row) for row in rows]

    # --- Notifications ---

    def insert_user_notification(
        self,
        *,
        user_id: int,
        reservation_id: int | None,
        kind: str,
        title: str,
        message: str,
        created_at: datetime,
    ) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO UserNotifications (
                user_id,
                reservation_id,
                kind,
                title,
                message,
                created_at
            )
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (user_id, reservation_id, kind, title, message, encode_instant(created_at)),
        )
        return int(cursor.lastrowid)

    def insert_admin_notification(
        self,
        *,
        kind: str,
        reservation_id: int | None,
        created_at: datetime,
    ) -> int:
        cursor = self._conn.execute(
            """
            INSERT INTO AdminNotifications (kind, reservation_id, created_at)
            VALUES (?, ?, ?);
            """,
            (kind, reservation_id, encode_instant(created_at)),
        )
        return int(cursor.lastrowid)

    def list_user_notifications(self, user_id: int) -> list[dict[str, object]]:
        rows = self._conn.execute(
            """
            SELECT id, user_id, reservation_id, kind, title, message, created_at
            FROM UserNotifications
            WHERE user_id = ?
            ORDER BY id ASC;
            """,
            (user_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def list_admin_notifications(self) -> list[dict[str, object]]:
        rows = self._conn.execute(
            """
            SELECT id, kind, reservation_id, created_at
            FROM AdminNotifications
            ORDER BY id ASC;
            """
        ).fetchall()
        return [dict(row) for row in rows]


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below.
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_busy_timeout_seconds,
            isolation_level=None,
            check_same_thread=False,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def transaction(self, *, immediate: bool = True) -> Iterator[ReservationStore]:
        """Run a unit of work; ``immediate`` takes the write lock before the first read.

        Capacity checks and the status write that depends on them must share one
        immediate transaction so concurrent writers serialize.
        """
        connection = self._connect()
        try:
            connection.execute("BEGIN IMMEDIATE;" if immediate else "BEGIN;")
            yield ReservationStore(connection)
            connection.execute("COMMIT;")
        except BaseException:
            if connection.in_transaction:
                connection.execute("ROLLBACK;")
            raise
        finally:
            connection.close()

    @contextmanager
    def reader(self) -> Iterator[ReservationStore]:
        connection = self._connect()
        try:
            yield ReservationStore(connection)
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            # WAL lets readers proceed while one writer holds the lock.
            with self.reader() as store:
                store.connection.execute("PRAGMA journal_mode=WAL;")

            with self.transaction() as store:
                cursor = store.connection.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ReservationStatuses (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL UNIQUE,
                        label TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Users (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL,
                        email TEXT NOT NULL UNIQUE,
                        role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user', 'admin')),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Amenities (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL UNIQUE,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        max_duration_minutes INTEGER NOT NULL CHECK (max_duration_minutes > 0),
                        open_time TEXT,
                        close_time TEXT,
                        is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
                        requires_approval INTEGER NOT NULL DEFAULT 0
                            CHECK (requires_approval IN (0,1)),
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Reservations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id INTEGER NOT NULL,
                        amenity_id INTEGER NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT NOT NULL,
                        status_id INTEGER NOT NULL,
                        created_at TEXT NOT NULL,
                        hidden_from_user INTEGER NOT NULL DEFAULT 0
                            CHECK (hidden_from_user IN (0,1)),
                        CHECK (start_time < end_time),
                        FOREIGN KEY (amenity_id) REFERENCES Amenities(id) ON DELETE CASCADE,
                        FOREIGN KEY (status_id) REFERENCES ReservationStatuses(id)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS UserNotifications (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id INTEGER NOT NULL,
                        reservation_id INTEGER,
                        kind TEXT NOT NULL,
                        title TEXT NOT NULL,
                        message TEXT NOT NULL,
                        is_read INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL,
                        FOREIGN KEY (reservation_id) REFERENCES Reservations(id) ON DELETE CASCADE
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS AdminNotifications (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        kind TEXT NOT NULL,
                        reservation_id INTEGER,
                        created_at TEXT NOT NULL,
                        FOREIGN KEY (reservation_id) REFERENCES Reservations(id) ON DELETE CASCADE
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_amenity_status_window
                    ON Reservations(amenity_id, status_id, start_time, end_time);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_user_status_start
                    ON Reservations(user_id, status_id, start_time);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_reservations_status_end
                    ON Reservations(status_id, end_time);
                    """
                )

                cursor.executemany(
                    """
                    INSERT INTO ReservationStatuses (name, label)
                    VALUES (?, ?)
                    ON CONFLICT(name) DO UPDATE SET label = excluded.label;
                    """,
                    [(status.value, status.label) for status in ReservationStatus],
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> None:
        """Seed demo amenities and residents only when tables are empty."""
        try:
            with self.transaction() as store:
                row = store.connection.execute("SELECT COUNT(*) AS count FROM Amenities;").fetchone()
                if int(row["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return

                amenities = [
                    ("Pool", 10, 120, "08:00", "22:00", True, False),
                    ("Grill", 1, 240, "11:00", "23:00", True, True),
                    ("Gym", 5, 90, "06:00", "23:00", True, False),
                    ("Party Room", 1, 300, "10:00", "23:30", True, True),
                    ("Tennis Court", 2, 60, "08:00", "20:00", False, False),
                ]
                for name, capacity, max_duration, open_time, close_time, active, approval in amenities:
                    store.create_amenity(
                        name=name,
                        capacity=capacity,
                        max_duration_minutes=max_duration,
                        open_time=open_time,
                        close_time=close_time,
                        is_active=active,
                        requires_approval=approval,
                    )

                users = [
                    ("Building Admin", "admin@building.local", UserRole.ADMIN),
                    ("Resident 1A", "resident1a@building.local", UserRole.USER),
                    ("Resident 2B", "resident2b@building.local", UserRole.USER),
                    ("Resident 3C", "resident3c@building.local", UserRole.USER),
                ]
                for name, email, role in users:
                    store.create_user(name=name, email=email, role=role)
            logger.info(
                "Demo seed completed with %s amenities and %s users",
                len(amenities),
                len(users),
            )
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

    # --- Read-only conveniences ---

    def get_amenity(self, amenity_id: int) -> Optional[Amenity]:
        with self.reader() as store:
            return store.get_amenity(amenity_id)

    def list_amenities(self, only_active: bool = False) -> list[Amenity]:
        with self.reader() as store:
            return store.list_amenities(only_active=only_active)

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self.reader() as store:
            return store.get_user(user_id)

    def get_reservation(self, reservation_id: int) -> Optional[Reservation]:
        with self.reader() as store:
            return store.get_reservation(reservation_id)

    def list_user_notifications(self, user_id: int) -> list[dict[str, object]]:
        with self.reader() as store:
            return store.list_user_notifications(user_id)

    def list_admin_notifications(self) -> list[dict[str, object]]:
        with self.reader() as store:
            return store.list_admin_notifications()

    def list_confirmed_reservations(self) -> list[Reservation]:
        with self.reader() as store:
            return store.list_confirmed_reservations()

    def count_reservations_by_status(self) -> dict[str, int]:
        """Return per-status counts for diagnostics and tests."""
        with self.reader() as store:
            rows = store.connection.execute(
                """
                SELECT s.name AS status, COUNT(r.id) AS count
                FROM ReservationStatuses AS s
                LEFT JOIN Reservations AS r ON r.status_id = s.id
                GROUP BY s.name
                ORDER BY s.name ASC;
                """
            ).fetchall()
            return {str(row["status"]): int(row["count"]) for row in rows}

    # --- Write conveniences used by seeding scripts and tests ---

    def create_amenity(self, **fields: object) -> Amenity:
        with self.transaction() as store:
            return store.create_amenity(**fields)  # type: ignore[arg-type]

    def create_user(self, *, name: str, email: str, role: UserRole = UserRole.USER) -> UserRecord:
        with self.transaction() as store:
            return store.create_user(name=name, email=email, role=role)

    def insert_reservation(
        self,
        *,
        user_id: int,
        amenity_id: int,
        window: TimeWindow,
        status: ReservationStatus,
        created_at: Optional[datetime] = None,
    ) -> Reservation:
        """Insert a row without the creation gate; fixtures and imports only."""
        with self.transaction() as store:
            return store.insert_reservation(
                user_id=user_id,
                amenity_id=amenity_id,
                window=window,
                status=status,
                created_at=created_at or datetime.now(timezone.utc),
            )
