"""Repository layer responsible for registrant, room and settings storage."""

from __future__ import annotations

import random
import sqlite3
from contextlib import contextmanager
from datetime import date, timedelta
from pathlib import Path
from typing import Iterator, Optional

from housing.domain.models import Gender, Registrant, Room
from housing.utils.config import Settings, get_settings
from housing.utils.logger import get_logger
from housing.utils.time_utils import utc_now_iso, utc_today


logger = get_logger(__name__)

AGE_GAP_CONFIG_KEY = "accommodation_max_age_gap"

_REGISTRANT_COLUMNS = """
    id,
    full_name,
    gender,
    date_of_birth,
    is_verified,
    created_at,
    verified_at,
    verified_by,
    unverified_at,
    unverified_by
"""

_ROOM_COLUMNS = "id, name, gender, capacity, is_active, min_age, max_age, description"


def row_to_registrant(row: sqlite3.Row) -> Registrant:
    return Registrant(
        registrant_id=int(row["id"]),
        full_name=str(row["full_name"]),
        gender=Gender(row["gender"]),
        date_of_birth=date.fromisoformat(str(row["date_of_birth"])),
        is_verified=bool(row["is_verified"]),
        created_at=str(row["created_at"]),
        verified_at=row["verified_at"],
        verified_by=row["verified_by"],
        unverified_at=row["unverified_at"],
        unverified_by=row["unverified_by"],
    )


def row_to_room(row: sqlite3.Row) -> Room:
    return Room(
        room_id=int(row["id"]),
        name=str(row["name"]),
        gender=Gender(row["gender"]),
        capacity=int(row["capacity"]),
        is_active=bool(row["is_active"]),
        min_age=None if row["min_age"] is None else int(row["min_age"]),
        max_age=None if row["max_age"] is None else int(row["max_age"]),
        description=row["description"],
    )


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic.

    Registrants and rooms are owned by other parts of the event system; this
    engine only reads them, except for the verification columns that the
    verification guard flips.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_busy_timeout_seconds,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        connection = self._connect()
        try:
            yield connection
        finally:
            connection.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction holding the database write lock from the start.

        ``BEGIN IMMEDIATE`` serializes writers, so checks made inside the block
        still hold when the block commits. Any exception rolls back.
        """
        connection = self._connect()
        connection.isolation_level = None
        try:
            connection.execute("BEGIN IMMEDIATE;")
            try:
                yield connection
            except BaseException:
                connection.execute("ROLLBACK;")
                raise
            connection.execute("COMMIT;")
        finally:
            connection.close()

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Registrants (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        full_name TEXT NOT NULL,
                        gender TEXT NOT NULL CHECK (gender IN ('Male', 'Female')),
                        date_of_birth TEXT NOT NULL,
                        is_verified INTEGER NOT NULL DEFAULT 0 CHECK (is_verified IN (0,1)),
                        verified_at TEXT,
                        verified_by TEXT,
                        unverified_at TEXT,
                        unverified_by TEXT,
                        created_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS Rooms (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        name TEXT NOT NULL UNIQUE,
                        gender TEXT NOT NULL CHECK (gender IN ('Male', 'Female')),
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
                        min_age INTEGER,
                        max_age INTEGER,
                        description TEXT,
                        created_at TEXT NOT NULL,
                        CHECK (min_age IS NULL OR max_age IS NULL OR min_age <= max_age)
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS RoomAllocations (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        registrant_id INTEGER NOT NULL UNIQUE,
                        room_id INTEGER NOT NULL,
                        allocated_at TEXT NOT NULL,
                        allocated_by TEXT NOT NULL,
                        FOREIGN KEY (registrant_id) REFERENCES Registrants(id) ON DELETE CASCADE,
                        FOREIGN KEY (room_id) REFERENCES Rooms(id) ON DELETE CASCADE
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE TABLE IF NOT EXISTS SystemConfig (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        description TEXT,
                        updated_at TEXT NOT NULL
                    );
                    """
                )

                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_allocations_room
                    ON RoomAllocations(room_id);
                    """
                )
                cursor.execute(
                    """
                    CREATE INDEX IF NOT EXISTS idx_registrants_gender_verified
                    ON Registrants(gender, is_verified);
                    """
                )
                conn.commit()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> None:
        """Seed deterministic demo rooms and registrants only when empty."""
        rng = random.Random(self._settings.demo_random_seed)
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute("SELECT COUNT(*) AS count FROM Rooms;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return

                now = utc_now_iso()
                rooms = []
                for index in range(self._settings.demo_room_count):
                    gender = Gender.FEMALE if index % 2 == 0 else Gender.MALE
                    rooms.append(
                        (
                            f"{gender.value} Dorm {index // 2 + 1}",
                            gender.value,
                            rng.choice((2, 3, 4, 6)),
                            now,
                        )
                    )
                cursor.executemany(
                    """
                    INSERT INTO Rooms (name, gender, capacity, created_at)
                    VALUES (?, ?, ?, ?);
                    """,
                    rooms,
                )

                today = utc_today()
                registrants = []
                for index in range(self._settings.demo_registrant_count):
                    gender = rng.choice((Gender.FEMALE, Gender.MALE))
                    age_days = rng.randint(12 * 365, 30 * 365)
                    registrants.append(
                        (
                            f"Demo Registrant {index + 1:03d}",
                            gender.value,
                            (today - timedelta(days=age_days)).isoformat(),
                            1 if rng.random() < 0.75 else 0,
                            now,
                        )
                    )
                cursor.executemany(
                    """
                    INSERT INTO Registrants (
                        full_name, gender, date_of_birth, is_verified, created_at
                    )
                    VALUES (?, ?, ?, ?, ?);
                    """,
                    registrants,
                )
                conn.commit()
            logger.info(
                "Demo seed completed | rooms=%s | registrants=%s",
                len(rooms),
                len(registrants),
            )
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

    # --- Rooms -----------------------------------------------------------

    def create_room(
        self,
        name: str,
        gender: Gender,
        capacity: int,
        *,
        min_age: Optional[int] = None,
        max_age: Optional[int] = None,
        is_active: bool = True,
        description: Optional[str] = None,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Rooms (
                    name, gender, capacity, is_active, min_age, max_age, description, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    name,
                    Gender(gender).value,
                    capacity,
                    1 if is_active else 0,
                    min_age,
                    max_age,
                    description,
                    utc_now_iso(),
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def get_room(self, room_id: int) -> Optional[Room]:
        with self.read() as conn:
            row = conn.execute(
                f"SELECT {_ROOM_COLUMNS} FROM Rooms WHERE id = ?;",
                (room_id,),
            ).fetchone()
            return None if row is None else row_to_room(row)

    def list_rooms(
        self,
        gender: Optional[Gender] = None,
        *,
        active_only: bool = False,
    ) -> list[Room]:
        clauses = []
        params: list[object] = []
        if gender is not None:
            clauses.append("gender = ?")
            params.append(Gender(gender).value)
        if active_only:
            clauses.append("is_active = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.read() as conn:
            rows = conn.execute(
                f"SELECT {_ROOM_COLUMNS} FROM Rooms {where} ORDER BY gender ASC, name ASC;",
                tuple(params),
            ).fetchall()
            return [row_to_room(row) for row in rows]

    # --- Registrants -----------------------------------------------------

    def create_registrant(
        self,
        full_name: str,
        gender: Gender,
        date_of_birth: date,
        *,
        is_verified: bool = False,
        created_at: Optional[str] = None,
    ) -> int:
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO Registrants (
                    full_name, gender, date_of_birth, is_verified, created_at
                )
                VALUES (?, ?, ?, ?, ?);
                """,
                (
                    full_name,
                    Gender(gender).value,
                    date_of_birth.isoformat(),
                    1 if is_verified else 0,
                    created_at or utc_now_iso(),
                ),
            )
            conn.commit()
            return int(cursor.lastrowid)

    def get_registrant(
        self,
        registrant_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Registrant]:
        query = f"SELECT {_REGISTRANT_COLUMNS} FROM Registrants WHERE id = ?;"
        if conn is not None:
            row = conn.execute(query, (registrant_id,)).fetchone()
        else:
            with self.read() as read_conn:
                row = read_conn.execute(query, (registrant_id,)).fetchone()
        return None if row is None else row_to_registrant(row)

    def list_unallocated_verified(self, gender: Gender) -> list[Registrant]:
        """Verified registrants of ``gender`` holding no allocation."""
        with self.read() as conn:
            rows = conn.execute(
                f"""
                SELECT {_REGISTRANT_COLUMNS}
                FROM Registrants AS r
                WHERE r.gender = ?
                  AND r.is_verified = 1
                  AND NOT EXISTS (
                      SELECT 1 FROM RoomAllocations AS ra WHERE ra.registrant_id = r.id
                  )
                ORDER BY r.created_at ASC, r.id ASC;
                """,
                (Gender(gender).value,),
            ).fetchall()
            return [row_to_registrant(row) for row in rows]

    def count_registrants(self, *, verified_only: bool = False) -> int:
        where = "WHERE is_verified = 1" if verified_only else ""
        with self.read() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS count FROM Registrants {where};").fetchone()
            return int(row["count"])

    def mark_verified(
        self,
        registrant_id: int,
        *,
        verified_by: str,
        verified_at: str,
        conn: sqlite3.Connection,
    ) -> bool:
        """Flip Unverified -> Verified; False when the registrant was already verified."""
        cursor = conn.execute(
            """
            UPDATE Registrants
            SET is_verified = 1,
                verified_at = ?,
                verified_by = ?
            WHERE id = ? AND is_verified = 0;
            """,
            (verified_at, verified_by, registrant_id),
        )
        return cursor.rowcount == 1

    def mark_unverified(
        self,
        registrant_id: int,
        *,
        unverified_by: str,
        unverified_at: str,
        conn: sqlite3.Connection,
    ) -> bool:
        """Flip Verified -> Unverified; False when the registrant was not verified."""
        cursor = conn.execute(
            """
            UPDATE Registrants
            SET is_verified = 0,
                verified_at = NULL,
                verified_by = NULL,
                unverified_at = ?,
                unverified_by = ?
            WHERE id = ? AND is_verified = 1;
            """,
            (unverified_at, unverified_by, registrant_id),
        )
        return cursor.rowcount == 1

    # --- System config ---------------------------------------------------

    def get_config_value(self, key: str) -> Optional[str]:
        with self.read() as conn:
            row = conn.execute(
                "SELECT value FROM SystemConfig WHERE key = ?;",
                (key,),
            ).fetchone()
            return None if row is None else str(row["value"])

    def set_config_value(self, key: str, value: str, description: str = "") -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO SystemConfig (key, value, description, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at;
                """,
                (key, value, description, utc_now_iso()),
            )
            conn.commit()
