"""Transactional ledger of registrant-to-room allocations.

Occupancy is never stored: it is the count of ledger rows per room. Every
write re-checks capacity, gender, verification and the
one-allocation-per-registrant rule inside a ``BEGIN IMMEDIATE`` transaction,
so a decision computed earlier from a stale read can lose the race but can
never overfill a room or house an unverified registrant.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional, Sequence

from housing.domain.errors import (
    AllocationConflictError,
    ConcurrencyError,
    RegistrantNotFoundError,
    RoomNotFoundError,
)
from housing.domain.models import Allocation, Gender, RoomAvailability, RoomDetails
from housing.repository.data_repository import DataRepository, row_to_room
from housing.utils.logger import get_logger, log_event
from housing.utils.time_utils import utc_now_iso


logger = get_logger(__name__)


def _row_to_allocation(row: sqlite3.Row) -> Allocation:
    return Allocation(
        registrant_id=int(row["registrant_id"]),
        room_id=int(row["room_id"]),
        allocated_at=str(row["allocated_at"]),
        allocated_by=str(row["allocated_by"]),
    )


class AllocationStore:
    def __init__(self, repository: DataRepository) -> None:
        self._repository = repository

    def commit(self, registrant_id: int, room_id: int, allocated_by: str) -> Allocation:
        return self.commit_group([registrant_id], room_id, allocated_by)[0]

    def commit_group(
        self,
        registrant_ids: Sequence[int],
        room_id: int,
        allocated_by: str,
    ) -> list[Allocation]:
        """Place every registrant in ``room_id`` or none of them."""
        ids = list(dict.fromkeys(int(item) for item in registrant_ids))
        if not ids:
            return []

        allocated_at = utc_now_iso()
        try:
            with self._repository.transaction() as conn:
                room_row = conn.execute(
                    "SELECT id, name, gender, capacity, is_active, min_age, max_age, description "
                    "FROM Rooms WHERE id = ?;",
                    (room_id,),
                ).fetchone()
                if room_row is None:
                    raise RoomNotFoundError(room_id)
                room = row_to_room(room_row)

                placeholders = ",".join("?" for _ in ids)
                registrant_rows = conn.execute(
                    f"SELECT id, gender, is_verified FROM Registrants "
                    f"WHERE id IN ({placeholders});",
                    tuple(ids),
                ).fetchall()
                genders = {int(row["id"]): Gender(row["gender"]) for row in registrant_rows}
                unverified = tuple(
                    int(row["id"]) for row in registrant_rows if not bool(row["is_verified"])
                )
                for registrant_id in ids:
                    if registrant_id not in genders:
                        raise RegistrantNotFoundError(registrant_id)
                mismatched = [rid for rid in ids if genders[rid] != room.gender]
                if mismatched:
                    raise AllocationConflictError(
                        AllocationConflictError.GENDER_MISMATCH,
                        f"Room {room.name} only accepts {room.gender.value} registrants",
                        {"room_id": room.room_id, "registrant_ids": mismatched},
                    )

                taken = tuple(
                    int(row["registrant_id"])
                    for row in conn.execute(
                        f"SELECT registrant_id FROM RoomAllocations "
                        f"WHERE registrant_id IN ({placeholders});",
                        tuple(ids),
                    ).fetchall()
                )
                if taken or unverified:
                    raise ConcurrencyError(
                        (
                            f"Registrants no longer eligible: allocated={list(taken)} "
                            f"unverified={list(unverified)}"
                        ),
                        room_id=room_id,
                        taken_registrant_ids=taken,
                        unverified_registrant_ids=unverified,
                    )

                occupancy = self._occupancy(conn, room_id)
                if occupancy + len(ids) > room.capacity:
                    raise ConcurrencyError(
                        (
                            f"Room {room.name} has {room.capacity - occupancy} free beds, "
                            f"{len(ids)} requested"
                        ),
                        room_id=room_id,
                    )

                conn.executemany(
                    """
                    INSERT INTO RoomAllocations (registrant_id, room_id, allocated_at, allocated_by)
                    VALUES (?, ?, ?, ?);
                    """,
                    [(registrant_id, room_id, allocated_at, allocated_by) for registrant_id in ids],
                )
        except sqlite3.IntegrityError as exc:
            raise ConcurrencyError(
                f"Allocation uniqueness violated at commit: {exc}",
                room_id=room_id,
                taken_registrant_ids=tuple(ids),
            ) from exc
        except sqlite3.OperationalError as exc:
            if "locked" not in str(exc) and "busy" not in str(exc):
                raise
            logger.warning("Allocation commit timed out | room_id=%s | error=%s", room_id, exc)
            raise ConcurrencyError(
                f"Allocation commit did not complete: {exc}",
                room_id=room_id,
            ) from exc

        log_event(
            logger,
            logging.DEBUG,
            "Allocations committed",
            room_id=room_id,
            registrants=ids,
            by=allocated_by,
        )
        return [
            Allocation(
                registrant_id=registrant_id,
                room_id=room_id,
                allocated_at=allocated_at,
                allocated_by=allocated_by,
            )
            for registrant_id in ids
        ]

    def remove(
        self,
        registrant_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """Delete the registrant's allocation; a missing one is a no-op."""
        if conn is not None:
            cursor = conn.execute(
                "DELETE FROM RoomAllocations WHERE registrant_id = ?;",
                (registrant_id,),
            )
            return cursor.rowcount > 0
        with self._repository.transaction() as tx:
            cursor = tx.execute(
                "DELETE FROM RoomAllocations WHERE registrant_id = ?;",
                (registrant_id,),
            )
            return cursor.rowcount > 0

    def remove_for_gender(self, gender: Gender) -> tuple[int, int]:
        """Empty every room of ``gender``; returns (allocations removed, rooms affected)."""
        with self._repository.transaction() as conn:
            affected_rooms = int(
                conn.execute(
                    """
                    SELECT COUNT(DISTINCT ra.room_id) AS count
                    FROM RoomAllocations AS ra
                    INNER JOIN Rooms AS r ON r.id = ra.room_id
                    WHERE r.gender = ?;
                    """,
                    (Gender(gender).value,),
                ).fetchone()["count"]
            )
            cursor = conn.execute(
                """
                DELETE FROM RoomAllocations
                WHERE room_id IN (SELECT id FROM Rooms WHERE gender = ?);
                """,
                (Gender(gender).value,),
            )
            removed = cursor.rowcount
        return removed, affected_rooms

    def get(
        self,
        registrant_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Allocation]:
        query = (
            "SELECT registrant_id, room_id, allocated_at, allocated_by "
            "FROM RoomAllocations WHERE registrant_id = ?;"
        )
        if conn is not None:
            row = conn.execute(query, (registrant_id,)).fetchone()
        else:
            with self._repository.read() as read_conn:
                row = read_conn.execute(query, (registrant_id,)).fetchone()
        return None if row is None else _row_to_allocation(row)

    @staticmethod
    def _occupancy(conn: sqlite3.Connection, room_id: int) -> int:
        row = conn.execute(
            "SELECT COUNT(*) AS count FROM RoomAllocations WHERE room_id = ?;",
            (room_id,),
        ).fetchone()
        return int(row["count"])

    def occupancy(self, room_id: int) -> int:
        with self._repository.read() as conn:
            return self._occupancy(conn, room_id)

    def occupancy_by_room(self) -> dict[int, int]:
        with self._repository.read() as conn:
            rows = conn.execute(
                "SELECT room_id, COUNT(*) AS count FROM RoomAllocations GROUP BY room_id;"
            ).fetchall()
            return {int(row["room_id"]): int(row["count"]) for row in rows}

    def count_allocations(self) -> int:
        with self._repository.read() as conn:
            row = conn.execute("SELECT COUNT(*) AS count FROM RoomAllocations;").fetchone()
            return int(row["count"])

    def list_room_availability(
        self,
        gender: Optional[Gender] = None,
        *,
        active_only: bool = True,
    ) -> list[RoomAvailability]:
        """Rooms joined with their live occupancy, ordered by room id."""
        clauses = []
        params: list[object] = []
        if gender is not None:
            clauses.append("r.gender = ?")
            params.append(Gender(gender).value)
        if active_only:
            clauses.append("r.is_active = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._repository.read() as conn:
            rows = conn.execute(
                f"""
                SELECT
                    r.id, r.name, r.gender, r.capacity, r.is_active,
                    r.min_age, r.max_age, r.description,
                    COUNT(ra.id) AS occupancy
                FROM Rooms AS r
                LEFT JOIN RoomAllocations AS ra ON ra.room_id = r.id
                {where}
                GROUP BY r.id
                ORDER BY r.id ASC;
                """,
                tuple(params),
            ).fetchall()
            return [
                RoomAvailability(room=row_to_room(row), occupancy=int(row["occupancy"]))
                for row in rows
            ]

    def list_for_room(self, room_id: int) -> list[Allocation]:
        with self._repository.read() as conn:
            rows = conn.execute(
                """
                SELECT registrant_id, room_id, allocated_at, allocated_by
                FROM RoomAllocations
                WHERE room_id = ?
                ORDER BY allocated_at ASC, id ASC;
                """,
                (room_id,),
            ).fetchall()
            return [_row_to_allocation(row) for row in rows]

    def list_occupants(
        self,
        room_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[tuple[int, str]]:
        """(registrant id, full name) of everyone in the room, earliest first."""
        query = """
            SELECT ra.registrant_id, r.full_name
            FROM RoomAllocations AS ra
            INNER JOIN Registrants AS r ON r.id = ra.registrant_id
            WHERE ra.room_id = ?
            ORDER BY ra.allocated_at ASC, ra.id ASC;
        """
        if conn is not None:
            rows = conn.execute(query, (room_id,)).fetchall()
        else:
            with self._repository.read() as read_conn:
                rows = read_conn.execute(query, (room_id,)).fetchall()
        return [(int(row["registrant_id"]), str(row["full_name"])) for row in rows]

    def room_details(
        self,
        registrant_id: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[RoomDetails]:
        """Room, occupancy and roommates of the registrant's current allocation."""
        query = """
            SELECT
                ra.room_id, ra.allocated_at, ra.allocated_by,
                rm.name AS room_name, rm.gender AS room_gender, rm.capacity,
                rg.full_name
            FROM RoomAllocations AS ra
            INNER JOIN Rooms AS rm ON rm.id = ra.room_id
            INNER JOIN Registrants AS rg ON rg.id = ra.registrant_id
            WHERE ra.registrant_id = ?;
        """
        if conn is not None:
            row = conn.execute(query, (registrant_id,)).fetchone()
        else:
            with self._repository.read() as read_conn:
                row = read_conn.execute(query, (registrant_id,)).fetchone()
        if row is None:
            return None

        occupants = self.list_occupants(int(row["room_id"]), conn=conn)
        return RoomDetails(
            room_id=int(row["room_id"]),
            room_name=str(row["room_name"]),
            room_gender=Gender(row["room_gender"]),
            room_capacity=int(row["capacity"]),
            current_occupancy=len(occupants),
            roommates=[name for occupant_id, name in occupants if occupant_id != registrant_id],
            registrant_name=str(row["full_name"]),
            allocated_at=str(row["allocated_at"]),
            allocated_by=str(row["allocated_by"]),
        )

    def occupants_by_room(self) -> dict[int, list[str]]:
        with self._repository.read() as conn:
            rows = conn.execute(
                """
                SELECT ra.room_id, r.full_name
                FROM RoomAllocations AS ra
                INNER JOIN Registrants AS r ON r.id = ra.registrant_id
                ORDER BY ra.room_id ASC, ra.allocated_at ASC, ra.id ASC;
                """
            ).fetchall()
        result: dict[int, list[str]] = {}
        for row in rows:
            result.setdefault(int(row["room_id"]), []).append(str(row["full_name"]))
        return result
