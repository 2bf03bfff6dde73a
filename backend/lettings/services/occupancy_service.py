# Overview: Service-layer operations for room occupancy; detects double-letting conflicts.

"""
Bedroom occupancy conflict detection

RULES:
- Two assignments of the same room conflict when their date ranges overlap.
- Boundaries are inclusive: A ending on the day B starts is a conflict
  (no-gap handover policy). A ending the day before B starts is not.
- A missing end date (rolling tenancy) extends to +infinity.
- Tenancies in EXCLUDED_OCCUPANCY_STATUSES no longer hold their rooms.
- Candidates without a room are skipped.

detect_overlaps() is pure; find_conflicts() loads current occupancy and
delegates to it. Callers that write must lock the rooms first
(concurrency.lock_bedrooms) and run the check in the same transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import date
from typing import Iterable, Optional

from ..config import setting
from ..extensions import db
from ..models import Bedroom, Tenancy, TenancyMember
from ..time_utils import to_iso_date
from ..validation import ConflictError


@dataclass(frozen=True)
class CandidateAssignment:
    bedroom_id: Optional[int]
    occupant_label: str


@dataclass(frozen=True)
class Occupancy:
    """An existing room assignment: one member of one tenancy."""
    tenancy_id: int
    tenancy_status: str
    bedroom_id: int
    bedroom_name: str
    occupant_name: str
    start_date: date
    end_date: Optional[date]


@dataclass(frozen=True)
class Conflict:
    bedroom_id: int
    bedroom_name: str
    new_occupant: str
    existing_occupant: str
    existing_tenancy_id: int
    existing_status: str
    existing_start: date
    existing_end: Optional[date]

    @property
    def message(self) -> str:
        until = self.existing_end.isoformat() if self.existing_end else "ongoing (rolling)"
        return (
            f"{self.bedroom_name} is already let to {self.existing_occupant} "
            f"(tenancy #{self.existing_tenancy_id}, {self.existing_status}) "
            f"from {self.existing_start.isoformat()} to {until}; "
            f"cannot assign it to {self.new_occupant}"
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["existing_start"] = to_iso_date(self.existing_start)
        data["existing_end"] = to_iso_date(self.existing_end)
        data["message"] = self.message
        return data


class BedroomConflictError(ConflictError):
    """Room double-booking; carries every conflicting assignment."""

    def __init__(self, conflicts: list[Conflict]):
        self.conflicts = list(conflicts)
        super().__init__(format_conflict_error(self.conflicts))

    def to_dict(self) -> dict:
        return {
            "error": "Bedroom conflict",
            "message": str(self),
            "conflicts": [c.to_dict() for c in self.conflicts],
        }


def ranges_overlap(
    start_a: date,
    end_a: Optional[date],
    start_b: date,
    end_b: Optional[date],
) -> bool:
    """Inclusive overlap test; None end means open-ended."""
    a_before_b_ends = end_b is None or start_a <= end_b
    b_before_a_ends = end_a is None or start_b <= end_a
    return a_before_b_ends and b_before_a_ends


def _as_candidate(item) -> CandidateAssignment:
    if isinstance(item, CandidateAssignment):
        return item
    bedroom_id, label = item
    return CandidateAssignment(bedroom_id=bedroom_id, occupant_label=label)


def detect_overlaps(
    candidates: Iterable,
    start_date: date,
    end_date: Optional[date],
    occupancies: Iterable[Occupancy],
    *,
    exclude_tenancy_id: Optional[int] = None,
) -> list[Conflict]:
    """
    Compare candidate room assignments against existing occupancy.

    Args:
        candidates: CandidateAssignment or (bedroom_id, occupant_label) pairs
        start_date: Candidate range start
        end_date: Candidate range end, None for open-ended
        occupancies: Existing assignments to check against
        exclude_tenancy_id: Tenancy being edited; its own rows never conflict

    Returns:
        One Conflict per (candidate, existing assignment) overlap, empty if none
    """
    by_room: dict[int, list[Occupancy]] = {}
    for occ in occupancies:
        if exclude_tenancy_id is not None and occ.tenancy_id == exclude_tenancy_id:
            continue
        by_room.setdefault(occ.bedroom_id, []).append(occ)

    conflicts = []
    for candidate in map(_as_candidate, candidates):
        if candidate.bedroom_id is None:
            continue
        for occ in by_room.get(candidate.bedroom_id, []):
            if ranges_overlap(start_date, end_date, occ.start_date, occ.end_date):
                conflicts.append(Conflict(
                    bedroom_id=occ.bedroom_id,
                    bedroom_name=occ.bedroom_name,
                    new_occupant=candidate.occupant_label,
                    existing_occupant=occ.occupant_name,
                    existing_tenancy_id=occ.tenancy_id,
                    existing_status=occ.tenancy_status,
                    existing_start=occ.start_date,
                    existing_end=occ.end_date,
                ))
    return conflicts


def load_occupancies(bedroom_ids: Iterable[int], *, agency_id: int) -> list[Occupancy]:
    """Current assignments of the given rooms in tenancies that still hold them."""
    ids = sorted({b for b in bedroom_ids if b is not None})
    if not ids:
        return []
    excluded = tuple(setting("EXCLUDED_OCCUPANCY_STATUSES"))
    rows = (
        db.session.query(TenancyMember, Tenancy, Bedroom)
        .join(Tenancy, TenancyMember.tenancy_id == Tenancy.id)
        .join(Bedroom, TenancyMember.bedroom_id == Bedroom.id)
        .filter(
            Tenancy.agency_id == agency_id,
            TenancyMember.bedroom_id.in_(ids),
            Tenancy.status.notin_(excluded),
        )
        .order_by(Tenancy.start_date, Tenancy.id, TenancyMember.id)
        .all()
    )
    return [
        Occupancy(
            tenancy_id=tenancy.id,
            tenancy_status=tenancy.status,
            bedroom_id=bedroom.id,
            bedroom_name=bedroom.name,
            occupant_name=member.full_name,
            start_date=tenancy.start_date,
            end_date=tenancy.end_date,
        )
        for member, tenancy, bedroom in rows
    ]


def find_conflicts(
    candidates: Iterable,
    start_date: date,
    end_date: Optional[date] = None,
    exclude_tenancy_id: Optional[int] = None,
    *,
    agency_id: int,
) -> list[Conflict]:
    """
    Find existing tenancies that already hold any candidate room in the range.

    Pure query: never writes and never raises for well-formed input.
    """
    candidates = [_as_candidate(c) for c in candidates]
    occupancies = load_occupancies((c.bedroom_id for c in candidates), agency_id=agency_id)
    return detect_overlaps(
        candidates,
        start_date,
        end_date,
        occupancies,
        exclude_tenancy_id=exclude_tenancy_id,
    )


def ensure_no_conflicts(
    candidates: Iterable,
    start_date: date,
    end_date: Optional[date] = None,
    exclude_tenancy_id: Optional[int] = None,
    *,
    agency_id: int,
) -> None:
    """Raise BedroomConflictError listing every conflict, if any."""
    conflicts = find_conflicts(
        candidates, start_date, end_date, exclude_tenancy_id, agency_id=agency_id,
    )
    if conflicts:
        raise BedroomConflictError(conflicts)


def format_conflict_error(conflicts: list[Conflict]) -> str:
    """
    Multi-line message listing every conflict, numbered.

    Example:
        Bedroom conflict: 1 room assignment overlaps an existing tenancy.
          1. Room 2 is already let to Jo Bloggs (tenancy #4, active) ...
        Choose different rooms or adjust the tenancy dates.
    """
    if not conflicts:
        return ""
    noun = "assignment overlaps" if len(conflicts) == 1 else "assignments overlap"
    lines = [f"Bedroom conflict: {len(conflicts)} room {noun} an existing tenancy."]
    for index, conflict in enumerate(conflicts, start=1):
        lines.append(f"  {index}. {conflict.message}")
    lines.append("Choose different rooms or adjust the tenancy dates.")
    return "\n".join(lines)
