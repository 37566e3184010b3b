"""
=============================================================================
Tooth Chart (FDI notation)
=============================================================================

Per-tooth status map for one dental exam. Covers the 32 permanent and 20
primary teeth. Each tooth cycles through five statuses:

    N  Normal
    X  Extraction needed
    O  Decayed
    M  Missing
    F  Filled

The extraction / filling / decayed / missing lists sent with an exam are
projections of the chart and are always recomputed from it.

Date: 2026-10-17
Version: 1.0
=============================================================================
"""

from enum import Enum
from typing import Dict, List, Optional, Union


class ToothStatus(str, Enum):
    """Clinical status of a single tooth"""
    NORMAL = 'N'
    EXTRACTION = 'X'
    DECAYED = 'O'
    MISSING = 'M'
    FILLED = 'F'

    def next(self) -> 'ToothStatus':
        """Status that follows this one when the chart button is tapped"""
        order = list(ToothStatus)
        return order[(order.index(self) + 1) % len(order)]

    @classmethod
    def parse(cls, value: Union[str, 'ToothStatus', None]) -> 'ToothStatus':
        """Read a status code, treating blanks and unknown codes as Normal"""
        if isinstance(value, ToothStatus):
            return value
        try:
            return cls(str(value or '').strip().upper())
        except ValueError:
            return cls.NORMAL


# Quadrant order as drawn on the chart
UPPER_RIGHT_PERMANENT = (18, 17, 16, 15, 14, 13, 12, 11)
UPPER_LEFT_PERMANENT = (21, 22, 23, 24, 25, 26, 27, 28)
LOWER_LEFT_PERMANENT = (38, 37, 36, 35, 34, 33, 32, 31)
LOWER_RIGHT_PERMANENT = (41, 42, 43, 44, 45, 46, 47, 48)
UPPER_RIGHT_PRIMARY = (55, 54, 53, 52, 51)
UPPER_LEFT_PRIMARY = (61, 62, 63, 64, 65)
LOWER_LEFT_PRIMARY = (75, 74, 73, 72, 71)
LOWER_RIGHT_PRIMARY = (81, 82, 83, 84, 85)

PERMANENT_TEETH = (UPPER_RIGHT_PERMANENT + UPPER_LEFT_PERMANENT +
                   LOWER_LEFT_PERMANENT + LOWER_RIGHT_PERMANENT)
PRIMARY_TEETH = (UPPER_RIGHT_PRIMARY + UPPER_LEFT_PRIMARY +
                 LOWER_LEFT_PRIMARY + LOWER_RIGHT_PRIMARY)
ALL_TEETH = PERMANENT_TEETH + PRIMARY_TEETH

_VALID_TEETH = frozenset(ALL_TEETH)


def parse_tooth(tooth: Union[int, str]) -> int:
    """
    Validate a tooth identifier.

    Args:
        tooth: FDI number as int or digit string

    Returns:
        Tooth number as int

    Raises:
        ValueError: If the identifier is not one of the 52 charted teeth
    """
    try:
        number = int(str(tooth).strip())
    except (TypeError, ValueError):
        raise ValueError(f"Invalid tooth identifier: {tooth!r}")
    if number not in _VALID_TEETH:
        raise ValueError(f"Invalid tooth identifier: {tooth!r}")
    return number


class ToothChart:
    """Status of every charted tooth for one exam"""

    def __init__(self, statuses: Optional[Dict[Union[int, str], Union[str, ToothStatus]]] = None):
        self._statuses: Dict[int, ToothStatus] = {tooth: ToothStatus.NORMAL for tooth in ALL_TEETH}
        for tooth, status in (statuses or {}).items():
            self.set_status(tooth, status)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> 'ToothChart':
        """
        Build a chart from a stored or remote snapshot.

        Unknown tooth identifiers are dropped and unknown status codes read
        as Normal, since snapshots come from older clients as well.
        """
        chart = cls()
        for tooth, status in (data or {}).items():
            try:
                number = parse_tooth(tooth)
            except ValueError:
                continue
            chart._statuses[number] = ToothStatus.parse(status)
        return chart

    def status(self, tooth: Union[int, str]) -> ToothStatus:
        return self._statuses[parse_tooth(tooth)]

    def set_status(self, tooth: Union[int, str], status: Union[str, ToothStatus]) -> None:
        number = parse_tooth(tooth)
        if isinstance(status, ToothStatus):
            self._statuses[number] = status
        else:
            self._statuses[number] = ToothStatus(str(status).strip().upper())

    def cycle(self, tooth: Union[int, str]) -> ToothStatus:
        """
        Advance one tooth to its next status.

        Args:
            tooth: FDI number

        Returns:
            The new status
        """
        number = parse_tooth(tooth)
        self._statuses[number] = self._statuses[number].next()
        return self._statuses[number]

    def reset(self) -> None:
        for tooth in ALL_TEETH:
            self._statuses[tooth] = ToothStatus.NORMAL

    def teeth_with(self, *statuses: ToothStatus) -> List[int]:
        """Teeth currently in any of the given statuses, ascending"""
        wanted = set(statuses)
        return sorted(tooth for tooth, status in self._statuses.items() if status in wanted)

    @property
    def extraction(self) -> List[int]:
        return self.teeth_with(ToothStatus.EXTRACTION)

    @property
    def filling(self) -> List[int]:
        # Decayed teeth are queued for filling together with filled ones
        return self.teeth_with(ToothStatus.FILLED, ToothStatus.DECAYED)

    @property
    def decayed(self) -> List[int]:
        return self.teeth_with(ToothStatus.DECAYED)

    @property
    def missing(self) -> List[int]:
        return self.teeth_with(ToothStatus.MISSING)

    def projections(self) -> Dict[str, str]:
        """
        Derived exam fields as comma-joined tooth lists.

        Returns:
            Dictionary keyed by the exam column names
        """
        return {
            'tooth_extraction': join_teeth(self.extraction),
            'tooth_filling': join_teeth(self.filling),
            'tooth_decayed': join_teeth(self.decayed),
            'tooth_missing': join_teeth(self.missing),
        }

    def to_dict(self) -> Dict[str, str]:
        """Snapshot keyed by tooth number string, in chart order"""
        return {str(tooth): self._statuses[tooth].value for tooth in ALL_TEETH}

    def __eq__(self, other) -> bool:
        if not isinstance(other, ToothChart):
            return NotImplemented
        return self._statuses == other._statuses

    def __repr__(self):
        changed = {t: s.value for t, s in self._statuses.items() if s is not ToothStatus.NORMAL}
        return f"<ToothChart(changed={changed})>"


def join_teeth(teeth: List[int]) -> str:
    return ', '.join(str(tooth) for tooth in teeth)
