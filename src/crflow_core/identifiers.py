"""Human-readable change request identifiers.

Format: CR-YYYY-MM-NNNNNN, e.g. CR-2026-10-000042. The sequence restarts
every calendar month and is zero-padded to six digits.
"""
import re
from datetime import datetime
from typing import NamedTuple

CR_ID_PATTERN = re.compile(r"^CR-(\d{4})-(\d{2})-(\d{6})$")
SEQUENCE_WIDTH = 6
MAX_SEQUENCE = 10 ** SEQUENCE_WIDTH - 1


class ParsedCRId(NamedTuple):
    year: int
    month: int
    sequence: int

    @property
    def prefix(self) -> str:
        return f"CR-{self.year}-{self.month:02d}"


def prefix_for(moment: datetime) -> str:
    """Id prefix for the month containing ``moment``."""
    return f"CR-{moment.year}-{moment.month:02d}"


def format_cr_id(prefix: str, sequence: int) -> str:
    """
    Build a CR id from a month prefix and sequence number.

    Raises:
        ValueError: If the sequence does not fit in six digits
    """
    if sequence < 1 or sequence > MAX_SEQUENCE:
        raise ValueError(f"Sequence {sequence} out of range for prefix {prefix}")
    return f"{prefix}-{sequence:0{SEQUENCE_WIDTH}d}"


def parse_cr_id(cr_id: str) -> ParsedCRId:
    """
    Split a CR id into its parts.

    Raises:
        ValueError: If ``cr_id`` is not a well-formed CR id
    """
    match = CR_ID_PATTERN.match(cr_id)
    if not match:
        raise ValueError(f"Not a change request id: {cr_id!r}")
    year, month, sequence = (int(part) for part in match.groups())
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month in change request id: {cr_id!r}")
    return ParsedCRId(year, month, sequence)


def is_cr_id(value: str) -> bool:
    try:
        parse_cr_id(value)
    except ValueError:
        return False
    return True
