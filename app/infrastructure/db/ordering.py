"""
Rewrite ``position`` of ordered rows without tripping the per-parent unique
constraint.

Rows are first parked on distinct negative positions, flushed, then given their
final 0-based indices and flushed again. Live positions are never negative, so
neither step can collide with another row.
"""
from typing import Sequence

from sqlalchemy.orm import Session


def assign_positions(db: Session, *groups: Sequence) -> None:
    """
    ``groups`` are the complete, final orderings of each affected parent
    (e.g. the source and destination column of a task move).
    """
    parked = 0
    for group in groups:
        for row in group:
            parked += 1
            row.position = -parked
    db.flush()

    for group in groups:
        for index, row in enumerate(group):
            row.position = index
    db.flush()
