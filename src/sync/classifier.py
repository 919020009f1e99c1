"""
Row Classifier for merged table synchronization

Diffs a freshly computed join against the destination table, splitting rows
into new (to insert), stale (to delete) and unchanged.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from src.sync.comparer import RowComparer
from src.sync.models import Row

logger = logging.getLogger(__name__)


@dataclass
class Classification:
    """Result of diffing join output against a destination snapshot."""

    new_rows: List[Row] = field(default_factory=list)
    stale_rows: List[Row] = field(default_factory=list)
    unchanged_count: int = 0

    @property
    def is_noop(self) -> bool:
        return not self.new_rows and not self.stale_rows

    def summary(self) -> Dict[str, int]:
        return {
            "new_count": len(self.new_rows),
            "stale_count": len(self.stale_rows),
            "unchanged_count": self.unchanged_count
        }


class RowClassifier:
    """
    Classifies rows by value equality.

    Record identifiers are excluded from every comparison. A join row is new
    only if no destination row equals it, so repeated join rows never add a
    copy of a value the destination already holds. Stale rows are a multiset
    difference, which removes surplus destination copies.
    """

    def __init__(self, comparer: RowComparer = None):
        """
        Initialize the classifier.

        Args:
            comparer: Row comparer used to sign rows
        """
        self.comparer = comparer or RowComparer()
        logger.debug("Initialized RowClassifier")

    def new_rows(self, join_output: Sequence[Row], destination: Sequence[Row]) -> List[Row]:
        """
        Find join rows with no value-equal counterpart in the destination.

        Args:
            join_output: Freshly joined rows
            destination: Rows currently in the destination table

        Returns:
            Rows to insert, stripped of identifiers, in join order
        """
        if not destination:
            return [row.without_id() for row in join_output]

        present = {self.comparer.row_signature(row) for row in destination}
        new = [
            row.without_id() for row in join_output
            if self.comparer.row_signature(row) not in present
        ]
        logger.info(f"Found {len(new)} new rows")
        return new

    def stale_rows(self, join_output: Sequence[Row], destination: Sequence[Row]) -> List[Row]:
        """
        Find destination rows that no longer appear in the join output.

        Args:
            join_output: Freshly joined rows
            destination: Rows currently in the destination table

        Returns:
            Rows to delete, keeping their destination record ids
        """
        if not destination:
            return []

        stale = self._difference(destination, join_output)
        logger.info(f"Found {len(stale)} stale rows")
        return stale

    def classify(self, join_output: Sequence[Row], destination: Sequence[Row]) -> Classification:
        """
        Compute new rows, stale rows and the unchanged count in one call.

        Args:
            join_output: Freshly joined rows
            destination: Rows currently in the destination table

        Returns:
            Classification
        """
        new = self.new_rows(join_output, destination)
        stale = self.stale_rows(join_output, destination)
        unchanged = len(join_output) - len(new)

        logger.info(
            f"Classification summary: {len(new)} new, "
            f"{len(stale)} stale, {unchanged} unchanged"
        )

        return Classification(new_rows=new, stale_rows=stale, unchanged_count=unchanged)

    def _difference(self, rows: Sequence[Row], other: Sequence[Row]) -> List[Row]:
        """Multiset difference ``rows - other`` preserving the order of ``rows``."""
        remaining = Counter(self.comparer.row_signature(row) for row in other)

        result = []
        for row in rows:
            signature = self.comparer.row_signature(row)
            if remaining[signature] > 0:
                remaining[signature] -= 1
            else:
                result.append(row)
        return result
