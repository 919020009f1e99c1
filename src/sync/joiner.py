"""
Table Joiner for merged table synchronization

Right-joins two row sequences on a key field.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Sequence, Union

from src.sync.comparer import RowComparer
from src.sync.models import FieldDescriptor, Row

logger = logging.getLogger(__name__)


class TableJoiner:
    """
    Joins left and right row sequences on key equality.

    Every right row appears at least once in the output. Each left row
    sharing its key produces one output row (standard join fan-out); a
    right row with no left match appears once with left-only fields None.
    """

    def __init__(self):
        """Initialize the table joiner."""
        self.comparer = RowComparer()
        logger.debug("Initialized TableJoiner")

    def right_join(
        self,
        left_rows: Sequence[Row],
        right_rows: Sequence[Row],
        left_key: str,
        right_key: str,
        fields: Iterable[Union[FieldDescriptor, str]]
    ) -> List[Row]:
        """
        Right-join two row sequences.

        Args:
            left_rows: Rows of the left (source) table
            right_rows: Rows of the right (mapping) table
            left_key: Join key field on the left side
            right_key: Join key field on the right side
            fields: Field union expected in the output, as descriptors or names

        Returns:
            Joined rows in right-row order, without record ids
        """
        field_names = self._field_names(fields)
        left_index = self._build_key_index(left_rows, left_key)

        joined = []
        unmatched = 0

        for right_row in right_rows:
            key = self._key_of(right_row, right_key)
            matches = left_index.get(key, []) if key is not None else []

            if not matches:
                unmatched += 1
                joined.append(self._merge(None, right_row, field_names))
                continue

            for left_row in matches:
                joined.append(self._merge(left_row, right_row, field_names))

        logger.info(
            f"Joined {len(left_rows)} left and {len(right_rows)} right rows "
            f"into {len(joined)} rows ({unmatched} right rows unmatched)"
        )
        return joined

    def union_fields(self, *field_groups: Iterable[FieldDescriptor]) -> List[FieldDescriptor]:
        """
        Concatenate descriptor groups in order.

        Duplicate names are kept; the provisioner decides which one wins.
        """
        union = []
        for group in field_groups:
            union.extend(group)
        return union

    def _merge(self, left_row: Union[Row, None], right_row: Row, field_names: List[str]) -> Row:
        """Build one output row; right-side values win on shared names."""
        merged: Dict[str, Any] = {name: None for name in field_names}

        if left_row is not None:
            for name in field_names:
                if name in left_row.fields:
                    merged[name] = left_row.fields[name]

        for name in field_names:
            if name in right_row.fields:
                merged[name] = right_row.fields[name]

        return Row(fields=merged)

    def _build_key_index(self, rows: Sequence[Row], key_field: str) -> Dict[Any, List[Row]]:
        """Group rows by their hashable key value, keeping row order."""
        index = defaultdict(list)
        for row in rows:
            key = self._key_of(row, key_field)
            if key is not None:
                index[key].append(row)
        return index

    def _key_of(self, row: Row, key_field: str) -> Any:
        value = row.fields.get(key_field)
        if value is None:
            return None
        return self.comparer.freeze_value(self.comparer.normalize_value(value))

    def _field_names(self, fields: Iterable[Union[FieldDescriptor, str]]) -> List[str]:
        names = []
        seen = set()
        for item in fields:
            name = item.name if isinstance(item, FieldDescriptor) else item
            if name not in seen:
                seen.add(name)
                names.append(name)
        return names
