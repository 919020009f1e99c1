"""
Data model for merged table synchronization.

Rows, field descriptors and table snapshots exchanged between the
extractor, joiner, classifier and writer.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class FieldType(Enum):
    """Store field type tags."""
    SINGLE_LINE_TEXT = "singleLineText"
    MULTILINE_TEXT = "multilineText"
    RICH_TEXT = "richText"
    EMAIL = "email"
    URL = "url"
    PHONE_NUMBER = "phoneNumber"
    NUMBER = "number"
    CURRENCY = "currency"
    PERCENT = "percent"
    DURATION = "duration"
    RATING = "rating"
    CHECKBOX = "checkbox"
    DATE = "date"
    DATE_TIME = "dateTime"
    SINGLE_SELECT = "singleSelect"
    MULTIPLE_SELECTS = "multipleSelects"
    SINGLE_COLLABORATOR = "singleCollaborator"
    MULTIPLE_COLLABORATORS = "multipleCollaborators"
    MULTIPLE_RECORD_LINKS = "multipleRecordLinks"
    MULTIPLE_ATTACHMENTS = "multipleAttachments"
    BARCODE = "barcode"
    UNKNOWN = "unknown"

    @classmethod
    def from_tag(cls, tag: Optional[str]) -> "FieldType":
        """Map a raw type tag to a FieldType, falling back to UNKNOWN."""
        for member in cls:
            if member.value == tag:
                return member
        return cls.UNKNOWN

    @property
    def is_nested(self) -> bool:
        """Whether cell values are objects (or lists of objects) carrying ids."""
        return self in _NESTED_TYPES

    @property
    def is_list(self) -> bool:
        """Whether nested cell values are lists of objects."""
        return self in _LIST_TYPES


_NESTED_TYPES = frozenset({
    FieldType.SINGLE_SELECT,
    FieldType.MULTIPLE_SELECTS,
    FieldType.SINGLE_COLLABORATOR,
    FieldType.MULTIPLE_COLLABORATORS,
    FieldType.MULTIPLE_RECORD_LINKS,
    FieldType.MULTIPLE_ATTACHMENTS,
})

_LIST_TYPES = frozenset({
    FieldType.MULTIPLE_SELECTS,
    FieldType.MULTIPLE_COLLABORATORS,
    FieldType.MULTIPLE_RECORD_LINKS,
    FieldType.MULTIPLE_ATTACHMENTS,
})


class ProvisioningState(Enum):
    """Whether a destination table is known to exist."""
    NOT_PROVISIONED = "not_provisioned"
    PROVISIONED = "provisioned"


@dataclass(frozen=True)
class FieldDescriptor:
    """
    Describes one table field.

    Attributes:
        name: Field name, unique within a table
        type: Field type tag
        description: Optional field description
        options: Type-specific options (e.g. select choices)
        field_id: Store identifier, never copied into new tables
    """

    name: str
    type: FieldType = FieldType.SINGLE_LINE_TEXT
    description: Optional[str] = None
    options: Optional[Dict[str, Any]] = None
    field_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldDescriptor":
        """Build a descriptor from a store schema payload."""
        return cls(
            name=data["name"],
            type=FieldType.from_tag(data.get("type")),
            description=data.get("description"),
            options=data.get("options"),
            field_id=data.get("id"),
        )

    def to_definition(self) -> Dict[str, Any]:
        """
        Build the table creation payload for this field.

        Store ids are removed, including choice ids inside options, and
        empty entries are dropped.

        Returns:
            Field definition dictionary
        """
        options = copy.deepcopy(self.options) if self.options else None
        if options and isinstance(options.get("choices"), list):
            for choice in options["choices"]:
                if isinstance(choice, dict):
                    choice.pop("id", None)

        definition = {
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "options": options,
        }
        return {k: v for k, v in definition.items() if v is not None}


@dataclass
class Row:
    """A record's field values plus an optional store identifier."""

    fields: Dict[str, Any]
    record_id: Optional[str] = None

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    def without_id(self) -> "Row":
        return Row(fields=dict(self.fields))

    def __eq__(self, other: object) -> bool:
        # Identifiers never take part in equality
        if not isinstance(other, Row):
            return NotImplemented
        return self.fields == other.fields


@dataclass(frozen=True)
class TableSnapshot:
    """Rows and fields of one table captured at a point in time."""

    table_name: str
    rows: Tuple[Row, ...]
    fields: Tuple[FieldDescriptor, ...]
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def is_empty(self) -> bool:
        return not self.rows
