"""
Destination table provisioning

Creates a merged table once, from the deduplicated union of its input
fields with the join key first.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from src.sync.errors import PermissionDenied, SyncError
from src.sync.models import FieldDescriptor, ProvisioningState

if TYPE_CHECKING:
    from src.store.base import TableStore

logger = logging.getLogger(__name__)


class TableProvisioner:
    """
    Ensures destination tables exist.

    Provisioning is idempotent by existence: an existing table is never
    altered, whatever its fields.
    """

    def __init__(self, store: "TableStore"):
        """
        Initialize the provisioner.

        Args:
            store: Store holding the destination tables
        """
        self.store = store
        self.errors: List[SyncError] = []
        logger.debug("Initialized TableProvisioner")

    def build_field_definitions(
        self,
        fields: Sequence[FieldDescriptor],
        key_field: str
    ) -> List[Dict[str, Any]]:
        """
        Build creation payloads for a merged table.

        Fields are deduplicated by name, the last occurrence winning, and the
        key field is moved first. Other fields keep their relative order.

        Args:
            fields: Field union from the joined tables
            key_field: Join key that becomes the primary field

        Returns:
            Ordered list of field definitions
        """
        last_index = {}
        for index, descriptor in enumerate(fields):
            last_index[descriptor.name] = index

        unique = [
            descriptor for index, descriptor in enumerate(fields)
            if last_index[descriptor.name] == index
        ]
        unique.sort(key=lambda descriptor: 0 if descriptor.name == key_field else 1)

        return [descriptor.to_definition() for descriptor in unique]

    def ensure_table(
        self,
        table_name: str,
        fields: Sequence[FieldDescriptor],
        key_field: str,
        state: Optional[ProvisioningState] = None
    ) -> ProvisioningState:
        """
        Create the table if it does not exist yet.

        Args:
            table_name: Destination table name
            fields: Field union for the table
            key_field: Join key field name
            state: Known provisioning state from a previous run

        Returns:
            PROVISIONED if the table exists afterwards, NOT_PROVISIONED if
            creation was not permitted
        """
        if state is ProvisioningState.PROVISIONED:
            logger.debug(f"{table_name} already provisioned; skipping existence check")
            return state

        if self.store.table_exists(table_name):
            logger.info(f"Destination table {table_name} exists")
            return ProvisioningState.PROVISIONED

        definitions = self.build_field_definitions(fields, key_field)

        if not self.store.can_create_table(table_name, definitions):
            error = PermissionDenied(f"Not permitted to create table {table_name}", table=table_name)
            logger.warning(error.message)
            self.errors.append(error)
            return ProvisioningState.NOT_PROVISIONED

        try:
            self.store.create_table(table_name, definitions)
        except PermissionDenied as e:
            e.table = e.table or table_name
            logger.warning(f"Store refused to create {table_name}: {e}")
            self.errors.append(e)
            return ProvisioningState.NOT_PROVISIONED

        logger.info(f"Created destination table {table_name} with {len(definitions)} fields")
        return ProvisioningState.PROVISIONED
