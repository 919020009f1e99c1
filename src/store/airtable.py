"""
Airtable REST table store

Talks to the Airtable Web API with a personal access token:
- table and field schema from the metadata API
- record pagination by offset
- batched record create/delete (10 records per request)
- permission checks from the token's scopes
- 429 and 5xx handling with backoff on reads
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote

import requests

from src.store.base import StoreRecord, TableStore
from src.sync.errors import (
    PermissionDenied,
    StoreError,
    TableNotFoundError,
    ThrottledError,
    TransientStoreError,
)
from src.sync.models import FieldDescriptor
from src.utils.retry import call_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.airtable.com/v0"

RECORD_WRITE_SCOPE = "data.records:write"
SCHEMA_WRITE_SCOPE = "schema.bases:write"


class AirtableStore(TableStore):
    """
    Table store backed by one Airtable base.

    The base schema is cached per instance. It is dropped after a table is
    created and whenever the pipeline starts a run.
    """

    max_batch_size = 10

    def __init__(
        self,
        base_id: str,
        token: str,
        session: Optional[requests.Session] = None,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = 30.0,
        page_size: int = 100,
        max_read_retries: int = 5,
        backoff_base_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0
    ):
        """
        Initialize the Airtable store.

        Args:
            base_id: Airtable base id (appXXXXXXXXXXXXXX)
            token: Personal access token
            session: Optional requests session
            api_url: API root URL
            timeout_seconds: Per-request timeout
            page_size: Records per list page (max 100)
            max_read_retries: Retries for throttled or failed reads
            backoff_base_seconds: Initial backoff delay
            max_backoff_seconds: Backoff ceiling

        Raises:
            ValueError: If base_id or token is empty
        """
        if not base_id:
            raise ValueError("Airtable base id must be provided")
        if not token:
            raise ValueError("Airtable token must be provided")

        self.base_id = base_id
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.page_size = min(page_size, 100)
        self.max_read_retries = max_read_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.max_backoff_seconds = max_backoff_seconds

        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        })

        self._schema: Optional[Dict[str, Dict[str, Any]]] = None
        self._scopes: Optional[List[str]] = None
        self._scopes_loaded = False

        logger.info(f"Initialized AirtableStore for base {base_id}")

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Iterable[Tuple[str, Any]]] = None,
        payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Send one request and map error statuses to store errors.

        Raises:
            ThrottledError: On HTTP 429
            PermissionDenied: On HTTP 401/403
            TransientStoreError: On HTTP 5xx or connection failure
            StoreError: On any other non-2xx response
        """
        url = f"{self.api_url}/{path.lstrip('/')}"

        try:
            response = self.session.request(
                method,
                url,
                params=list(params) if params else None,
                json=payload,
                timeout=self.timeout_seconds
            )
        except requests.RequestException as e:
            raise TransientStoreError(f"Airtable request failed: {e}") from e

        status = response.status_code

        if 200 <= status < 300:
            return response.json() if response.content else {}

        if status == 429:
            raise ThrottledError(
                f"Airtable rate limit exceeded: {response.text}",
                retry_after=self._parse_retry_after(response.headers.get("Retry-After"))
            )

        if status in (401, 403):
            raise PermissionDenied(f"Airtable refused {method} {path}: {response.text}")

        if status >= 500:
            raise TransientStoreError(
                f"Airtable error {status}: {response.text}",
                status_code=status
            )

        raise StoreError(f"Airtable request failed {status}: {response.text}", status_code=status)

    def _read(self, path: str, params: Optional[Iterable[Tuple[str, Any]]] = None) -> Dict[str, Any]:
        """GET with backoff on throttling and server errors."""
        return call_with_backoff(
            self._request,
            "GET",
            path,
            params=params,
            max_retries=self.max_read_retries,
            base_delay=self.backoff_base_seconds,
            max_delay=self.max_backoff_seconds,
            retryable_exceptions=(ThrottledError, TransientStoreError)
        )

    @staticmethod
    def _parse_retry_after(value: Optional[str]) -> Optional[float]:
        if not value:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    def _table_path(self, table_name: str) -> str:
        return f"{self.base_id}/{quote(table_name, safe='')}"

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _load_schema(self) -> Dict[str, Dict[str, Any]]:
        if self._schema is None:
            payload = self._read(f"meta/bases/{self.base_id}/tables")
            self._schema = {table["name"]: table for table in payload.get("tables", [])}
            logger.debug(f"Loaded schema with {len(self._schema)} tables")
        return self._schema

    def refresh(self) -> None:
        """Drop the cached base schema so the next read fetches it again."""
        self._schema = None

    def table_exists(self, table_name: str) -> bool:
        return table_name in self._load_schema()

    def list_fields(self, table_name: str) -> List[FieldDescriptor]:
        table = self._load_schema().get(table_name)
        if table is None:
            raise TableNotFoundError(table_name)
        return [FieldDescriptor.from_dict(f) for f in table.get("fields", [])]

    def create_table(self, table_name: str, field_definitions: List[Dict[str, Any]]) -> str:
        payload = self._request(
            "POST",
            f"meta/bases/{self.base_id}/tables",
            payload={"name": table_name, "fields": field_definitions}
        )
        self.refresh()
        logger.info(f"Created Airtable table {table_name} ({payload.get('id')})")
        return payload.get("id")

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def list_records(self, table_name: str) -> List[StoreRecord]:
        if not self.table_exists(table_name):
            raise TableNotFoundError(table_name)

        records = []
        offset: Optional[str] = None

        while True:
            params = [("pageSize", self.page_size)]
            if offset:
                params.append(("offset", offset))

            payload = self._read(self._table_path(table_name), params=params)

            for record in payload.get("records", []):
                record_id = record.get("id")
                if not record_id:
                    raise StoreError(f"Airtable returned a record without an id in {table_name}")
                records.append(StoreRecord(record_id=record_id, fields=record.get("fields") or {}))

            offset = payload.get("offset")
            if not offset:
                break

        logger.debug(f"Fetched {len(records)} records from {table_name}")
        return records

    def create_records(self, table_name: str, rows: List[Dict[str, Any]]) -> List[str]:
        self._check_batch(rows)
        records = [
            {"fields": {k: v for k, v in row.items() if v is not None}}
            for row in rows
        ]
        payload = self._request(
            "POST",
            self._table_path(table_name),
            payload={"records": records, "typecast": True}
        )
        return [record["id"] for record in payload.get("records", [])]

    def delete_records(self, table_name: str, record_ids: List[str]) -> List[str]:
        self._check_batch(record_ids)
        payload = self._request(
            "DELETE",
            self._table_path(table_name),
            params=[("records[]", record_id) for record_id in record_ids]
        )
        return [
            record["id"] for record in payload.get("records", [])
            if record.get("deleted")
        ]

    def _check_batch(self, items: List[Any]) -> None:
        if len(items) > self.max_batch_size:
            raise StoreError(
                f"Airtable accepts at most {self.max_batch_size} records per request, "
                f"got {len(items)}"
            )

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def token_scopes(self) -> Optional[List[str]]:
        """
        Return the scopes granted to the token, or None if not reported.
        """
        if not self._scopes_loaded:
            payload = self._read("meta/whoami")
            scopes = payload.get("scopes")
            self._scopes = list(scopes) if scopes is not None else None
            self._scopes_loaded = True
            if scopes is None:
                logger.debug("Token scopes not reported; assuming full access")
        return self._scopes

    def _has_scope(self, scope: str) -> bool:
        scopes = self.token_scopes()
        if scopes is None:
            return True
        return scope in scopes

    def can_create_table(self, table_name: str, field_definitions: List[Dict[str, Any]]) -> bool:
        return self._has_scope(SCHEMA_WRITE_SCOPE)

    def can_create_records(self, table_name: str, rows: List[Dict[str, Any]]) -> bool:
        return self._has_scope(RECORD_WRITE_SCOPE)

    def can_delete_records(self, table_name: str, record_ids: List[str]) -> bool:
        return self._has_scope(RECORD_WRITE_SCOPE)

    def close(self) -> None:
        self.session.close()
        logger.debug("Closed Airtable session")
