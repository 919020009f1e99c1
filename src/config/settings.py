"""
Settings for merged table synchronization

Settings are layered, later sources overriding earlier ones:
built-in defaults, a YAML file, AIRTABLE_*/SYNC_* environment variables,
then explicit overrides (CLI flags).
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import yaml
from hvac.exceptions import VaultError

from src.sync.errors import ConfigurationError
from src.utils.vault_client import VaultClient

logger = logging.getLogger(__name__)

DEFAULT_MAPPING_TABLES = ["Team A Mapping", "Team B Mapping"]
DEFAULT_JOIN_KEY = "Concept Name"

# Environment variable -> setting name
ENV_VARS = {
    "AIRTABLE_BASE_ID": "base_id",
    "AIRTABLE_API_URL": "api_url",
    "SYNC_SOURCE_TABLE": "source_table",
    "SYNC_MAPPING_TABLES": "mapping_tables",
    "SYNC_LEFT_KEY": "left_key",
    "SYNC_RIGHT_KEY": "right_key",
    "SYNC_MERGED_TABLE_SUFFIX": "merged_table_suffix",
    "SYNC_REQUESTS_PER_SECOND": "requests_per_second",
    "SYNC_BURST": "burst",
    "SYNC_MAX_RETRIES": "max_retries",
    "SYNC_BACKOFF_BASE_SECONDS": "backoff_base_seconds",
    "SYNC_MAX_BACKOFF_SECONDS": "max_backoff_seconds",
    "SYNC_BATCH_SIZE": "batch_size",
    "SYNC_INTERVAL_SECONDS": "interval_seconds",
    "SYNC_MAX_WORKERS": "max_workers",
    "SYNC_DRY_RUN": "dry_run",
    "SYNC_METRICS_PORT": "metrics_port",
    "SYNC_VAULT_SECRET_PATH": "vault_secret_path",
}


@dataclass(frozen=True)
class SyncSettings:
    """
    Configuration for one base's merged table sync.

    Attributes:
        base_id: Airtable base id
        source_table: Shared table joined on the left
        mapping_tables: Tables joined on the right, one merged table each
        left_key: Join key in the source table
        right_key: Join key in the mapping tables
        merged_table_suffix: Appended to a mapping table name to name its merged table
        requests_per_second: Write rate ceiling
        burst: Token bucket capacity
        max_retries: Retries for throttled calls
        backoff_base_seconds: Initial backoff delay
        max_backoff_seconds: Backoff ceiling
        batch_size: Records per create/delete call (1-10)
        interval_seconds: Pause between runs in watch mode
        max_workers: Mapping tables processed concurrently
        dry_run: Compute changes without writing
        metrics_port: Port for the Prometheus endpoint, disabled if None
        vault_secret_path: Vault KV path holding the Airtable token
        api_url: Airtable API root
    """

    base_id: Optional[str] = None
    source_table: str = "Source Data"
    mapping_tables: List[str] = field(default_factory=lambda: list(DEFAULT_MAPPING_TABLES))
    left_key: str = DEFAULT_JOIN_KEY
    right_key: str = DEFAULT_JOIN_KEY
    merged_table_suffix: str = " Merged Table"
    requests_per_second: float = 5.0
    burst: int = 5
    max_retries: int = 5
    backoff_base_seconds: float = 1.0
    max_backoff_seconds: float = 30.0
    batch_size: int = 10
    interval_seconds: float = 300.0
    max_workers: int = 1
    dry_run: bool = False
    metrics_port: Optional[int] = None
    vault_secret_path: str = "airtable-credentials"
    api_url: str = "https://api.airtable.com/v0"

    def merged_table_name(self, mapping_table: str) -> str:
        """Name of the merged table fed by a mapping table."""
        return f"{mapping_table}{self.merged_table_suffix}"

    @property
    def destination_tables(self) -> List[str]:
        return [self.merged_table_name(name) for name in self.mapping_tables]

    def validate(self) -> "SyncSettings":
        """
        Check the settings for consistency.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: If any setting is invalid
        """
        if not self.source_table:
            raise ConfigurationError("source_table must not be empty")
        if not self.mapping_tables:
            raise ConfigurationError("At least one mapping table must be configured")
        if any(not name for name in self.mapping_tables):
            raise ConfigurationError("Mapping table names must not be empty")
        if self.source_table in self.mapping_tables:
            raise ConfigurationError(f"{self.source_table} cannot be both source and mapping table")
        if not self.left_key or not self.right_key:
            raise ConfigurationError("Join keys must not be empty")
        if not self.merged_table_suffix:
            raise ConfigurationError("merged_table_suffix must not be empty")
        if self.requests_per_second <= 0:
            raise ConfigurationError(f"requests_per_second must be positive, got {self.requests_per_second}")
        if self.burst < 1:
            raise ConfigurationError(f"burst must be at least 1, got {self.burst}")
        if not 1 <= self.batch_size <= 10:
            raise ConfigurationError(f"batch_size must be between 1 and 10, got {self.batch_size}")
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must not be negative, got {self.max_retries}")
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be at least 1, got {self.max_workers}")
        if self.interval_seconds <= 0:
            raise ConfigurationError(f"interval_seconds must be positive, got {self.interval_seconds}")
        return self

    def with_overrides(self, **overrides: Any) -> "SyncSettings":
        """Return a copy with non-None overrides applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **_coerce(values))

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _coerce(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert raw (string) values to each setting's declared type."""
    known = {f.name: f for f in fields(SyncSettings)}
    result = {}

    for name, value in values.items():
        if name not in known:
            raise ConfigurationError(f"Unknown setting: {name}")

        default = known[name].default
        if name == "mapping_tables":
            if isinstance(value, str):
                value = [part.strip() for part in value.split(",") if part.strip()]
            result[name] = list(value)
        elif name == "metrics_port":
            result[name] = int(value) if value not in (None, "") else None
        elif isinstance(default, bool):
            result[name] = value if isinstance(value, bool) else str(value).lower() in ("1", "true", "yes", "on")
        elif isinstance(default, int):
            result[name] = _convert(name, value, int)
        elif isinstance(default, float):
            result[name] = _convert(name, value, float)
        else:
            result[name] = value

    return result


def _convert(name: str, value: Any, kind: type) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid value for {name}: {value!r}") from e


def load_yaml_settings(path: str) -> Dict[str, Any]:
    """
    Read settings from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Mapping of setting names to values

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    # Accept the settings either at top level or under a "sync" key
    if isinstance(data.get("sync"), dict):
        data = data["sync"]

    logger.info(f"Loaded settings from {path}")
    return data


def env_settings(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect settings from environment variables."""
    environ = os.environ if environ is None else environ
    return {
        setting: environ[var]
        for var, setting in ENV_VARS.items()
        if environ.get(var) not in (None, "")
    }


def load_settings(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any
) -> SyncSettings:
    """
    Build validated settings from every configured source.

    Args:
        config_path: Optional YAML file
        environ: Environment mapping (os.environ if omitted)
        **overrides: Explicit values, None meaning "not given"

    Returns:
        Validated SyncSettings

    Raises:
        ConfigurationError: If any source is invalid
    """
    settings = SyncSettings()

    if config_path:
        settings = replace(settings, **_coerce(load_yaml_settings(config_path)))

    settings = replace(settings, **_coerce(env_settings(environ)))
    settings = settings.with_overrides(**overrides)

    return settings.validate()


def resolve_credentials(
    settings: SyncSettings,
    token: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    vault_factory: Optional[Callable[[], Any]] = None
) -> Tuple[str, str]:
    """
    Find the Airtable token and base id.

    The token comes from, in order: the explicit argument, AIRTABLE_TOKEN,
    then Vault (only tried when VAULT_ADDR is set, and only read once its
    health check passes). A base id stored with the Vault secret is used
    when settings carry none.

    Args:
        settings: Sync settings
        token: Token given on the command line
        environ: Environment mapping (os.environ if omitted)
        vault_factory: Callable returning a VaultClient, replaceable in tests

    Returns:
        Tuple of (token, base_id)

    Raises:
        ConfigurationError: If no token or no base id can be found
    """
    environ = os.environ if environ is None else environ
    base_id = settings.base_id
    token = token or environ.get("AIRTABLE_TOKEN")

    if not token and (vault_factory or environ.get("VAULT_ADDR")):
        factory = vault_factory or VaultClient
        try:
            with factory() as vault:
                health = vault.health_check()
                if not health:
                    raise VaultError(health.error)
                credentials = vault.get_airtable_credentials(settings.vault_secret_path)
        except Exception as e:
            raise ConfigurationError(f"Could not read Airtable credentials from Vault: {e}") from e

        token = credentials["token"]
        base_id = base_id or credentials.get("base_id")

    if not token:
        raise ConfigurationError(
            "No Airtable token: pass --token, set AIRTABLE_TOKEN, or configure Vault"
        )
    if not base_id:
        raise ConfigurationError("No Airtable base id: pass --base-id or set AIRTABLE_BASE_ID")

    return token, base_id
