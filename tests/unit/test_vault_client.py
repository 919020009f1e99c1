"""
Unit tests for vault_client module.
"""

import pytest
from unittest.mock import patch, MagicMock
from hvac.exceptions import VaultError, InvalidPath

from src.utils.vault_client import VaultClient, VaultHealth


class TestVaultClient:
    """Test suite for VaultClient class."""

    @pytest.fixture
    def mock_hvac_client(self):
        """Mock hvac.Client for testing."""
        with patch('src.utils.vault_client.hvac.Client') as mock:
            client_instance = MagicMock()
            client_instance.is_authenticated.return_value = True
            mock.return_value = client_instance
            yield mock

    @pytest.fixture
    def client(self, mock_hvac_client):
        return VaultClient(vault_url="http://test:8200", vault_token="test-token")

    def set_secret(self, mock_hvac_client, data):
        mock_hvac_client.return_value.secrets.kv.v2.read_secret_version.return_value = {
            "data": {"data": data}
        }

    def test_init_with_parameters(self, mock_hvac_client):
        """Test VaultClient initialization with explicit parameters."""
        client = VaultClient(
            vault_url="http://test-vault:8200",
            vault_token="test-token",
            mount_point="kv"
        )

        assert client.vault_url == "http://test-vault:8200"
        assert client.mount_point == "kv"
        mock_hvac_client.assert_called_once_with(
            url="http://test-vault:8200", token="test-token", verify=True
        )

    def test_init_with_env_vars(self, mock_hvac_client, monkeypatch):
        """Test VaultClient initialization with environment variables."""
        monkeypatch.setenv("VAULT_ADDR", "http://env-vault:8200")
        monkeypatch.setenv("VAULT_TOKEN", "env-token")

        client = VaultClient()

        assert client.vault_url == "http://env-vault:8200"
        assert client.vault_token == "env-token"

    def test_init_missing_url_raises_error(self, monkeypatch):
        monkeypatch.delenv("VAULT_ADDR", raising=False)
        with pytest.raises(ValueError, match="Vault URL must be provided"):
            VaultClient(vault_token="test-token")

    def test_init_missing_token_raises_error(self, monkeypatch):
        monkeypatch.delenv("VAULT_TOKEN", raising=False)
        with pytest.raises(ValueError, match="Vault token must be provided"):
            VaultClient(vault_url="http://test:8200")

    def test_init_authentication_failure(self, mock_hvac_client):
        """Test that authentication failure raises VaultError."""
        mock_hvac_client.return_value.is_authenticated.return_value = False

        with pytest.raises(VaultError, match="Failed to authenticate"):
            VaultClient(vault_url="http://test:8200", vault_token="bad-token")

    def test_init_connection_failure_is_wrapped(self, mock_hvac_client):
        mock_hvac_client.side_effect = ConnectionError("refused")

        with pytest.raises(VaultError, match="Vault initialization failed"):
            VaultClient(vault_url="http://test:8200", vault_token="test-token")

    def test_get_secret_success(self, mock_hvac_client, client):
        """Test successful secret retrieval."""
        self.set_secret(mock_hvac_client, {"token": "patSecret"})

        assert client.get_secret("airtable-credentials") == {"token": "patSecret"}
        mock_hvac_client.return_value.secrets.kv.v2.read_secret_version.assert_called_once_with(
            path="airtable-credentials",
            mount_point="secret"
        )

    def test_get_secret_not_found(self, mock_hvac_client, client):
        mock_client = mock_hvac_client.return_value
        mock_client.secrets.kv.v2.read_secret_version.side_effect = InvalidPath("Not found")

        with pytest.raises(InvalidPath):
            client.get_secret("nonexistent")

    def test_get_secret_empty_response(self, mock_hvac_client, client):
        mock_hvac_client.return_value.secrets.kv.v2.read_secret_version.return_value = {}

        with pytest.raises(InvalidPath, match="No data found"):
            client.get_secret("empty-secret")

    def test_get_secret_other_failure(self, mock_hvac_client, client):
        mock_client = mock_hvac_client.return_value
        mock_client.secrets.kv.v2.read_secret_version.side_effect = RuntimeError("timeout")

        with pytest.raises(VaultError, match="Secret retrieval failed"):
            client.get_secret("airtable-credentials")

    def test_get_airtable_credentials(self, mock_hvac_client, client):
        """Test token and base id retrieval."""
        self.set_secret(mock_hvac_client, {"token": "patSecret", "base_id": "appBase"})

        creds = client.get_airtable_credentials()

        assert creds == {"token": "patSecret", "base_id": "appBase"}

    @pytest.mark.parametrize("key", ["api_token", "api_key"])
    def test_get_airtable_credentials_alternate_keys(self, mock_hvac_client, client, key):
        """Test that older secret layouts are still readable."""
        self.set_secret(mock_hvac_client, {key: "patOld"})

        assert client.get_airtable_credentials("legacy") == {"token": "patOld"}

    def test_get_airtable_credentials_without_token(self, mock_hvac_client, client):
        self.set_secret(mock_hvac_client, {"base_id": "appBase"})

        with pytest.raises(VaultError, match="no Airtable token"):
            client.get_airtable_credentials()

    def test_health_check_success(self, mock_hvac_client, client):
        mock_hvac_client.return_value.sys.read_health_status.return_value = {"sealed": False}

        status = client.health_check()

        assert isinstance(status, VaultHealth)
        assert status
        assert status.authenticated is True
        assert status.error is None

    def test_health_check_not_authenticated(self, mock_hvac_client, client):
        """Test health check with failed authentication."""
        # After client is created, change authentication to fail
        mock_hvac_client.return_value.is_authenticated.return_value = False

        status = client.health_check()

        assert not status
        assert status.error == "Not authenticated"

    def test_health_check_sealed(self, mock_hvac_client, client):
        mock_hvac_client.return_value.sys.read_health_status.return_value = {"sealed": True}

        status = client.health_check()

        assert not status
        assert status.sealed is True

    def test_health_check_error(self, mock_hvac_client, client):
        mock_hvac_client.return_value.sys.read_health_status.side_effect = RuntimeError("down")

        status = client.health_check()

        assert not status
        assert status.error == "down"

    def test_context_manager(self, mock_hvac_client):
        """Test VaultClient as context manager."""
        with VaultClient(vault_url="http://test:8200", vault_token="test-token") as client:
            assert client.client is not None

        assert client.client is None
