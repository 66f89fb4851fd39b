"""
Secret Providers
Backends the SecretManager reads database credentials from
"""
from __future__ import annotations

import json
import os
import re
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..config import VaultConfig, VaultProvider
from ..utils import ConfigurationError, get_logger

logger = get_logger(__name__)


def _parse_secret_payload(raw: Optional[str], key: str) -> Optional[Dict[str, Any]]:
    """Decode a JSON credentials document; anything but an object is rejected"""
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Secret '{key}' is not valid JSON: {e.msg}") from None
    if not isinstance(payload, dict):
        raise ValueError(f"Secret '{key}' must be a JSON object")
    return payload


class SecretProvider(ABC):
    """Abstract credentials backend"""

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        """Check the backend is reachable; raise or return False if not"""
        pass

    @abstractmethod
    def get_secret(self, key: str) -> Optional[Dict[str, Any]]:
        """Credentials document stored under `key`, or None if absent"""
        pass

    def close(self) -> None:
        pass


class AWSSecretsManagerProvider(SecretProvider):
    """
    AWS Secrets Manager backend

    Each secret's SecretString holds a JSON object such as
    {"username": "...", "password": "..."}.
    """

    def __init__(self, region: str = "us-east-1", secret_prefix: str = ""):
        self.region = region
        self.secret_prefix = secret_prefix
        self._client = None
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "aws-secrets-manager"

    def _get_client(self):
        if self._client is None:
            with self._lock:
                if self._client is None:
                    try:
                        import boto3
                        from botocore.config import Config
                    except ImportError:
                        raise ImportError(
                            "boto3 is required for AWS Secrets Manager. "
                            "Install it with: pip install boto3"
                        )

                    self._client = boto3.client(
                        "secretsmanager",
                        region_name=self.region,
                        config=Config(retries={"max_attempts": 3, "mode": "standard"}),
                    )
                    logger.info(
                        "Initialized Secrets Manager client",
                        extra={"extra_fields": {"region": self.region}}
                    )
        return self._client

    def test_connection(self) -> bool:
        self._get_client().list_secrets(MaxResults=1)
        return True

    def get_secret(self, key: str) -> Optional[Dict[str, Any]]:
        from botocore.exceptions import ClientError

        secret_id = f"{self.secret_prefix}{key}"
        try:
            response = self._get_client().get_secret_value(SecretId=secret_id)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ResourceNotFoundException":
                return None
            raise
        return _parse_secret_payload(response.get("SecretString"), secret_id)

    def close(self) -> None:
        with self._lock:
            self._client = None


class EnvironmentSecretProvider(SecretProvider):
    """Credentials held in environment variables as JSON: <prefix><KEY>"""

    def __init__(self, env_prefix: str = "SCHEMALENS_SECRET_"):
        self.env_prefix = env_prefix

    @property
    def name(self) -> str:
        return "environment"

    def variable_name(self, key: str) -> str:
        return self.env_prefix + re.sub(r"[^A-Za-z0-9]", "_", key).upper()

    def test_connection(self) -> bool:
        return True

    def get_secret(self, key: str) -> Optional[Dict[str, Any]]:
        variable = self.variable_name(key)
        return _parse_secret_payload(os.environ.get(variable), variable)


class StaticSecretProvider(SecretProvider):
    """In-memory credentials, for tests and one-off runs"""

    def __init__(self, secrets: Optional[Dict[str, Dict[str, Any]]] = None):
        self._secrets: Dict[str, Dict[str, Any]] = dict(secrets or {})
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "static"

    def test_connection(self) -> bool:
        return True

    def put_secret(self, key: str, value: Dict[str, Any]) -> None:
        with self._lock:
            self._secrets[key] = dict(value)

    def get_secret(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            value = self._secrets.get(key)
        return dict(value) if value is not None else None


def create_secret_provider(config: VaultConfig) -> Optional[SecretProvider]:
    """Build the configured provider; None when no vault is configured"""
    if config.provider == VaultProvider.AWS:
        return AWSSecretsManagerProvider(region=config.aws_region, secret_prefix=config.secret_prefix)
    if config.provider == VaultProvider.ENV:
        return EnvironmentSecretProvider(env_prefix=config.env_prefix)
    if config.provider == VaultProvider.STATIC:
        return StaticSecretProvider()
    if config.provider == VaultProvider.NONE:
        return None
    raise ConfigurationError(f"Unknown vault provider: {config.provider}", config_key="vault.provider")
