"""
Vault Package
Credential lookup for engine connections
"""
from .providers import (
    SecretProvider,
    AWSSecretsManagerProvider,
    EnvironmentSecretProvider,
    StaticSecretProvider,
    create_secret_provider,
)
from .manager import SecretManager

__all__ = [
    "SecretProvider",
    "AWSSecretsManagerProvider",
    "EnvironmentSecretProvider",
    "StaticSecretProvider",
    "create_secret_provider",
    "SecretManager",
]
