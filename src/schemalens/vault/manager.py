"""
Secret Manager
Explicitly constructed credentials collaborator with an init / shutdown lifecycle
"""
from __future__ import annotations

import threading
from typing import Any, Dict, Optional

from ..utils import PipelineMetrics, get_logger
from .providers import SecretProvider

logger = get_logger(__name__)


class SecretManager:
    """
    Front for a single SecretProvider

    The process entry point constructs one, calls `init()` before serving
    requests and `shutdown()` on exit. A provider that fails its health check
    during init is disabled; lookups then report no credentials.
    """

    def __init__(self, provider: Optional[SecretProvider] = None):
        self._provider = provider
        self._active = False
        self._lock = threading.Lock()

    @property
    def provider_name(self) -> Optional[str]:
        return self._provider.name if self._provider else None

    def init(self) -> bool:
        """Check the provider; returns whether lookups are available"""
        with self._lock:
            if self._provider is None:
                logger.warning("No secret provider configured; credential lookups will fail")
                self._active = False
                return False
            try:
                self._active = bool(self._provider.test_connection())
            except Exception as e:
                logger.error(
                    f"Secret provider {self._provider.name} failed its connection test: {e}",
                    extra={"extra_fields": {"provider": self._provider.name}}
                )
                PipelineMetrics.record_error(type(e).__name__, "credentials")
                self._active = False

            if self._active:
                logger.info(
                    "Secret provider ready",
                    extra={"extra_fields": {"provider": self._provider.name}}
                )
            return self._active

    def shutdown(self) -> None:
        with self._lock:
            if self._provider is not None:
                try:
                    self._provider.close()
                except Exception as e:
                    logger.debug(f"Ignoring error while closing secret provider: {e}")
            self._active = False

    def has_provider(self) -> bool:
        return self._active

    def get_credentials(self, key: str) -> Optional[Dict[str, Any]]:
        """Credentials document for `key`; None when absent or the lookup fails"""
        if not self._active or not key:
            return None
        try:
            return self._provider.get_secret(key)
        except Exception as e:
            logger.error(
                f"Credential lookup failed for key '{key}': {e}",
                extra={"extra_fields": {"provider": self._provider.name}}
            )
            PipelineMetrics.record_error(type(e).__name__, "credentials")
            return None

    def __enter__(self) -> "SecretManager":
        self.init()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()
