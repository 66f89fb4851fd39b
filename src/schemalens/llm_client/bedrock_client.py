"""
Bedrock Claude Client
Messages API over the bedrock-runtime InvokeModel call. One boto3 client is
created lazily and shared by all analysis worker threads.
"""
from __future__ import annotations

import json
import random
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ..config import LLMConfig, LLMProvider
from ..utils import ConfigurationError, LLMError, PipelineMetrics, get_logger

logger = get_logger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"
MAX_RETRY_DELAY = 30.0

RETRYABLE_ERROR_CODES = frozenset({
    "ThrottlingException",
    "TooManyRequestsException",
    "ServiceUnavailableException",
    "ModelTimeoutException",
    "ModelNotReadyException",
    "InternalServerException",
})
RETRYABLE_MESSAGES = ("throttl", "rate exceeded", "too many requests", "timeout", "timed out", "unavailable")


@dataclass
class LLMResponse:
    """Text and token accounting of one completion"""
    content: str
    model_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    stop_reason: Optional[str] = None
    latency_ms: float = 0.0

    @property
    def usage(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.input_tokens,
            "completion_tokens": self.output_tokens,
            "total_tokens": self.input_tokens + self.output_tokens,
        }

    @property
    def truncated(self) -> bool:
        return self.stop_reason == "max_tokens"


class BaseLLMClient(ABC):
    """Completion client used by the reasoning service"""

    @abstractmethod
    def invoke(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        **kwargs
    ) -> LLMResponse:
        pass

    @abstractmethod
    def invoke_with_retry(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_retries: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        pass

    def health_check(self) -> bool:
        return True


def is_retryable(error: BaseException) -> bool:
    """Throttling, timeouts and transient service errors are worth another attempt"""
    if isinstance(error, (ReadTimeoutError, EndpointConnectionError, ConnectionClosedError)):
        return True
    if isinstance(error, ClientError):
        return error.response.get("Error", {}).get("Code") in RETRYABLE_ERROR_CODES
    text = str(error).lower()
    return any(marker in text for marker in RETRYABLE_MESSAGES)


class BedrockClaudeClient(BaseLLMClient):
    """Claude on Amazon Bedrock"""

    def __init__(self, config: LLMConfig):
        self.config = config
        self._client = None
        self._lock = threading.Lock()

    def _get_client(self):
        with self._lock:
            if self._client is None:
                self._client = self._create_client()
        return self._client

    def _create_client(self):
        import boto3
        from botocore.config import Config

        # retries happen in invoke_with_retry so they can be logged and counted
        boto_config = Config(
            region_name=self.config.aws_region,
            retries={"max_attempts": 0, "mode": "standard"},
            connect_timeout=30,
            read_timeout=self.config.request_timeout,
        )
        keys = {
            "aws_access_key_id": self.config.aws_access_key_id,
            "aws_secret_access_key": self.config.aws_secret_access_key,
            "aws_session_token": self.config.aws_session_token,
        }
        explicit = {name: value.get_secret_value() for name, value in keys.items() if value}

        if explicit:
            client = boto3.Session(**explicit).client("bedrock-runtime", config=boto_config)
        else:
            client = boto3.client("bedrock-runtime", config=boto_config, region_name=self.config.aws_region)

        logger.info(
            "Bedrock runtime client ready",
            extra={"extra_fields": {"region": self.config.aws_region, "model_id": self.config.model_id}}
        )
        return client

    def _request_body(self, prompt: str, system_prompt: Optional[str], **kwargs) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": kwargs.get("max_tokens", self.config.max_tokens),
            "temperature": kwargs.get("temperature", self.config.temperature),
            "top_p": kwargs.get("top_p", self.config.top_p),
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            body["system"] = system_prompt
        return body

    @staticmethod
    def _parse_body(payload: Dict[str, Any]) -> Tuple[str, int, int, Optional[str]]:
        text = "".join(
            block.get("text", "")
            for block in payload.get("content") or []
            if block.get("type") == "text"
        )
        usage = payload.get("usage") or {}
        return (
            text,
            int(usage.get("input_tokens", 0) or 0),
            int(usage.get("output_tokens", 0) or 0),
            payload.get("stop_reason"),
        )

    def invoke(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        **kwargs
    ) -> LLMResponse:
        """
        Single InvokeModel call

        kwargs may override max_tokens, temperature and top_p.

        Raises:
            LLMError: The call failed or the response could not be read
        """
        client = self._get_client()
        body = self._request_body(prompt, system_prompt, **kwargs)
        started = time.perf_counter()

        try:
            raw = client.invoke_model(
                modelId=self.config.model_id,
                body=json.dumps(body),
                contentType="application/json",
                accept="application/json",
            )
            payload = json.loads(raw["body"].read())
        except Exception as e:
            raise LLMError(
                message=f"Bedrock invocation failed: {e}",
                model_id=self.config.model_id,
                original_error=e,
            ) from e

        latency_ms = (time.perf_counter() - started) * 1000
        content, input_tokens, output_tokens, stop_reason = self._parse_body(payload)
        response = LLMResponse(
            content=content,
            model_id=self.config.model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            stop_reason=stop_reason,
            latency_ms=latency_ms,
        )

        PipelineMetrics.record_llm_call(
            duration=latency_ms / 1000,
            model_id=self.config.model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        if response.truncated:
            logger.warning(
                "Completion stopped at the token limit",
                extra={"extra_fields": {"max_tokens": body["max_tokens"], "output_tokens": output_tokens}}
            )
        return response

    def invoke_with_retry(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_retries: Optional[int] = None,
        **kwargs
    ) -> LLMResponse:
        """invoke() with capped, jittered exponential backoff on transient errors"""
        attempts = max(1, max_retries if max_retries is not None else self.config.retry_attempts)

        for attempt in range(1, attempts + 1):
            try:
                return self.invoke(prompt, system_prompt, **kwargs)
            except LLMError as e:
                cause = e.original_error or e
                if not is_retryable(cause) or attempt == attempts:
                    logger.error(
                        f"Bedrock call failed: {e.message}",
                        extra={"extra_fields": {"attempt": attempt, "retryable": is_retryable(cause)}}
                    )
                    raise
                delay = min(MAX_RETRY_DELAY, self.config.retry_delay * (2 ** (attempt - 1)))
                delay += random.uniform(0, delay / 2)
                logger.warning(
                    f"Transient Bedrock error, retrying in {delay:.1f}s",
                    extra={"extra_fields": {"attempt": attempt, "max_attempts": attempts, "error": str(cause)}}
                )
                time.sleep(delay)

        raise AssertionError("unreachable")

    def health_check(self) -> bool:
        try:
            return bool(self.invoke("Reply with OK", max_tokens=5).content)
        except LLMError as e:
            logger.warning(f"Bedrock health check failed: {e.message}")
            return False


class LLMClientFactory:
    """One shared client per provider, model and region"""

    _clients: Dict[Tuple[str, str, str], BaseLLMClient] = {}
    _lock = threading.Lock()

    @classmethod
    def get_client(cls, config: LLMConfig) -> BaseLLMClient:
        key = (config.provider.value, config.model_id, config.aws_region)
        with cls._lock:
            if key not in cls._clients:
                if config.provider != LLMProvider.BEDROCK_CLAUDE:
                    raise ConfigurationError(
                        f"Unsupported LLM provider: {config.provider.value}",
                        config_key="llm.provider",
                    )
                cls._clients[key] = BedrockClaudeClient(config)
            return cls._clients[key]

    @classmethod
    def clear_clients(cls) -> None:
        with cls._lock:
            cls._clients.clear()


def get_llm_client(config: LLMConfig) -> BaseLLMClient:
    return LLMClientFactory.get_client(config)
