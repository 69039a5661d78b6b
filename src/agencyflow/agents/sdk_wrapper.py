"""Specialist invocation client for Agencyflow.

This module defines the Protocol the delegation layer uses to invoke a
specialist, and an httpx implementation against a messages API
(``POST /v1/messages``). The call is opaque to the orchestrator: given a
system prompt and a prompt it returns generated text, any tool calls the
model made, and token usage.

Example usage:
    >>> from agencyflow.config import AgentConfig
    >>> async with MessagesApiClient(AgentConfig(api_key="sk-...")) as client:
    ...     response = await client.generate(AgentType.qa, "You are QA.", "Review this")
    ...     print(response.text)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog

from agencyflow.config import AgentConfig
from agencyflow.database.models.agent import AgentType

logger = structlog.get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class SpecialistClientError(Exception):
    """Base exception for specialist client errors."""

    pass


class SpecialistTimeoutError(SpecialistClientError):
    """Raised when a provider request times out."""

    pass


class SpecialistConnectionError(SpecialistClientError):
    """Raised when unable to connect to the provider."""

    pass


class SpecialistAPIError(SpecialistClientError):
    """Raised when the provider returns an error response."""

    pass


@dataclass
class ToolCall:
    """A tool invocation made by the model while answering.

    Attributes:
        id: Provider-assigned call identifier
        name: Tool name
        input: Arguments passed to the tool
    """

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass
class SpecialistResponse:
    """Result of one specialist call.

    Attributes:
        text: Concatenated text content of the response
        tool_calls: Tool invocations in the response
        usage: Token usage as ``{"prompt", "completion", "total"}``
    """

    text: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: dict[str, int] | None = None


@runtime_checkable
class SpecialistClient(Protocol):
    """Protocol for the underlying specialist invocation surface."""

    async def generate(
        self,
        agent: AgentType,
        system_prompt: str,
        prompt: str,
    ) -> SpecialistResponse:
        """Invoke a specialist.

        Args:
            agent: Specialist being invoked
            system_prompt: Role instructions for the specialist
            prompt: Rendered task prompt

        Returns:
            The specialist's response

        Raises:
            SpecialistClientError: If the call fails
        """
        ...


class MessagesApiClient:
    """Async client for a messages API serving the specialists.

    Retries with exponential backoff on timeouts, connection errors, 429
    and 5xx responses.

    Attributes:
        config: Agent configuration with provider URL, key, model and timeouts
    """

    def __init__(
        self,
        config: AgentConfig,
        max_retries: int = 3,
        initial_backoff: float = 1.0,
    ) -> None:
        """Initialize the client.

        Args:
            config: AgentConfig instance with provider settings
            max_retries: Retry attempts per request (default: 3)
            initial_backoff: Initial backoff delay in seconds (default: 1.0)
        """
        self.config = config
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self._client: httpx.AsyncClient | None = None
        logger.info(
            "specialist_client_initialized",
            url=config.provider_url,
            model=config.model,
            timeout=config.request_timeout_seconds,
        )

    async def __aenter__(self) -> MessagesApiClient:
        """Async context manager entry."""
        headers = {
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        if self.config.api_key:
            headers["x-api-key"] = self.config.api_key
        self._client = httpx.AsyncClient(
            base_url=self.config.provider_url,
            headers=headers,
            timeout=httpx.Timeout(self.config.request_timeout_seconds),
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client. Safe to call more than once."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get the HTTP client.

        Raises:
            RuntimeError: If called outside async context manager
        """
        if self._client is None:
            raise RuntimeError("MessagesApiClient must be used as async context manager")
        return self._client

    def _backoff(self, attempt: int) -> float:
        return self.initial_backoff * (2**attempt)

    async def generate(
        self,
        agent: AgentType,
        system_prompt: str,
        prompt: str,
    ) -> SpecialistResponse:
        """Send one prompt to the provider and parse the response.

        Args:
            agent: Specialist being invoked (used for logging)
            system_prompt: Role instructions
            prompt: Rendered task prompt

        Returns:
            Parsed SpecialistResponse

        Raises:
            SpecialistTimeoutError: If the request times out after all retries
            SpecialistConnectionError: If unable to connect after all retries
            SpecialistAPIError: If the provider returns an error response
        """
        client = self._get_client()
        payload = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "system": system_prompt,
            "messages": [{"role": "user", "content": prompt}],
        }

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(
                    "specialist_request",
                    agent=agent.value,
                    attempt=attempt + 1,
                    max_attempts=self.max_retries + 1,
                    prompt_length=len(prompt),
                )

                response = await client.post("/v1/messages", json=payload)

                if response.status_code == 200:
                    parsed = _parse_messages_response(response.json())
                    logger.info(
                        "specialist_response_received",
                        agent=agent.value,
                        attempt=attempt + 1,
                        text_length=len(parsed.text),
                        tool_calls=len(parsed.tool_calls),
                    )
                    return parsed

                error_msg = f"API error: HTTP {response.status_code}"
                try:
                    error_msg = f"{error_msg}: {response.json()}"
                except ValueError:
                    error_msg = f"{error_msg}: {response.text}"

                # Rate limits and server errors are transient
                retryable = response.status_code == 429 or 500 <= response.status_code < 600
                if retryable and attempt < self.max_retries:
                    backoff = self._backoff(attempt)
                    logger.warning(
                        "specialist_server_error_retry",
                        agent=agent.value,
                        status_code=response.status_code,
                        attempt=attempt + 1,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue

                raise SpecialistAPIError(error_msg)

            except httpx.TimeoutException as e:
                if attempt < self.max_retries:
                    backoff = self._backoff(attempt)
                    logger.warning(
                        "specialist_timeout_retry",
                        agent=agent.value,
                        attempt=attempt + 1,
                        backoff_seconds=backoff,
                        error=str(e),
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.error(
                    "specialist_timeout_exhausted",
                    agent=agent.value,
                    max_retries=self.max_retries,
                    timeout_seconds=self.config.request_timeout_seconds,
                )
                raise SpecialistTimeoutError(
                    f"Request timed out after {self.max_retries} retries"
                ) from e

            except (httpx.ConnectError, httpx.NetworkError) as e:
                if attempt < self.max_retries:
                    backoff = self._backoff(attempt)
                    logger.warning(
                        "specialist_connection_error_retry",
                        agent=agent.value,
                        attempt=attempt + 1,
                        backoff_seconds=backoff,
                        error=str(e),
                    )
                    await asyncio.sleep(backoff)
                    continue
                logger.error(
                    "specialist_connection_exhausted",
                    url=self.config.provider_url,
                    max_retries=self.max_retries,
                )
                raise SpecialistConnectionError(
                    f"Failed to connect to provider at {self.config.provider_url}"
                ) from e

        # Should never reach here, but satisfy type checker
        raise SpecialistClientError("Unexpected retry loop exit")


def _parse_messages_response(data: dict[str, Any]) -> SpecialistResponse:
    """Convert a messages API body into a SpecialistResponse.

    Raises:
        SpecialistAPIError: If the body has no content list.
    """
    content = data.get("content")
    if not isinstance(content, list):
        raise SpecialistAPIError("Invalid response format: missing 'content' list")

    texts: list[str] = []
    tool_calls: list[ToolCall] = []
    for block in content:
        if block.get("type") == "text":
            texts.append(block.get("text", ""))
        elif block.get("type") == "tool_use":
            tool_calls.append(
                ToolCall(
                    id=block.get("id", ""),
                    name=block.get("name", ""),
                    input=block.get("input") or {},
                )
            )

    usage = None
    raw_usage = data.get("usage")
    if isinstance(raw_usage, dict):
        prompt_tokens = int(raw_usage.get("input_tokens", 0))
        completion_tokens = int(raw_usage.get("output_tokens", 0))
        usage = {
            "prompt": prompt_tokens,
            "completion": completion_tokens,
            "total": prompt_tokens + completion_tokens,
        }

    return SpecialistResponse(text="".join(texts), tool_calls=tool_calls, usage=usage)
