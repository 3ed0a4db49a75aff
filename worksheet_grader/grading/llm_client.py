"""
LLM Client for ZenMux API.

Provides an async wrapper around the OpenAI SDK configured for ZenMux endpoints.
Translates SDK failures into tagged PipelineErrors; retries and rate limiting
are applied by the caller.
"""

import base64
import logging
from typing import Any, AsyncIterator

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
)

from worksheet_grader.config import Settings, get_settings
from worksheet_grader.errors import ErrorKind, PipelineError
from worksheet_grader.models import StreamChunk

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MIME_TYPE = "image/png"


class LLMClient:
    """
    Remote transport for the grading pipeline.

    Uses the OpenAI SDK with a custom base URL for ZenMux compatibility.
    The SDK client is created on first use, so a client can be built
    even when no API key is configured.
    """

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None):
        """
        Initialize the LLM client.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            client: Preconfigured SDK client, mainly for tests.
        """
        self._settings = settings or get_settings()
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            problem = self._settings.credential_problem()
            if problem is not None:
                raise PipelineError("ZenMux API key is not usable", kind=problem)
            self._client = AsyncOpenAI(
                api_key=self._settings.zenmux_api_key,
                base_url=self._settings.zenmux_base_url,
                max_retries=0,
            )
        return self._client

    async def open_stream(
        self,
        prompt: str,
        payload: bytes | None = None,
        mime_type: str | None = None,
        system_prompt: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Start a streaming completion.

        Returns once the endpoint has accepted the request; HTTP-level
        failures surface here, before any chunk is read.

        Args:
            prompt: User prompt.
            payload: Optional image bytes sent with the prompt.
            mime_type: MIME type of the image payload.
            system_prompt: Optional system message.

        Returns:
            Async iterator of StreamChunk. Finite and not restartable.

        Raises:
            PipelineError: If the request is rejected or cannot be sent.
        """
        messages = self._build_messages(prompt, payload, mime_type, system_prompt)
        tuning = self._settings.tuning()

        try:
            stream = await self._get_client().chat.completions.create(
                model=self._settings.zenmux_model,
                messages=messages,  # type: ignore[arg-type]
                temperature=tuning.temperature,
                max_tokens=tuning.max_output_tokens,
                stream=True,
            )
        except PipelineError:
            raise
        except Exception as e:
            raise self._translate(e) from e

        return self._iterate(stream)

    async def _iterate(self, stream: Any) -> AsyncIterator[StreamChunk]:
        sequence = 0
        total = 0
        try:
            async for event in stream:
                if not event.choices:
                    continue
                delta = event.choices[0].delta.content
                if not delta:
                    continue
                sequence += 1
                total += len(delta)
                yield StreamChunk(sequence_number=sequence, text=delta, cumulative_length=total)
        except PipelineError:
            raise
        except Exception as e:
            raise self._translate(e) from e
        finally:
            await stream.close()

    async def call_once(
        self,
        prompt: str,
        system_prompt: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """
        Generate a complete response without streaming.

        Args:
            prompt: User prompt.
            system_prompt: Optional system message.
            temperature: Override temperature (uses tuning default if None).
            max_tokens: Override maximum response tokens.

        Returns:
            The generated text response.

        Raises:
            PipelineError: If the call fails or the response is empty.
        """
        tuning = self._settings.tuning()
        messages = self._build_messages(prompt, None, None, system_prompt)

        try:
            response = await self._get_client().chat.completions.create(
                model=self._settings.zenmux_model,
                messages=messages,  # type: ignore[arg-type]
                temperature=temperature if temperature is not None else tuning.temperature,
                max_tokens=max_tokens or tuning.max_output_tokens,
            )
        except PipelineError:
            raise
        except Exception as e:
            raise self._translate(e) from e

        if response.choices and response.choices[0].message.content:
            return response.choices[0].message.content

        raise PipelineError("Empty response from LLM", kind=ErrorKind.UNKNOWN)

    async def health_check(self) -> bool:
        """
        Check if the API is reachable.

        Returns:
            True if API is healthy, False otherwise.
        """
        try:
            response = await self._get_client().chat.completions.create(
                model=self._settings.zenmux_model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=5,
            )
            return bool(response.choices)
        except Exception as e:
            logger.warning("Health check failed: %s", e)
            return False

    @staticmethod
    def _build_messages(
        prompt: str,
        payload: bytes | None,
        mime_type: str | None,
        system_prompt: str | None,
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})

        if payload is None:
            messages.append({"role": "user", "content": prompt})
            return messages

        encoded = base64.b64encode(payload).decode("ascii")
        data_url = f"data:{mime_type or DEFAULT_IMAGE_MIME_TYPE};base64,{encoded}"
        messages.append(
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            }
        )
        return messages

    @staticmethod
    def _translate(error: Exception) -> PipelineError:
        """Tag an SDK exception with the pipeline error kind it represents."""
        if isinstance(error, RateLimitError):
            return PipelineError(
                f"Rate limit exceeded: {error.message}",
                kind=ErrorKind.RATE_LIMITED,
                status_code=429,
                cause=error,
            )

        if isinstance(error, APITimeoutError):
            return PipelineError("Request timed out", kind=ErrorKind.TIMEOUT, cause=error)

        if isinstance(error, APIConnectionError):
            return PipelineError(
                f"Connection failed: {error.message}",
                kind=ErrorKind.SERVER_ERROR,
                cause=error,
            )

        if isinstance(error, (AuthenticationError, PermissionDeniedError)):
            return PipelineError(
                f"API key rejected: {error.message}",
                kind=ErrorKind.INVALID_CREDENTIAL,
                status_code=error.status_code,
                cause=error,
            )

        if isinstance(error, APIStatusError):
            return PipelineError(
                f"API error {error.status_code}: {error.message}",
                kind=ErrorKind.from_status_code(error.status_code),
                status_code=error.status_code,
                cause=error,
            )

        return PipelineError.from_exception(error)
