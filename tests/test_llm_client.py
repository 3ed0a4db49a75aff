"""
Unit tests for the LLM client.

The OpenAI SDK client is replaced by mocks; SDK exceptions are built
against a fake httpx request so translation can be checked.
"""

import base64
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    RateLimitError,
)

from worksheet_grader.config import Settings
from worksheet_grader.errors import ErrorKind, PipelineError
from worksheet_grader.grading import LLMClient

_REQUEST = httpx.Request("POST", "https://test.api.local/chat/completions")


def _response(status: int) -> httpx.Response:
    return httpx.Response(status, request=_REQUEST)


def _event(content: str | None) -> MagicMock:
    event = MagicMock()
    event.choices = [MagicMock()]
    event.choices[0].delta.content = content
    return event


class _SDKStream:
    """Stand-in for the SDK's async chat completion stream."""

    def __init__(self, events: list[Any], error: Exception | None = None):
        self._events = iter(events)
        self._error = error
        self.close = AsyncMock()

    def __aiter__(self) -> "_SDKStream":
        return self

    async def __anext__(self) -> Any:
        for event in self._events:
            return event
        if self._error is not None:
            raise self._error
        raise StopAsyncIteration


@pytest.fixture
def sdk_client() -> MagicMock:
    """Mocked AsyncOpenAI client."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock()
    return client


@pytest.fixture
def llm_client(test_settings: Settings, sdk_client: MagicMock) -> LLMClient:
    """LLM client wired to the mocked SDK client."""
    return LLMClient(test_settings, client=sdk_client)


class TestTranslate:
    """Tests for SDK error translation."""

    def test_rate_limit(self) -> None:
        """Test 429 becomes RATE_LIMITED."""
        error = RateLimitError("slow down", response=_response(429), body=None)

        translated = LLMClient._translate(error)

        assert translated.kind == ErrorKind.RATE_LIMITED
        assert translated.status_code == 429
        assert translated.cause is error

    def test_timeout(self) -> None:
        """Test SDK timeouts become TIMEOUT."""
        translated = LLMClient._translate(APITimeoutError(request=_REQUEST))

        assert translated.kind == ErrorKind.TIMEOUT

    def test_connection(self) -> None:
        """Test connection failures are transient server errors."""
        translated = LLMClient._translate(APIConnectionError(request=_REQUEST))

        assert translated.kind == ErrorKind.SERVER_ERROR
        assert translated.retryable

    def test_authentication(self) -> None:
        """Test a rejected key is INVALID_CREDENTIAL."""
        error = AuthenticationError("bad key", response=_response(401), body=None)

        translated = LLMClient._translate(error)

        assert translated.kind == ErrorKind.INVALID_CREDENTIAL
        assert not translated.retryable

    @pytest.mark.parametrize(
        ("status", "kind"),
        [(500, ErrorKind.SERVER_ERROR), (503, ErrorKind.SERVER_ERROR), (400, ErrorKind.UNKNOWN)],
    )
    def test_status_errors(self, status: int, kind: ErrorKind) -> None:
        """Test other HTTP errors are tagged by status."""
        error = APIStatusError("failed", response=_response(status), body=None)

        translated = LLMClient._translate(error)

        assert translated.kind == kind
        assert translated.status_code == status

    def test_unrelated_error(self) -> None:
        """Test other exceptions are UNKNOWN."""
        assert LLMClient._translate(RuntimeError("boom")).kind == ErrorKind.UNKNOWN


class TestBuildMessages:
    """Tests for message construction."""

    def test_text_only(self) -> None:
        """Test a text prompt with a system message."""
        messages = LLMClient._build_messages("Grade this", None, None, "Be fair")

        assert messages == [
            {"role": "system", "content": "Be fair"},
            {"role": "user", "content": "Grade this"},
        ]

    def test_image_payload(self) -> None:
        """Test images are sent as base64 data URLs."""
        image = b"\xff\xd8\xff\xe0fake-jpeg"

        messages = LLMClient._build_messages("Grade this", image, "image/jpeg", None)

        assert len(messages) == 1
        text_part, image_part = messages[0]["content"]
        assert text_part == {"type": "text", "text": "Grade this"}
        url = image_part["image_url"]["url"]
        assert url.startswith("data:image/jpeg;base64,")
        assert base64.b64decode(url.split(",", 1)[1]) == image

    def test_image_default_mime_type(self) -> None:
        """Test PNG is assumed when no MIME type is given."""
        messages = LLMClient._build_messages("Grade this", b"img", None, None)

        assert messages[0]["content"][1]["image_url"]["url"].startswith("data:image/png;base64,")


class TestOpenStream:
    """Tests for streaming completions."""

    @pytest.mark.asyncio
    async def test_yields_chunks(self, llm_client: LLMClient, sdk_client: MagicMock) -> None:
        """Test deltas become numbered chunks and empty deltas are skipped."""
        sdk_stream = _SDKStream([_event('{"total'), _event(None), _event('Score": 90}')])
        sdk_client.chat.completions.create.return_value = sdk_stream

        stream = await llm_client.open_stream("Grade this")
        chunks = [chunk async for chunk in stream]

        assert [c.sequence_number for c in chunks] == [1, 2]
        assert "".join(c.text for c in chunks) == '{"totalScore": 90}'
        assert chunks[-1].cumulative_length == len('{"totalScore": 90}')
        sdk_stream.close.assert_awaited_once()
        assert sdk_client.chat.completions.create.await_args.kwargs["stream"] is True

    @pytest.mark.asyncio
    async def test_open_failure_translated(
        self, llm_client: LLMClient, sdk_client: MagicMock
    ) -> None:
        """Test a rejected request surfaces as a tagged error."""
        sdk_client.chat.completions.create.side_effect = RateLimitError(
            "slow down", response=_response(429), body=None
        )

        with pytest.raises(PipelineError) as exc_info:
            await llm_client.open_stream("Grade this")

        assert exc_info.value.kind == ErrorKind.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_midstream_failure_translated(
        self, llm_client: LLMClient, sdk_client: MagicMock
    ) -> None:
        """Test a dropped connection mid-stream is tagged and the stream closed."""
        sdk_stream = _SDKStream([_event("{")], error=APIConnectionError(request=_REQUEST))
        sdk_client.chat.completions.create.return_value = sdk_stream

        stream = await llm_client.open_stream("Grade this")
        with pytest.raises(PipelineError) as exc_info:
            async for _ in stream:
                pass

        assert exc_info.value.kind == ErrorKind.SERVER_ERROR
        sdk_stream.close.assert_awaited_once()


class TestCallOnce:
    """Tests for single-shot completions."""

    @pytest.mark.asyncio
    async def test_returns_content(self, llm_client: LLMClient, sdk_client: MagicMock) -> None:
        """Test the message content is returned."""
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = '{"totalScore": 70}'
        sdk_client.chat.completions.create.return_value = response

        assert await llm_client.call_once("Grade this", temperature=0.0) == '{"totalScore": 70}'
        kwargs = sdk_client.chat.completions.create.await_args.kwargs
        assert kwargs["temperature"] == 0.0
        assert kwargs["model"] == "test-model"

    @pytest.mark.asyncio
    async def test_empty_response(self, llm_client: LLMClient, sdk_client: MagicMock) -> None:
        """Test an empty response raises."""
        response = MagicMock()
        response.choices = []
        sdk_client.chat.completions.create.return_value = response

        with pytest.raises(PipelineError, match="Empty response"):
            await llm_client.call_once("Grade this")

    @pytest.mark.asyncio
    async def test_missing_key(self, test_settings: Settings) -> None:
        """Test the SDK client is not built without a usable key."""
        client = LLMClient(test_settings.model_copy(update={"zenmux_api_key": None}))

        with pytest.raises(PipelineError) as exc_info:
            await client.call_once("Grade this")

        assert exc_info.value.kind == ErrorKind.MISSING_CREDENTIAL


class TestHealthCheck:
    """Tests for the health check."""

    @pytest.mark.asyncio
    async def test_healthy(self, llm_client: LLMClient, sdk_client: MagicMock) -> None:
        """Test a response with choices is healthy."""
        sdk_client.chat.completions.create.return_value = MagicMock(choices=[MagicMock()])

        assert await llm_client.health_check() is True

    @pytest.mark.asyncio
    async def test_unreachable(self, llm_client: LLMClient, sdk_client: MagicMock) -> None:
        """Test a failing call reports unhealthy."""
        sdk_client.chat.completions.create.side_effect = APIConnectionError(request=_REQUEST)

        assert await llm_client.health_check() is False
