"""Client for the remote moderation classifier (OpenAI or the local mock server)."""

import asyncio
import time
from typing import Optional

import httpx
import openai
import structlog
from openai import AsyncOpenAI
from pydantic import ValidationError as SchemaValidationError

from config import (CLASSIFIER_TIMEOUT, MOCK_SERVER_URL, MODERATION_MODEL,
                    OPENAI_API_KEY, USE_MOCK_SERVER)
from errors import ClassifierError, ClassifierErrorKind
from metrics import CLASSIFIER_LATENCY
from schemas import ClassifierResponse

log = structlog.get_logger()


class ModerationClassifier:
    """
    Sends text to the moderation classifier and returns a validated response.

    Every failure, including a response that does not have the expected
    shape, surfaces as a ``ClassifierError``. A single call never outlives
    ``timeout`` seconds.
    """

    def __init__(
        self,
        api_key: Optional[str] = OPENAI_API_KEY,
        model: str = MODERATION_MODEL,
        timeout: float = CLASSIFIER_TIMEOUT,
        use_mock_server: bool = USE_MOCK_SERVER,
        mock_server_url: str = MOCK_SERVER_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        openai_client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model
        self.timeout = timeout
        self.use_mock_server = use_mock_server
        self.mock_server_url = mock_server_url
        self._api_key = api_key
        self._http_client = http_client
        self._openai_client = openai_client

    @property
    def configured(self) -> bool:
        return self.use_mock_server or bool(self._api_key) or self._openai_client is not None

    async def classify(self, text: str) -> ClassifierResponse:
        started = time.perf_counter()
        try:
            call = self._call_mock_server(text) if self.use_mock_server else self._call_openai(text)
            payload = await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ClassifierError(f"Classifier did not respond within {self.timeout}s",
                                  ClassifierErrorKind.TIMEOUT)
        finally:
            CLASSIFIER_LATENCY.observe(time.perf_counter() - started)

        return self.parse_response(payload)

    @staticmethod
    def parse_response(payload) -> ClassifierResponse:
        """Validate an untrusted classifier payload."""
        try:
            return ClassifierResponse.model_validate(payload)
        except SchemaValidationError as e:
            raise ClassifierError(f"Malformed classifier response: {e.error_count()} validation error(s)",
                                  ClassifierErrorKind.MALFORMED_RESPONSE) from e

    def _get_openai_client(self) -> AsyncOpenAI:
        if self._openai_client is None:
            if not self._api_key:
                raise ClassifierError("OPENAI_API_KEY Is Missing In Environment Variables",
                                      ClassifierErrorKind.NOT_CONFIGURED)
            self._openai_client = AsyncOpenAI(api_key=self._api_key, timeout=self.timeout, max_retries=0)
        return self._openai_client

    async def _call_openai(self, text: str) -> dict:
        client = self._get_openai_client()
        try:
            response = await client.moderations.create(model=self.model, input=text)
        except openai.APITimeoutError as e:
            raise ClassifierError(str(e), ClassifierErrorKind.TIMEOUT) from e
        except openai.APIConnectionError as e:
            raise ClassifierError(str(e), ClassifierErrorKind.NETWORK) from e
        except openai.AuthenticationError as e:
            raise ClassifierError(str(e), ClassifierErrorKind.AUTHENTICATION, e.status_code) from e
        except openai.RateLimitError as e:
            kind = ClassifierErrorKind.QUOTA if "quota" in str(e).lower() else ClassifierErrorKind.RATE_LIMIT
            raise ClassifierError(str(e), kind, e.status_code) from e
        except openai.APIStatusError as e:
            kind = ClassifierErrorKind.UPSTREAM if e.status_code >= 500 else ClassifierErrorKind.BAD_REQUEST
            raise ClassifierError(str(e), kind, e.status_code) from e
        except openai.OpenAIError as e:
            raise ClassifierError(str(e), ClassifierErrorKind.UPSTREAM) from e

        return response.model_dump(mode="json", by_alias=True)

    async def _call_mock_server(self, text: str) -> dict:
        body = {"input": text, "model": self.model}
        try:
            if self._http_client is not None:
                response = await self._http_client.post(self.mock_server_url, json=body)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.mock_server_url, json=body)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise ClassifierError(str(e) or "Mock server timed out", ClassifierErrorKind.TIMEOUT) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429:
                kind = ClassifierErrorKind.RATE_LIMIT
            elif status in (401, 403):
                kind = ClassifierErrorKind.AUTHENTICATION
            elif status >= 500:
                kind = ClassifierErrorKind.UPSTREAM
            else:
                kind = ClassifierErrorKind.BAD_REQUEST
            raise ClassifierError(f"Mock server returned HTTP {status}", kind, status) from e
        except httpx.RequestError as e:
            raise ClassifierError(str(e) or "Mock server unreachable", ClassifierErrorKind.NETWORK) from e
        except ValueError as e:
            raise ClassifierError("Mock server returned a non-JSON body",
                                  ClassifierErrorKind.MALFORMED_RESPONSE) from e
