"""Client for the social-network posting endpoint, gated on the moderation decision."""

from typing import Optional

import httpx
import structlog

from categories import format_feedback
from config import POSTING_API_TOKEN, POSTING_API_URL, POSTING_TIMEOUT
from errors import PublishBlockedError, PublishError
from schemas import ModerationDecision

log = structlog.get_logger()


class PostingClient:
    def __init__(
        self,
        base_url: str = POSTING_API_URL,
        token: Optional[str] = POSTING_API_TOKEN,
        timeout: float = POSTING_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token = token
        self._http_client = http_client

    @property
    def configured(self) -> bool:
        return bool(self._token)

    async def publish(self, text: str, decision: ModerationDecision) -> str:
        """
        Publish ``text`` and return the identifier assigned by the posting service.

        Raises PublishBlockedError without contacting the service when the
        decision does not allow the text.
        """
        if not decision.is_allowed:
            raise PublishBlockedError(format_feedback(decision.flagged_categories, decision.is_allowed))
        if not self._token:
            raise PublishError("POSTING_API_TOKEN Is Missing In Environment Variables")

        url = f"{self.base_url}/2/tweets"
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, json={"text": text}, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json={"text": text}, headers=headers)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise PublishError("Posting service timed out", transient=True) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            transient = status == 429 or status >= 500
            raise PublishError(f"Posting service returned HTTP {status}", transient, status) from e
        except httpx.RequestError as e:
            raise PublishError(f"Posting service unreachable: {e}", transient=True) from e

        try:
            post_id = str(response.json()["data"]["id"])
        except (ValueError, KeyError, TypeError) as e:
            raise PublishError("Posting service returned an unexpected body") from e

        log.info("Post Published", post_id=post_id)
        return post_id
