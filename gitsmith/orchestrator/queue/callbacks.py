"""Job completion webhooks.

When a job carries a ``callbackUrl`` the worker POSTs the terminal record to
it.  Delivery is best-effort: a few attempts with backoff, failures logged,
and the job's state never depends on the outcome.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
from collections.abc import Sequence

import httpx
from loguru import logger

from gitsmith.orchestrator.models.job import Job

SIGNATURE_HEADER = "x-workflow-signature"
DEFAULT_BACKOFF_SECONDS = (1.0, 2.0)


def sign_payload(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class CallbackNotifier:
    def __init__(
        self,
        secret: str | None = None,
        *,
        timeout: float = 10.0,
        backoff: Sequence[float] = DEFAULT_BACKOFF_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._secret = secret
        self._timeout = timeout
        self._backoff = list(backoff)
        self._transport = transport

    async def notify(self, job: Job) -> bool:
        """Deliver ``job`` to its callback URL.  Returns True on a 2xx response."""
        if not job.callback_url:
            return False
        body = job.model_dump_json(by_alias=True).encode("utf-8")
        headers = {"content-type": "application/json"}
        if self._secret:
            headers[SIGNATURE_HEADER] = sign_payload(self._secret, body)

        attempts = len(self._backoff) + 1
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for attempt in range(1, attempts + 1):
                try:
                    response = await client.post(job.callback_url, content=body, headers=headers)
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    logger.warning("Callback for job {} failed (attempt {}/{}): {}", job.id, attempt, attempts, exc)
                    if attempt < attempts:
                        await asyncio.sleep(self._backoff[attempt - 1])
                    continue
                logger.debug("Callback for job {} delivered", job.id)
                return True
        logger.error("Callback for job {} abandoned after {} attempts", job.id, attempts)
        return False
