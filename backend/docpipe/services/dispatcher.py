"""
External Processing Dispatcher — triggers the out-of-process document worker.

One outbound POST per job attempt; completion is observed later through the
callback endpoints, never by waiting here.

Wire format (what the worker expects):

    POST {worker_base_url}{worker_trigger_path}
    Authorization: Bearer <worker_webhook_api_key>
    {
      "bookId":       "<document uuid>",
      "pdfUrl":       "<shareable source url>",
      "directPdfUrl": "<direct download url>",
      "bookName":     "<title>",
      "authorNames":  ["..."]
    }

Any transport error, timeout or non-2xx response becomes a DispatchError so
callers can roll the job back to FAILED.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

import httpx

from docpipe.core.config import settings
from docpipe.core.exceptions import DispatchError

logger = logging.getLogger(__name__)

_BODY_EXCERPT = 500   # chars of worker error body kept in the job's error_message


@dataclass
class DispatchMetadata:
    """Document details the worker needs alongside the source URLs."""
    title:   str
    authors: list[str] = field(default_factory=list)


class ProcessingDispatcher:
    """
    Fire-and-forget trigger for the processing worker.

    transport is injectable so tests can use httpx.MockTransport.
    """

    def __init__(
        self,
        base_url:  str | None                      = None,
        api_key:   str | None                      = None,
        path:      str | None                      = None,
        timeout:   float | None                    = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url  = (base_url if base_url is not None else settings.worker_base_url).rstrip("/")
        self._api_key   = api_key if api_key is not None else settings.worker_webhook_api_key
        self._path      = path or settings.worker_trigger_path
        self._timeout   = timeout or settings.worker_timeout_seconds
        self._transport = transport

    async def dispatch(
        self,
        document_id:       UUID,
        source_url:        str | None,
        direct_source_url: str | None,
        metadata:          DispatchMetadata,
    ) -> None:
        """
        Send the trigger request. Returns once the worker has accepted it.

        Raises:
            DispatchError: worker not configured, unreachable, or non-2xx.
        """
        if not self._base_url or not self._api_key:
            raise DispatchError("Processing worker is not configured")
        if not (source_url or direct_source_url):
            raise DispatchError("Document has no source URL to process")

        url = f"{self._base_url}{self._path}"
        payload = {
            "bookId":       str(document_id),
            "pdfUrl":       source_url or direct_source_url,
            "directPdfUrl": direct_source_url or source_url,
            "bookName":     metadata.title,
            "authorNames":  metadata.authors,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(
                    url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
        except httpx.TimeoutException as exc:
            logger.error("Dispatch timed out | doc=%s url=%s", document_id, url)
            raise DispatchError(f"Worker timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            logger.error("Dispatch transport error | doc=%s error=%s", document_id, exc)
            raise DispatchError(f"Worker unreachable: {exc}") from exc

        if resp.is_error:
            body = resp.text[:_BODY_EXCERPT]
            logger.error(
                "Dispatch rejected | doc=%s status=%d body=%s",
                document_id, resp.status_code, body,
            )
            raise DispatchError(
                f"Worker returned {resp.status_code}: {body}",
                worker_status=resp.status_code,
            )

        logger.info("Dispatched | doc=%s status=%d", document_id, resp.status_code)
