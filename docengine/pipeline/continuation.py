"""Fire-and-forget delivery of the next chunk request."""

import logging
import threading
from typing import Callable

import requests

from docengine.agents.models import ChunkRequest

logger = logging.getLogger(__name__)


class ThreadDispatcher:
    """Runs each continuation on its own daemon thread inside this process."""

    def __init__(self, handler: Callable[[ChunkRequest], object] | None = None):
        self.handler = handler

    def dispatch(self, request: ChunkRequest) -> None:
        if self.handler is None:
            raise RuntimeError("ThreadDispatcher has no handler bound")
        thread = threading.Thread(
            target=self._run,
            args=(request,),
            name=f"chunk-{request.document_id}-p{request.current_page}",
            daemon=True,
        )
        thread.start()
        logger.info(
            "Continuation for %s from page %d started on %s",
            request.document_id, request.current_page, thread.name,
        )

    def _run(self, request: ChunkRequest) -> None:
        try:
            self.handler(request)
        except Exception:
            logger.exception(
                "Continuation for %s from page %d crashed",
                request.document_id, request.current_page,
            )


class HttpDispatcher:
    """POSTs the next request back to the parse endpoint without awaiting it.

    The chunk runs synchronously on the receiving side, so a read timeout
    means the request was delivered and is being worked on.
    """

    def __init__(self, url: str, timeout: float = 5.0, headers: dict | None = None):
        self.url = url
        self.timeout = timeout
        self.headers = headers or {}

    def dispatch(self, request: ChunkRequest) -> None:
        thread = threading.Thread(
            target=self._post,
            args=(request.to_payload(),),
            name=f"continuation-{request.document_id}-p{request.current_page}",
            daemon=True,
        )
        thread.start()

    def _post(self, payload: dict) -> None:
        document_id = payload.get("documentId")
        page = payload.get("currentPage")
        try:
            response = requests.post(
                self.url, json=payload, headers=self.headers, timeout=self.timeout
            )
        except requests.ReadTimeout:
            logger.debug("Continuation for %s page %s delivered, not awaiting", document_id, page)
            return
        except requests.RequestException as exc:
            logger.error(
                "Continuation for %s page %s could not be sent: %s", document_id, page, exc
            )
            return

        if not response.ok:
            logger.error(
                "Continuation for %s page %s rejected: %d %s",
                document_id, page, response.status_code, response.text[:200],
            )
        else:
            logger.info("Continuation for %s page %s finished", document_id, page)
