"""
HTTP/JSON client for the remote reconciliation service.

All three operations POST to a single actions endpoint:

    {"action": "sync", "chunkRecords": [...]}  -> {"taskId": "..."}
    {"action": "status", "taskId": "..."}     -> {"status": "...", "progress": 0-100, "error": "..."}
    {"action": "fetch", "keys": [...]}        -> {"records": [...]}

requests is blocking, so every call runs in a worker thread to keep the
event loop free for the other chunks.
"""

import asyncio
import logging
import os
from typing import Any, Mapping, Optional, Sequence

import requests

from utils.tracing import trace_http_request

from ..errors import PayloadError, ProtocolError, RejectionError, TransportError
from ..models import Record, StoreRecord, TaskStatus, TaskStatusReport
from .base import RemoteSyncService

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429})
PAYLOAD_STATUS_CODES = frozenset({400, 413, 422})


class HttpSyncService(RemoteSyncService):
    """
    Remote sync service reached over HTTP.

    Args:
        base_url: Actions endpoint URL (default: REPORT_SYNC_ENDPOINT env var)
        api_token: Bearer token (default: REPORT_SYNC_API_TOKEN env var)
        timeout: Per-request timeout in seconds
        session: Pre-configured requests.Session (one is created otherwise)
        headers: Extra headers sent with every request
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.base_url = base_url or os.getenv("REPORT_SYNC_ENDPOINT")
        if not self.base_url:
            raise ValueError(
                "Sync endpoint not provided. Set REPORT_SYNC_ENDPOINT environment variable "
                "or pass base_url parameter."
            )

        self.timeout = timeout
        self.session = session or requests.Session()
        self.headers = {"Content-Type": "application/json", **(headers or {})}

        token = api_token or os.getenv("REPORT_SYNC_API_TOKEN")
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

        logger.info(f"Initialized HTTP sync service for {self.base_url}")

    async def submit(self, records: Sequence[Record]) -> str:
        body = await self._post(
            {"action": "sync", "chunkRecords": [record.to_payload() for record in records]}
        )
        task_id = body.get("taskId")
        if not isinstance(task_id, str) or not task_id:
            raise ProtocolError(f"Sync response without taskId: {body!r}")
        return task_id

    async def poll_once(self, task_id: str) -> TaskStatusReport:
        body = await self._post({"action": "status", "taskId": task_id}, task_id=task_id)

        status = TaskStatus.parse(body.get("status"), task_id=task_id)
        try:
            progress = float(body.get("progress") or 0)
        except (TypeError, ValueError):
            raise ProtocolError(
                f"Non-numeric progress {body.get('progress')!r}", task_id=task_id
            ) from None

        return TaskStatusReport(status=status, progress=progress, error=body.get("error"))

    async def fetch_by_keys(self, keys: Sequence[str]) -> list[StoreRecord]:
        body = await self._post({"action": "fetch", "keys": list(keys)})
        rows = body.get("records")
        if not isinstance(rows, list):
            raise ProtocolError(f"Fetch response without records list: {type(rows).__name__}")
        return [StoreRecord.from_payload(row) for row in rows]

    async def close(self) -> None:
        await asyncio.to_thread(self.session.close)

    async def _post(self, payload: dict[str, Any], task_id: Optional[str] = None) -> dict[str, Any]:
        return await asyncio.to_thread(self._post_blocking, payload, task_id)

    def _post_blocking(self, payload: dict[str, Any], task_id: Optional[str]) -> dict[str, Any]:
        action = payload["action"]

        with trace_http_request("POST", self.base_url, action=action):
            try:
                response = self.session.post(
                    self.base_url, json=payload, headers=self.headers, timeout=self.timeout
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                raise TransportError(f"{action} request failed: {e}", task_id=task_id) from e
            except requests.RequestException as e:
                raise ProtocolError(f"{action} request could not be sent: {e}", task_id=task_id) from e

        return self._decode(response, action, task_id)

    @staticmethod
    def _decode(response: requests.Response, action: str, task_id: Optional[str]) -> dict[str, Any]:
        status_code = response.status_code

        if status_code >= 400:
            detail = _error_detail(response)
            message = f"{action} request returned HTTP {status_code}: {detail}"
            if status_code in RETRYABLE_STATUS_CODES or status_code >= 500:
                raise TransportError(message, task_id=task_id)
            if status_code in PAYLOAD_STATUS_CODES:
                raise PayloadError(message, task_id=task_id)
            raise RejectionError(message, status_code=status_code, task_id=task_id)

        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError(f"{action} response is not JSON", task_id=task_id) from e

        if not isinstance(body, dict):
            raise ProtocolError(
                f"{action} response must be a JSON object, got {type(body).__name__}",
                task_id=task_id,
            )
        return body


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason or "no detail"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)
