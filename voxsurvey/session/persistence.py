"""Response store clients.

``save()`` is idempotent per ``unique_id``: repeated incomplete saves update
the same record, and a completed save supersedes earlier incomplete ones.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from voxsurvey.config import RESPONSE_STORE_TIMEOUT, RESPONSE_STORE_URL

logger = logging.getLogger(__name__)

SAVE_PATH = "/api/survey/save"


class PersistenceError(Exception):
    """The response store could not be reached or rejected the payload."""


class ResponseStore(ABC):
    """Destination for flat survey payloads."""

    async def start(self) -> None:
        """Open connections. No-op by default."""

    async def stop(self) -> None:
        """Close connections. No-op by default."""

    @abstractmethod
    async def save(self, payload: dict) -> dict:
        """Upsert *payload* keyed by its ``unique_id`` and return the ack."""


class ResponseStoreClient(ResponseStore):
    """HTTP client for the survey backend's save endpoint."""

    def __init__(self, base_url: str = RESPONSE_STORE_URL, timeout: float = RESPONSE_STORE_TIMEOUT) -> None:
        self._base_url = base_url
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        """Initialize the HTTP client."""
        self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        logger.info("Response store client targeting %s", self._base_url)

    async def stop(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def save(self, payload: dict) -> dict:
        if self._client is None:
            raise PersistenceError("response store client not started")

        try:
            response = await self._client.post(SAVE_PATH, json=payload)
        except httpx.TransportError as exc:
            raise PersistenceError(f"response store unreachable: {exc}") from exc

        if response.status_code >= 400:
            raise PersistenceError(
                f"response store returned status {response.status_code}"
            )
        logger.info(
            "Saved %s survey %s", payload.get("survey_status"), payload.get("unique_id")
        )
        try:
            return response.json()
        except ValueError:
            return {}


class InMemoryResponseStore(ResponseStore):
    """Process-local store with the same upsert rules as the backend."""

    def __init__(self) -> None:
        self.records: dict[str, dict] = {}
        self.save_count: int = 0

    async def save(self, payload: dict) -> dict:
        unique_id = payload.get("unique_id")
        if not unique_id:
            raise PersistenceError("payload has no unique_id")

        self.save_count += 1
        existing = self.records.get(unique_id)
        if (
            existing is not None
            and existing.get("survey_status") == "completed"
            and payload.get("survey_status") != "completed"
        ):
            logger.debug("Ignoring incomplete save for completed survey %s", unique_id)
            return {"message": "Survey already completed.", "savedData": existing}

        self.records[unique_id] = dict(payload)
        return {"message": "Survey saved successfully.", "savedData": self.records[unique_id]}
