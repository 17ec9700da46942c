"""
People Directory

Resolves person ids (project managers, directors, client owners) to people
using the connected business account's users API.

API: GET {base}/users -> {"data": [{id, first_name, last_name, email}], "page": {"next": url|null}}
"""
from __future__ import annotations

import logging
import os
from typing import Dict, Iterable, Optional

import httpx

from spendgate.core.database import SpendgateDB
from spendgate.services.accounts import get_active_account_token
from spendgate.services.approval_policy import Person
from spendgate.services.errors import DirectoryError

logger = logging.getLogger(__name__)

DIRECTORY_BASE_URL = os.getenv("SPENDGATE_DIRECTORY_URL", "https://demo-api.ramp.com/developer/v1")
DIRECTORY_TIMEOUT = float(os.getenv("SPENDGATE_DIRECTORY_TIMEOUT", "15"))
DIRECTORY_PAGE_SIZE = int(os.getenv("SPENDGATE_DIRECTORY_PAGE_SIZE", "100"))
MAX_PAGES = 100


class DirectoryClient:
    """Client for the external users API of the active business account."""

    def __init__(
        self,
        access_token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        page_size: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or DIRECTORY_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else DIRECTORY_TIMEOUT
        self.page_size = page_size or DIRECTORY_PAGE_SIZE
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

    async def list_people(self) -> Dict[str, Person]:
        """Fetch every user, following ``page.next`` until it is empty."""
        people: Dict[str, Person] = {}
        url: Optional[str] = f"{self.base_url}/users"
        params: Optional[Dict[str, int]] = {"page_size": self.page_size}

        async with httpx.AsyncClient(
            headers=self.headers, timeout=self.timeout, transport=self.transport
        ) as client:
            for _ in range(MAX_PAGES):
                try:
                    response = await client.get(url, params=params)
                    response.raise_for_status()
                except httpx.HTTPStatusError as exc:
                    status = exc.response.status_code
                    logger.error("Directory API error: %s %s", status, exc.response.reason_phrase)
                    raise DirectoryError(f"{status} {exc.response.reason_phrase}", status_code=status) from exc
                except httpx.RequestError as exc:
                    logger.error("Directory API unreachable: %s", exc)
                    raise DirectoryError(str(exc) or exc.__class__.__name__) from exc

                try:
                    payload = response.json()
                except ValueError as exc:
                    logger.error("Directory API returned a non-JSON body from %s", response.url)
                    raise DirectoryError(
                        "Directory response was not JSON", status_code=response.status_code
                    ) from exc
                if not isinstance(payload, dict):
                    raise DirectoryError(
                        "Directory response was not a JSON object", status_code=response.status_code
                    )
                for entry in payload.get("data") or []:
                    if not entry.get("id"):
                        continue
                    person = Person.from_dict(entry)
                    people[person.id] = person

                url = (payload.get("page") or {}).get("next")
                params = None
                if not url:
                    break
            else:
                logger.warning("Directory pagination stopped after %s pages", MAX_PAGES)

        logger.info("Fetched %s people from directory", len(people))
        return people

    async def lookup_people(self, person_ids: Iterable[str]) -> Dict[str, Person]:
        wanted = {person_id for person_id in person_ids if person_id}
        if not wanted:
            return {}
        people = await self.list_people()
        return {person_id: people[person_id] for person_id in sorted(wanted) if person_id in people}


class StaticDirectory:
    """In-memory directory with the same lookup interface."""

    def __init__(self, people: Iterable[Person] = ()):
        self._people = {person.id: person for person in people}

    async def list_people(self) -> Dict[str, Person]:
        return dict(self._people)

    async def lookup_people(self, person_ids: Iterable[str]) -> Dict[str, Person]:
        return {
            person_id: self._people[person_id]
            for person_id in sorted({pid for pid in person_ids if pid})
            if person_id in self._people
        }


def get_directory(db: Optional[SpendgateDB] = None) -> DirectoryClient:
    """Directory client authorized with the active account's token."""
    return DirectoryClient(access_token=get_active_account_token(db))
