from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import pytest

from spendgate.core.database import SpendgateDB
from spendgate.services.approval_policy import Person
from spendgate.services.directory import DirectoryClient, StaticDirectory, get_directory
from spendgate.services.errors import DirectoryError, ErrorCode, NoActiveAccountError

BASE = "https://directory.test/v1"


def _paged_transport(seen):
    pages = {
        f"{BASE}/users": {
            "data": [
                {"id": "u1", "first_name": "Alex", "last_name": "Kim", "email": "alex@example.com"},
                {"first_name": "Ghost"},
            ],
            "page": {"next": f"{BASE}/users?start=u2"},
        },
        f"{BASE}/users?start=u2": {
            "data": [{"id": "u2", "first_name": "Dana", "last_name": "Ortiz", "email": "dana@example.com"}],
            "page": {"next": None},
        },
    }

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        key = f"{BASE}/users" if "page_size" in request.url.params else str(request.url)
        return httpx.Response(200, json=pages[key])

    return httpx.MockTransport(handler)


def test_list_people_follows_pagination_with_bearer_token():
    seen = []
    client = DirectoryClient("tok-123", base_url=BASE, page_size=2, transport=_paged_transport(seen))

    people = asyncio.run(client.list_people())

    assert sorted(people) == ["u1", "u2"]
    assert people["u2"].full_name == "Dana Ortiz"
    assert len(seen) == 2
    assert seen[0].headers["Authorization"] == "Bearer tok-123"
    assert seen[0].url.params["page_size"] == "2"
    assert "page_size" not in seen[1].url.params


def test_lookup_people_returns_only_known_ids():
    client = DirectoryClient("tok", base_url=BASE, transport=_paged_transport([]))

    people = asyncio.run(client.lookup_people(["u2", "missing", "", "u2"]))

    assert list(people) == ["u2"]


def test_lookup_without_ids_skips_the_request():
    seen = []
    client = DirectoryClient("tok", base_url=BASE, transport=_paged_transport(seen))

    assert asyncio.run(client.lookup_people([])) == {}
    assert seen == []


def test_upstream_error_status_maps_to_bad_gateway():
    transport = httpx.MockTransport(lambda request: httpx.Response(401, json={"error": "unauthorized"}))
    client = DirectoryClient("expired", base_url=BASE, transport=transport)

    with pytest.raises(DirectoryError) as exc_info:
        asyncio.run(client.list_people())

    assert exc_info.value.code == ErrorCode.DIRECTORY_ERROR
    assert exc_info.value.status_code == 502
    assert exc_info.value.context["upstream_status"] == 401


def test_unreachable_directory_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = DirectoryClient("tok", base_url=BASE, transport=httpx.MockTransport(handler))

    with pytest.raises(DirectoryError) as exc_info:
        asyncio.run(client.list_people())

    assert exc_info.value.code == ErrorCode.DIRECTORY_UNAVAILABLE
    assert exc_info.value.status_code == 503


def test_static_directory_lookup():
    directory = StaticDirectory([Person(id="u1", first_name="Alex", last_name="Kim")])

    assert list(asyncio.run(directory.lookup_people(["u1", "u9", None]))) == ["u1"]
    assert list(asyncio.run(directory.list_people())) == ["u1"]


def test_get_directory_requires_active_account(tmp_path: Path):
    db = SpendgateDB(str(tmp_path / "spendgate-directory.db"))
    db.initialize()

    with pytest.raises(NoActiveAccountError):
        get_directory(db)

    db.save_account_connection(business_id="biz-1", access_token="tok-active")
    db.set_active_account("biz-1")

    client = get_directory(db)
    assert client.headers["Authorization"] == "Bearer tok-active"


def test_non_json_body_is_directory_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>"))
    client = DirectoryClient("tok", base_url=BASE, transport=transport)

    with pytest.raises(DirectoryError) as exc_info:
        asyncio.run(client.list_people())

    assert exc_info.value.status_code == 502
