"""Tests for the FastAPI application."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from contact_identity import __version__
from contact_identity.app import create_app
from contact_identity.config import Settings
from contact_identity.models import Contact, LinkPrecedence
from contact_identity.store import InMemoryContactStoreProvider


@pytest.fixture
def app(memory_provider: InMemoryContactStoreProvider) -> FastAPI:
    return create_app(store_provider=memory_provider)


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": __version__}


class TestIdentify:
    """POST /api/v1/identify."""

    async def test_new_contact(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/v1/identify",
            json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "contact": {
                "primaryContactId": 1,
                "emails": ["lorraine@hillvalley.edu"],
                "phoneNumbers": ["123456"],
                "secondaryContactIds": [],
            }
        }

    async def test_gap_fill_then_lookup_by_secondary(self, client: AsyncClient) -> None:
        await client.post(
            "/api/v1/identify",
            json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"},
        )
        await client.post(
            "/api/v1/identify",
            json={"email": "mcfly@hillvalley.edu", "phoneNumber": "123456"},
        )

        response = await client.post(
            "/api/v1/identify", json={"email": "mcfly@hillvalley.edu", "phoneNumber": None}
        )

        assert response.status_code == 200
        assert response.json()["contact"] == {
            "primaryContactId": 1,
            "emails": ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"],
            "phoneNumbers": ["123456"],
            "secondaryContactIds": [2],
        }

    async def test_merge(self, client: AsyncClient) -> None:
        await client.post(
            "/api/v1/identify",
            json={"email": "george@hillvalley.edu", "phoneNumber": "919191"},
        )
        await client.post(
            "/api/v1/identify",
            json={"email": "biffsucks@hillvalley.edu", "phoneNumber": "717171"},
        )

        response = await client.post(
            "/api/v1/identify",
            json={"email": "george@hillvalley.edu", "phoneNumber": "717171"},
        )

        contact = response.json()["contact"]
        assert contact["primaryContactId"] == 1
        assert contact["emails"] == ["george@hillvalley.edu", "biffsucks@hillvalley.edu"]
        assert contact["phoneNumbers"] == ["919191", "717171"]
        assert contact["secondaryContactIds"][0] == 2

    async def test_numeric_phone_number_accepted(self, client: AsyncClient) -> None:
        response = await client.post("/api/v1/identify", json={"phoneNumber": 123456})

        assert response.status_code == 200
        assert response.json()["contact"]["phoneNumbers"] == ["123456"]

    @pytest.mark.parametrize(
        "body",
        [{}, {"email": None, "phoneNumber": None}, {"email": "", "phoneNumber": "  "}],
    )
    async def test_missing_fields_is_400(
        self,
        client: AsyncClient,
        memory_provider: InMemoryContactStoreProvider,
        body: dict,
    ) -> None:
        response = await client.post("/api/v1/identify", json=body)

        assert response.status_code == 400
        assert response.json() == {
            "error": {"message": "Email or phoneNumber is required", "status": 400}
        }
        assert memory_provider.all_contacts() == []

    async def test_inconsistent_state_is_500(
        self,
        client: AsyncClient,
        memory_provider: InMemoryContactStoreProvider,
    ) -> None:
        memory_provider.load(
            [
                Contact(
                    id=2,
                    email="orphan@x.com",
                    linked_id=1,
                    link_precedence=LinkPrecedence.SECONDARY,
                )
            ]
        )

        response = await client.post("/api/v1/identify", json={"email": "orphan@x.com"})

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["status"] == 500
        assert "No primary contact" in error["message"]


class TestErrorResponses:
    """Error body shape and production message hiding."""

    async def test_production_hides_server_error_details(
        self, memory_provider: InMemoryContactStoreProvider
    ) -> None:
        memory_provider.load(
            [
                Contact(
                    id=2,
                    email="orphan@x.com",
                    linked_id=1,
                    link_precedence=LinkPrecedence.SECONDARY,
                )
            ]
        )
        app = create_app(
            store_provider=memory_provider,
            app_settings=Settings(environment="production"),
        )
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            server_error = await client.post("/api/v1/identify", json={"email": "orphan@x.com"})
            client_error = await client.post("/api/v1/identify", json={})

        assert server_error.json() == {"error": {"message": "Internal server error", "status": 500}}
        assert client_error.json()["error"]["message"] == "Email or phoneNumber is required"

    async def test_unexpected_error_is_500(self) -> None:
        app = create_app(store_provider=BrokenProvider())
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post("/api/v1/identify", json={"email": "a@x.com"})

        assert response.status_code == 500
        assert response.json() == {"error": {"message": "Internal server error", "status": 500}}

    async def test_unexpected_error_text_never_reaches_client(self) -> None:
        app = create_app(
            store_provider=BrokenProvider(
                RuntimeError('INSERT INTO contacts ... [parameters: ("secret@x.com",)]')
            )
        )
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.post("/api/v1/identify", json={"email": "secret@x.com"})

        assert response.status_code == 500
        assert "secret@x.com" not in response.text
        assert "INSERT" not in response.text


class BrokenProvider:
    """Store provider whose transactions cannot be opened."""

    def __init__(self, error: Exception | None = None) -> None:
        self._error = error or ConnectionError("database unreachable")

    def transaction(self):
        raise self._error
