"""Tests for application middleware (body size limit, security headers, error mapping)."""

import logging

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from tests.conftest import FakeGateway, auth_headers, make_user


@pytest.mark.asyncio
async def test_security_headers_present(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.headers["strict-transport-security"] == "max-age=63072000; includeSubDomains"
    assert resp.headers["x-content-type-options"] == "nosniff"
    assert resp.headers["x-frame-options"] == "DENY"
    assert resp.headers["cache-control"] == "no-store"


@pytest.mark.asyncio
async def test_security_headers_on_error_response(client: AsyncClient, db_session: AsyncSession) -> None:
    user_id = await make_user(db_session)
    resp = await client.get("/escrow/transactions/31337", headers=auth_headers(user_id))
    assert resp.status_code == 404
    assert resp.headers["x-frame-options"] == "DENY"
    assert resp.headers["cache-control"] == "no-store"


@pytest.mark.asyncio
async def test_body_size_limit_exceeded(client: AsyncClient) -> None:
    resp = await client.post(
        "/escrow/transactions",
        content=b"x",
        headers={"Content-Length": "2000000", "Content-Type": "application/json"},
    )
    assert resp.status_code == 413
    assert resp.json()["detail"] == "Request body too large (max 65536 bytes)"


@pytest.mark.asyncio
async def test_body_size_limit_get_not_checked(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_request_logged(client: AsyncClient, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.INFO, logger="app.requests"):
        await client.get("/health")
    assert any("GET /health -> 200" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_gateway_failure_logged_and_mapped(
    client: AsyncClient,
    db_session: AsyncSession,
    gateway: FakeGateway,
    caplog: pytest.LogCaptureFixture,
) -> None:
    payer_id = await make_user(db_session)
    payee_id = await make_user(db_session, onboarded=True)
    gateway.fail_on.add("create_held_payment")

    with caplog.at_level(logging.ERROR, logger="app.errors"):
        resp = await client.post(
            "/escrow/transactions",
            json={"payee_id": payee_id, "amount": 10_000},
            headers=auth_headers(payer_id),
        )

    assert resp.status_code == 502
    assert resp.json() == {"detail": "Payment provider request failed"}
    assert any("/escrow/transactions" in r.getMessage() for r in caplog.records)
