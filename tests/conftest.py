"""Shared fixtures: request builders, an in-memory database and an API client."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from gate.database import Base, get_db
from gate.engine.scenarios import new_request
from gate.main import app
from gate.models import ApprovalRecordRow, EvidencePackRow  # noqa: F401

T0 = datetime(2026, 2, 7, 12, 0, 0, tzinfo=timezone.utc)


def make_request(
    amount=45.0,
    verified=True,
    recipient="Office Supplies Co",
    agent_type="PURCHASING",
    reasoning="Routine purchase from approved vendor",
    tx_type="PURCHASE",
    request_id=None,
):
    fields = {
        "agent": {"id": "agent-test-001", "type": agent_type, "name": "TestBot"},
        "transaction": {
            "type": tx_type,
            "amount": amount,
            "currency": "USD",
            "recipient": {"name": recipient, "account": "ACC-****-0001", "verified": verified},
            "description": "test transaction",
        },
        "context": {
            "session_id": "sess-test",
            "ip_address": "10.0.0.1",
            "agent_reasoning": reasoning,
        },
    }
    if request_id:
        fields["id"] = request_id
    return new_request(**fields)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def _memory_engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


def run_with_session(fn):
    """Run `await fn(session)` against a fresh in-memory database."""

    async def main():
        engine = _memory_engine()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        maker = async_sessionmaker(engine, expire_on_commit=False)
        try:
            async with maker() as session:
                return await fn(session)
        finally:
            await engine.dispose()

    return asyncio.run(main())


@pytest.fixture
def client():
    """TestClient backed by an in-memory SQLite database."""
    engine = _memory_engine()
    maker = async_sessionmaker(engine, expire_on_commit=False)
    state = {"ready": False}

    async def override_get_db():
        if not state["ready"]:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            state["ready"] = True
        async with maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
