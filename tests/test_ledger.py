"""
Tests for the points ledger: atomic adjustments, history, account mirror
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from milkcafe.core.exceptions import Internal, InvalidInput, NotFound
from milkcafe.models import Account, Ledger, LedgerEvent
from milkcafe.services import ledger as ledger_module
from milkcafe.services.accounts import AccountService
from milkcafe.services.ledger import (
    LedgerService,
    MAX_DELTA,
    normalize_delta,
    require_loyalty_id,
    sync_account_mirror,
    upsert_increment_statement,
)
from milkcafe.services.realtime import POINTS_UPDATED


class TestNormalizeDelta:
    """Delta validation"""

    @pytest.mark.parametrize("value", [None, 0, 0.0, "0", "abc", float("nan"), float("inf"), True])
    def test_rejects_invalid(self, value):
        with pytest.raises(InvalidInput):
            normalize_delta(value)

    def test_rejects_fractional(self):
        with pytest.raises(InvalidInput, match="whole number"):
            normalize_delta(2.5)

    @pytest.mark.parametrize("value,expected", [(10, 10), (-3, -3), (4.0, 4), ("7", 7)])
    def test_accepts_whole_numbers(self, value, expected):
        assert normalize_delta(value) == expected

    @pytest.mark.parametrize("value", [1e20, -1e20, MAX_DELTA + 1, -(MAX_DELTA + 1)])
    def test_rejects_out_of_integer_range(self, value):
        with pytest.raises(InvalidInput, match="between"):
            normalize_delta(value)

    def test_accepts_integer_range_bounds(self):
        assert normalize_delta(MAX_DELTA) == MAX_DELTA
        assert normalize_delta(-MAX_DELTA) == -MAX_DELTA


class TestRequireLoyaltyId:

    def test_trims(self):
        assert require_loyalty_id(" 123456 ") == "123456"

    def test_rejects_blank(self):
        with pytest.raises(InvalidInput, match="required"):
            require_loyalty_id(None)

    def test_rejects_longer_than_column(self):
        assert require_loyalty_id("9" * 32) == "9" * 32
        with pytest.raises(InvalidInput, match="at most 32"):
            require_loyalty_id("9" * 33)


class TestUpsertStatement:

    def test_unknown_dialect_is_internal_error(self):
        with pytest.raises(Internal, match="Unsupported database dialect"):
            upsert_increment_statement("oracle", "123456", 1)

    def test_postgresql_statement_increments_on_conflict(self):
        from sqlalchemy.dialects import postgresql

        sql = str(upsert_increment_statement("postgresql", "123456", 5).compile(dialect=postgresql.dialect()))

        assert "ON CONFLICT (loyalty_id) DO UPDATE" in sql
        assert "ledgers.points +" in sql
        assert "RETURNING" in sql


class TestLedgerService:
    """Service-level ledger behaviour"""

    @pytest.fixture
    def service(self, db_session, broker):
        return LedgerService(db_session, broker)

    async def test_bonus_then_redeem_scenario(self, service):
        await service.adjust_points("123456", 10, "bonus")
        await service.adjust_points("123456", -3, "redeem")

        snapshot = await service.get_ledger("123456")

        assert snapshot.points == 7
        assert [(e["delta"], e["text"]) for e in snapshot.history] == [(-3, "redeem"), (10, "bonus")]

    async def test_balance_is_sum_of_deltas(self, service):
        deltas = [5, 12, -4, 1, -20, 8, 3]
        for delta in deltas:
            await service.adjust_points("555555", delta)

        snapshot = await service.get_ledger("555555")
        assert snapshot.points == sum(deltas)
        assert len(snapshot.history) == len(deltas)

    async def test_concurrent_adjustments_lose_no_updates(self, session_maker, broker):
        deltas = [5, -2, 7, 3, -1, 4] * 4

        async def adjust(delta):
            async with session_maker() as session:
                return await LedgerService(session, broker).adjust_points("888888", delta)

        await asyncio.gather(*(adjust(delta) for delta in deltas))

        async with session_maker() as session:
            snapshot = await LedgerService(session, broker).get_ledger("888888")
        assert snapshot.points == sum(deltas)
        assert len(snapshot.history) == len(deltas)
        assert sorted(e["delta"] for e in snapshot.history) == sorted(deltas)

    async def test_text_longer_than_column_is_invalid(self, service, db_session):
        with pytest.raises(InvalidInput, match="text"):
            await service.adjust_points("123456", 5, "x" * 501)

        assert (await db_session.execute(select(LedgerEvent))).scalars().all() == []

    async def test_balance_may_go_negative(self, service):
        result = await service.adjust_points("111111", -5)

        assert result.points == -5

    async def test_unknown_loyalty_id_gets_ledger(self, service, db_session):
        result = await service.adjust_points("999999", 4)

        assert result.points == 4
        ledger = (await db_session.execute(
            select(Ledger).where(Ledger.loyalty_id == "999999")
        )).scalar_one()
        assert ledger.points == 4
        assert ledger.linked_email == ""

    async def test_zero_delta_changes_nothing(self, service, db_session):
        await service.adjust_points("123456", 10)

        with pytest.raises(InvalidInput):
            await service.adjust_points("123456", 0)

        assert (await service.get_ledger("123456")).points == 10
        events = (await db_session.execute(select(LedgerEvent))).scalars().all()
        assert len(events) == 1

    async def test_blank_loyalty_id_is_invalid(self, service):
        with pytest.raises(InvalidInput):
            await service.adjust_points("  ", 5)

    async def test_default_texts_follow_sign(self, service):
        await service.adjust_points("123456", 3)
        await service.adjust_points("123456", -1)

        history = (await service.get_ledger("123456")).history
        assert history[0]["text"] == "Points deducted"
        assert history[1]["text"] == "Points added"

    async def test_meta_is_stored(self, service):
        await service.adjust_points("123456", 2, "till", {"receipt": "R-1"})

        history = (await service.get_ledger("123456")).history
        assert history[0]["meta"] == {"receipt": "R-1"}

    async def test_get_ledger_unknown_is_not_found(self, service):
        with pytest.raises(NotFound):
            await service.get_ledger("000000")

    async def test_get_balance_without_ledger_is_zero(self, service):
        assert await service.get_balance("424242") == 0

    async def test_publishes_balance_change(self, service, socket):
        await service.adjust_points("123456", 10)
        await service.adjust_points("123456", 5)

        events = socket.events(POINTS_UPDATED)
        assert [e["data"] for e in events] == [
            {"loyaltyId": "123456", "points": 10},
            {"loyaltyId": "123456", "points": 15},
        ]
        assert "timestamp" in events[0]


class TestAccountMirror:
    """Account cached balance/history rebuilt from the ledger"""

    async def test_adjustment_mirrors_onto_account(self, db_session, broker, session_maker):
        account = await AccountService(db_session).provision_account("a@x.com")
        service = LedgerService(db_session, broker)

        await service.adjust_points(account.loyalty_id, 10, "bonus")
        result = await service.adjust_points(account.loyalty_id, -3, "redeem")

        assert result.mirrored is True
        async with session_maker() as fresh:
            stored = (await fresh.execute(
                select(Account).where(Account.email == "a@x.com")
            )).scalar_one()
        assert stored.points == 7
        assert [(e["delta"], e["text"]) for e in stored.points_history] == [(-3, "redeem"), (10, "bonus")]

    async def test_sync_is_idempotent(self, db_session, broker):
        account = await AccountService(db_session).provision_account("a@x.com")
        await LedgerService(db_session, broker).adjust_points(account.loyalty_id, 6)

        assert await sync_account_mirror(db_session, account.loyalty_id) is True
        assert await sync_account_mirror(db_session, account.loyalty_id) is True

        await db_session.refresh(account)
        assert account.points == 6
        assert len(account.points_history) == 1

    async def test_sync_repairs_stale_account(self, db_session, broker):
        account = await AccountService(db_session).provision_account("a@x.com")
        await LedgerService(db_session, broker).adjust_points(account.loyalty_id, 9)

        account.points = 1000
        account.points_history = []
        await db_session.commit()

        await sync_account_mirror(db_session, account.loyalty_id)

        await db_session.refresh(account)
        assert account.points == 9
        assert len(account.points_history) == 1

    async def test_sync_without_account_is_noop(self, db_session, broker):
        await LedgerService(db_session, broker).adjust_points("777777", 1)

        assert await sync_account_mirror(db_session, "777777") is False

    async def test_mirror_failure_schedules_reconciliation(self, db_session, broker, monkeypatch):
        account = await AccountService(db_session).provision_account("a@x.com")
        task = MagicMock()
        monkeypatch.setattr(ledger_module, "reconcile_account_mirror", task)
        monkeypatch.setattr(
            ledger_module,
            "sync_account_mirror",
            AsyncMock(side_effect=OperationalError("UPDATE accounts", {}, Exception("locked"))),
        )

        result = await LedgerService(db_session, broker).adjust_points(account.loyalty_id, 10)

        assert result.points == 10
        assert result.mirrored is False
        task.delay.assert_called_once_with(account.loyalty_id)


class TestLedgerEndpoints:
    """/api/milkpoints"""

    async def test_adjust_and_read(self, client):
        first = await client.post("/api/milkpoints/adjust", json={"loyaltyId": "123456", "delta": 10, "text": "bonus"})
        second = await client.post("/api/milkpoints/adjust", json={"loyaltyId": "123456", "delta": -3, "text": "redeem"})

        assert first.json() == {"ok": True, "loyaltyId": "123456", "points": 10}
        assert second.json()["points"] == 7

        response = await client.get("/api/milkpoints/123456")
        data = response.json()
        assert data["points"] == 7
        assert [(e["delta"], e["text"]) for e in data["history"]] == [(-3, "redeem"), (10, "bonus")]

    async def test_alternate_loyalty_id_field_names(self, client):
        await client.post("/api/milkpoints/adjust", json={"milkId": "222222", "delta": 2})
        await client.post("/api/milkpoints/adjust", json={"loyaltyCode": 222222, "delta": 3})

        response = await client.get("/api/milkpoints/222222")
        assert response.json()["points"] == 5

    async def test_zero_delta_is_bad_request(self, client):
        response = await client.post("/api/milkpoints/adjust", json={"loyaltyId": "123456", "delta": 0})

        assert response.status_code == 400
        assert response.json()["ok"] is False

        missing = await client.get("/api/milkpoints/123456")
        assert missing.status_code == 404

    async def test_non_numeric_delta_is_bad_request(self, client):
        response = await client.post("/api/milkpoints/adjust", json={"loyaltyId": "123456", "delta": "lots"})

        assert response.status_code == 400

    async def test_huge_delta_is_bad_request(self, client):
        response = await client.post("/api/milkpoints/adjust", json={"loyaltyId": "123456", "delta": 1e20})

        assert response.status_code == 400
        assert response.json()["ok"] is False
        assert (await client.get("/api/milkpoints/123456")).status_code == 404

    async def test_overlong_loyalty_id_is_bad_request(self, client):
        long_id = "1" * 40

        adjust = await client.post("/api/milkpoints/adjust", json={"loyaltyId": long_id, "delta": 5})
        read = await client.get(f"/api/milkpoints/{long_id}")

        assert adjust.status_code == 400
        assert read.status_code == 400

    async def test_missing_loyalty_id_is_bad_request(self, client):
        response = await client.post("/api/milkpoints/adjust", json={"delta": 5})

        assert response.status_code == 400
        assert response.json()["message"] == "loyaltyId is required"

    async def test_unknown_ledger_is_not_found(self, client):
        response = await client.get("/api/milkpoints/654321")

        assert response.status_code == 404
        assert response.json() == {"ok": False, "message": "Not found"}
