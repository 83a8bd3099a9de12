"""
Tests for table reservations
"""

from sqlalchemy import select

from milkcafe.models import Account
from milkcafe.services.intake import IntakeService
from milkcafe.services.realtime import NEW_RESERVATION
from tests.conftest import login


def reservation_payload(email="a@x.com", **overrides) -> dict:
    payload = {
        "name": "Ala",
        "phone": "600100200",
        "date": "2026-10-24",
        "time": "18:00",
        "guests": 4,
        "room": "garden",
        "notes": "birthday",
        "user": {"email": email},
        "loyaltyId": "123456",
    }
    payload.update(overrides)
    return payload


class TestReservations:
    """/api/rezerwacje"""

    async def test_create_reservation(self, client):
        response = await client.post("/api/rezerwacje", json=reservation_payload())

        assert response.status_code == 200
        reservation = response.json()["reservation"]
        assert reservation["id"] > 0
        assert reservation["guests"] == "4"
        assert reservation["source"] == "app"
        assert reservation["user"]["email"] == "a@x.com"

    async def test_overlong_loyalty_id_is_bad_request(self, client):
        response = await client.post("/api/rezerwacje", json=reservation_payload(loyaltyId="1" * 33))

        assert response.status_code == 400
        assert response.json()["ok"] is False

    async def test_appends_exactly_one_history_entry(self, client, session_maker):
        await login(client, "a@x.com")

        response = await client.post("/api/rezerwacje", json=reservation_payload())
        reservation_id = response.json()["reservation"]["id"]

        async with session_maker() as session:
            account = (await session.execute(
                select(Account).where(Account.email == "a@x.com")
            )).scalar_one()
        assert len(account.reservations_history) == 1
        entry = account.reservations_history[0]
        assert entry["reservationId"] == str(reservation_id)
        assert (entry["date"], entry["time"], entry["room"]) == ("2026-10-24", "18:00", "garden")

    async def test_list_newest_first(self, client):
        first = await client.post("/api/rezerwacje", json=reservation_payload(time="12:00"))
        second = await client.post("/api/rezerwacje", json=reservation_payload(time="13:00"))

        response = await client.get("/api/rezerwacje")

        ids = [r["id"] for r in response.json()["reservations"]]
        assert ids == [second.json()["reservation"]["id"], first.json()["reservation"]["id"]]

    async def test_delete_reservation(self, client):
        created = await client.post("/api/rezerwacje", json=reservation_payload())
        reservation_id = created.json()["reservation"]["id"]

        response = await client.delete(f"/api/rezerwacje/{reservation_id}")

        assert response.json() == {"ok": True}
        listing = await client.get("/api/rezerwacje")
        assert listing.json()["reservations"] == []

    async def test_delete_unknown_id_is_ok(self, client):
        for rid in ("424242", "not-a-number", "99999999999999999999999"):
            response = await client.delete(f"/api/rezerwacje/{rid}")
            assert response.status_code == 200
            assert response.json() == {"ok": True}

    async def test_delete_publishes_nothing(self, client, socket):
        created = await client.post("/api/rezerwacje", json=reservation_payload())
        socket.messages.clear()

        await client.delete(f"/api/rezerwacje/{created.json()['reservation']['id']}")

        assert socket.messages == []

    async def test_publishes_new_reservation(self, client, socket):
        response = await client.post("/api/rezerwacje", json=reservation_payload())
        reservation = response.json()["reservation"]

        events = socket.events(NEW_RESERVATION)
        assert len(events) == 1
        assert events[0]["data"] == {
            "id": str(reservation["id"]),
            "date": "2026-10-24",
            "time": "18:00",
            "name": "Ala",
            "phone": "600100200",
        }


class TestIntakeService:

    async def test_delete_returns_whether_row_existed(self, db_session, broker):
        service = IntakeService(db_session, broker)

        assert await service.delete_reservation("1") is False
        assert await service.delete_reservation("-5") is False
        assert await service.delete_reservation(None) is False

    async def test_list_my_orders_blank_email(self, db_session, broker):
        assert await IntakeService(db_session, broker).list_my_orders(None) == []
        assert await IntakeService(db_session, broker).list_my_orders("  ") == []
