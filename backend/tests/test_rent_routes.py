"""
Rent API tests through the Flask test client.

Verifies response shapes and status codes of /api/v1/rents and the nested
/api/v1/cars/<id>/rents routes.
"""

from datetime import datetime

from carrental.extensions import db
from carrental.models import Car, Rent
from carrental.models.rentals import RENT_STATUS_ACTIVE, RENT_STATUS_CANCELLED


def _book(client, headers, car_id, start="2024-01-01", end="2024-01-04", **extra):
    body = {"car_id": car_id, "start_date": start, "return_date": end}
    body.update(extra)
    return client.post("/api/v1/rents", json=body, headers=headers)


class TestCreateRoute:
    def test_create_returns_rent_and_total(self, client, user_headers, car):
        resp = _book(client, user_headers, car.id)
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["total_price"] == 3000
        assert body["rent"]["status"] == "pending"
        assert body["rent"]["start_date"] == "2024-01-01T00:00:00Z"

    def test_nested_create(self, client, user_headers, car):
        resp = client.post(
            f"/api/v1/cars/{car.id}/rents",
            json={"start_date": "2024-01-01", "return_date": "2024-01-02"},
            headers=user_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["rent"]["car_id"] == car.id

    def test_double_booking_is_409(self, client, user_headers, admin_headers, car):
        assert _book(client, user_headers, car.id).status_code == 201
        resp = _book(client, admin_headers, car.id, start="2024-01-02", end="2024-01-03")
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["kind"] == "conflict"
        assert body["rule"] == "car_unavailable"

    def test_tier_too_low_is_403(self, client, user_headers, premium_car):
        resp = _book(client, user_headers, premium_car.id)
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "User's tier (0) is too low to rent this car (Tier 1)"

    def test_bad_dates_are_400(self, client, user_headers, car):
        resp = _book(client, user_headers, car.id, start="2024-01-05", end="2024-01-01")
        assert resp.status_code == 400
        assert resp.get_json()["kind"] == "invalid_input"

    def test_missing_car_is_400(self, client, user_headers):
        resp = client.post(
            "/api/v1/rents",
            json={"start_date": "2024-01-01", "return_date": "2024-01-02"},
            headers=user_headers,
        )
        assert resp.status_code == 400

    def test_unknown_car_is_404(self, client, user_headers, car):
        resp = _book(client, user_headers, car.id + 100)
        assert resp.status_code == 404

    def test_provider_cannot_book(self, client, provider_headers, car):
        resp = _book(client, provider_headers, car.id)
        assert resp.status_code == 403


class TestListAndGetRoutes:
    def test_list_own_rents(self, client, user_headers, car):
        _book(client, user_headers, car.id)
        resp = client.get("/api/v1/rents", headers=user_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["count"] == 1
        assert body["rents"][0]["car_id"] == car.id

    def test_nested_list_for_admin(self, client, user_headers, admin_headers, car):
        _book(client, user_headers, car.id)
        resp = client.get(f"/api/v1/cars/{car.id}/rents", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 1

    def test_provider_lists_rents_of_own_cars(self, client, user_headers, provider_headers, car):
        _book(client, user_headers, car.id)
        resp = client.get("/api/v1/rents", headers=provider_headers)
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 1

    def test_get_rent(self, client, user_headers, car):
        rent_id = _book(client, user_headers, car.id).get_json()["rent"]["id"]
        resp = client.get(f"/api/v1/rents/{rent_id}", headers=user_headers)
        assert resp.status_code == 200
        assert resp.get_json()["rent"]["id"] == rent_id

    def test_get_other_users_rent_is_404(self, client, user_headers, auth_headers, other_user, car):
        rent_id = _book(client, user_headers, car.id).get_json()["rent"]["id"]
        resp = client.get(f"/api/v1/rents/{rent_id}", headers=auth_headers(other_user))
        assert resp.status_code == 404


class TestMutationRoutes:
    def test_update_notes(self, client, user_headers, car):
        rent_id = _book(client, user_headers, car.id).get_json()["rent"]["id"]
        resp = client.put(f"/api/v1/rents/{rent_id}", json={"notes": "GPS please"}, headers=user_headers)
        assert resp.status_code == 200
        assert resp.get_json()["rent"]["notes"] == "GPS please"

    def test_update_status_rejected(self, client, user_headers, car):
        rent_id = _book(client, user_headers, car.id).get_json()["rent"]["id"]
        resp = client.put(f"/api/v1/rents/{rent_id}", json={"status": "completed"}, headers=user_headers)
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "status"

    def test_delete_cancels(self, client, user_headers, car):
        rent_id = _book(client, user_headers, car.id).get_json()["rent"]["id"]
        resp = client.delete(f"/api/v1/rents/{rent_id}", headers=user_headers)
        assert resp.status_code == 200
        assert resp.get_json() == {}
        assert db.session.get(Rent, rent_id).status == RENT_STATUS_CANCELLED
        assert db.session.get(Car, car.id).available is True

    def test_confirm_requires_admin(self, client, user_headers, admin_headers, car):
        rent_id = _book(client, user_headers, car.id).get_json()["rent"]["id"]

        assert client.put(f"/api/v1/rents/{rent_id}/confirm", headers=user_headers).status_code == 403

        resp = client.put(f"/api/v1/rents/{rent_id}/confirm", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["rent"]["status"] == RENT_STATUS_ACTIVE

        again = client.put(f"/api/v1/rents/{rent_id}/confirm", headers=admin_headers)
        assert again.status_code == 409

    def test_complete_reports_late_fee(self, client, monkeypatch, admin_headers, user, make_car):
        car = make_car("LATE-9", tier=2)
        rent_id = _book(
            client, admin_headers, car.id, start="2024-01-05", end="2024-01-10", user_id=user.id
        ).get_json()["rent"]["id"]

        monkeypatch.setattr(
            "carrental.services.rent_service.utcnow",
            lambda: datetime(2024, 1, 13),
        )
        resp = client.put(f"/api/v1/rents/{rent_id}/complete", json={}, headers=admin_headers)

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["late_by"] == 3
        assert body["late_fee"] == 4500
        assert body["car_tier"] == 2
        assert body["total_price"] == 5000 + 4500
        assert body["rent"]["status"] == "completed"

        second = client.put(f"/api/v1/rents/{rent_id}/complete", json={}, headers=admin_headers)
        assert second.status_code == 409
        assert second.get_json()["error"] == "Rent has already been completed"
