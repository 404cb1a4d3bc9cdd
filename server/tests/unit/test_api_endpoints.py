"""Tests for the HTTP API: auth, status codes, problem details and idempotency."""

import pytest

from tourdesk.services.booking_service import BookingService


def _booking_body(tour, next_monday, slots=2, email="ana.silva@example.com", **extra):
    body = {
        "tour_id": str(tour.id),
        "date": next_monday.isoformat(),
        "start_time": "09:00",
        "slots": slots,
        "customer": {"first_name": "Ana", "last_name": "Silva", "email": email},
    }
    body.update(extra)
    return body


class TestHealthEndpoints:
    """Health, readiness, info and metrics."""

    @pytest.mark.asyncio
    async def test_ping(self, test_client):
        response = await test_client.post("/v1/health/ping")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_health(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "tourdesk-api"
        assert set(data["workers"]) >= {"booking_expiry", "idempotency_cleanup", "schedule_horizon"}

    @pytest.mark.asyncio
    async def test_ready(self, test_client):
        response = await test_client.get("/ready")

        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "ok"

    @pytest.mark.asyncio
    async def test_info(self, test_client):
        response = await test_client.get("/info")

        assert response.status_code == 200
        assert response.json()["features"]["idempotency"] is True

    @pytest.mark.asyncio
    async def test_metrics(self, test_client):
        response = await test_client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "bookings_created_total" in response.text

    @pytest.mark.asyncio
    async def test_request_id_header(self, test_client):
        response = await test_client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"


class TestTourEndpoints:
    """Tour catalogue, schedule and availability."""

    @pytest.mark.asyncio
    async def test_create_tour(self, test_client, admin_headers, sample_tour_data):
        response = await test_client.post("/v1/tours", json=sample_tour_data, headers=admin_headers)

        assert response.status_code == 201
        data = response.json()
        assert data["slug"] == "old-town-walking-tour"
        assert data["capacity"] == 8
        assert data["rate"] == {"amount": 2500, "currency": "USD"}
        assert [tier["name"] for tier in data["slot_types"]] == ["adult", "child"]

    @pytest.mark.asyncio
    async def test_create_tour_requires_token(self, test_client, sample_tour_data):
        response = await test_client.post("/v1/tours", json=sample_tour_data)

        assert response.status_code == 401
        assert response.headers["content-type"].startswith("application/problem+json")

    @pytest.mark.asyncio
    async def test_create_tour_requires_admin(self, test_client, customer_headers, sample_tour_data):
        response = await test_client.post("/v1/tours", json=sample_tour_data, headers=customer_headers)

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_create_tour_rejects_bad_token(self, test_client, sample_tour_data):
        response = await test_client.post(
            "/v1/tours", json=sample_tour_data, headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_create_tour_validation(self, test_client, admin_headers, sample_tour_data):
        sample_tour_data["capacity"] = 0

        response = await test_client.post("/v1/tours", json=sample_tour_data, headers=admin_headers)

        assert response.status_code == 400
        data = response.json()
        assert data["title"] == "Validation Error"
        assert any(violation["field"] == "capacity" for violation in data["violations"])

    @pytest.mark.asyncio
    async def test_create_tour_duplicate_slug(self, test_client, admin_headers, sample_tour_data):
        await test_client.post("/v1/tours", json=sample_tour_data, headers=admin_headers)

        response = await test_client.post("/v1/tours", json=sample_tour_data, headers=admin_headers)

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_get_tour_not_found(self, test_client):
        response = await test_client.get("/v1/tours/00000000-0000-0000-0000-000000000000")

        assert response.status_code == 404
        assert response.json()["status"] == 404

    @pytest.mark.asyncio
    async def test_get_tour_invalid_id(self, test_client):
        response = await test_client.get("/v1/tours/not-a-uuid")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_list_and_update_tours(self, test_client, admin_headers, make_tour):
        tour = await make_tour()

        listed = await test_client.get("/v1/tours")
        assert [item["id"] for item in listed.json()["items"]] == [str(tour.id)]

        updated = await test_client.patch(
            f"/v1/tours/{tour.id}", json={"is_active": False}, headers=admin_headers
        )
        assert updated.status_code == 200
        assert updated.json()["is_active"] is False

        listed = await test_client.get("/v1/tours")
        assert listed.json()["items"] == []

    @pytest.mark.asyncio
    async def test_save_and_read_schedule(self, test_client, admin_headers, make_tour):
        tour = await make_tour()

        response = await test_client.put(
            f"/v1/tours/{tour.id}/schedule",
            json={"rules": [{"weekday": "saturday", "start_time": "07:30"}]},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["generated_count"] == 52
        assert data["pruned_count"] == 52
        assert data["rules"][0]["weekday_name"] == "Saturday"

        rules = await test_client.get(f"/v1/tours/{tour.id}/schedule")
        assert [(rule["weekday"], rule["start_time"]) for rule in rules.json()] == [(5, "07:30:00")]

        generated = await test_client.post(
            f"/v1/tours/{tour.id}/schedule/generate", json={}, headers=admin_headers
        )
        assert generated.json()["generated_count"] == 0

        occurrences = await test_client.get("/v1/schedules", params={"tour_id": str(tour.id), "limit": 5})
        assert len(occurrences.json()["items"]) == 5
        assert occurrences.json()["next_cursor"] is not None

    @pytest.mark.asyncio
    async def test_remaining_slots(self, test_client, test_session, make_tour, booking_request, next_monday):
        """Capacity 8 with 5 seats booked leaves 3."""
        tour = await make_tour(capacity=8)
        booking_service = BookingService(test_session)
        await booking_service.create_booking(booking_request(tour, slots=5))

        response = await test_client.get(
            f"/v1/tours/{tour.id}/remaining-slots",
            params={"date": next_monday.isoformat(), "start_time": "09:00"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["capacity"] == 8
        assert data["booked"] == 5
        assert data["remaining"] == 3

    @pytest.mark.asyncio
    async def test_fully_booked_dates(self, test_client, test_session, make_tour, booking_request, next_monday):
        tour = await make_tour(capacity=2)
        await BookingService(test_session).create_booking(booking_request(tour, slots=2))

        response = await test_client.get(
            f"/v1/tours/{tour.id}/fully-booked-dates",
            params={"date_from": next_monday.isoformat(), "date_to": next_monday.isoformat()},
        )

        assert response.status_code == 200
        assert response.json()["dates"] == [next_monday.isoformat()]


class TestBookingEndpoints:
    """Booking creation, detail and admin changes."""

    @pytest.mark.asyncio
    async def test_create_booking(self, test_client, make_tour, next_monday):
        tour = await make_tour(rate=2500)

        response = await test_client.post("/v1/bookings", json=_booking_body(tour, next_monday))

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["total"] == {"amount": 5000, "currency": "USD"}
        assert len(data["reference_number"]) == 8
        assert data["manage_token"]

    @pytest.mark.asyncio
    async def test_create_booking_full(self, test_client, make_tour, next_monday):
        tour = await make_tour(capacity=3)
        await test_client.post("/v1/bookings", json=_booking_body(tour, next_monday, slots=2))

        response = await test_client.post(
            "/v1/bookings", json=_booking_body(tour, next_monday, slots=2, email="li.wei@example.com")
        )

        assert response.status_code == 409
        data = response.json()
        assert data["code"] == "FULL"
        assert data["conflicting_resource"]["remaining_slots"] == 1

    @pytest.mark.asyncio
    async def test_create_booking_idempotent(self, test_client, make_tour, next_monday):
        """A retried request with the same key returns the first booking and holds seats once."""
        tour = await make_tour()
        headers = {"Idempotency-Key": "booking-ana-1"}
        body = _booking_body(tour, next_monday, slots=2)

        first = await test_client.post("/v1/bookings", json=body, headers=headers)
        second = await test_client.post("/v1/bookings", json=body, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 201
        assert second.json()["id"] == first.json()["id"]

        remaining = await test_client.get(
            f"/v1/tours/{tour.id}/remaining-slots",
            params={"date": next_monday.isoformat(), "start_time": "09:00"},
        )
        assert remaining.json()["booked"] == 2

        changed = await test_client.post(
            "/v1/bookings", json=_booking_body(tour, next_monday, slots=3), headers=headers
        )
        assert changed.status_code == 422

    @pytest.mark.asyncio
    async def test_booking_detail_needs_token(self, test_client, admin_headers, make_tour, next_monday):
        tour = await make_tour()
        created = (await test_client.post("/v1/bookings", json=_booking_body(tour, next_monday))).json()
        url = f"/v1/bookings/{created['id']}"

        with_token = await test_client.get(url, params={"token": created["manage_token"]})
        without_token = await test_client.get(url)
        wrong_token = await test_client.get(url, params={"token": "guess"})
        as_admin = await test_client.get(url, headers=admin_headers)

        assert with_token.status_code == 200
        assert with_token.json()["customer"]["email"] == "ana.silva@example.com"
        assert with_token.json()["manage_token"] is None
        assert without_token.status_code == 404
        assert wrong_token.status_code == 404
        assert as_admin.status_code == 200

    @pytest.mark.asyncio
    async def test_admin_booking_actions(self, test_client, admin_headers, make_tour, next_monday):
        tour = await make_tour(capacity=8, rate=2500)
        created = (await test_client.post("/v1/bookings", json=_booking_body(tour, next_monday))).json()
        url = f"/v1/bookings/{created['id']}"

        slots = await test_client.patch(f"{url}/slots", json={"slots": 4}, headers=admin_headers)
        assert slots.status_code == 200
        assert slots.json()["total"]["amount"] == 10000

        link = await test_client.post(
            f"{url}/payment-link", json={"payment_link": "https://pay.example.com/x"}, headers=admin_headers
        )
        assert link.json()["status"] == "pending_payment"

        cancelled = await test_client.post(f"{url}/cancel", json={"reason": "Weather"}, headers=admin_headers)
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"

        listed = await test_client.get("/v1/bookings", params={"status": "cancelled"}, headers=admin_headers)
        assert [item["id"] for item in listed.json()["items"]] == [created["id"]]

    @pytest.mark.asyncio
    async def test_admin_actions_require_admin(self, test_client, customer_headers, make_tour, next_monday):
        tour = await make_tour()
        created = (await test_client.post("/v1/bookings", json=_booking_body(tour, next_monday))).json()

        response = await test_client.post(
            f"/v1/bookings/{created['id']}/cancel", json={}, headers=customer_headers
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_create_booking_validation(self, test_client, make_tour, next_monday):
        tour = await make_tour()
        body = _booking_body(tour, next_monday)
        del body["slots"]

        response = await test_client.post("/v1/bookings", json=body)

        assert response.status_code == 400


class TestPromoEndpoints:
    """Promo codes over HTTP."""

    @pytest.mark.asyncio
    async def test_promo_lifecycle(self, test_client, admin_headers):
        created = await test_client.post(
            "/v1/promos",
            json={"code": "spring10", "discount_type": "percentage", "discount_value": 10, "max_uses": 1},
            headers=admin_headers,
        )
        assert created.status_code == 201
        promo = created.json()
        assert promo["code"] == "SPRING10"

        validated = await test_client.post("/v1/promos/validate", json={"code": "Spring10", "total_amount": 5000})
        assert validated.status_code == 200
        assert validated.json()["discount_amount"] == 500
        assert validated.json()["final_amount"] == 4500

        reserved = await test_client.post(
            "/v1/promos/reserve", json={"promo_code_id": promo["id"], "code": "SPRING10"}
        )
        assert reserved.json()["times_used"] == 1

        exhausted = await test_client.post("/v1/promos/validate", json={"code": "SPRING10", "total_amount": 5000})
        assert exhausted.status_code == 409

        deleted = await test_client.delete(f"/v1/promos/{promo['id']}", headers=admin_headers)
        assert deleted.status_code == 204

        listed = await test_client.get("/v1/promos", headers=admin_headers)
        assert listed.json()["items"] == []

    @pytest.mark.asyncio
    async def test_validate_unknown_promo(self, test_client):
        response = await test_client.post("/v1/promos/validate", json={"code": "NOPE", "total_amount": 1000})

        assert response.status_code == 404


class TestCatalogueEndpoints:
    """Products, rentals and users."""

    @pytest.mark.asyncio
    async def test_products_for_tour(self, test_client, admin_headers, make_tour):
        tour = await make_tour()
        product = (await test_client.post(
            "/v1/products", json={"name": "Dry bag", "price_amount": 1500}, headers=admin_headers
        )).json()

        assigned = await test_client.post(
            f"/v1/tours/{tour.id}/products", json={"product_id": product["id"]}, headers=admin_headers
        )
        assert assigned.status_code == 201

        again = await test_client.post(
            f"/v1/tours/{tour.id}/products", json={"product_id": product["id"]}, headers=admin_headers
        )
        assert again.status_code == 409

        offered = await test_client.get(f"/v1/tours/{tour.id}/products")
        assert [item["name"] for item in offered.json()["items"]] == ["Dry bag"]

        removed = await test_client.delete(f"/v1/tours/{tour.id}/products/{product['id']}", headers=admin_headers)
        assert removed.status_code == 204
        offered = await test_client.get(f"/v1/tours/{tour.id}/products")
        assert offered.json()["items"] == []

    @pytest.mark.asyncio
    async def test_rentals(self, test_client, admin_headers):
        created = await test_client.post(
            "/v1/rentals",
            json={"title": "Beach house", "location": "Cascais", "price_per_day": 18000},
            headers=admin_headers,
        )
        assert created.status_code == 201
        rental = created.json()
        assert rental["price_per_day"] == {"amount": 18000, "currency": "USD"}

        fetched = await test_client.get(f"/v1/rentals/{rental['id']}")
        assert fetched.json()["title"] == "Beach house"

        listed = await test_client.get("/v1/rentals")
        assert [item["id"] for item in listed.json()["items"]] == [rental["id"]]

    @pytest.mark.asyncio
    async def test_update_user_role(self, test_client, test_session, admin_headers, make_tour, booking_request):
        tour = await make_tour()
        booking = await BookingService(test_session).create_booking(booking_request(tour))

        response = await test_client.put(
            f"/v1/users/{booking.customer_id}",
            json={"first_name": "Ana", "last_name": "Silva-Costa", "role": "reservation_agent"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["full_name"] == "Ana Silva-Costa"
        assert response.json()["role"] == "reservation_agent"

        agents = await test_client.get("/v1/users", params={"role": "reservation_agent"}, headers=admin_headers)
        assert [user["id"] for user in agents.json()["items"]] == [str(booking.customer_id)]

    @pytest.mark.asyncio
    async def test_user_cannot_become_customer(self, test_client, test_session, admin_headers, make_tour, booking_request):
        tour = await make_tour()
        booking = await BookingService(test_session).create_booking(booking_request(tour))

        response = await test_client.put(
            f"/v1/users/{booking.customer_id}",
            json={"first_name": "Ana", "last_name": "Silva", "role": "customer"},
            headers=admin_headers,
        )

        assert response.status_code == 400


class TestPaymentEndpoints:
    """Payment endpoints without a configured provider."""

    @pytest.mark.asyncio
    async def test_payment_intent_without_stripe(self, test_client):
        response = await test_client.post(
            "/v1/payments/intent", json={"amount": 5000, "email": "ana.silva@example.com"}
        )

        assert response.status_code == 503
        assert response.json()["retryable"] is False
