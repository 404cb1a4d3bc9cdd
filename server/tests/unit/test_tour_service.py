"""Unit tests for tour service."""

from uuid import uuid4

import pytest
from pydantic import ValidationError as RequestValidationError

from tourdesk.core.exceptions import ConflictError, NotFoundError
from tourdesk.schemas.common import Money
from tourdesk.schemas.tour import CreateTourRequest, UpdateTourRequest
from tourdesk.services.tour_service import TourService


@pytest.mark.asyncio
async def test_create_tour(test_session, sample_tour_data):
    """Test creating a tour."""
    service = TourService(test_session)

    tour = await service.create_tour(CreateTourRequest(**sample_tour_data))

    assert tour.id is not None
    assert tour.title == sample_tour_data["title"]
    assert tour.slug == sample_tour_data["slug"]
    assert tour.capacity == 8
    assert tour.rate_amount == 2500
    assert tour.currency == "USD"
    assert tour.is_active is True
    assert tour.price_for_slot_type("Child") == 1000
    assert tour.price_for_slot_type(None) == 2500


@pytest.mark.asyncio
async def test_create_tour_duplicate_slug(test_session, sample_tour_data):
    """Test creating a tour with duplicate slug raises error."""
    service = TourService(test_session)
    await service.create_tour(CreateTourRequest(**sample_tour_data))

    with pytest.raises(ConflictError) as exc_info:
        await service.create_tour(
            CreateTourRequest(
                title="Different Tour",
                slug=sample_tour_data["slug"],
                capacity=4,
                rate=Money(amount=1000, currency="USD"),
            )
        )

    assert exc_info.value.problem_details["conflicting_resource"]["slug"] == sample_tour_data["slug"]


def test_duplicate_slot_type_names_rejected(sample_tour_data):
    sample_tour_data["slot_types"] = [
        {"name": "adult", "price_amount": 2500},
        {"name": "Adult", "price_amount": 2000},
    ]

    with pytest.raises(RequestValidationError):
        CreateTourRequest(**sample_tour_data)


@pytest.mark.asyncio
async def test_get_tour_by_id_and_slug(test_session, sample_tour_data):
    service = TourService(test_session)
    created = await service.create_tour(CreateTourRequest(**sample_tour_data))

    by_id = await service.get_tour_by_id(created.id)
    by_slug = await service.get_tour_by_slug(sample_tour_data["slug"])

    assert by_id is not None and by_id.id == created.id
    assert by_slug is not None and by_slug.id == created.id


@pytest.mark.asyncio
async def test_get_tour_not_found(test_session):
    service = TourService(test_session)

    assert await service.get_tour_by_id(uuid4()) is None
    with pytest.raises(NotFoundError):
        await service.get_tour_by_id_or_raise(uuid4())


@pytest.mark.asyncio
async def test_update_tour_partial(test_session, sample_tour_data):
    """Only the fields sent are changed."""
    service = TourService(test_session)
    created = await service.create_tour(CreateTourRequest(**sample_tour_data))

    updated = await service.update_tour(
        created.id,
        UpdateTourRequest(capacity=12, rate=Money(amount=3000, currency="EUR"), slot_types=None),
    )

    assert updated.capacity == 12
    assert updated.rate_amount == 3000
    assert updated.currency == "EUR"
    assert updated.slot_types is None
    assert updated.title == sample_tour_data["title"]
    assert updated.meeting_point == sample_tour_data["meeting_point"]


@pytest.mark.asyncio
async def test_list_tours_filters_and_paginates(test_session):
    service = TourService(test_session)
    for slug, category in [("harbour-walk", "walking"), ("castle-walk", "walking"), ("river-kayak", "water")]:
        await service.create_tour(
            CreateTourRequest(
                title=slug, slug=slug, category=category, capacity=6, rate=Money(amount=1500, currency="USD")
            )
        )
    kayak = await service.get_tour_by_slug("river-kayak")
    await service.update_tour(kayak.id, UpdateTourRequest(is_active=False))

    walking, _ = await service.list_tours(category="walking")
    assert {tour.slug for tour in walking} == {"harbour-walk", "castle-walk"}

    active, _ = await service.list_tours()
    assert len(active) == 2
    everything, _ = await service.list_tours(active_only=False)
    assert len(everything) == 3

    first_page, cursor = await service.list_tours(active_only=False, limit=2)
    assert len(first_page) == 2 and cursor is not None
    second_page, next_cursor = await service.list_tours(active_only=False, limit=2, cursor=cursor)
    assert len(second_page) == 1 and next_cursor is None
    assert {t.id for t in first_page}.isdisjoint({t.id for t in second_page})
