"""Unit tests for plan model validation and JSON shape."""

from datetime import UTC, date, datetime, time

import pytest
from pydantic import ValidationError

from backend.quickplan.models import ItinerarySplit, ItineraryStop
from backend.quickplan.models.common import DiningMode
from backend.quickplan.models.itinerary import (
    BlockType,
    DayBlock,
    DiningPlan,
    QuickPlanDay,
    QuickPlanItinerary,
    ScheduledDinner,
)


def make_stop(area_id: str, order: int, arrival: int, nights: int) -> ItineraryStop:
    return ItineraryStop(
        area_id=area_id, nights=nights, order=order, arrival_day=arrival, departure_day=arrival + nights
    )


class TestSplitValidation:
    """Test the stop layout rules of a split."""

    def test_contiguous_stops(self) -> None:
        split = ItinerarySplit(
            id="split-a3-b4",
            name="A then B",
            stops=[make_stop("a", 0, 1, 3), make_stop("b", 1, 4, 4)],
            fit_score=0.8,
            friction_score=0.1,
            feasibility_score=0.9,
        )
        assert split.total_nights == 7
        assert split.rank_score == pytest.approx(0.7)
        assert split.stops[1].stop_id == "stop-1-b"
        assert split.stops[1].covers_day(7) and not split.stops[1].covers_day(8)

    @pytest.mark.parametrize(
        "stops",
        [
            [make_stop("a", 0, 2, 3)],
            [make_stop("a", 0, 1, 3), make_stop("b", 1, 5, 3)],
            [make_stop("a", 1, 1, 3)],
        ],
    )
    def test_bad_layouts_rejected(self, stops: list[ItineraryStop]) -> None:
        with pytest.raises(ValidationError):
            ItinerarySplit(
                id="bad", name="bad", stops=stops, fit_score=0, friction_score=0, feasibility_score=0
            )

    def test_stop_span_must_match_nights(self) -> None:
        stop = ItineraryStop(area_id="a", nights=3, order=0, arrival_day=1, departure_day=3)
        with pytest.raises(ValidationError):
            ItinerarySplit(id="bad", name="bad", stops=[stop], fit_score=0, friction_score=0, feasibility_score=0)

    def test_at_most_three_bases(self) -> None:
        stops = [make_stop(f"s{i}", i, 1 + i * 2, 2) for i in range(4)]
        with pytest.raises(ValidationError):
            ItinerarySplit(id="bad", name="bad", stops=stops, fit_score=0, friction_score=0, feasibility_score=0)


def test_itinerary_json_shape() -> None:
    """A plan serializes to plain JSON and validates back unchanged."""
    stop = make_stop("bayahibe", 0, 1, 2)
    snorkel = DayBlock(
        id="d1-morning",
        type=BlockType.activity,
        title="Snorkel trip",
        start_time=time(9),
        end_time=time(12),
        duration_minutes=180,
        effort_cost=1.5,
        activity_type="snorkel",
        activity_id="fx-a-bay-snork-1",
        evidence_ids=["fx-a-bay-snork-1:operator_url"],
    )
    itinerary = QuickPlanItinerary(
        id="itin-s-g1-1",
        generation=1,
        split_id="split-bayahibe2",
        stops=[stop],
        days=[
            QuickPlanDay(
                day_number=1,
                calendar_date=date(2026, 3, 1),
                stop_id=stop.stop_id,
                area_id="bayahibe",
                morning=snorkel,
                effort_budget=4.0,
                effort_points=1.5,
            ),
            QuickPlanDay(day_number=2, stop_id=stop.stop_id, area_id="bayahibe", effort_budget=4.0),
        ],
        dining_plan=DiningPlan(
            mode=DiningMode.schedule,
            scheduled_dinners=[ScheduledDinner(day_number=1, restaurant_id="fx-r-bay-1", title="Dinner", start_time=time(19, 30))],
            free_nights=[2],
        ),
        generated_at=datetime(2026, 2, 1, 12, tzinfo=UTC),
    )

    data = itinerary.model_dump(mode="json")

    assert data["days"][0]["morning"]["start_time"] == "09:00:00"
    assert data["days"][0]["calendar_date"] == "2026-03-01"
    assert data["days"][1]["morning"] is None
    assert data["dining_plan"]["mode"] == "schedule"
    assert data["generation_layer"] == "full"
    assert QuickPlanItinerary.model_validate(data) == itinerary
    assert itinerary.days[0].blocks() == [snorkel]
