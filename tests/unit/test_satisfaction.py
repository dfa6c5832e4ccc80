"""Unit tests for satisfaction routing and surgical regeneration."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from backend.quickplan.models.areas import ItinerarySplit, ItineraryStop
from backend.quickplan.models.candidates import CandidateCatalog, HotelCandidate, HotelShortlist
from backend.quickplan.models.common import BudgetRange, PaceLevel, PriceConfidence
from backend.quickplan.models.itinerary import QuickPlanDay, QuickPlanItinerary
from backend.quickplan.models.preferences import ActivityIntent, ActivityPriority, TripPreferences
from backend.quickplan.models.satisfaction import (
    RegenerationComponent,
    SatisfactionIssue,
    SatisfactionIssueCategory,
    SatisfactionResponse,
)
from backend.quickplan.orchestration.satisfaction import (
    components_for,
    missing_must_dos,
    pace_shift_for,
    regenerate_hotels,
    regenerate_schedule,
    shifted_preferences,
)

C = SatisfactionIssueCategory

NORTH = ItineraryStop(area_id="north", nights=3, order=0, arrival_day=1, departure_day=4)
EAST = ItineraryStop(area_id="east", nights=4, order=1, arrival_day=4, departure_day=8, travel_day_before=True)


def make_response(*categories: SatisfactionIssueCategory, verdict: str = "almost") -> SatisfactionResponse:
    return SatisfactionResponse(
        verdict=verdict,
        issues=[SatisfactionIssue(category=c) for c in categories],
        submitted_at=datetime(2026, 3, 8, tzinfo=UTC),
    )


def make_hotel(place_id: str, area_id: str, price: float | None = 150.0) -> HotelCandidate:
    return HotelCandidate(
        place_id=place_id,
        name=place_id,
        area_id=area_id,
        rating=4.5,
        review_count=500,
        price_per_night=price,
        price_confidence=PriceConfidence.real if price else PriceConfidence.unknown,
    )


def make_catalog() -> CandidateCatalog:
    hotels = [
        make_hotel("n1", "north"),
        make_hotel("n2", "north"),
        make_hotel("n3", "north", price=180.0),
        make_hotel("n4", "north", price=90.0),
        make_hotel("e1", "east"),
        make_hotel("e2", "east"),
        make_hotel("e3", "east"),
    ]
    return CandidateCatalog(
        hotels={h.place_id: h for h in hotels},
        hotels_by_area={"north": ["n1", "n2", "n3", "n4"], "east": ["e1", "e2", "e3"]},
    )


def make_itinerary() -> QuickPlanItinerary:
    days = [
        QuickPlanDay(
            day_number=n,
            stop_id=(NORTH if n < 4 else EAST).stop_id,
            area_id=(NORTH if n < 4 else EAST).area_id,
            effort_budget=4.0,
        )
        for n in range(1, 8)
    ]
    shortlists = [
        HotelShortlist(
            stop_id=NORTH.stop_id,
            area_id="north",
            area_name="North",
            hotel_ids=["n1", "n2"],
            selected_hotel_id="n1",
            default_hotel_id="n1",
        ),
        HotelShortlist(
            stop_id=EAST.stop_id,
            area_id="east",
            area_name="East",
            hotel_ids=["e1", "e2", "e3"],
            selected_hotel_id="e2",
            default_hotel_id="e1",
        ),
    ]
    return QuickPlanItinerary(
        id="itin-test",
        generation=3,
        split_id="split-north3-east4",
        stops=[NORTH, EAST],
        days=days,
        hotel_shortlists=shortlists,
        generated_at=datetime(2026, 3, 1, tzinfo=UTC),
    )


class TestRouting:
    """Test how issues map to components."""

    def test_components_in_first_mention_order(self) -> None:
        response = make_response(C.dining_issues, C.too_many_activities, C.hotel_issues, C.pace_issues)
        assert components_for(response) == [
            RegenerationComponent.dining,
            RegenerationComponent.schedule,
            RegenerationComponent.hotels,
        ]

    def test_budget_issues_go_to_hotels(self) -> None:
        assert components_for(make_response(C.budget_issues)) == [RegenerationComponent.hotels]

    def test_yes_has_no_components(self) -> None:
        assert components_for(make_response(verdict="yes")) == []

    def test_almost_needs_an_issue(self) -> None:
        with pytest.raises(ValidationError):
            make_response()

    @pytest.mark.parametrize(
        ("categories", "shift"),
        [
            ((C.too_many_activities,), -1),
            ((C.too_many_activities, C.pace_issues), -1),
            ((C.not_enough_activities,), 1),
            ((C.too_many_activities, C.not_enough_activities), 0),
            ((C.hotel_issues,), 0),
        ],
    )
    def test_pace_shift(self, categories: tuple, shift: int) -> None:
        assert pace_shift_for(make_response(*categories)) == shift

    def test_shifted_preferences(self) -> None:
        prefs = TripPreferences(pace=PaceLevel.chill)

        assert shifted_preferences(prefs, make_response(C.too_many_activities)).pace == PaceLevel.chill
        assert shifted_preferences(prefs, make_response(C.not_enough_activities)).pace == PaceLevel.balanced
        assert shifted_preferences(prefs, make_response(C.dining_issues)) is prefs


class TestRegenerateHotels:
    """Test hotel-only regeneration."""

    def test_only_affected_stop_changes(self, settings) -> None:
        itinerary = make_itinerary()
        prefs = TripPreferences(budget_per_night=BudgetRange(min=100, max=200))

        result = regenerate_hotels(itinerary, prefs, make_catalog(), settings, stop_ids={NORTH.stop_id})

        north, east = result.hotel_shortlists
        assert north.hotel_ids == ["n3", "n4"]
        assert north.selected_hotel_id is None
        assert east is itinerary.hotel_shortlists[1]
        assert result.days is itinerary.days
        assert result.generation_layer == "hotels"
        assert itinerary.generation_layer == "full"

    def test_cheaper_first(self, settings) -> None:
        result = regenerate_hotels(
            make_itinerary(),
            TripPreferences(),
            make_catalog(),
            settings,
            stop_ids={NORTH.stop_id},
            cheaper_first=True,
        )
        assert result.hotel_shortlists[0].hotel_ids == ["n4", "n3"]

    def test_old_shortlist_kept_when_nothing_else_fits(self, settings) -> None:
        itinerary = make_itinerary()

        result = regenerate_hotels(itinerary, TripPreferences(), make_catalog(), settings, stop_ids={EAST.stop_id})

        assert result.hotel_shortlists[1] == itinerary.hotel_shortlists[1]

    def test_excluded_hotel_can_be_replaced_by_shown_ones(self, settings) -> None:
        result = regenerate_hotels(
            make_itinerary(),
            TripPreferences(),
            make_catalog(),
            settings,
            stop_ids={EAST.stop_id},
            exclude={"e2"},
            exclude_shown=False,
        )
        assert result.hotel_shortlists[1].hotel_ids == ["e1", "e3"]


def test_regenerate_schedule_keeps_hotels(settings) -> None:
    """Schedule regeneration rebuilds days at the new pace and keeps shortlists."""
    itinerary = make_itinerary()
    split = ItinerarySplit(
        id="split-north3-east4",
        name="North then East",
        stops=[NORTH, EAST],
        fit_score=0.7,
        friction_score=0.1,
        feasibility_score=0.9,
    )

    result = regenerate_schedule(
        itinerary, TripPreferences(pace=PaceLevel.chill), split, CandidateCatalog(), settings
    )

    assert result.generation_layer == "schedule"
    assert result.hotel_shortlists is itinerary.hotel_shortlists
    assert [d.day_number for d in result.days] == list(range(1, 8))
    assert {d.effort_budget for d in result.days} == {settings.pace_budget_chill}
    assert result.days[3].is_transit_day is True


class TestMissingMustDos:
    """A missing must-do complaint moves that must-do to the front on regeneration."""

    PREFS = TripPreferences(
        pace=PaceLevel.chill,
        selected_activities=[
            ActivityIntent(type="surf", priority=ActivityPriority.must_do),
            ActivityIntent(type="snorkel", priority=ActivityPriority.must_do),
        ],
    )
    SPLIT = ItinerarySplit(
        id="split-north1",
        name="North",
        stops=[ItineraryStop(area_id="north", nights=1, order=0, arrival_day=1, departure_day=2)],
        fit_score=0.5,
        friction_score=0.0,
        feasibility_score=1.0,
    )

    def complaint(self, note: str | None) -> SatisfactionResponse:
        return SatisfactionResponse(
            verdict="almost",
            issues=[SatisfactionIssue(category=C.missing_must_do, note=note)],
            submitted_at=datetime(2026, 3, 8, tzinfo=UTC),
        )

    def test_no_complaint_means_no_priority(self) -> None:
        assert missing_must_dos(self.PREFS, make_itinerary(), make_response(C.pace_issues)) == []

    def test_unplaced_must_dos_are_listed(self) -> None:
        assert missing_must_dos(self.PREFS, make_itinerary(), self.complaint(None)) == ["surf", "snorkel"]

    def test_named_must_do_comes_first(self) -> None:
        assert missing_must_dos(self.PREFS, make_itinerary(), self.complaint("Where is snorkel?")) == [
            "snorkel",
            "surf",
        ]

    def test_regeneration_places_the_missing_must_do(self, settings) -> None:
        first = regenerate_schedule(make_itinerary(), self.PREFS, self.SPLIT, CandidateCatalog(), settings)
        assert first.days[0].morning.activity_type == "surf"
        assert first.unmet_constraints[0].affected_ids == ["snorkel"]

        prioritize = missing_must_dos(self.PREFS, first, self.complaint("No snorkeling day"))
        second = regenerate_schedule(
            first, self.PREFS, self.SPLIT, CandidateCatalog(), settings, prioritize=prioritize
        )

        assert prioritize == ["snorkel"]
        assert second.days[0].morning.activity_type == "snorkel"
        assert second.unmet_constraints[0].affected_ids == ["surf"]
