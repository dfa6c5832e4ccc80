"""Layered enrichment pipeline.

Layers are independent fetch types with a fixed dependency order: hotels,
activities and restaurants need areas finished; pricing needs hotels
finished. Per-entity fetches inside a layer run through a bounded worker
pool with inter-batch pacing. A failing entity is recorded and skipped; only
StaleGenerationError aborts a layer.
"""

import asyncio
import logging
import re
import uuid
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, TypeVar

from pydantic import BaseModel

from backend.quickplan.adapters.base import (
    AreaCatalog,
    AreaQuery,
    DiscussionQuery,
    DiscussionSearch,
    PlaceLookup,
    PlaceQuery,
    PriceRequest,
    PricingProvider,
)
from backend.quickplan.config import Settings
from backend.quickplan.enrichment.executor import (
    FetchConfig,
    FetchContext,
    FetchExecutor,
    GenerationGuard,
    StaleGenerationError,
)
from backend.quickplan.models.areas import AreaCandidate, AreaProfile
from backend.quickplan.models.candidates import (
    ActivityCandidate,
    DiscussionPost,
    HotelCandidate,
    PlaceResult,
    PriceQuote,
    RestaurantCandidate,
)
from backend.quickplan.models.common import EnrichmentStatus, EnrichmentType, PriceConfidence
from backend.quickplan.models.evidence import Evidence, EvidenceType
from backend.quickplan.models.preferences import TripPreferences
from backend.quickplan.utils.logging import StructuredFetchLogger
from backend.quickplan.utils.metrics import PrometheusFetchMetrics
from backend.quickplan.verification.evidence import citations_for, meets_verification_contract

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")
E = TypeVar("E", AreaProfile, ActivityCandidate)

PREREQUISITES: dict[EnrichmentType, EnrichmentType | None] = {
    EnrichmentType.discussion: None,
    EnrichmentType.areas: None,
    EnrichmentType.hotels: EnrichmentType.areas,
    EnrichmentType.activities: EnrichmentType.areas,
    EnrichmentType.restaurants: EnrichmentType.areas,
    EnrichmentType.pricing: EnrichmentType.hotels,
}

DISCUSSION_COMMUNITIES = ["travel", "solotravel", "TravelHacks"]
HOTEL_FLAG_TYPES = {"lodging", "adults_only", "all_inclusive", "wheelchair_accessible"}


class EnrichmentOrderError(Exception):
    """A layer was requested before its prerequisite finished."""


@dataclass(frozen=True)
class EntityFailure:
    entity_id: str
    reason: str


@dataclass
class EnrichmentResult:
    """Output of one layer, tagged with the generation it was issued under.

    `items` holds AreaProfile, HotelCandidate (priced or not),
    ActivityCandidate, RestaurantCandidate or DiscussionPost values
    depending on the layer.
    """

    layer: EnrichmentType
    generation: int
    status: EnrichmentStatus
    items: list[Any] = field(default_factory=list)
    failures: list[EntityFailure] = field(default_factory=list)


@dataclass(frozen=True)
class EnrichmentRequest:
    """Immutable inputs for one layer run."""

    session_id: str
    generation: int
    prefs: TripPreferences
    statuses: Mapping[EnrichmentType, EnrichmentStatus]
    guard: GenerationGuard
    areas: Sequence[AreaCandidate | AreaProfile] = ()
    hotels: Sequence[HotelCandidate] = ()
    posts: Sequence[DiscussionPost] = ()


async def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    concurrency: int,
    batch_delay_s: float = 0.0,
    guard: GenerationGuard | None = None,
    sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> tuple[list[tuple[T, R]], list[tuple[T, Exception]]]:
    """Run `worker` over items in paced batches of at most `concurrency`.

    Returns:
        (successes, failures) in input order

    Raises:
        StaleGenerationError: The guard went stale before a batch, or a worker raised it
    """
    semaphore = asyncio.Semaphore(concurrency)
    successes: list[tuple[T, R]] = []
    failures: list[tuple[T, Exception]] = []

    async def run_one(item: T) -> R:
        async with semaphore:
            return await worker(item)

    for start in range(0, len(items), concurrency):
        if guard is not None:
            guard.raise_if_stale()
        if start > 0 and batch_delay_s > 0:
            await sleep_fn(batch_delay_s)
        batch = items[start : start + concurrency]
        outcomes = await asyncio.gather(*(run_one(i) for i in batch), return_exceptions=True)
        for item, outcome in zip(batch, outcomes, strict=True):
            if isinstance(outcome, StaleGenerationError):
                raise outcome
            if isinstance(outcome, Exception):
                failures.append((item, outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                successes.append((item, outcome))
    return successes, failures


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def destination_wide_area(prefs: TripPreferences) -> AreaProfile:
    """Conservative single base covering the whole destination."""
    name = prefs.destination.canonical_name if prefs.destination else "Destination"
    return AreaProfile(
        id=slugify(name) or "destination",
        name=name,
        type="destination",
        description=f"All of {name}",
    )


def _place_evidence(place: PlaceResult, source: str) -> list[Evidence]:
    evidence = [
        Evidence(
            type=EvidenceType.place_reference,
            source=source,
            place_id=place.place_id,
            title=place.name,
            provenance=place.provenance,
        )
    ]
    if place.website:
        evidence.append(
            Evidence(
                type=EvidenceType.operator_url,
                source=source,
                url=place.website,
                title=place.name,
                provenance=place.provenance,
            )
        )
    return evidence


def hotel_from_place(place: PlaceResult, area_id: str, source: str) -> HotelCandidate:
    return HotelCandidate(
        place_id=place.place_id,
        name=place.name,
        area_id=area_id,
        rating=place.rating,
        review_count=place.review_count,
        is_adults_only="adults_only" in place.types,
        is_all_inclusive="all_inclusive" in place.types,
        amenities=[t for t in place.types if t not in HOTEL_FLAG_TYPES],
        wheelchair_accessible=True if "wheelchair_accessible" in place.types else None,
        location=place.location,
        evidence=_place_evidence(place, source),
    )


def apply_quotes(hotel: HotelCandidate, quotes: Sequence[PriceQuote]) -> HotelCandidate:
    """Lowest quoted nightly price; no price stays unknown, never zero."""
    priced = [q for q in quotes if q.price_per_night is not None]
    if not priced:
        return hotel.model_copy(
            update={"price_per_night": None, "price_confidence": PriceConfidence.unknown, "price_source": None}
        )
    best = min(priced, key=lambda q: (q.price_per_night, q.vendor))
    evidence = Evidence(
        type=EvidenceType.pricing_quote,
        source=best.vendor,
        title=f"{best.vendor} {best.currency} {best.price_per_night:.0f}/night",
        provenance=best.provenance,
    )
    return hotel.model_copy(
        update={
            "price_per_night": best.price_per_night,
            "price_confidence": PriceConfidence.estimated if best.is_estimate else PriceConfidence.real,
            "price_source": best.vendor,
            "evidence": [*hotel.evidence, evidence],
        }
    )


class EnrichmentPipeline:
    """Fetches candidates for one session through the fetch executor."""

    def __init__(
        self,
        *,
        areas: AreaCatalog,
        places: PlaceLookup,
        discussion: DiscussionSearch,
        pricing: PricingProvider,
        settings: Settings,
        executor: FetchExecutor | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._areas = areas
        self._places = places
        self._discussion = discussion
        self._pricing = pricing
        self._settings = settings
        self._executor = executor or FetchExecutor(
            FetchConfig.from_settings(settings),
            PrometheusFetchMetrics(),
            StructuredFetchLogger(),
            sleep_fn=sleep_fn,
        )
        self._sleep = sleep_fn

    async def run(self, layer: EnrichmentType, request: EnrichmentRequest) -> EnrichmentResult:
        """Run one layer.

        Raises:
            EnrichmentOrderError: The layer's prerequisite has not finished
            StaleGenerationError: The session generation moved on mid-run
        """
        prerequisite = PREREQUISITES[layer]
        if prerequisite is not None:
            status = request.statuses.get(prerequisite, EnrichmentStatus.pending)
            if not status.is_finished:
                raise EnrichmentOrderError(f"{layer.value} requires {prerequisite.value} (status {status.value})")

        match layer:
            case EnrichmentType.discussion:
                result = await self.fetch_discussion(request)
            case EnrichmentType.areas:
                result = await self.discover_areas(request)
            case EnrichmentType.hotels:
                result = await self.fetch_hotels(request)
            case EnrichmentType.pricing:
                result = await self.fetch_pricing(request)
            case EnrichmentType.activities:
                result = await self.fetch_activities(request)
            case EnrichmentType.restaurants:
                result = await self.fetch_restaurants(request)

        logger.info(
            "Enrichment layer finished",
            extra={
                "structured": {
                    "session_id": request.session_id,
                    "generation": request.generation,
                    "layer": layer.value,
                    "status": result.status.value,
                    "items": len(result.items),
                    "failures": [f.entity_id for f in result.failures],
                }
            },
        )
        return result

    async def _fetch(self, request: EnrichmentRequest, source: str, fn: Callable[[Any], Awaitable[T]], payload: BaseModel) -> T:
        ctx = FetchContext(
            session_id=request.session_id,
            source=source,
            generation=request.generation,
            trace_id=uuid.uuid4().hex,
        )
        result = await self._executor.execute(ctx, fn, payload, guard=request.guard)
        return result.value

    async def _bounded(
        self,
        request: EnrichmentRequest,
        items: Sequence[T],
        worker: Callable[[T], Awaitable[R]],
    ) -> tuple[list[tuple[T, R]], list[tuple[T, Exception]]]:
        return await run_bounded(
            items,
            worker,
            concurrency=self._settings.enrichment_concurrency,
            batch_delay_s=self._settings.enrichment_batch_delay_ms / 1000,
            guard=request.guard,
            sleep_fn=self._sleep,
        )

    def _verified(self, evidence: Sequence[Evidence]) -> bool:
        return meets_verification_contract(
            evidence,
            min_score=self._settings.discussion_min_score,
            min_citations=self._settings.discussion_min_citations,
        )

    @staticmethod
    def _cited(entity: E, entity_id: str, name: str, posts: Sequence[DiscussionPost]) -> E:
        """Attach discussion citations for posts that mention the entity."""
        known = {e.url for e in entity.evidence if e.url}
        cited = [c for c in citations_for(entity_id, name, posts) if c.url not in known]
        if not cited:
            return entity
        return entity.model_copy(update={"evidence": [*entity.evidence, *cited]})

    @staticmethod
    def _destination(prefs: TripPreferences) -> str:
        return prefs.destination.canonical_name if prefs.destination else ""

    @staticmethod
    def _status(items: Sequence[Any], failures: Sequence[Any], attempted: int) -> EnrichmentStatus:
        if failures and len(failures) >= attempted and not items:
            return EnrichmentStatus.error
        return EnrichmentStatus.done

    async def fetch_discussion(self, request: EnrichmentRequest) -> EnrichmentResult:
        destination = self._destination(request.prefs)
        terms = " ".join(a.type.replace("_", " ") for a in request.prefs.selected_activities[:3])
        query = DiscussionQuery(query=f"{destination} {terms}".strip(), communities=DISCUSSION_COMMUNITIES)
        try:
            posts: list[DiscussionPost] = await self._fetch(
                request, "discussion.search", self._discussion.search, query
            )
        except StaleGenerationError:
            raise
        except Exception as e:
            return EnrichmentResult(
                layer=EnrichmentType.discussion,
                generation=request.generation,
                status=EnrichmentStatus.error,
                failures=[EntityFailure(destination, type(e).__name__)],
            )
        return EnrichmentResult(
            layer=EnrichmentType.discussion,
            generation=request.generation,
            status=EnrichmentStatus.done,
            items=posts,
        )

    async def discover_areas(self, request: EnrichmentRequest) -> EnrichmentResult:
        """Catalog areas, a place-lookup fallback when sparse, then an inventory check."""
        destination = self._destination(request.prefs)
        failures: list[EntityFailure] = []
        profiles: list[AreaProfile] = []

        try:
            profiles = await self._fetch(
                request, "areas.catalog", self._areas.areas_for, AreaQuery(destination=destination)
            )
        except StaleGenerationError:
            raise
        except Exception as e:
            failures.append(EntityFailure(destination, type(e).__name__))

        if len(profiles) < self._settings.min_area_candidates:
            query = PlaceQuery(query=f"towns and neighborhoods in {destination}", place_type="locality")
            try:
                places: list[PlaceResult] = await self._fetch(request, "places.areas", self._places.search, query)
            except StaleGenerationError:
                raise
            except Exception as e:
                failures.append(EntityFailure(f"{destination}:secondary", type(e).__name__))
                places = []
            known = {p.id for p in profiles}
            for place in places:
                area_id = slugify(place.name)
                if area_id in known:
                    continue
                known.add(area_id)
                profiles.append(
                    AreaProfile(
                        id=area_id,
                        name=place.name,
                        type="area",
                        center=place.location,
                        evidence=_place_evidence(place, "places.areas"),
                    )
                )

        profiles = [self._cited(p, p.id, p.name, request.posts) for p in profiles]
        profiles = [p for p in profiles if self._verified(p.evidence)]

        async def count_hotels(profile: AreaProfile) -> int:
            query = PlaceQuery(query=f"hotels in {profile.name}, {destination}", place_type="lodging")
            found: list[PlaceResult] = await self._fetch(request, "places.hotels", self._places.search, query)
            return len(found)

        counted, count_failures = await self._bounded(request, profiles, count_hotels)
        failures.extend(EntityFailure(p.id, type(e).__name__) for p, e in count_failures)
        counts = {p.id: n for p, n in counted}

        checked = []
        for profile in profiles:
            count = counts.get(profile.id)
            if count is None:
                checked.append(profile)
                continue
            checked.append(
                profile.model_copy(
                    update={
                        "hotel_count": count,
                        "low_hotel_inventory": count < self._settings.min_hotels_for_valid_area,
                        "needs_hotel_indexing": count == 0,
                    }
                )
            )

        return EnrichmentResult(
            layer=EnrichmentType.areas,
            generation=request.generation,
            status=EnrichmentStatus.done if checked else EnrichmentStatus.error,
            items=checked,
            failures=failures,
        )

    async def fetch_hotels(self, request: EnrichmentRequest) -> EnrichmentResult:
        """Primary query per area; broader secondary query when sparse or flagged for indexing.

        A failed secondary query is recorded and the primary results are kept.
        """
        destination = self._destination(request.prefs)
        secondary_failures: list[EntityFailure] = []

        async def hotels_for(area: AreaCandidate | AreaProfile) -> list[HotelCandidate]:
            primary = PlaceQuery(query=f"hotels in {area.name}, {destination}", place_type="lodging")
            found: list[PlaceResult] = await self._fetch(request, "places.hotels", self._places.search, primary)
            if len(found) < self._settings.min_hotels_per_area or area.needs_hotel_indexing:
                secondary = PlaceQuery(
                    query=f"resorts and lodging near {area.name}, {destination}",
                    place_type="lodging",
                )
                try:
                    extra: list[PlaceResult] = await self._fetch(
                        request, "places.hotels_secondary", self._places.search, secondary
                    )
                except StaleGenerationError:
                    raise
                except Exception as e:
                    secondary_failures.append(EntityFailure(f"{area.id}:secondary", type(e).__name__))
                    extra = []
                seen = {p.place_id for p in found}
                found = found + [p for p in extra if p.place_id not in seen]
                logger.info(
                    "Secondary hotel fetch",
                    extra={"structured": {"area_id": area.id, "found": len(found)}},
                )
            return [hotel_from_place(p, area.id, "places.hotels") for p in found]

        result = await self._per_area(request, EnrichmentType.hotels, hotels_for)
        result.failures.extend(secondary_failures)
        return result

    async def fetch_activities(self, request: EnrichmentRequest) -> EnrichmentResult:
        destination = self._destination(request.prefs)
        pairs = [(area, intent.type) for area in request.areas for intent in request.prefs.selected_activities]

        async def activities_for(pair: tuple[AreaCandidate | AreaProfile, str]) -> list[ActivityCandidate]:
            area, activity_type = pair
            query = PlaceQuery(
                query=f"{activity_type.replace('_', ' ')} in {area.name}, {destination}",
                place_type="tourist_attraction",
            )
            found: list[PlaceResult] = await self._fetch(request, "places.activities", self._places.search, query)
            return [
                ActivityCandidate(
                    id=p.place_id,
                    name=p.name,
                    activity_type=activity_type,
                    area_id=area.id,
                    rating=p.rating,
                    review_count=p.review_count,
                    operator_url=p.website,
                    evidence=_place_evidence(p, "places.activities"),
                )
                for p in found
            ]

        found, failures = await self._bounded(request, pairs, activities_for)
        items: dict[str, ActivityCandidate] = {}
        for _, candidates in found:
            for c in candidates:
                c = self._cited(c, c.id, c.name, request.posts)
                if c.id not in items and self._verified(c.evidence):
                    items[c.id] = c
        return EnrichmentResult(
            layer=EnrichmentType.activities,
            generation=request.generation,
            status=self._status(items, failures, len(pairs)),
            items=list(items.values()),
            failures=[EntityFailure(f"{a.id}:{t}", type(e).__name__) for (a, t), e in failures],
        )

    async def fetch_restaurants(self, request: EnrichmentRequest) -> EnrichmentResult:
        destination = self._destination(request.prefs)

        async def restaurants_for(area: AreaCandidate | AreaProfile) -> list[RestaurantCandidate]:
            query = PlaceQuery(query=f"restaurants in {area.name}, {destination}", place_type="restaurant")
            found: list[PlaceResult] = await self._fetch(request, "places.restaurants", self._places.search, query)
            return [
                RestaurantCandidate(
                    id=p.place_id,
                    name=p.name,
                    area_id=area.id,
                    cuisine=next((t for t in p.types if t != "restaurant"), None),
                    price_level=p.price_level,
                    rating=p.rating,
                    review_count=p.review_count,
                    best_for=[t for t in p.types if t != "restaurant"],
                    evidence=_place_evidence(p, "places.restaurants"),
                )
                for p in found
            ]

        return await self._per_area(request, EnrichmentType.restaurants, restaurants_for)

    async def _per_area(
        self,
        request: EnrichmentRequest,
        layer: EnrichmentType,
        worker: Callable[[AreaCandidate | AreaProfile], Awaitable[list[Any]]],
    ) -> EnrichmentResult:
        found, failures = await self._bounded(request, list(request.areas), worker)
        items: list[Any] = []
        seen: set[str] = set()
        for _, candidates in found:
            for c in candidates:
                key = getattr(c, "place_id", None) or c.id
                if key in seen or not self._verified(c.evidence):
                    continue
                seen.add(key)
                items.append(c)
        return EnrichmentResult(
            layer=layer,
            generation=request.generation,
            status=self._status(items, failures, len(request.areas)),
            items=items,
            failures=[EntityFailure(a.id, type(e).__name__) for a, e in failures],
        )

    async def fetch_pricing(self, request: EnrichmentRequest) -> EnrichmentResult:
        """Quote every hotel; missing or failed quotes leave the price unknown."""
        prefs = request.prefs
        if prefs.start_date is None or prefs.nights is None:
            unknown = [apply_quotes(h, []) for h in request.hotels]
            return EnrichmentResult(
                layer=EnrichmentType.pricing,
                generation=request.generation,
                status=EnrichmentStatus.done,
                items=unknown,
            )
        check_in = prefs.start_date
        check_out = prefs.end_date or check_in + timedelta(days=prefs.nights)
        adults = max(1, prefs.adults)

        async def quote(hotel: HotelCandidate) -> list[PriceQuote]:
            req = PriceRequest(
                entity_id=hotel.place_id,
                entity_name=hotel.name,
                check_in=check_in,
                check_out=check_out,
                adults=adults,
            )
            return await self._fetch(request, "pricing.quote", self._pricing.quote, req)

        quoted, failures = await self._bounded(request, list(request.hotels), quote)
        priced = {h.place_id: apply_quotes(h, quotes) for h, quotes in quoted}
        items = [priced.get(h.place_id) or apply_quotes(h, []) for h in request.hotels]
        return EnrichmentResult(
            layer=EnrichmentType.pricing,
            generation=request.generation,
            status=self._status(priced, failures, len(request.hotels)),
            items=items,
            failures=[EntityFailure(h.place_id, type(e).__name__) for h, e in failures],
        )
