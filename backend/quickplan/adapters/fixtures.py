"""Fixture-backed collaborators for areas, places, discussions and prices."""

import json
import unicodedata
from functools import lru_cache
from pathlib import Path
from typing import Any

from backend.quickplan.adapters.base import AreaQuery, DiscussionQuery, PlaceQuery, PriceRequest
from backend.quickplan.adapters.provenance import provenance_for_fixture
from backend.quickplan.models.areas import AreaProfile
from backend.quickplan.models.candidates import DiscussionPost, PlaceResult, PriceQuote
from backend.quickplan.models.common import Geo, Tier
from backend.quickplan.models.evidence import Evidence, EvidenceType

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"


def normalize_text(text: str) -> str:
    """Lowercase and strip accents so 'Samaná' matches 'samana'."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).lower()


@lru_cache
def _load(name: str) -> Any:
    with open(FIXTURES_DIR / name) as f:
        return json.load(f)


class FixtureAreaCatalog:
    """Curated destination areas from areas.json."""

    def __init__(self, data: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self._data = data if data is not None else _load("areas.json")

    async def areas_for(self, query: AreaQuery) -> list[AreaProfile]:
        key = normalize_text(query.destination).strip()
        profiles = []
        for ad in self._data.get(key, []):
            provenance = provenance_for_fixture("fixtures.areas", ad["id"])
            evidence = []
            if ad.get("place_id"):
                evidence.append(
                    Evidence(
                        type=EvidenceType.place_reference,
                        source="fixtures.areas",
                        place_id=ad["place_id"],
                        title=ad["name"],
                        provenance=provenance,
                    )
                )
            profiles.append(
                AreaProfile(
                    id=ad["id"],
                    name=ad["name"],
                    type=ad.get("type", "area"),
                    description=ad.get("description", ""),
                    region=ad.get("region"),
                    strengths=ad.get("strengths", []),
                    vibes=ad.get("vibes", []),
                    cost_tier=Tier(ad.get("cost_tier", "mid")),
                    best_for=ad.get("best_for", []),
                    not_ideal_for=ad.get("not_ideal_for", []),
                    overlaps=ad.get("overlaps", []),
                    center=Geo(**ad["center"]) if ad.get("center") else None,
                    evidence=evidence,
                )
            )
        return profiles


class FixturePlaces:
    """Place lookup over places.json.

    A place matches when every one of its `match_all` terms appears in the
    normalized query text and, if a place type is requested, the place carries it.
    """

    def __init__(self, data: list[dict[str, Any]] | None = None) -> None:
        self._data = data if data is not None else _load("places.json")

    async def search(self, query: PlaceQuery) -> list[PlaceResult]:
        text = normalize_text(query.query)
        results: list[PlaceResult] = []
        for pd in self._data:
            if query.place_type and query.place_type not in pd["types"]:
                continue
            if not all(term in text for term in pd["match_all"]):
                continue
            results.append(
                PlaceResult(
                    place_id=pd["place_id"],
                    name=pd["name"],
                    types=pd["types"],
                    rating=pd.get("rating"),
                    review_count=pd.get("review_count"),
                    website=pd.get("website"),
                    price_level=pd.get("price_level"),
                    location=Geo(**pd["location"]) if pd.get("location") else None,
                    provenance=provenance_for_fixture("fixtures.places", pd["place_id"]),
                )
            )
        return results[: query.limit]


class FixtureDiscussion:
    """Discussion search over discussions.json, ranked by score."""

    def __init__(self, data: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self._data = data if data is not None else _load("discussions.json")

    async def search(self, query: DiscussionQuery) -> list[DiscussionPost]:
        text = normalize_text(query.query)
        posts: list[DiscussionPost] = []
        for destination, entries in self._data.items():
            if destination not in text:
                continue
            for pd in entries:
                posts.append(
                    DiscussionPost(
                        id=pd["id"],
                        title=pd["title"],
                        body=pd.get("body", ""),
                        score=pd["score"],
                        community=pd["community"],
                        url=f"https://www.reddit.com/r/{pd['community']}/comments/{pd['id']}",
                        mentions=pd.get("mentions", []),
                        provenance=provenance_for_fixture("fixtures.discussions", pd["id"]),
                    )
                )
        posts.sort(key=lambda p: (-p.score, p.id))
        return posts[: query.limit]


class FixturePricing:
    """Vendor prices from prices.json; unknown hotels return no quotes."""

    def __init__(self, data: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self._data = data if data is not None else _load("prices.json")

    async def quote(self, request: PriceRequest) -> list[PriceQuote]:
        return [
            PriceQuote(
                entity_id=request.entity_id,
                vendor=qd["vendor"],
                price_per_night=qd.get("price_per_night"),
                currency=qd.get("currency", "USD"),
                check_in=request.check_in,
                check_out=request.check_out,
                is_estimate=qd.get("is_estimate", False),
                provenance=provenance_for_fixture("fixtures.prices", request.entity_id),
            )
            for qd in self._data.get(request.entity_id, [])
        ]
