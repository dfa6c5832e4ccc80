"""Collaborator interfaces consumed by the enrichment pipeline.

Request payloads are pydantic models so the fetch executor can derive cache
keys from them.
"""

from datetime import date
from typing import Protocol

from pydantic import BaseModel, Field

from backend.quickplan.models.areas import AreaProfile
from backend.quickplan.models.candidates import DiscussionPost, PlaceResult, PriceQuote
from backend.quickplan.models.common import Geo


class PlaceQuery(BaseModel):
    query: str
    location_bias: Geo | None = None
    place_type: str | None = None  # lodging, restaurant, tourist_attraction, ...
    limit: int = 20


class DiscussionQuery(BaseModel):
    query: str
    communities: list[str] = Field(default_factory=list)
    limit: int = 10


class PriceRequest(BaseModel):
    entity_id: str
    entity_name: str
    check_in: date
    check_out: date
    adults: int = 2


class AreaQuery(BaseModel):
    destination: str


class PlaceLookup(Protocol):
    """Returns candidate places with a stable identifier."""

    async def search(self, query: PlaceQuery) -> list[PlaceResult]: ...


class DiscussionSearch(Protocol):
    """Returns ranked community posts; never verified fact on its own."""

    async def search(self, query: DiscussionQuery) -> list[DiscussionPost]: ...


class PricingProvider(Protocol):
    """Returns vendor prices; an empty list means the price is unknown."""

    async def quote(self, request: PriceRequest) -> list[PriceQuote]: ...


class AreaCatalog(Protocol):
    """Curated sub-areas for a destination."""

    async def areas_for(self, query: AreaQuery) -> list[AreaProfile]: ...
