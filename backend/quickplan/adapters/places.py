"""Place lookup adapter using the Google Places text-search API."""

import httpx

from backend.quickplan.adapters.base import PlaceQuery
from backend.quickplan.adapters.provenance import provenance_for_http
from backend.quickplan.models.candidates import PlaceResult
from backend.quickplan.models.common import Geo

FIELD_MASK = ",".join(
    [
        "places.id",
        "places.displayName",
        "places.types",
        "places.rating",
        "places.userRatingCount",
        "places.photos",
        "places.location",
        "places.formattedAddress",
        "places.websiteUri",
        "places.priceLevel",
    ]
)

# Places API (New) reports price level as an enum string
PRICE_LEVELS = {
    "PRICE_LEVEL_FREE": 0,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}


class GooglePlacesClient:
    """Text-search client; results carry a stable place id."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://places.googleapis.com/v1/places:searchText",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize client.

        Args:
            api_key: Places API key (read from settings)
            base_url: Text-search endpoint
            client: Optional httpx client (for testing with mocks)
        """
        self._api_key = api_key
        self._base_url = base_url
        self._client = client

    async def search(self, query: PlaceQuery) -> list[PlaceResult]:
        """Search places.

        Raises:
            httpx.HTTPError: On network or HTTP errors
        """
        body: dict[str, object] = {"textQuery": query.query, "pageSize": min(query.limit, 20)}
        if query.place_type:
            body["includedType"] = query.place_type
        if query.location_bias:
            body["locationBias"] = {
                "circle": {
                    "center": {
                        "latitude": query.location_bias.lat,
                        "longitude": query.location_bias.lon,
                    },
                    "radius": 15000.0,
                }
            }
        headers = {"X-Goog-Api-Key": self._api_key, "X-Goog-FieldMask": FIELD_MASK}

        close_client = False
        client = self._client
        if client is None:
            client = httpx.AsyncClient(timeout=4.0)
            close_client = True

        try:
            response = await client.post(self._base_url, json=body, headers=headers)
            response.raise_for_status()
            data = response.json()
        finally:
            if close_client:
                await client.aclose()

        results = []
        for pd in data.get("places", []):
            location = pd.get("location")
            photos = pd.get("photos") or []
            results.append(
                PlaceResult(
                    place_id=pd["id"],
                    name=(pd.get("displayName") or {}).get("text", pd["id"]),
                    types=pd.get("types", []),
                    rating=pd.get("rating"),
                    review_count=pd.get("userRatingCount"),
                    photo_ref=photos[0].get("name") if photos else None,
                    location=(
                        Geo(lat=location["latitude"], lon=location["longitude"])
                        if location
                        else None
                    ),
                    address=pd.get("formattedAddress"),
                    website=pd.get("websiteUri"),
                    price_level=PRICE_LEVELS.get(pd.get("priceLevel", "")),
                    provenance=provenance_for_http(
                        source="places.google",
                        url=f"{self._base_url}#{pd['id']}",
                    ),
                )
            )
        return results
