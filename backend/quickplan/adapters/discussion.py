"""Discussion-search adapter using Reddit's public search endpoint."""

from urllib.parse import quote_plus

import httpx

from backend.quickplan.adapters.base import DiscussionQuery
from backend.quickplan.adapters.provenance import provenance_for_http
from backend.quickplan.models.candidates import DiscussionPost


class RedditSearchClient:
    """Searches one or more communities and ranks posts by score."""

    def __init__(
        self,
        base_url: str = "https://www.reddit.com",
        user_agent: str = "quickplan-engine/0.1",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._client = client

    def _search_url(self, community: str | None) -> str:
        if community:
            return f"{self._base_url}/r/{community}/search.json"
        return f"{self._base_url}/search.json"

    async def search(self, query: DiscussionQuery) -> list[DiscussionPost]:
        """Search posts across communities (all of Reddit if none given).

        Raises:
            httpx.HTTPError: On network or HTTP errors
        """
        close_client = False
        client = self._client
        if client is None:
            client = httpx.AsyncClient(timeout=4.0, headers={"User-Agent": self._user_agent})
            close_client = True

        posts: dict[str, DiscussionPost] = {}
        try:
            for community in query.communities or [None]:
                url = self._search_url(community)
                params: dict[str, str | int] = {
                    "q": query.query,
                    "sort": "top",
                    "limit": query.limit,
                    "restrict_sr": 1 if community else 0,
                }
                response = await client.get(url, params=params)
                response.raise_for_status()
                for child in response.json().get("data", {}).get("children", []):
                    pd = child.get("data", {})
                    if "id" not in pd:
                        continue
                    permalink = pd.get("permalink")
                    posts[pd["id"]] = DiscussionPost(
                        id=pd["id"],
                        title=pd.get("title", ""),
                        body=pd.get("selftext", ""),
                        score=int(pd.get("score", 0)),
                        community=pd.get("subreddit", community or ""),
                        url=f"{self._base_url}{permalink}" if permalink else None,
                        provenance=provenance_for_http(
                            source="discussion.reddit",
                            url=f"{url}?q={quote_plus(query.query)}",
                        ),
                    )
        finally:
            if close_client:
                await client.aclose()

        ranked = sorted(posts.values(), key=lambda p: (-p.score, p.id))
        return ranked[: query.limit]
