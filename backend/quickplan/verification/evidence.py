"""Evidence verification contract.

An entity is presentable only when it has a place reference, an operator
URL, or at least `min_citations` discussion citations that each reach the
credibility threshold.
"""

import unicodedata
from collections.abc import Iterable, Sequence

from backend.quickplan.models.candidates import DiscussionPost
from backend.quickplan.models.evidence import Evidence, EvidenceType


def credible_citations(evidence: Sequence[Evidence], min_score: int) -> list[Evidence]:
    """Discussion citations at or above the score threshold, one per thread."""
    seen: set[str] = set()
    credible = []
    for e in evidence:
        if e.type != EvidenceType.discussion_thread or (e.score or 0) < min_score:
            continue
        key = e.url or e.title or ""
        if key in seen:
            continue
        seen.add(key)
        credible.append(e)
    return credible


def meets_verification_contract(
    evidence: Sequence[Evidence],
    *,
    min_score: int = 10,
    min_citations: int = 2,
) -> bool:
    """Check the verification contract for one entity's evidence."""
    for e in evidence:
        if e.type == EvidenceType.place_reference and e.place_id:
            return True
        if e.type == EvidenceType.operator_url and e.url:
            return True
    return len(credible_citations(evidence, min_score)) >= min_citations


def evidence_from_post(post: DiscussionPost) -> Evidence:
    """Convert a discussion post into a citation."""
    return Evidence(
        type=EvidenceType.discussion_thread,
        source=f"discussion.{post.community}",
        url=post.url,
        title=post.title,
        snippet=post.body[:280] if post.body else None,
        score=post.score,
        community=post.community,
        provenance=post.provenance,
    )


def _fold(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return " ".join("".join(c for c in decomposed if not unicodedata.combining(c)).lower().split())


def citations_for(entity_id: str, name: str, posts: Iterable[DiscussionPost]) -> list[Evidence]:
    """Citations from posts that mention the entity by id or by name.

    Credibility is not checked here; the verification contract applies the
    score threshold.
    """
    folded = _fold(name)
    cited = []
    for post in posts:
        text = _fold(f"{post.title} {post.body}")
        if entity_id in post.mentions or (len(folded) > 3 and folded in text):
            cited.append(evidence_from_post(post))
    return cited
