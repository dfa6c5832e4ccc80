"""Evidence models - provenance units backing every recommendation."""

from enum import Enum

from pydantic import BaseModel, Field

from backend.quickplan.models.common import Provenance


class EvidenceType(str, Enum):
    """Kind of provenance attached to a recommended entity."""

    place_reference = "place_reference"  # Stable place-lookup identifier
    operator_url = "operator_url"  # Operator / official booking page
    discussion_thread = "discussion_thread"  # Community discussion citation
    pricing_quote = "pricing_quote"
    llm_inference = "llm_inference"  # Never sufficient on its own


class Evidence(BaseModel):
    """A single provenance record for a recommended entity."""

    type: EvidenceType
    source: str
    place_id: str | None = None
    url: str | None = None
    title: str | None = None
    snippet: str | None = None
    score: int | None = Field(default=None, description="Community score (upvotes)")
    community: str | None = None
    provenance: Provenance | None = None
