"""Models package - re-exports for convenience."""

from backend.quickplan.models.areas import AreaCandidate, AreaProfile, ItinerarySplit, ItineraryStop
from backend.quickplan.models.assistant import (
    AssistantResponse,
    AssistantResponseType,
    Recommendation,
    RecommendationCategory,
)
from backend.quickplan.models.candidates import (
    ActivityCandidate,
    CandidateCatalog,
    DiscussionPost,
    HotelCandidate,
    HotelShortlist,
    PlaceResult,
    PriceQuote,
    RestaurantCandidate,
)
from backend.quickplan.models.common import (
    BudgetRange,
    ConfidenceField,
    ConfidenceLevel,
    DestinationType,
    DiningMode,
    EnrichmentStatus,
    EnrichmentType,
    Geo,
    PaceLevel,
    PriceConfidence,
    Provenance,
    Tier,
)
from backend.quickplan.models.evidence import Evidence, EvidenceType
from backend.quickplan.models.itinerary import (
    BlockType,
    DayBlock,
    DiningPlan,
    QuickPlanDay,
    QuickPlanItinerary,
    ScheduledDinner,
    TimeSlot,
    TransitInfo,
    TransitMode,
)
from backend.quickplan.models.preferences import (
    ActivityIntent,
    ActivityPriority,
    DestinationContext,
    TripPreferences,
    UserNote,
)
from backend.quickplan.models.quality import (
    ConstraintSeverity,
    QualityCheckResult,
    UnmetConstraint,
    UnmetConstraintType,
)
from backend.quickplan.models.questions import QuestionConfig, ReplyCard, ReplyCardType
from backend.quickplan.models.satisfaction import (
    RegenerationComponent,
    SatisfactionIssue,
    SatisfactionIssueCategory,
    SatisfactionResponse,
    SatisfactionVerdict,
)
from backend.quickplan.models.tradeoffs import (
    PreferenceConflict,
    Tradeoff,
    TradeoffOption,
    TradeoffResolution,
    TradeoffType,
)

__all__ = [
    # Common
    "Geo",
    "Tier",
    "BudgetRange",
    "ConfidenceField",
    "ConfidenceLevel",
    "PaceLevel",
    "DiningMode",
    "PriceConfidence",
    "DestinationType",
    "EnrichmentType",
    "EnrichmentStatus",
    "Provenance",
    # Evidence
    "Evidence",
    "EvidenceType",
    # Preferences
    "TripPreferences",
    "ActivityIntent",
    "ActivityPriority",
    "DestinationContext",
    "UserNote",
    # Areas
    "AreaProfile",
    "AreaCandidate",
    "ItinerarySplit",
    "ItineraryStop",
    # Candidates
    "PlaceResult",
    "DiscussionPost",
    "PriceQuote",
    "HotelCandidate",
    "HotelShortlist",
    "RestaurantCandidate",
    "ActivityCandidate",
    "CandidateCatalog",
    # Itinerary
    "BlockType",
    "TimeSlot",
    "TransitMode",
    "TransitInfo",
    "DayBlock",
    "QuickPlanDay",
    "ScheduledDinner",
    "DiningPlan",
    "QuickPlanItinerary",
    # Quality
    "ConstraintSeverity",
    "UnmetConstraintType",
    "UnmetConstraint",
    "QualityCheckResult",
    # Tradeoffs
    "TradeoffType",
    "TradeoffOption",
    "Tradeoff",
    "TradeoffResolution",
    "PreferenceConflict",
    # Satisfaction
    "SatisfactionVerdict",
    "SatisfactionIssueCategory",
    "SatisfactionIssue",
    "SatisfactionResponse",
    "RegenerationComponent",
    # Questions
    "ReplyCardType",
    "ReplyCard",
    "QuestionConfig",
    # Assistant
    "AssistantResponse",
    "AssistantResponseType",
    "Recommendation",
    "RecommendationCategory",
]
