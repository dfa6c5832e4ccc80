"""Tradeoff models - conflicting preference combinations and their resolutions."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class TradeoffType(str, Enum):
    """Known conflict types."""

    calm_water_vs_surf = "calm_water_vs_surf"
    one_base_vs_many_regions = "one_base_vs_many_regions"
    adults_only_vs_nightlife = "adults_only_vs_nightlife"
    no_long_drives_vs_multi_stop = "no_long_drives_vs_multi_stop"
    beach_vs_adventure = "beach_vs_adventure"
    family_friendly_vs_party = "family_friendly_vs_party"


class TradeoffOption(BaseModel):
    """One way to resolve a tradeoff."""

    id: str
    label: str
    impact: str  # Plain-language description of what changes


class Tradeoff(BaseModel):
    """A detected conflict between stated preferences.

    The id is derived from the tradeoff type and the preference values that
    triggered it, so new contradicting input yields a new tradeoff.
    """

    id: str
    type: TradeoffType
    title: str
    description: str
    conflicting: list[str]
    options: list[TradeoffOption] = Field(..., min_length=2, max_length=4)


class TradeoffResolution(BaseModel):
    """An immutable, timestamped record of the user's choice."""

    model_config = {"frozen": True}

    tradeoff_id: str
    tradeoff_type: TradeoffType
    option_id: str
    custom_text: str | None = None
    preference_changes: dict[str, Any] = Field(default_factory=dict)
    resolved_at: datetime


class PreferenceConflict(BaseModel):
    """A hard contradiction that cannot be resolved by choosing a tradeoff option."""

    code: str
    message: str
    fields: list[str]
