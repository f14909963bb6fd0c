"""Pydantic schemas for request/response payloads.

Field names are snake_case in Python and camelCase on the wire (aliases),
matching what the dashboard sends.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


StrOrList = Optional[Union[str, List[str]]]


def _as_list(value) -> Optional[List[str]]:
    if value is None or value == "" or value == []:
        return None
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v is not None and str(v) != ""] or None


class GroupBy(str, Enum):
    campaign = "campaign"
    adset = "adset"
    ad = "ad"


class LeadScoreRange(BaseModel):
    """Inclusive lead score bounds; either side may be open."""

    min: Optional[float] = Field(None, description="Lowest lead score kept")
    max: Optional[float] = Field(None, description="Highest lead score kept")


class ReportFilters(BaseModel):
    """Date range plus optional lead and ad-name filters."""

    model_config = ConfigDict(populate_by_name=True)

    start_date: str = Field(alias="startDate", description="Range start (YYYY-MM-DD)", examples=["2025-01-01"])
    end_date: str = Field(alias="endDate", description="Range end (YYYY-MM-DD)", examples=["2025-01-31"])

    estimate_set_leads: bool = Field(False, alias="estimateSetLeads", description="Only leads with status estimate_set")
    job_booked_leads: bool = Field(False, alias="jobBookedLeads", description="Only leads with a booked amount")
    zip_code: StrOrList = Field(None, alias="zipCode")
    service_type: StrOrList = Field(None, alias="serviceType")
    lead_score: Optional[LeadScoreRange] = Field(None, alias="leadScore")

    campaign_name: StrOrList = Field(None, alias="campaignName", description="Partial, case-insensitive")
    ad_set_name: StrOrList = Field(None, alias="adSetName", description="Partial, case-insensitive")
    ad_name: StrOrList = Field(None, alias="adName", description="Partial, case-insensitive")

    @field_validator("zip_code", "service_type", "campaign_name", "ad_set_name", "ad_name", mode="after")
    @classmethod
    def _normalize_lists(cls, value):
        return _as_list(value)


class ReportRequest(BaseModel):
    """Payload for POST /ad-performance-board."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "clientId": "client-1",
                "filters": {"startDate": "2025-01-01", "endDate": "2025-01-31", "zipCode": ["75001"]},
                "columns": {"campaignName": True, "fb_spend": True, "costPerLead": True},
                "groupBy": "campaign",
            }
        },
    )

    client_id: str = Field(alias="clientId", description="Tenant id")
    filters: ReportFilters
    columns: Dict[str, bool] = Field(default_factory=dict, description="Column name -> include")
    group_by: GroupBy = Field(GroupBy.campaign, alias="groupBy")


class ReportResponse(BaseModel):
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    averages: Dict[str, Optional[float]] = Field(default_factory=dict)
    available_zip_codes: List[str] = Field(default_factory=list, serialization_alias="availableZipCodes")
    available_service_types: List[str] = Field(default_factory=list, serialization_alias="availableServiceTypes")


class SyncRequest(BaseModel):
    """Payload for POST /ad-performance-board/sync and /creatives/refresh."""

    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(alias="clientId")
    start_date: str = Field(alias="startDate", examples=["2025-01-01"])
    end_date: str = Field(alias="endDate", examples=["2025-01-31"])


class SyncResponse(BaseModel):
    client_id: str = Field(serialization_alias="clientId")
    decision: str


class CreativeRefreshResponse(BaseModel):
    saved: int
    failed: int
    creative_ids: List[str] = Field(default_factory=list, serialization_alias="creativeIds")


class CreativeOut(BaseModel):
    """Cached creative as served to the dashboard."""

    model_config = ConfigDict(from_attributes=True)

    creative_id: str = Field(serialization_alias="creativeId")
    client_id: Optional[str] = Field(None, serialization_alias="clientId")
    name: Optional[str] = None
    primary_text: Optional[str] = Field(None, serialization_alias="primaryText")
    headline: Optional[str] = None
    description: Optional[str] = None
    body: Optional[str] = None
    title: Optional[str] = None
    thumbnail_url: Optional[str] = Field(None, serialization_alias="thumbnailUrl")
    image_url: Optional[str] = Field(None, serialization_alias="imageUrl")
    image_hash: Optional[str] = Field(None, serialization_alias="imageHash")
    video_id: Optional[str] = Field(None, serialization_alias="videoId")
    videos: Optional[List[Dict[str, Any]]] = None
    child_attachments: Optional[List[Dict[str, Any]]] = Field(None, serialization_alias="childAttachments")
    call_to_action: Optional[Any] = Field(None, serialization_alias="callToAction")
    creative_type: str = Field(serialization_alias="creativeType")

    @field_validator("creative_type", mode="before")
    @classmethod
    def _enum_value(cls, value):
        return getattr(value, "value", value)
