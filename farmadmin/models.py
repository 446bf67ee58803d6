"""
Data Models Module

Pydantic models for request/response validation and data serialization
throughout the service.

Models are organized by functional area:
- Session models (the signed-in principal)
- Farm models (list_farms rows, keyed by the database's Korean column names)
- Board models (board_posts)
- Management models (database server start/stop target)
"""

from datetime import date, datetime
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Session Models
# ============================================================================

class SessionUser(BaseModel):
    """Identity written to the session after a successful code exchange."""

    name: Optional[str] = Field(None, description="Display name")
    preferred_username: Optional[str] = Field(None, description="UPN, used as the authorization key")
    oid: Optional[str] = Field(None, description="Principal object id")
    tid: Optional[str] = Field(None, description="Tenant id")

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "SessionUser":
        return cls(
            name=claims.get("name"),
            preferred_username=claims.get("preferred_username"),
            oid=claims.get("oid") or claims.get("sub"),
            tid=claims.get("tid"),
        )

    @property
    def display_name(self) -> str:
        return self.name or self.preferred_username or self.oid or "User"


# ============================================================================
# Farm Models
# ============================================================================

def _int_or_none(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _date_or_none(value: Any) -> Optional[Union[date, datetime]]:
    if value in (None, ""):
        return None
    if isinstance(value, (date, datetime)):
        return value
    text = str(value).strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text)
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


class FarmFields(BaseModel):
    """
    Editable farm columns.

    Aliases are the column names of ``list_farms`` and the JSON keys the
    front end sends and reads.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field("", alias="농장명")
    region: Optional[str] = Field(None, alias="지역")
    badge: Optional[str] = Field(None, alias="뱃지")
    owner_id: Optional[int] = Field(None, alias="농장주ID")
    owner: Optional[str] = Field(None, alias="농장주")
    feed_company: Optional[str] = Field(None, alias="사료회사")
    manager_id: Optional[int] = Field(None, alias="관리자ID")
    manager: Optional[str] = Field(None, alias="관리자")
    contract_status: Optional[str] = Field(None, alias="계약상태")
    contract_start: Optional[Union[datetime, date]] = Field(None, alias="계약시작일")
    contract_end: Optional[Union[datetime, date]] = Field(None, alias="계약종료일")

    @field_validator("name", mode="before")
    @classmethod
    def default_name(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("owner_id", "manager_id", mode="before")
    @classmethod
    def parse_ids(cls, v: Any) -> Optional[int]:
        return _int_or_none(v)

    @field_validator("contract_start", "contract_end", mode="before")
    @classmethod
    def parse_dates(cls, v: Any) -> Optional[Union[date, datetime]]:
        return _date_or_none(v)


# Row keys tried in order; the English names cover views without Korean columns.
_FARM_COLUMN_FALLBACKS = {
    "농장ID": "id",
    "농장명": "name",
    "지역": "region",
    "뱃지": "badge",
    "농장주ID": "ownerId",
    "농장주": "owner",
    "사료회사": "feedCompany",
    "관리자ID": "managerId",
    "관리자": "manager",
    "계약상태": "contractStatus",
    "계약시작일": "contractStart",
    "계약종료일": "contractEnd",
}

_FARM_TEXT_COLUMNS = {"농장명", "지역", "뱃지", "농장주", "사료회사", "관리자", "계약상태"}


def farm_from_row(row: Dict[str, Any]) -> Dict[str, Any]:
    """Shape a ``list_farms`` row into the JSON object the front end expects."""
    farm: Dict[str, Any] = {}
    for column, fallback in _FARM_COLUMN_FALLBACKS.items():
        value = row.get(column)
        if value is None:
            value = row.get(fallback)
        if value is None and column in _FARM_TEXT_COLUMNS:
            value = ""
        farm[column] = value
    return farm


# ============================================================================
# Board Models
# ============================================================================

class BoardPostIn(BaseModel):
    """Title and body of a board post; both are trimmed and required."""

    title: Optional[str] = None
    body: Optional[str] = None

    def cleaned(self) -> "BoardPostIn":
        return BoardPostIn(
            title=(self.title or "").strip(),
            body=(self.body or "").strip(),
        )


# ============================================================================
# Management Models
# ============================================================================

class ServerTarget(BaseModel):
    """Optional override of the configured database server target."""

    resourceGroup: Optional[str] = None
    serverName: Optional[str] = None
    subscriptionId: Optional[str] = None


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
