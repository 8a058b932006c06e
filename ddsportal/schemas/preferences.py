"""
Pydantic schemas for user preference endpoints.

Defines the preference snapshot returned by the service layer and the
request bodies accepted by the API.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Theme = Literal["light", "dark", "system"]
Language = Literal["en", "id"]
Timezone = Literal["Asia/Jakarta", "UTC"]


class DashboardWidget(BaseModel):
    """Placement of one widget on the dashboard grid."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1, description="Widget identifier")
    x: int = Field(..., ge=0, description="Grid column")
    y: int = Field(..., ge=0, description="Grid row")
    w: int = Field(1, ge=1, description="Width in grid cells")
    h: int = Field(1, ge=1, description="Height in grid cells")


class PreferencesResponse(BaseModel):
    """Snapshot of a user's preferences."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    user_id: int
    theme: str
    language: str
    timezone: str
    notification_settings: int
    email_notifications: bool
    push_notifications: bool
    dashboard_layout: Optional[List[DashboardWidget]] = None


class PreferencesUpdateRequest(BaseModel):
    """Partial preference update; omitted fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    theme: Optional[Theme] = None
    dashboard_layout: Optional[List[DashboardWidget]] = None
    notification_settings: Optional[int] = Field(None, ge=0, le=7)
    email_notifications: Optional[bool] = None
    push_notifications: Optional[bool] = None
    language: Optional[Language] = None
    timezone: Optional[Timezone] = None


class ThemeRequest(BaseModel):
    theme: Theme


class DashboardLayoutRequest(BaseModel):
    layout: List[DashboardWidget]


class NotificationSettingsRequest(BaseModel):
    settings: int = Field(..., ge=0, le=7, description="Notification bitmask")


class PreferencesEnvelope(BaseModel):
    """Standard success envelope."""

    status: str = "success"
    message: Optional[str] = None
    data: PreferencesResponse
