"""
User preferences API routes.

Every route goes through PreferencesService so the cache is invalidated on
each write.
"""
import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ddsportal.database import get_db
from ddsportal.schemas.preferences import (
    DashboardLayoutRequest,
    NotificationSettingsRequest,
    PreferencesEnvelope,
    PreferencesUpdateRequest,
    ThemeRequest,
)
from ddsportal.services.preferences_service import PreferencesService

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_preferences_service(db: Session = Depends(get_db)) -> PreferencesService:
    return PreferencesService(db)


@router.get(
    "/{user_id}/preferences",
    response_model=PreferencesEnvelope,
    summary="Get user preferences",
    description="Get a user's preferences, creating the defaults on first access.",
)
async def get_preferences(
    user_id: int,
    service: PreferencesService = Depends(get_preferences_service),
) -> PreferencesEnvelope:
    return PreferencesEnvelope(data=service.get(user_id))


@router.put(
    "/{user_id}/preferences",
    response_model=PreferencesEnvelope,
    summary="Update user preferences",
    description="Partial update; omitted fields keep their current value.",
)
async def update_preferences(
    user_id: int,
    request: PreferencesUpdateRequest,
    service: PreferencesService = Depends(get_preferences_service),
) -> PreferencesEnvelope:
    values = request.model_dump(exclude_unset=True, mode="json")
    preferences = service.update(user_id, values)
    return PreferencesEnvelope(message="Preferences updated successfully", data=preferences)


@router.put(
    "/{user_id}/preferences/theme",
    response_model=PreferencesEnvelope,
    summary="Set theme",
)
async def update_theme(
    user_id: int,
    request: ThemeRequest,
    service: PreferencesService = Depends(get_preferences_service),
) -> PreferencesEnvelope:
    preferences = service.set_theme(user_id, request.theme)
    return PreferencesEnvelope(message="Theme updated successfully", data=preferences)


@router.put(
    "/{user_id}/preferences/dashboard-layout",
    response_model=PreferencesEnvelope,
    summary="Set dashboard layout",
)
async def update_dashboard_layout(
    user_id: int,
    request: DashboardLayoutRequest,
    service: PreferencesService = Depends(get_preferences_service),
) -> PreferencesEnvelope:
    layout = [widget.model_dump() for widget in request.layout]
    preferences = service.set_dashboard_layout(user_id, layout)
    return PreferencesEnvelope(message="Dashboard layout updated successfully", data=preferences)


@router.put(
    "/{user_id}/preferences/notification-settings",
    response_model=PreferencesEnvelope,
    summary="Set notification bitmask",
)
async def update_notification_settings(
    user_id: int,
    request: NotificationSettingsRequest,
    service: PreferencesService = Depends(get_preferences_service),
) -> PreferencesEnvelope:
    preferences = service.set_notification_settings(user_id, request.settings)
    return PreferencesEnvelope(message="Notification settings updated successfully", data=preferences)


@router.post(
    "/{user_id}/preferences/notifications/{notification_type}/enable",
    response_model=PreferencesEnvelope,
    summary="Enable one notification type",
)
async def enable_notification(
    user_id: int,
    notification_type: int,
    service: PreferencesService = Depends(get_preferences_service),
) -> PreferencesEnvelope:
    preferences = service.enable_notification(user_id, notification_type)
    return PreferencesEnvelope(message="Notification enabled", data=preferences)


@router.post(
    "/{user_id}/preferences/notifications/{notification_type}/disable",
    response_model=PreferencesEnvelope,
    summary="Disable one notification type",
)
async def disable_notification(
    user_id: int,
    notification_type: int,
    service: PreferencesService = Depends(get_preferences_service),
) -> PreferencesEnvelope:
    preferences = service.disable_notification(user_id, notification_type)
    return PreferencesEnvelope(message="Notification disabled", data=preferences)


@router.post(
    "/{user_id}/preferences/reset",
    response_model=PreferencesEnvelope,
    summary="Reset preferences to defaults",
)
async def reset_preferences(
    user_id: int,
    service: PreferencesService = Depends(get_preferences_service),
) -> PreferencesEnvelope:
    preferences = service.reset_to_defaults(user_id)
    logger.info("preferences_reset_requested", user_id=user_id)
    return PreferencesEnvelope(message="Preferences reset to defaults", data=preferences)
