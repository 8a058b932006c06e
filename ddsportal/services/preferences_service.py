"""
User Preferences Service.

Read-through cache in front of the user_preferences table. Reads populate
the cache; every write commits to the store and then drops the cache entry
so the next reader reloads canonical state.
"""
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ddsportal.config import get_settings
from ddsportal.database import insert_or_ignore
from ddsportal.exceptions import CacheError, DatabaseError, ValidationError
from ddsportal.models.preferences import (
    DEFAULT_PREFERENCES,
    LANGUAGES,
    THEMES,
    TIMEZONES,
    UserPreferences,
)
from ddsportal.schemas.preferences import DashboardWidget, PreferencesResponse
from ddsportal.services.cache_service import CacheBackend, get_cache_service
from ddsportal.services.notification_flags import NotificationMask

logger = structlog.get_logger(__name__)

CHOICE_FIELDS = {
    "theme": THEMES,
    "language": LANGUAGES,
    "timezone": TIMEZONES,
}
BOOLEAN_FIELDS = ("email_notifications", "push_notifications")
UPDATABLE_FIELDS = frozenset(DEFAULT_PREFERENCES)


def preferences_cache_key(user_id: int) -> str:
    return f"user_preferences_{user_id}"


class PreferencesService:
    """Service for reading and updating user preferences."""

    def __init__(
        self,
        db: Session,
        cache: Optional[CacheBackend] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self.db = db
        self.cache = cache if cache is not None else get_cache_service()
        self.ttl_seconds = (
            ttl_seconds if ttl_seconds is not None
            else get_settings().preferences_cache_ttl_seconds
        )

    # ==================== Reads ====================

    def get(self, user_id: int) -> PreferencesResponse:
        """
        Get a user's preferences, creating the default record on first access.

        Args:
            user_id: User identifier (existence is not checked)

        Returns:
            Preference snapshot
        """
        key = preferences_cache_key(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("preferences_cache_hit", user_id=user_id)
            return cached

        row = self._get_or_create_row(user_id)
        snapshot = PreferencesResponse.model_validate(row)
        self.cache.put(key, snapshot, self.ttl_seconds)
        logger.debug("preferences_cache_miss", user_id=user_id)
        return snapshot

    def get_theme(self, user_id: int) -> str:
        return self.get(user_id).theme

    def has_notification_enabled(self, user_id: int, notification_type: int) -> bool:
        mask = NotificationMask(self.get(user_id).notification_settings)
        return mask.has_enabled(self._check_bit(notification_type))

    # ==================== Writes ====================

    def update(self, user_id: int, preferences: Dict[str, Any]) -> PreferencesResponse:
        """
        Apply a partial update.

        Every field is validated before anything is written; on a validation
        error neither the store nor the cache is touched.

        Raises:
            ValidationError: Unknown field or value outside its allowed domain
            CacheError: The cached snapshot could not be invalidated
        """
        values = self._validate(preferences)

        # Invalidate up front too: if the cache is unreachable nothing is written
        self._invalidate(user_id)
        row = self._get_or_create_row(user_id)
        for field, value in values.items():
            setattr(row, field, value)
        self._commit("update")

        self._invalidate(user_id)
        self.db.refresh(row)

        logger.info("preferences_updated", user_id=user_id, fields=sorted(values))
        return PreferencesResponse.model_validate(row)

    def set_theme(self, user_id: int, theme: str) -> PreferencesResponse:
        return self.update(user_id, {"theme": theme})

    def set_language(self, user_id: int, language: str) -> PreferencesResponse:
        return self.update(user_id, {"language": language})

    def set_timezone(self, user_id: int, timezone: str) -> PreferencesResponse:
        return self.update(user_id, {"timezone": timezone})

    def set_dashboard_layout(self, user_id: int, layout: Optional[List[Dict[str, Any]]]) -> PreferencesResponse:
        return self.update(user_id, {"dashboard_layout": layout})

    def set_notification_settings(self, user_id: int, settings: int) -> PreferencesResponse:
        return self.update(user_id, {"notification_settings": settings})

    def enable_notification(self, user_id: int, notification_type: int) -> PreferencesResponse:
        """Set one notification bit (idempotent)."""
        bit = self._check_bit(notification_type)
        mask = NotificationMask(self.get(user_id).notification_settings)
        return self.update(user_id, {"notification_settings": mask.set_bit(bit).value})

    def disable_notification(self, user_id: int, notification_type: int) -> PreferencesResponse:
        """Clear one notification bit (no-op if already clear)."""
        bit = self._check_bit(notification_type)
        mask = NotificationMask(self.get(user_id).notification_settings)
        return self.update(user_id, {"notification_settings": mask.clear_bit(bit).value})

    def reset_to_defaults(self, user_id: int) -> PreferencesResponse:
        """Overwrite every setting with the canonical defaults."""
        self._invalidate(user_id)
        row = self._get_or_create_row(user_id)
        row.apply_defaults()
        self._commit("reset")

        self._invalidate(user_id)
        self.db.refresh(row)

        logger.info("preferences_reset", user_id=user_id)
        return PreferencesResponse.model_validate(row)

    # ==================== Helpers ====================

    def _get_or_create_row(self, user_id: int) -> UserPreferences:
        row = self.db.get(UserPreferences, user_id)
        if row is not None:
            return row

        try:
            created = insert_or_ignore(self.db, UserPreferences, user_id=user_id, **DEFAULT_PREFERENCES)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("preferences_create_failed", user_id=user_id, error=str(e))
            raise DatabaseError("Failed to create preferences", details={"user_id": user_id}) from e

        if created:
            logger.info("preferences_created", user_id=user_id)
        return self.db.get(UserPreferences, user_id)

    def _invalidate(self, user_id: int) -> None:
        try:
            self.cache.forget(preferences_cache_key(user_id))
        except CacheError:
            logger.error("preferences_invalidation_failed", user_id=user_id)
            raise

    def _commit(self, operation: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("preferences_write_failed", operation=operation, error=str(e))
            raise DatabaseError(f"Failed to {operation} preferences") from e

    @staticmethod
    def _check_bit(notification_type: int) -> int:
        if isinstance(notification_type, bool) or not isinstance(notification_type, int) or notification_type <= 0:
            raise ValidationError(
                "Invalid notification type. Must be a positive integer flag",
                errors=[{"field": "notification_type", "message": "Must be a positive integer"}],
            )
        return int(notification_type)

    @staticmethod
    def _validate(preferences: Dict[str, Any]) -> Dict[str, Any]:
        unknown = sorted(set(preferences) - UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Unknown preference field(s): {', '.join(unknown)}",
                errors=[{"field": field, "message": "Unknown field"} for field in unknown],
            )

        values: Dict[str, Any] = {}
        for field, value in preferences.items():
            if field in CHOICE_FIELDS:
                if value not in CHOICE_FIELDS[field]:
                    raise ValidationError.invalid_choice(field, value, CHOICE_FIELDS[field])
                values[field] = value

            elif field in BOOLEAN_FIELDS:
                if not isinstance(value, bool):
                    raise ValidationError(
                        f"Invalid {field}. Must be a boolean",
                        errors=[{"field": field, "message": "Must be a boolean"}],
                    )
                values[field] = value

            elif field == "notification_settings":
                try:
                    values[field] = NotificationMask(value).value
                except ValueError as e:
                    raise ValidationError(
                        "Invalid notification_settings. Must be a non-negative integer",
                        errors=[{"field": field, "message": str(e)}],
                    ) from e

            elif field == "dashboard_layout":
                values[field] = _validate_layout(value)

        return values


def _validate_layout(layout: Any) -> Optional[List[Dict[str, Any]]]:
    if layout is None:
        return None
    if not isinstance(layout, list):
        raise ValidationError(
            "Invalid dashboard_layout. Must be a list of widgets",
            errors=[{"field": "dashboard_layout", "message": "Must be a list"}],
        )

    widgets = []
    for index, item in enumerate(layout):
        if isinstance(item, DashboardWidget):
            widgets.append(item.model_dump())
            continue
        try:
            widgets.append(DashboardWidget.model_validate(item).model_dump())
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid dashboard_layout widget",
                errors=[
                    {"field": f"dashboard_layout[{index}].{'.'.join(map(str, err['loc']))}", "message": err["msg"]}
                    for err in e.errors()
                ],
            ) from e
    return widgets
