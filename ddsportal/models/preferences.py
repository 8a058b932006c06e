"""
User preferences model.

One row per user holding UI settings and the notification bitmask.
"""
from typing import Any, Dict

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ddsportal.database import Base
from ddsportal.models.types import JSONType
from ddsportal.services.notification_flags import DEFAULT_NOTIFICATION_MASK, NotificationMask

THEMES = ("light", "dark", "system")
LANGUAGES = ("en", "id")
TIMEZONES = ("Asia/Jakarta", "UTC")

DEFAULT_PREFERENCES: Dict[str, Any] = {
    "theme": "light",
    "dashboard_layout": None,
    "notification_settings": DEFAULT_NOTIFICATION_MASK,
    "email_notifications": True,
    "push_notifications": True,
    "language": "en",
    "timezone": "Asia/Jakarta",
}


class UserPreferences(Base):
    """Per-user settings record, created lazily with defaults."""

    __tablename__ = "user_preferences"

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
        autoincrement=False,
    )
    theme = Column(String(10), default="light", nullable=False)
    dashboard_layout = Column(JSONType, nullable=True)
    notification_settings = Column(Integer, default=DEFAULT_NOTIFICATION_MASK, nullable=False)
    email_notifications = Column(Boolean, default=True, nullable=False)
    push_notifications = Column(Boolean, default=True, nullable=False)
    language = Column(String(5), default="en", nullable=False)
    timezone = Column(String(50), default="Asia/Jakarta", nullable=False)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="preferences")

    def __repr__(self) -> str:
        return f"<UserPreferences user={self.user_id} theme={self.theme}>"

    @property
    def notification_mask(self) -> NotificationMask:
        return NotificationMask(self.notification_settings or 0)

    def has_notification_enabled(self, notification_type: int) -> bool:
        """Check whether a notification category bit is set."""
        return self.notification_mask.has_enabled(notification_type)

    def apply_defaults(self) -> None:
        """Overwrite every setting with the canonical defaults."""
        for field, value in DEFAULT_PREFERENCES.items():
            setattr(self, field, value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "theme": self.theme,
            "dashboard_layout": self.dashboard_layout,
            "notification_settings": self.notification_settings,
            "email_notifications": self.email_notifications,
            "push_notifications": self.push_notifications,
            "language": self.language,
            "timezone": self.timezone,
        }
