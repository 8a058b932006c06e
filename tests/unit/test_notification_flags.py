"""
Unit tests for the notification bitmask codec.
"""
import pytest

from ddsportal.services.notification_flags import (
    DEFAULT_NOTIFICATION_MASK,
    NotificationMask,
    NotificationType,
    clear_bit,
    has_enabled,
    set_bit,
)


class TestBitOperations:
    """Tests for the plain integer helpers."""

    def test_flag_values(self):
        assert NotificationType.DISTRIBUTION_CREATED == 1
        assert NotificationType.DISTRIBUTION_VERIFIED == 2
        assert NotificationType.DISTRIBUTION_RECEIVED == 4
        assert DEFAULT_NOTIFICATION_MASK == 7

    def test_has_enabled(self):
        assert has_enabled(5, 1)
        assert not has_enabled(5, 2)
        assert has_enabled(5, NotificationType.DISTRIBUTION_RECEIVED)

    def test_set_bit_is_idempotent(self):
        assert set_bit(5, 2) == 7
        assert set_bit(7, 2) == 7

    def test_clear_bit_is_idempotent(self):
        assert clear_bit(7, 2) == 5
        assert clear_bit(5, 2) == 5

    def test_bits_are_independent(self):
        mask = clear_bit(7, NotificationType.DISTRIBUTION_VERIFIED)

        assert has_enabled(mask, NotificationType.DISTRIBUTION_CREATED)
        assert has_enabled(mask, NotificationType.DISTRIBUTION_RECEIVED)
        assert not has_enabled(mask, NotificationType.DISTRIBUTION_VERIFIED)

    def test_unknown_high_bits_are_preserved(self):
        assert has_enabled(8 | 1, 8)
        assert clear_bit(8 | 1, 1) == 8

    @pytest.mark.parametrize("bit", [0, -1, True, "1", 1.0])
    def test_invalid_bits_rejected(self, bit):
        with pytest.raises(ValueError):
            set_bit(0, bit)


class TestNotificationMask:
    """Tests for the immutable mask wrapper."""

    def test_default_mask(self):
        mask = NotificationMask()

        assert mask.value == 7
        assert mask.enabled_flags() == list(NotificationType)

    def test_set_and_clear_return_new_masks(self):
        mask = NotificationMask(0)
        updated = mask.set_bit(NotificationType.DISTRIBUTION_CREATED)

        assert mask.value == 0
        assert updated.value == 1
        assert updated.clear_bit(1) == NotificationMask(0)

    def test_equality_with_int(self):
        assert NotificationMask(5) == 5
        assert NotificationMask(5) != 4
        assert hash(NotificationMask(5)) == hash(5)

    def test_int_conversion(self):
        assert int(NotificationMask(3)) == 3

    @pytest.mark.parametrize("value", [-1, True, "7", None])
    def test_invalid_values_rejected(self, value):
        with pytest.raises(ValueError):
            NotificationMask(value)

    def test_repr(self):
        assert repr(NotificationMask(5)) == "NotificationMask(0b101)"
