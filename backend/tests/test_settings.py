"""
Tests for services/settings.py: defaults, partial blobs, coercion, updates.
"""

import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from models.schemas import PayoutSettingsUpdate, TierSettingsUpdate
from services.settings import (
    PAYOUT_SETTINGS_KEY,
    TIER_SETTINGS_KEY,
    get_payout_settings,
    get_setting,
    get_tier_settings,
    update_payout_settings,
    update_tier_settings,
)


class TestGetPayoutSettings:

    def test_defaults_when_missing(self, db):
        settings = get_payout_settings(db)
        assert settings.min_views_for_payout == 1_000
        assert settings.bonus_threshold_views == 100_000
        assert settings.bonus_multiplier == Decimal("1.5")

    def test_stored_values(self, db, store_setting):
        store_setting(PAYOUT_SETTINGS_KEY, {
            "minimum_views_for_payout": 2_000,
            "bonus_threshold_views": 50_000,
            "bonus_multiplier": 2,
        })
        settings = get_payout_settings(db)
        assert settings.min_views_for_payout == 2_000
        assert settings.bonus_threshold_views == 50_000
        assert settings.bonus_multiplier == Decimal("2")

    def test_partial_blob_falls_back_per_field(self, db, store_setting):
        store_setting(PAYOUT_SETTINGS_KEY, {"minimum_views_for_payout": 5_000})
        settings = get_payout_settings(db)
        assert settings.min_views_for_payout == 5_000
        assert settings.bonus_threshold_views == 100_000

    def test_float_multiplier_is_exact(self, db, store_setting):
        store_setting(PAYOUT_SETTINGS_KEY, {"bonus_multiplier": 1.1})
        assert get_payout_settings(db).bonus_multiplier == Decimal("1.1")

    def test_garbage_value_uses_default(self, db, store_setting):
        store_setting(PAYOUT_SETTINGS_KEY, {"minimum_views_for_payout": "lots"})
        assert get_payout_settings(db).min_views_for_payout == 1_000


class TestGetTierSettings:

    def test_defaults_when_missing(self, db):
        tiers = get_tier_settings(db)
        assert tiers.rate_for("entry") == Decimal("1.00")
        assert tiers.rate_for("approved") == Decimal("1.50")
        assert tiers.rate_for("core") == Decimal("2.00")

    def test_stored_rates(self, db, store_setting):
        store_setting(TIER_SETTINGS_KEY, {
            "entry_pay_rate": 0.5,
            "approved_pay_rate": 1,
            "core_pay_rate": 3.25,
            "core_benefits": "Priority support",
        })
        tiers = get_tier_settings(db)
        assert tiers.entry_rate == Decimal("0.5")
        assert tiers.approved_rate == Decimal("1")
        assert tiers.core_rate == Decimal("3.25")


class TestUpdateSettings:

    def test_admin_inserts_then_updates(self, db, admin):
        first = update_payout_settings(db, admin, PayoutSettingsUpdate(
            minimum_views_for_payout=3_000, bonus_threshold_views=80_000, bonus_multiplier=1.25,
        ))
        second = update_payout_settings(db, admin, PayoutSettingsUpdate(
            minimum_views_for_payout=4_000, bonus_threshold_views=80_000, bonus_multiplier=1.25,
        ))

        assert first.success and second.success
        assert get_setting(db, PAYOUT_SETTINGS_KEY)["minimum_views_for_payout"] == 4_000
        assert get_payout_settings(db).bonus_multiplier == Decimal("1.25")

    def test_non_admin_cannot_update(self, db, non_admin):
        result = update_payout_settings(db, non_admin, PayoutSettingsUpdate(
            minimum_views_for_payout=1, bonus_threshold_views=1, bonus_multiplier=1,
        ))
        assert result.error == "Unauthorized"
        assert get_setting(db, PAYOUT_SETTINGS_KEY) is None

    def test_tier_update_keeps_only_given_fields(self, db, admin):
        update_tier_settings(db, admin, TierSettingsUpdate(core_pay_rate=5))

        stored = get_setting(db, TIER_SETTINGS_KEY)
        assert stored == {"core_pay_rate": 5.0}
        tiers = get_tier_settings(db)
        assert tiers.core_rate == Decimal("5.0")
        assert tiers.entry_rate == Decimal("1.00")
