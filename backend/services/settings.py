"""
Settings resolver for the two platform-wide configuration blobs.

  payout_settings → {minimum_views_for_payout, bonus_threshold_views, bonus_multiplier}
  tier_settings   → {entry_pay_rate, approved_pay_rate, core_pay_rate, ...benefits}

Reads never fail on missing data: an absent key, or an absent field inside a
stored blob, falls back to the defaults on PayoutSettings / TierSettings.
Stored values are admin-entered and trusted beyond type coercion.
"""

import logging
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import transaction
from models.schemas import (
    ActionResult,
    Caller,
    PayoutSettings,
    PayoutSettingsUpdate,
    TierSettings,
    TierSettingsUpdate,
)
from models.tables import PlatformSetting

logger = logging.getLogger(__name__)

PAYOUT_SETTINGS_KEY = "payout_settings"
TIER_SETTINGS_KEY = "tier_settings"


# ===========================================================================
# Reads
# ===========================================================================

def get_setting(db: Session, key: str) -> Optional[dict]:
    setting = db.execute(
        select(PlatformSetting).where(PlatformSetting.key == key)
    ).scalar_one_or_none()
    return setting.value if setting else None


def get_payout_settings(db: Session) -> PayoutSettings:
    """Minimum views, bonus threshold and bonus multiplier for payout generation."""
    defaults = PayoutSettings()
    value = get_setting(db, PAYOUT_SETTINGS_KEY) or {}

    return PayoutSettings(
        min_views_for_payout=_as_int(
            value.get("minimum_views_for_payout"), defaults.min_views_for_payout
        ),
        bonus_threshold_views=_as_int(
            value.get("bonus_threshold_views"), defaults.bonus_threshold_views
        ),
        bonus_multiplier=_as_decimal(
            value.get("bonus_multiplier"), defaults.bonus_multiplier
        ),
    )


def get_tier_settings(db: Session) -> TierSettings:
    """Platform pay rate ($ per 1,000 views) for each clipper tier."""
    defaults = TierSettings()
    value = get_setting(db, TIER_SETTINGS_KEY) or {}

    return TierSettings(
        entry_rate=_as_decimal(value.get("entry_pay_rate"), defaults.entry_rate),
        approved_rate=_as_decimal(value.get("approved_pay_rate"), defaults.approved_rate),
        core_rate=_as_decimal(value.get("core_pay_rate"), defaults.core_rate),
    )


# ===========================================================================
# Writes (admin only)
# ===========================================================================

def update_payout_settings(
    db: Session, caller: Caller, data: PayoutSettingsUpdate
) -> ActionResult:
    if not caller.is_admin:
        return ActionResult(error="Unauthorized")
    _upsert_setting(db, PAYOUT_SETTINGS_KEY, data.model_dump(), caller)
    return ActionResult(success=True)


def update_tier_settings(
    db: Session, caller: Caller, data: TierSettingsUpdate
) -> ActionResult:
    if not caller.is_admin:
        return ActionResult(error="Unauthorized")
    _upsert_setting(db, TIER_SETTINGS_KEY, data.model_dump(exclude_none=True), caller)
    return ActionResult(success=True)


def _upsert_setting(db: Session, key: str, value: dict, caller: Caller) -> None:
    with transaction(db, f"update {key}"):
        existing = db.execute(
            select(PlatformSetting).where(PlatformSetting.key == key)
        ).scalar_one_or_none()

        if existing:
            existing.value = value
            existing.updated_by = caller.user_id
        else:
            db.add(PlatformSetting(key=key, value=value, updated_by=caller.user_id))

    logger.info(f"Settings '{key}' updated: {value}")


# ===========================================================================
# Type coercion helpers
# ===========================================================================

def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        logger.warning(f"Could not coerce setting value {value!r} to int, using {default}")
        return default


def _as_decimal(value: Any, default: Decimal) -> Decimal:
    if value is None:
        return default
    try:
        # str() first so 1.1 (float) becomes Decimal("1.1"), not 1.1000000000000000888
        return Decimal(str(value))
    except (ArithmeticError, ValueError, TypeError):
        logger.warning(f"Could not coerce setting value {value!r} to Decimal, using {default}")
        return default
