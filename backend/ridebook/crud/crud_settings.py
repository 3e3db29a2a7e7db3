import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.orm import Session

from .. import models
from ..core.config import settings
from ..utils.settings_cache import MISSING, SettingsCache

logger = logging.getLogger(__name__)

COMMISSION_SETTING_KEY = "SYSTEM_COMMISSION_PERCENTAGE"


def get_setting(db: Session, key: str, cache: Optional[SettingsCache] = None) -> Optional[str]:
    """Return the stored value for ``key`` (``None`` when unset)."""
    if cache is not None:
        cached = cache.get(key, MISSING)
        if cached is not MISSING:
            return cached
    row = db.get(models.SystemSetting, key)
    value = row.value if row else None
    if cache is not None:
        cache.set(key, value)
    return value


def set_setting(
    db: Session,
    key: str,
    value: str,
    updated_by: Optional[str] = None,
    cache: Optional[SettingsCache] = None,
) -> models.SystemSetting:
    row = db.get(models.SystemSetting, key)
    if row is None:
        row = models.SystemSetting(key=key)
        db.add(row)
    row.value = value
    row.updated_by = updated_by
    db.commit()
    db.refresh(row)
    if cache is not None:
        cache.invalidate(key)
    return row


def get_commission_percentage(db: Session, cache: Optional[SettingsCache] = None) -> Decimal:
    """Platform commission in percent; invalid stored values fall back to the default."""
    default = Decimal(str(settings.DEFAULT_COMMISSION_PERCENTAGE))
    raw = get_setting(db, COMMISSION_SETTING_KEY, cache)
    if raw is None or not str(raw).strip():
        return default
    try:
        pct = Decimal(str(raw).strip())
    except InvalidOperation:
        logger.warning("Ignoring non-numeric %s=%r", COMMISSION_SETTING_KEY, raw)
        return default
    if not pct.is_finite() or pct < 0 or pct > 100:
        logger.warning("Ignoring out-of-range %s=%r", COMMISSION_SETTING_KEY, raw)
        return default
    return pct
