from decimal import Decimal

from ridebook import models
from ridebook.crud import crud_settings
from ridebook.utils.settings_cache import MISSING, SettingsCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = SettingsCache(ttl_seconds=60, clock=clock)
    cache.set("K", "1")
    clock.now = 59
    assert cache.get("K") == "1"
    clock.now = 60
    assert cache.get("K") is MISSING


def test_cached_none_is_distinct_from_missing():
    cache = SettingsCache()
    cache.set("K", None)
    assert cache.get("K", "default") is None
    cache.invalidate("K")
    assert cache.get("K", "default") == "default"


def test_clear_empties_cache():
    cache = SettingsCache()
    cache.set("A", "1")
    cache.set("B", "2")
    cache.clear()
    assert cache.get("A") is MISSING
    assert cache.get("B") is MISSING


def test_get_setting_reads_through_cache(db):
    cache = SettingsCache()
    db.add(models.SystemSetting(key="SYSTEM_COMMISSION_PERCENTAGE", value="25"))
    db.commit()

    assert crud_settings.get_setting(db, "SYSTEM_COMMISSION_PERCENTAGE", cache) == "25"

    # Change the row behind the cache's back
    row = db.get(models.SystemSetting, "SYSTEM_COMMISSION_PERCENTAGE")
    row.value = "10"
    db.commit()
    assert crud_settings.get_setting(db, "SYSTEM_COMMISSION_PERCENTAGE", cache) == "25"

    cache.clear()
    assert crud_settings.get_setting(db, "SYSTEM_COMMISSION_PERCENTAGE", cache) == "10"


def test_set_setting_invalidates_cached_value(db):
    cache = SettingsCache()
    assert crud_settings.get_commission_percentage(db, cache) == Decimal("30")
    crud_settings.set_setting(db, crud_settings.COMMISSION_SETTING_KEY, "20", updated_by="admin", cache=cache)
    assert crud_settings.get_commission_percentage(db, cache) == Decimal("20")


def test_commission_falls_back_on_invalid_values(db):
    crud_settings.set_setting(db, crud_settings.COMMISSION_SETTING_KEY, "lots")
    assert crud_settings.get_commission_percentage(db) == Decimal("30")
    crud_settings.set_setting(db, crud_settings.COMMISSION_SETTING_KEY, "150")
    assert crud_settings.get_commission_percentage(db) == Decimal("30")
    crud_settings.set_setting(db, crud_settings.COMMISSION_SETTING_KEY, "12.5")
    assert crud_settings.get_commission_percentage(db) == Decimal("12.5")
