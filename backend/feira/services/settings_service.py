from __future__ import annotations

from datetime import datetime

from feira.extensions import db
from feira.models import SiteSetting

DEFAULT_SETTINGS = (
    ("site_name", "Feira Regional", "text"),
    ("site_description", "Classificados da sua região: compre e venda perto de você", "text"),
    ("site_keywords", "classificados, anúncios, compra, venda", "text"),
    ("site_logo", "", "text"),
    ("contact_email", "contato@feira.local", "text"),
    ("contact_phone", "", "text"),
    ("allow_registrations", "true", "boolean"),
    ("max_ads_per_user", "10", "number"),
    ("ad_duration_days", "30", "number"),
)

_DEFAULT_TYPES = {key: kind for key, _value, kind in DEFAULT_SETTINGS}
_DEFAULT_VALUES = {key: value for key, value, _kind in DEFAULT_SETTINGS}


def get_setting(key: str):
    """Typed value of a site setting, falling back to the built-in default."""
    row = SiteSetting.query.filter_by(key=key).first()
    if row is None:
        if key not in _DEFAULT_VALUES:
            return None
        row = SiteSetting(key=key, value=_DEFAULT_VALUES[key], type=_DEFAULT_TYPES[key])
    return row.typed_value()


def get_int_setting(key: str, default: int) -> int:
    value = get_setting(key)
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(default)


def all_settings() -> list[SiteSetting]:
    return SiteSetting.query.order_by(SiteSetting.key.asc()).all()


def public_settings() -> dict:
    values = dict(_DEFAULT_VALUES)
    for row in all_settings():
        values[row.key] = row.value if row.value is not None else ""
    return values


def set_settings(values: dict) -> list[SiteSetting]:
    changed = []
    now = datetime.utcnow()
    for key, value in values.items():
        if isinstance(value, bool):
            text = "true" if value else "false"
        else:
            text = "" if value is None else str(value)
        row = SiteSetting.query.filter_by(key=key).first()
        if row is None:
            row = SiteSetting(key=key, type=_DEFAULT_TYPES.get(key, "text"))
        row.value = text
        row.updated_at = now
        db.session.add(row)
        changed.append(row)
    db.session.commit()
    return changed


def seed_default_settings() -> int:
    existing = {row.key for row in SiteSetting.query.all()}
    created = 0
    for key, value, kind in DEFAULT_SETTINGS:
        if key in existing:
            continue
        db.session.add(SiteSetting(key=key, value=value, type=kind))
        created += 1
    return created
