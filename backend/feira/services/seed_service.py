from __future__ import annotations

from decimal import Decimal

from feira.extensions import db
from feira.models import BoostPromotion, Category
from feira.services.settings_service import seed_default_settings

DEFAULT_CATEGORIES = (
    ("Eletrônicos", "fas fa-laptop"),
    ("Veículos", "fas fa-car"),
    ("Imóveis", "fas fa-home"),
    ("Móveis", "fas fa-couch"),
    ("Roupas", "fas fa-tshirt"),
    ("Esportes", "fas fa-dumbbell"),
    ("Livros", "fas fa-book"),
    ("Outros", "fas fa-tag"),
)

DEFAULT_PROMOTIONS = (
    (
        "Impulso Básico",
        Decimal("9.99"),
        5,
        "Coloque seu anúncio em destaque por 5 dias e aumente suas chances de venda!",
    ),
    (
        "Impulso Premium",
        Decimal("19.99"),
        10,
        "Máxima visibilidade! Destaque seu anúncio por 10 dias completos.",
    ),
)


def seed_defaults() -> dict:
    """Insert missing categories, site settings and boost promotions."""
    created = {"categories": 0, "settings": 0, "promotions": 0}

    existing = {c.name for c in Category.query.all()}
    for name, icon in DEFAULT_CATEGORIES:
        if name not in existing:
            db.session.add(Category(name=name, icon=icon))
            created["categories"] += 1

    created["settings"] = seed_default_settings()

    if BoostPromotion.query.count() == 0:
        for name, price, days, description in DEFAULT_PROMOTIONS:
            db.session.add(
                BoostPromotion(name=name, price=price, duration_days=days, description=description, active=True)
            )
            created["promotions"] += 1

    db.session.commit()
    return created
