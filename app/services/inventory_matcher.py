# app/services/inventory_matcher.py
"""
Built-in automatic matcher: links provider items to catalog medications by
name similarity and records the results as automatic mappings.
"""

import logging
import re
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.inventory import InventoryMapping
from app.models.medication import Medication
from app.services.inventory_service import list_provider_items, record_automatic_match

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass
class AutoMapResult:
    provider_id: int
    total: int = 0
    mapped: int = 0
    mapping_ids: list[int] = field(default_factory=list)


def string_similarity(a: str, b: str) -> float:
    """
    Score in [0, 1]: 1.0 for equal names, 0.9 when one contains the other,
    otherwise the share of words the two names have in common.
    """
    a = (a or "").strip().lower()
    b = (b or "").strip().lower()
    if a == b:
        return 1.0 if a else 0.0
    if not a or not b:
        return 0.0
    if a in b or b in a:
        return 0.9

    a_words = set(_WHITESPACE.split(a))
    b_words = set(_WHITESPACE.split(b))
    return len(a_words & b_words) / len(a_words | b_words)


def medication_similarity(medication: Medication, item_name: str) -> float:
    names = [medication.name, medication.generic_name, medication.brand_name]
    return max(string_similarity(name, item_name) for name in names if name)


def auto_map_provider_items(db: Session, provider_id: int) -> AutoMapResult:
    """
    Map every item of the provider's current snapshot that has no mapping
    yet to its best-matching medication, if the score clears the threshold.
    """
    threshold = get_settings().auto_map_threshold
    items = list_provider_items(db, provider_id)
    medications = db.query(Medication).order_by(Medication.id.asc()).all()

    mapped_item_ids = {
        item_id
        for (item_id,) in db.query(InventoryMapping.inventory_item_id).filter(
            InventoryMapping.inventory_item_id.in_([item.id for item in items])
        )
    }

    result = AutoMapResult(provider_id=provider_id, total=len(items))
    for item in items:
        if item.id in mapped_item_ids:
            continue

        best: tuple[float, Medication] | None = None
        for medication in medications:
            score = medication_similarity(medication, item.name)
            if best is None or score > best[0]:
                best = (score, medication)

        if best is None or best[0] < threshold:
            continue

        mapping = record_automatic_match(
            db,
            medication_id=best[1].id,
            inventory_item_id=item.id,
            confidence=round(best[0], 4),
        )
        result.mapped += 1
        result.mapping_ids.append(mapping.id)

    logger.info("Auto-mapped %s of %s items for provider %s", result.mapped, result.total, provider_id)
    return result
