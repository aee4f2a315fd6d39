from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from docscan.models.statement import ExtractionTemplate

logger = logging.getLogger(__name__)

TEMPLATE_MATCH_CONFIDENCE = 0.9


@dataclass(frozen=True)
class TemplateHit:
    template_id: str
    confidence: float = TEMPLATE_MATCH_CONFIDENCE


def match_template(db: Session, bank_display_name: str | None) -> TemplateHit | None:
    """First extraction template stored for the canonical bank name."""
    if not bank_display_name:
        return None
    template_id = db.execute(
        select(ExtractionTemplate.id)
        .where(ExtractionTemplate.bank_name == bank_display_name)
        .order_by(ExtractionTemplate.created_at.asc())
        .limit(1)
    ).scalar_one_or_none()
    if template_id is None:
        return None
    logger.info("Template %s matched bank %s", template_id, bank_display_name)
    return TemplateHit(template_id=str(template_id))
