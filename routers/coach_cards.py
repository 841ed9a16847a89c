"""
Coach Cards API Router

Serves the ranked coach cards for a child, rendered in the requested locale,
plus a debug view explaining every card that was or was not produced.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.config import settings
from core.database import get_db
from core.exceptions import NotFoundError, ServiceUnavailableError
from models import Child
from schemas import (
    CardActionResponse,
    CoachCardResponse,
    CoachCardsResponse,
    CoachDebugResponse,
    EvidenceRefResponse,
)
from services.coaching import (
    CoachingEngine,
    CooldownManager,
    DataUnavailable,
    EngineConfig,
    SqlDataProvider,
    TemplateLocalizer,
    build_cooldown_store,
    format_report,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/children", tags=["coach-cards"])

# Process-wide: the cooldown cache must outlive a single request.
_cooldown_manager: Optional[CooldownManager] = None
_localizer = TemplateLocalizer(default_locale=settings.COACH_DEFAULT_LOCALE)


def get_cooldown_manager() -> CooldownManager:
    global _cooldown_manager
    if _cooldown_manager is None:
        config = EngineConfig.from_settings(settings)
        _cooldown_manager = CooldownManager(
            build_cooldown_store(settings.COOLDOWN_BACKEND),
            cooldown_days=config.cooldown_days,
            overrides=config.cooldown_overrides,
            retention_days=config.cooldown_retention_days,
        )
    return _cooldown_manager


def get_localizer() -> TemplateLocalizer:
    return _localizer


def get_coaching_engine(
    db: Session = Depends(get_db),
    cooldowns: CooldownManager = Depends(get_cooldown_manager),
) -> CoachingEngine:
    return CoachingEngine(
        SqlDataProvider(db=db),
        cooldowns,
        EngineConfig.from_settings(settings),
    )


def _require_child(db: Session, child_id: str) -> Child:
    child = db.query(Child).filter(Child.id == child_id, Child.is_active.is_(True)).first()
    if child is None:
        raise NotFoundError("Child", child_id)
    return child


def _evaluation_time(at: Optional[datetime]) -> datetime:
    if at is None:
        return datetime.now(timezone.utc)
    if at.tzinfo is None:
        return at.replace(tzinfo=timezone.utc)
    return at


@router.get("/{child_id}/coach-cards", response_model=CoachCardsResponse)
def get_coach_cards(
    child_id: str,
    premium: bool = Query(False, description="Caller has premium insights"),
    locale: Optional[str] = Query(None, description="Locale for card text"),
    at: Optional[datetime] = Query(None, description="Evaluate as of this time (defaults to now)"),
    db: Session = Depends(get_db),
    engine: CoachingEngine = Depends(get_coaching_engine),
    localizer: TemplateLocalizer = Depends(get_localizer),
):
    """
    Ranked coach cards for a child.

    Returned cards are recorded as shown, so the same card types stay
    suppressed for the cooldown window.
    """
    _require_child(db, child_id)
    now = _evaluation_time(at)
    locale = locale or engine.config.default_locale

    try:
        cards = engine.generate_cards(child_id, now, is_premium=premium)
    except DataUnavailable as e:
        logger.error(f"Coach cards unavailable for child {child_id}: {e}")
        raise ServiceUnavailableError("Coaching data temporarily unavailable")

    rendered = []
    for card in cards:
        text = localizer.render(card.localization_key, card.params, locale)
        rendered.append(CoachCardResponse(
            id=card.id,
            child_id=card.child_id,
            signal_type=card.signal_type.value,
            category=card.category.value,
            severity=card.severity,
            evidence_refs=[EvidenceRefResponse(**ref.to_dict()) for ref in card.evidence_refs],
            localization_key=card.localization_key,
            params=dict(card.params),
            title=text["title"],
            body=text["body"],
            steps=text["steps"],
            why=text["why"],
            action=CardActionResponse(**card.action.to_dict()) if card.action else None,
        ))

    return CoachCardsResponse(
        child_id=child_id,
        generated_at=now,
        locale=locale,
        is_premium=premium,
        cards=rendered,
    )


@router.get("/{child_id}/coach-cards/debug", response_model=CoachDebugResponse)
def get_coach_cards_debug(
    child_id: str,
    premium: bool = Query(False),
    at: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    engine: CoachingEngine = Depends(get_coaching_engine),
):
    """
    Why each card was or was not produced. Records nothing.
    """
    _require_child(db, child_id)
    now = _evaluation_time(at)

    try:
        report = engine.debug_report(child_id, now, is_premium=premium)
    except DataUnavailable as e:
        logger.error(f"Coach debug report unavailable for child {child_id}: {e}")
        raise ServiceUnavailableError("Coaching data temporarily unavailable")

    return CoachDebugResponse(
        child_id=child_id,
        report=report.to_dict(),
        text=format_report(report),
        generated_at=now,
    )
