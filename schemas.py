from pydantic import BaseModel
from datetime import datetime
from typing import Any, Dict, List, Optional


class EvidenceRefResponse(BaseModel):
    kind: str  # event | goal | child
    id: str


class CardActionResponse(BaseModel):
    type: str  # add_moment | goal_detail | goals_picker | history
    child_id: str
    goal_id: Optional[str] = None
    category_id: Optional[str] = None
    history_filter: Optional[str] = None  # routines | challenges
    days: Optional[int] = None


class CoachCardResponse(BaseModel):
    """A coach card with its text already resolved for the requested locale."""
    id: str
    child_id: str
    signal_type: str
    category: str  # risk | improvement | neutral
    severity: int
    evidence_refs: List[EvidenceRefResponse]
    localization_key: str
    params: Dict[str, Any] = {}
    title: str
    body: str
    steps: List[str] = []
    why: str = ""
    action: Optional[CardActionResponse] = None


class CoachCardsResponse(BaseModel):
    child_id: str
    generated_at: datetime
    locale: str
    is_premium: bool = False
    cards: List[CoachCardResponse]


class CoachDebugResponse(BaseModel):
    child_id: str
    report: Dict[str, Any]
    text: str
    generated_at: Optional[datetime] = None
