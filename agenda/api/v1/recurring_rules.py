"""
Recurring rule API endpoints
"""
from datetime import date
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from agenda.api.deps import get_db, get_current_user
from agenda.infrastructure.db.models import User
from agenda.application.materializer import MaterializeRecurringUseCase
from agenda.application.recurring_rules import (
    CreateRecurringRuleUseCase,
    UpdateRecurringRuleUseCase,
    DeactivateRecurringRuleUseCase,
    ReactivateRecurringRuleUseCase,
)


router = APIRouter(prefix="/api/v1/recurring-rules", tags=["recurring-rules"])


# === Request models ===

class CreateRuleRequest(BaseModel):
    client_id: int
    weekdays: List[int]  # 0=Sunday..6=Saturday (7 also accepted as Sunday)
    time_local: str  # HH:MM
    timezone: str
    start_date: date
    interval_weeks: int = 1
    end_date: date | None = None
    occurrence_cap: int | None = None
    amount: str | None = None
    title: str | None = None


class UpdateRuleRequest(BaseModel):
    client_id: int | None = None
    weekdays: List[int] | None = None
    time_local: str | None = None
    timezone: str | None = None
    start_date: date | None = None
    interval_weeks: int | None = None
    end_date: date | None = None
    occurrence_cap: int | None = None
    amount: str | None = None
    title: str | None = None


class MaterializeRequest(BaseModel):
    rule_id: int | None = None
    window_days: int | None = Field(default=None, ge=1)


# === Endpoints ===

@router.post("/")
def create_rule(req: CreateRuleRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Create a rule and materialize its first window"""
    result = CreateRecurringRuleUseCase(db).execute(account_id=user.id, **req.model_dump())
    return result.to_dict()


@router.patch("/{rule_id}")
def update_rule(rule_id: int, req: UpdateRuleRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Edit a rule; only fields present in the body change"""
    changes = req.model_dump(exclude_unset=True)
    result = UpdateRecurringRuleUseCase(db).execute(account_id=user.id, rule_id=rule_id, **changes)
    return result.to_dict()


@router.post("/{rule_id}/deactivate")
def deactivate_rule(rule_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return DeactivateRecurringRuleUseCase(db).execute(user.id, rule_id).to_dict()


@router.post("/{rule_id}/reactivate")
def reactivate_rule(rule_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ReactivateRecurringRuleUseCase(db).execute(user.id, rule_id).to_dict()


@router.post("/materialize")
def materialize(req: MaterializeRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Materialize one rule (rule_id) or all active rules of the account"""
    result = MaterializeRecurringUseCase(db).execute(
        user.id, rule_id=req.rule_id, window_days=req.window_days
    )
    return result.to_dict()
