"""
Financial projection maintenance endpoints
"""
from datetime import date

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from agenda.api.deps import get_db, get_current_user
from agenda.infrastructure.db.models import User
from agenda.application.financial_projection import DeriveFinancialProjectionsUseCase
from agenda.application.financial_sources import (
    CreateFinancialSourceUseCase,
    DeactivateFinancialSourceUseCase,
    MaterializeFinancialSourcesUseCase,
)
from agenda.application.reconciliation import ReconcileFinancialEntriesUseCase


router = APIRouter(prefix="/api/v1/finance", tags=["finance"])


# === Request models ===

class CreateSourceRequest(BaseModel):
    kind: str  # INCOME / EXPENSE
    description: str
    amount: str
    start_date: date
    source_type: str = "fixed"  # fixed / recurring
    frequency: str | None = None  # daily / weekly / monthly (recurring only)
    day: int | None = None  # day of month (monthly only)


class MaterializeSourcesRequest(BaseModel):
    window_days: int | None = Field(default=None, ge=1)


# === Endpoints ===

@router.post("/projections/derive")
def derive_projections(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Backfill amounts and create missing expected entries for future appointments"""
    return DeriveFinancialProjectionsUseCase(db).execute(user.id).to_dict()


@router.post("/reconcile")
def reconcile(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Drop stale future projections and deduplicate entries"""
    return ReconcileFinancialEntriesUseCase(db).execute(user.id).to_dict()


@router.post("/sources")
def create_source(req: CreateSourceRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    source_id = CreateFinancialSourceUseCase(db).execute(user.id, **req.model_dump())
    return {"id": source_id}


@router.post("/sources/{source_id}/deactivate")
def deactivate_source(source_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    DeactivateFinancialSourceUseCase(db).execute(user.id, source_id)
    return {"id": source_id, "active": False}


@router.post("/sources/materialize")
def materialize_sources(
    req: MaterializeSourcesRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create expected entries for every active fixed / recurring source"""
    return MaterializeFinancialSourcesUseCase(db).execute(user.id, window_days=req.window_days).to_dict()
