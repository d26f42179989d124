# app/routes_dashboard.py

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.deps import get_current_owner, get_store
from app.schemas import DashboardSummary
from app.services.dashboard import dashboard_summary
from app.store import Store

router = APIRouter()


@router.get("/dashboard", response_model=DashboardSummary)
async def dashboard_page(
    month: Optional[str] = Query(None, description="YYYY-MM, defaults to the current month"),
    owner: str = Depends(get_current_owner),
    store: Store = Depends(get_store),
):
    return await dashboard_summary(store, owner, month)
