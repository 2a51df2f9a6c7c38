# ruo/routes/admin.py
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ruo import config
from ruo.db import get_db
from ruo.schemas import StatusChangeIn
from ruo.security import check_admin_token
from ruo.services import workflow
from ruo.services.container import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(check_admin_token)])


@router.post("/reports/{report_id}/status")
async def change_status(
    report_id: int,
    payload: StatusChangeIn,
    db: AsyncSession = Depends(get_db),
):
    """Avance le statut d'un report transmis (in_progress, completed, rejected)."""
    actor = (payload.actor or "admin").strip() or "admin"
    old = await workflow.apply_admin_transition(
        db, report_id, payload.status, actor=actor, note=payload.note,
    )
    logger.info("[admin] report %s: %s -> %s by %s", report_id, old.value, payload.status.value, actor)
    return {"ok": True, "id": report_id, "old_status": old.value, "status": payload.status.value}


@router.post("/authorities/refresh")
async def refresh_authorities(
    limit: int = Query(config.AUTHORITY_REFRESH_BATCH, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    refreshed = await services.authorities.refresh_stale(db, limit=limit)
    return {"ok": True, "refreshed": refreshed}
