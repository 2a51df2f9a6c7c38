# ruo/routes/public.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ruo import crud
from ruo.db import get_db
from ruo.errors import NotFoundError
from ruo.schemas import PublicReportDetailOut, PublicReportOut
from ruo.services.container import Services, get_services
from ruo.services.reports import evidence_out

router = APIRouter(prefix="/public", tags=["public"])


@router.get("/reports", response_model=List[PublicReportOut])
async def public_reports(
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Reports publics déjà transmis; le nom de l'auteur est masqué si demandé."""
    rows = await crud.list_public_reports(db, limit=limit)
    return [PublicReportOut(**r) for r in rows]


@router.get("/reports/{case_number}", response_model=PublicReportDetailOut)
async def public_report(
    case_number: str,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    row = await crud.get_public_report(db, case_number.strip().upper())
    if row is None:
        raise NotFoundError("report not found")
    evidence = await crud.list_evidence(db, row["id"])
    return PublicReportDetailOut(
        report=PublicReportOut(**row),
        evidence=[evidence_out(services, e) for e in evidence],
    )
