# ruo/routes/reports.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ruo import config, crud
from ruo.db import get_db
from ruo.errors import ValidationError
from ruo.schemas import (
    AuthorityRecord, EmailLogOut, HistoryOut, LocationIn, LocationOut,
    NearbyReport, ReportDetailOut, ReportOut, ReportUpdateIn, SubmitOut,
)
from ruo.security import get_requester, requester_name
from ruo.services import proximity
from ruo.services import reports as report_service
from ruo.services.container import Services, get_services

router = APIRouter(prefix="/reports", tags=["reports"])


@router.post("", response_model=ReportOut)
async def create_report(
    db: AsyncSession = Depends(get_db),
    requester: str = Depends(get_requester),
    name: Optional[str] = Depends(requester_name),
):
    created = await crud.insert_report(db, user_id=requester, display_name=name)
    report = await crud.get_report(db, created["id"])
    return ReportOut(**report, evidence_count=0)


@router.get("", response_model=List[ReportOut])
async def list_reports(
    db: AsyncSession = Depends(get_db),
    requester: str = Depends(get_requester),
):
    rows = await crud.list_reports_for_owner(db, requester)
    return [ReportOut(**r) for r in rows]


@router.get("/{report_id}", response_model=ReportDetailOut)
async def get_report(
    report_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    requester: str = Depends(get_requester),
):
    report = await report_service.load_owned(db, report_id, requester)
    evidence = await crud.list_evidence(db, report_id)
    authority = await crud.get_authority(db, report["authority_id"]) if report["authority_id"] else None
    return ReportDetailOut(
        report=ReportOut(**report, evidence_count=len(evidence)),
        authority=AuthorityRecord(**authority) if authority else None,
        evidence=[report_service.evidence_out(services, e) for e in evidence],
        history=[HistoryOut(**h) for h in await crud.list_history(db, report_id)],
        emails=[EmailLogOut(**m) for m in await crud.list_email_logs(db, report_id)],
    )


@router.put("/{report_id}")
async def update_report(
    report_id: int,
    payload: ReportUpdateIn,
    db: AsyncSession = Depends(get_db),
    requester: str = Depends(get_requester),
):
    report = await report_service.load_owned(db, report_id, requester)
    await report_service.update_report(db, report, payload)
    return {"ok": True}


@router.put("/{report_id}/location", response_model=LocationOut)
async def set_location(
    report_id: int,
    payload: LocationIn,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    requester: str = Depends(get_requester),
):
    report = await report_service.load_owned(db, report_id, requester)
    return await report_service.set_location(
        db, services, report,
        lat=payload.lat, lng=payload.lng,
        address=payload.address, postal_code=payload.postal_code,
    )


@router.delete("/{report_id}")
async def delete_report(
    report_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    requester: str = Depends(get_requester),
):
    report = await report_service.load_owned(db, report_id, requester)
    await report_service.delete_report(db, services, report)
    return {"ok": True}


@router.get("/{report_id}/nearby", response_model=List[NearbyReport])
async def nearby_reports(
    report_id: int,
    radius_m: float = Query(config.PROXIMITY_RADIUS_M, gt=0, le=5000),
    limit: int = Query(config.PROXIMITY_LIMIT, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    requester: str = Depends(get_requester),
):
    report = await report_service.load_owned(db, report_id, requester)
    if report["location_lat"] is None or report["location_lng"] is None:
        raise ValidationError("report has no location")
    return await proximity.find_nearby(
        db, float(report["location_lat"]), float(report["location_lng"]),
        radius_m=radius_m, exclude_report_id=report_id, limit=limit,
    )


@router.post("/{report_id}/submit", response_model=SubmitOut)
async def submit_report(
    report_id: int,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    requester: str = Depends(get_requester),
):
    return await services.submission.submit(db, report_id, requester)
