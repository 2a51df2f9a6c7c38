# ruo/routes/evidence.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from ruo import config
from ruo.db import get_db
from ruo.schemas import EvidenceUploadOut
from ruo.security import get_requester
from ruo.services import reports as report_service
from ruo.services.container import Services, get_services

router = APIRouter(prefix="/reports", tags=["evidence"])


@router.post("/{report_id}/evidence", response_model=EvidenceUploadOut)
async def upload_evidence(
    report_id: int,
    file: UploadFile = File(...),
    lat: Optional[float] = Form(None),
    lng: Optional[float] = Form(None),
    taken_at: Optional[datetime] = Form(None),
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
    requester: str = Depends(get_requester),
):
    """
    Upload d'une preuve (photo ou vidéo).
    lat/lng/taken_at: métadonnées EXIF lues côté client, ignorées pour les vidéos.
    """
    report = await report_service.load_owned(db, report_id, requester)

    ctype = (file.content_type or "").lower()
    if ctype.startswith("image/"):
        max_bytes = config.MAX_IMAGE_BYTES
    elif ctype.startswith("video/"):
        max_bytes = config.MAX_VIDEO_BYTES
    else:
        raise HTTPException(status_code=415, detail="only images and videos are accepted")

    if (lat is None) != (lng is None):
        raise HTTPException(status_code=400, detail="lat and lng go together")
    if lat is not None and not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise HTTPException(status_code=400, detail="coordinates out of range")

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="empty file")
    if len(data) > max_bytes:
        raise HTTPException(status_code=413, detail="file too large")

    return await report_service.attach_evidence(
        db, services, report,
        filename=file.filename or "upload",
        content_type=ctype,
        data=data,
        lat=lat, lng=lng, taken_at=taken_at,
    )
