# ruo/services/reports.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ruo import crud
from ruo.errors import NOT_DRAFT, NotFoundError, ValidationError
from ruo.schemas import (
    EvidenceOut, EvidenceUploadOut, LocationOut, MediaKind, ReportStatus,
    ReportUpdateIn,
)
from ruo.services import proximity
from ruo.services.container import Services

logger = logging.getLogger(__name__)


def _require_draft(report: Dict[str, Any]) -> None:
    if report["status"] != ReportStatus.draft.value:
        raise ValidationError(NOT_DRAFT)


async def load_owned(db: AsyncSession, report_id: int, requester: str) -> Dict[str, Any]:
    report = await crud.get_report(db, report_id, requester)
    if report is None:
        raise NotFoundError("report not found")
    return report


def evidence_out(services: Services, row: Dict[str, Any]) -> EvidenceOut:
    return EvidenceOut(**row, url=services.store.public_url(row["filepath"]))


# =========================
#  Champs texte / visibilité
# =========================

async def update_report(
    db: AsyncSession, report: Dict[str, Any], payload: ReportUpdateIn
) -> None:
    fields = payload.model_dump(exclude_unset=True)
    # violation/notes figés après soumission; la visibilité reste modifiable
    if {"violation_type", "notes"} & fields.keys():
        _require_draft(report)
    try:
        await crud.update_report_fields(db, report["id"], fields)
        await db.commit()
    except Exception:
        await db.rollback()
        raise


# =========================
#  Localisation + juridiction
# =========================

async def set_location(
    db: AsyncSession,
    services: Services,
    report: Dict[str, Any],
    *,
    lat: float,
    lng: float,
    address: Optional[str] = None,
    postal_code: Optional[str] = None,
) -> LocationOut:
    """
    Fixe le lieu du report. Adresse / code postal manquants => reverse geocoding
    (best effort). Le code postal obtenu sert à résoudre l'autorité compétente;
    une autorité introuvable laisse authority_id à NULL sans erreur.
    """
    _require_draft(report)

    if not address or not postal_code:
        loc = await services.geocoder.normalize(lat, lng)
        if loc is not None:
            address = address or loc.address
            postal_code = postal_code or loc.postal_code

    authority = await services.authorities.resolve(db, postal_code) if postal_code else None
    if authority is not None:
        logger.info("[location] %s -> %s (%s)", report["case_number"], authority.name, authority.email)

    try:
        updated = await crud.set_report_location(
            db, report["id"], lat=lat, lng=lng, address=address, postal_code=postal_code,
            authority_id=authority.id if authority else None,
        )
        if not updated:
            raise ValidationError(NOT_DRAFT)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    return LocationOut(lat=lat, lng=lng, address=address, postal_code=postal_code, authority=authority)


# =========================
#  Preuves (photo / vidéo)
# =========================

async def attach_evidence(
    db: AsyncSession,
    services: Services,
    report: Dict[str, Any],
    *,
    filename: str,
    content_type: str,
    data: bytes,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    taken_at: Optional[datetime] = None,
) -> EvidenceUploadOut:
    """
    Enregistre une preuve. Les coordonnées / date de prise de vue sont déjà
    extraites (EXIF) par l'appelant; seules les images en portent.
    La première image géolocalisée fixe le lieu du report et déclenche
    résolution d'autorité + alerte de proximité.
    """
    _require_draft(report)

    kind = MediaKind.video if content_type.startswith("video/") else MediaKind.image
    has_gps = kind is MediaKind.image and lat is not None and lng is not None
    if not has_gps:
        lat = lng = None
    if kind is MediaKind.video:
        taken_at = None

    path = services.store.save(report["case_number"], filename, data)
    try:
        row = await crud.insert_evidence(
            db, report_id=report["id"], filename=filename, filepath=str(path),
            mime_type=content_type or None, media_kind=kind.value, file_size=len(data),
            lat=lat, lng=lng, taken_at=taken_at,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        services.store.remove_case(report["case_number"], [str(path)])
        raise

    out = EvidenceUploadOut(evidence=evidence_out(services, row))
    if not has_gps:
        return out

    if report.get("location_lat") is None:
        out.location = await set_location(db, services, report, lat=lat, lng=lng)
        nearby = await proximity.find_nearby(db, lat, lng, exclude_report_id=report["id"])
        out.proximity_warning = proximity.as_warning(nearby)
        if nearby:
            logger.info("[proximity] %s: %d report(s) nearby", report["case_number"], len(nearby))
    else:
        loc = await services.geocoder.normalize(lat, lng)
        out.location = LocationOut(
            lat=lat, lng=lng,
            address=loc.address if loc else None,
            postal_code=loc.postal_code if loc else None,
        )
    return out


# =========================
#  Suppression
# =========================

async def delete_report(db: AsyncSession, services: Services, report: Dict[str, Any]) -> None:
    """Draft uniquement. Les fichiers sont supprimés après le DELETE SQL, en best effort."""
    _require_draft(report)
    files = [e["filepath"] for e in await crud.list_evidence(db, report["id"])]
    try:
        if not await crud.delete_draft_report(db, report["id"]):
            raise ValidationError(NOT_DRAFT)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    services.store.remove_case(report["case_number"], files)
    logger.info("[reports] %s deleted (%d files)", report["case_number"], len(files))
