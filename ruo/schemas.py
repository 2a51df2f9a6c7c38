# ruo/schemas.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ReportStatus(str, Enum):
    draft = "draft"
    submitted = "submitted"
    in_progress = "in_progress"
    completed = "completed"
    rejected = "rejected"


class MediaKind(str, Enum):
    image = "image"
    video = "video"


# ---------- Collaborateurs externes (validés à l'entrée) ----------

class DirectoryEntry(BaseModel):
    """Réponse de l'annuaire des autorités (weg.li /districts/{zip})."""
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1)
    zip: Optional[str] = None
    email: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    personal_email: bool = False

    @field_validator("email", mode="before")
    @classmethod
    def _blank_email(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("personal_email", mode="before")
    @classmethod
    def _null_flag(cls, v):
        return bool(v) if v is not None else False


class NormalizedLocation(BaseModel):
    address: Optional[str] = None
    postal_code: Optional[str] = None
    locality: Optional[str] = None


# ---------- Stockage ----------

class AuthorityRecord(BaseModel):
    id: int
    postal_code: str
    name: str
    email: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    personal_email: bool = False
    updated_at: Optional[datetime] = None


class NearbyReport(BaseModel):
    report_id: int
    case_number: str
    status: ReportStatus
    distance_m: int


class ProximityWarning(BaseModel):
    found: bool
    count: int
    reports: List[NearbyReport]


class EvidenceOut(BaseModel):
    id: int
    filename: str
    url: Optional[str] = None
    mime_type: Optional[str] = None
    media_kind: MediaKind
    file_size: Optional[int] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    taken_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class HistoryOut(BaseModel):
    id: int
    old_status: Optional[str] = None
    new_status: str
    changed_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class EmailLogOut(BaseModel):
    id: int
    direction: str
    from_email: Optional[str] = None
    to_email: Optional[str] = None
    subject: Optional[str] = None
    sent_at: Optional[datetime] = None


class ReportOut(BaseModel):
    id: int
    case_number: str
    status: ReportStatus
    violation_type: Optional[str] = None
    notes: Optional[str] = None
    location_address: Optional[str] = None
    location_zip: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    authority_id: Optional[int] = None
    is_public: bool = True
    hide_username: bool = False
    submitted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    evidence_count: Optional[int] = None


class ReportDetailOut(BaseModel):
    report: ReportOut
    authority: Optional[AuthorityRecord] = None
    evidence: List[EvidenceOut]
    history: List[HistoryOut]
    emails: List[EmailLogOut]


# ---------- Entrées ----------

class ReportUpdateIn(BaseModel):
    violation_type: Optional[str] = None
    notes: Optional[str] = None
    is_public: Optional[bool] = None
    hide_username: Optional[bool] = None


class LocationIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None
    postal_code: Optional[str] = None


class StatusChangeIn(BaseModel):
    status: ReportStatus
    note: Optional[str] = None
    actor: Optional[str] = None


# ---------- Sorties d'opérations ----------

class LocationOut(BaseModel):
    lat: float
    lng: float
    address: Optional[str] = None
    postal_code: Optional[str] = None
    authority: Optional[AuthorityRecord] = None


class EvidenceUploadOut(BaseModel):
    ok: bool = True
    evidence: EvidenceOut
    location: Optional[LocationOut] = None
    proximity_warning: Optional[ProximityWarning] = None


class SubmitOut(BaseModel):
    ok: bool = True
    case_number: str
    status: ReportStatus
    submitted_at: datetime
    recipient: str
    sender: str


class PublicReportOut(BaseModel):
    case_number: str
    status: ReportStatus
    violation_type: Optional[str] = None
    notes: Optional[str] = None
    location_address: Optional[str] = None
    location_zip: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    submitted_at: Optional[datetime] = None
    user_name: Optional[str] = None
    evidence_count: Optional[int] = None


class PublicReportDetailOut(BaseModel):
    report: PublicReportOut
    evidence: List[EvidenceOut]
