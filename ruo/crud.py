# ruo/crud.py
from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.types import Boolean, DateTime, Float

from ruo import config
from ruo.schemas import DirectoryEntry

logger = logging.getLogger(__name__)

TS = DateTime(timezone=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _row(r) -> Optional[Dict[str, Any]]:
    return dict(r._mapping) if r is not None else None


# =========================
#  Utilisateurs (FK)
# =========================

async def ensure_user(db: AsyncSession, user_id: str, display_name: Optional[str] = None) -> None:
    q = text("""
        INSERT INTO app_users (id, display_name, created_at)
        VALUES (:uid, :name, :now)
        ON CONFLICT (id) DO NOTHING
    """).bindparams(bindparam("now", type_=TS))
    await db.execute(q, {"uid": user_id, "name": display_name, "now": utcnow()})


# =========================
#  Reports
# =========================

REPORT_COLUMNS = """
    r.id, r.case_number, r.user_id, r.authority_id, r.status,
    r.violation_type, r.notes,
    r.location_address, r.location_zip, r.location_lat, r.location_lng,
    r.is_public, r.hide_username,
    r.submitted_at, r.created_at, r.updated_at
"""


def generate_case_number(now: Optional[datetime] = None) -> str:
    """RUO-YYMM-NNNN, NNNN aléatoire. L'unicité est garantie par la contrainte SQL."""
    now = now or utcnow()
    return f"{config.CASE_PREFIX}-{now:%y%m}-{random.randint(0, 9999):04d}"


async def insert_report(
    db: AsyncSession,
    *,
    user_id: str,
    display_name: Optional[str] = None,
    attempts: Optional[int] = None,
    case_number_factory: Callable[[], str] = generate_case_number,
) -> Dict[str, Any]:
    """
    Crée un report 'draft'. En cas de collision sur case_number on retente
    avec un nouveau suffixe (attempts fois au plus), puis on laisse remonter.
    """
    attempts = attempts or config.CASE_NUMBER_ATTEMPTS

    # 0) FK app_users
    try:
        await ensure_user(db, user_id, display_name)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    insert_sql = text("""
        INSERT INTO reports (case_number, user_id, status, is_public, hide_username, created_at, updated_at)
        VALUES (:case_number, :uid, 'draft', :is_public, :hide_username, :now, :now)
        RETURNING id
    """).bindparams(
        bindparam("now", type_=TS),
        bindparam("is_public", type_=Boolean),
        bindparam("hide_username", type_=Boolean),
    )

    attempt = 0
    while True:
        attempt += 1
        case_number = case_number_factory()
        now = utcnow()
        try:
            res = await db.execute(insert_sql, {
                "case_number": case_number, "uid": user_id,
                "is_public": True, "hide_username": False, "now": now,
            })
            report_id = res.scalar_one()
            await db.commit()
        except IntegrityError:
            await db.rollback()
            if attempt >= attempts:
                logger.error("[reports] case number collision, giving up after %d attempts", attempts)
                raise
            logger.warning("[reports] case number %s already taken, retrying", case_number)
            continue
        return {"id": report_id, "case_number": case_number, "status": "draft", "created_at": now}


async def get_report(
    db: AsyncSession, report_id: int, user_id: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    where_owner = "AND r.user_id = :uid" if user_id is not None else ""
    q = text(f"""
        SELECT {REPORT_COLUMNS}
          FROM reports r
         WHERE r.id = :rid {where_owner}
    """)
    params: Dict[str, Any] = {"rid": report_id}
    if user_id is not None:
        params["uid"] = user_id
    res = await db.execute(q, params)
    return _row(res.first())


async def list_reports_for_owner(db: AsyncSession, user_id: str) -> List[Dict[str, Any]]:
    q = text(f"""
        SELECT {REPORT_COLUMNS},
               (SELECT COUNT(*) FROM evidence e WHERE e.report_id = r.id) AS evidence_count
          FROM reports r
         WHERE r.user_id = :uid
         ORDER BY r.created_at DESC, r.id DESC
    """)
    res = await db.execute(q, {"uid": user_id})
    return [dict(r._mapping) for r in res.fetchall()]


UPDATABLE_FIELDS = ("violation_type", "notes", "is_public", "hide_username")


async def update_report_fields(db: AsyncSession, report_id: int, fields: Dict[str, Any]) -> int:
    fields = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
    if not fields:
        return 0
    sets = ", ".join(f"{k} = :{k}" for k in fields)
    q = text(f"UPDATE reports SET {sets}, updated_at = :now WHERE id = :rid").bindparams(
        bindparam("now", type_=TS)
    )
    res = await db.execute(q, {**fields, "now": utcnow(), "rid": report_id})
    return res.rowcount or 0


async def set_report_location(
    db: AsyncSession,
    report_id: int,
    *,
    lat: float,
    lng: float,
    address: Optional[str],
    postal_code: Optional[str],
    authority_id: Optional[int],
) -> int:
    q = text("""
        UPDATE reports
           SET location_lat = :lat, location_lng = :lng,
               location_address = :address, location_zip = :zip,
               authority_id = :aid, updated_at = :now
         WHERE id = :rid AND status = 'draft'
    """).bindparams(
        bindparam("lat", type_=Float),
        bindparam("lng", type_=Float),
        bindparam("now", type_=TS),
    )
    res = await db.execute(q, {
        "lat": lat, "lng": lng, "address": address, "zip": postal_code,
        "aid": authority_id, "now": utcnow(), "rid": report_id,
    })
    return res.rowcount or 0


async def claim_transition(
    db: AsyncSession,
    report_id: int,
    *,
    old_status: str,
    new_status: str,
    now: datetime,
    stamp_submitted: bool = False,
) -> bool:
    """
    UPDATE conditionnel: ne bascule que si le statut courant vaut old_status.
    Le verrou de ligne est tenu jusqu'au commit/rollback de la transaction.
    """
    extra = ", submitted_at = :now" if stamp_submitted else ""
    q = text(f"""
        UPDATE reports
           SET status = :new, updated_at = :now{extra}
         WHERE id = :rid AND status = :old
    """).bindparams(bindparam("now", type_=TS))
    res = await db.execute(q, {"new": new_status, "old": old_status, "now": now, "rid": report_id})
    return (res.rowcount or 0) == 1


async def delete_draft_report(db: AsyncSession, report_id: int) -> bool:
    """Supprime le report (draft uniquement) et ses lignes filles. Commit à la charge de l'appelant."""
    for table in ("evidence", "status_history", "email_logs"):
        await db.execute(
            text(f"""
                DELETE FROM {table}
                 WHERE report_id = :rid
                   AND EXISTS (SELECT 1 FROM reports WHERE id = :rid AND status = 'draft')
            """),
            {"rid": report_id},
        )
    res = await db.execute(
        text("DELETE FROM reports WHERE id = :rid AND status = 'draft'"), {"rid": report_id}
    )
    return (res.rowcount or 0) == 1


# =========================
#  Evidence
# =========================

EVIDENCE_COLUMNS = """
    id, report_id, filename, filepath, mime_type, media_kind, file_size,
    lat, lng, taken_at, created_at
"""


async def insert_evidence(
    db: AsyncSession,
    *,
    report_id: int,
    filename: str,
    filepath: str,
    mime_type: Optional[str],
    media_kind: str,
    file_size: Optional[int],
    lat: Optional[float],
    lng: Optional[float],
    taken_at: Optional[datetime],
) -> Dict[str, Any]:
    now = utcnow()
    q = text("""
        INSERT INTO evidence (report_id, filename, filepath, mime_type, media_kind,
                              file_size, lat, lng, taken_at, created_at)
        VALUES (:rid, :filename, :filepath, :mime, :kind, :size, :lat, :lng, :taken_at, :now)
        RETURNING id
    """).bindparams(
        bindparam("lat", type_=Float),
        bindparam("lng", type_=Float),
        bindparam("taken_at", type_=TS),
        bindparam("now", type_=TS),
    )
    res = await db.execute(q, {
        "rid": report_id, "filename": filename, "filepath": filepath, "mime": mime_type,
        "kind": media_kind, "size": file_size, "lat": lat, "lng": lng,
        "taken_at": taken_at, "now": now,
    })
    return {
        "id": res.scalar_one(), "report_id": report_id, "filename": filename,
        "filepath": filepath, "mime_type": mime_type, "media_kind": media_kind,
        "file_size": file_size, "lat": lat, "lng": lng, "taken_at": taken_at,
        "created_at": now,
    }


async def list_evidence(db: AsyncSession, report_id: int) -> List[Dict[str, Any]]:
    q = text(f"SELECT {EVIDENCE_COLUMNS} FROM evidence WHERE report_id = :rid ORDER BY id")
    res = await db.execute(q, {"rid": report_id})
    return [dict(r._mapping) for r in res.fetchall()]


async def count_evidence(db: AsyncSession, report_id: int) -> int:
    res = await db.execute(text("SELECT COUNT(*) FROM evidence WHERE report_id = :rid"), {"rid": report_id})
    return int(res.scalar_one())


# =========================
#  Journal (append-only)
# =========================

async def insert_status_history(
    db: AsyncSession,
    *,
    report_id: int,
    old_status: Optional[str],
    new_status: str,
    changed_by: Optional[str],
    notes: Optional[str],
    now: datetime,
) -> None:
    q = text("""
        INSERT INTO status_history (report_id, old_status, new_status, changed_by, notes, created_at)
        VALUES (:rid, :old, :new, :by, :notes, :now)
    """).bindparams(bindparam("now", type_=TS))
    await db.execute(q, {
        "rid": report_id, "old": old_status, "new": new_status,
        "by": changed_by, "notes": notes, "now": now,
    })


async def insert_email_log(
    db: AsyncSession,
    *,
    report_id: int,
    direction: str,
    from_email: str,
    to_email: str,
    subject: str,
    body: str,
    now: datetime,
) -> None:
    q = text("""
        INSERT INTO email_logs (report_id, direction, from_email, to_email, subject, body, sent_at)
        VALUES (:rid, :direction, :from_email, :to_email, :subject, :body, :now)
    """).bindparams(bindparam("now", type_=TS))
    await db.execute(q, {
        "rid": report_id, "direction": direction, "from_email": from_email,
        "to_email": to_email, "subject": subject, "body": body, "now": now,
    })


async def list_history(db: AsyncSession, report_id: int) -> List[Dict[str, Any]]:
    q = text("""
        SELECT id, old_status, new_status, changed_by, notes, created_at
          FROM status_history
         WHERE report_id = :rid
         ORDER BY created_at DESC, id DESC
    """)
    res = await db.execute(q, {"rid": report_id})
    return [dict(r._mapping) for r in res.fetchall()]


async def list_email_logs(db: AsyncSession, report_id: int) -> List[Dict[str, Any]]:
    q = text("""
        SELECT id, direction, from_email, to_email, subject, sent_at
          FROM email_logs
         WHERE report_id = :rid
         ORDER BY sent_at DESC, id DESC
    """)
    res = await db.execute(q, {"rid": report_id})
    return [dict(r._mapping) for r in res.fetchall()]


# =========================
#  Autorités (cache)
# =========================

AUTHORITY_COLUMNS = """
    id, postal_code, name, email, latitude, longitude, personal_email, updated_at
"""


async def get_authority_by_postal_code(db: AsyncSession, postal_code: str) -> Optional[Dict[str, Any]]:
    q = text(f"SELECT {AUTHORITY_COLUMNS} FROM authorities WHERE postal_code = :zip")
    res = await db.execute(q, {"zip": postal_code})
    return _row(res.first())


async def get_authority(db: AsyncSession, authority_id: int) -> Optional[Dict[str, Any]]:
    q = text(f"SELECT {AUTHORITY_COLUMNS} FROM authorities WHERE id = :aid")
    res = await db.execute(q, {"aid": authority_id})
    return _row(res.first())


async def upsert_authority(db: AsyncSession, postal_code: str, entry: DirectoryEntry) -> None:
    """Insert-or-update keyed by postal code; last successful fetch wins."""
    now = utcnow()
    q = text("""
        INSERT INTO authorities (postal_code, name, email, latitude, longitude, personal_email,
                                 created_at, updated_at)
        VALUES (:zip, :name, :email, :lat, :lng, :personal, :now, :now)
        ON CONFLICT (postal_code) DO UPDATE
           SET name = excluded.name,
               email = excluded.email,
               latitude = excluded.latitude,
               longitude = excluded.longitude,
               personal_email = excluded.personal_email,
               updated_at = excluded.updated_at
    """).bindparams(
        bindparam("lat", type_=Float),
        bindparam("lng", type_=Float),
        bindparam("personal", type_=Boolean),
        bindparam("now", type_=TS),
    )
    await db.execute(q, {
        "zip": postal_code, "name": entry.name, "email": entry.email,
        "lat": entry.latitude, "lng": entry.longitude,
        "personal": entry.personal_email, "now": now,
    })


async def list_stale_authorities(db: AsyncSession, older_than: datetime, limit: int) -> List[str]:
    q = text("""
        SELECT postal_code
          FROM authorities
         WHERE updated_at IS NULL OR updated_at < :cutoff
         ORDER BY updated_at
         LIMIT :lim
    """).bindparams(bindparam("cutoff", type_=TS))
    res = await db.execute(q, {"cutoff": older_than, "lim": int(limit)})
    return [r.postal_code for r in res.fetchall()]


# =========================
#  Lecture publique
# =========================

PUBLIC_COLUMNS = """
    r.id, r.case_number, r.status, r.violation_type, r.notes,
    r.location_address, r.location_zip, r.location_lat, r.location_lng,
    r.submitted_at, r.hide_username,
    CASE WHEN r.hide_username THEN NULL ELSE u.display_name END AS user_name,
    (SELECT COUNT(*) FROM evidence e WHERE e.report_id = r.id) AS evidence_count
"""


async def list_public_reports(db: AsyncSession, limit: int = 100) -> List[Dict[str, Any]]:
    q = text(f"""
        SELECT {PUBLIC_COLUMNS}
          FROM reports r
          LEFT JOIN app_users u ON r.user_id = u.id
         WHERE r.is_public AND r.status <> 'draft'
         ORDER BY r.submitted_at DESC, r.id DESC
         LIMIT :lim
    """)
    res = await db.execute(q, {"lim": int(limit)})
    return [dict(r._mapping) for r in res.fetchall()]


async def get_public_report(db: AsyncSession, case_number: str) -> Optional[Dict[str, Any]]:
    q = text(f"""
        SELECT {PUBLIC_COLUMNS}
          FROM reports r
          LEFT JOIN app_users u ON r.user_id = u.id
         WHERE r.case_number = :case AND r.is_public AND r.status <> 'draft'
    """)
    res = await db.execute(q, {"case": case_number})
    return _row(res.first())
