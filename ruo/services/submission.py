# ruo/services/submission.py
"""
Submission of a draft report to the responsible authority.

Preconditions are checked in order (ownership, status, evidence,
jurisdiction). The draft -> submitted switch is claimed with a conditional
UPDATE inside an open transaction, the mail is sent while that row is held,
and the email log + status history are written in the same transaction.
A failed dispatch rolls the whole thing back; nothing is retried.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ruo import config, crud
from ruo.errors import (
    ALREADY_SUBMITTED, NO_EVIDENCE, NO_RESPONSIBLE_AUTHORITY,
    ExternalServiceError, NotFoundError, ValidationError,
)
from ruo.schemas import AuthorityRecord, ReportStatus, SubmitOut
from ruo.services.authorities import AuthorityCache
from ruo.services.mailer import Attachment, Mailer, OutboundMessage
from ruo.services.storage import EvidenceStore

logger = logging.getLogger(__name__)

NO_AUTHORITY_MESSAGE = (
    "Kein zuständiges Ordnungsamt gefunden. Bitte Standortinformationen überprüfen."
)

SUBJECT_TEMPLATE = "DSGVO-Verstoß - Aktenzeichen {case_number}"

BODY_TEMPLATE = """Sehr geehrte Damen und Herren,

hiermit melde ich einen DSGVO-Verstoß im Bereich Videoüberwachung.

Aktenzeichen: {case_number}
Standort: {address}
{coordinates}Verstoß: {violation}

{notes}Fotos im Anhang.

Mit freundlichen Grüßen
Diese E-Mail wurde automatisch generiert von rechtundordnung.de"""


def case_email_address(case_number: str, domain: str = config.MAIL_DOMAIN) -> str:
    return f"{case_number.lower()}@{domain}"


def render_body(report: Dict[str, Any]) -> str:
    lat, lng = report.get("location_lat"), report.get("location_lng")
    notes = (report.get("notes") or "").strip()
    coordinates = f"Koordinaten: {float(lat):.6f}, {float(lng):.6f}\n" if lat is not None and lng is not None else ""
    return BODY_TEMPLATE.format(
        case_number=report["case_number"],
        address=report.get("location_address") or "Keine Adresse verfügbar",
        coordinates=coordinates,
        violation=report.get("violation_type") or "Nicht angegeben",
        notes=f"{notes}\n\n" if notes else "",
    )


class SubmissionOrchestrator:
    def __init__(
        self,
        mailer: Mailer,
        store: EvidenceStore,
        authorities: Optional[AuthorityCache] = None,
        *,
        mail_domain: str = config.MAIL_DOMAIN,
        sender_name: str = config.MAIL_FROM_NAME,
    ):
        self.mailer = mailer
        self.store = store
        self.authorities = authorities
        self.mail_domain = mail_domain
        self.sender_name = sender_name

    # ---------- preconditions ----------

    async def _responsible_authority(
        self, db: AsyncSession, report: Dict[str, Any]
    ) -> Optional[AuthorityRecord]:
        if report.get("authority_id") is not None:
            row = await crud.get_authority(db, report["authority_id"])
            if row is not None:
                return AuthorityRecord(**row)

        # juridiction pas encore résolue (annuaire indisponible lors de la saisie du lieu)
        if self.authorities is None or not report.get("location_zip"):
            return None
        record = await self.authorities.resolve(db, report["location_zip"])
        if record is not None:
            await crud.set_report_location(
                db, report["id"],
                lat=report["location_lat"], lng=report["location_lng"],
                address=report.get("location_address"), postal_code=report["location_zip"],
                authority_id=record.id,
            )
            await db.commit()
        return record

    def _attachments(self, evidence: List[Dict[str, Any]]) -> List[Attachment]:
        out = []
        for e in evidence:
            try:
                content = self.store.read(e["filepath"])
            except OSError as err:
                logger.error("[submit] evidence file unreadable %s: %s", e["filepath"], err)
                raise ExternalServiceError("evidence storage unavailable", detail=e["filename"]) from err
            out.append(Attachment(
                filename=e["filename"],
                content=content,
                mime_type=e.get("mime_type") or "application/octet-stream",
            ))
        return out

    def compose(
        self, report: Dict[str, Any], authority: AuthorityRecord, attachments: List[Attachment]
    ) -> OutboundMessage:
        address = case_email_address(report["case_number"], self.mail_domain)
        return OutboundMessage(
            sender=address,
            reply_to=address,
            sender_name=self.sender_name,
            recipient=authority.email,
            subject=SUBJECT_TEMPLATE.format(case_number=report["case_number"]),
            body=render_body(report),
            attachments=attachments,
        )

    # ---------- transition ----------

    async def submit(self, db: AsyncSession, report_id: int, requester: str) -> SubmitOut:
        report = await crud.get_report(db, report_id, requester)
        if report is None:
            raise NotFoundError("report not found")
        if report["status"] != ReportStatus.draft.value:
            raise ValidationError(ALREADY_SUBMITTED)

        evidence = await crud.list_evidence(db, report_id)
        if not evidence:
            raise ValidationError(NO_EVIDENCE)

        authority = await self._responsible_authority(db, report)
        if authority is None or not authority.email:
            raise ValidationError(NO_RESPONSIBLE_AUTHORITY, detail=NO_AUTHORITY_MESSAGE)

        message = self.compose(report, authority, self._attachments(evidence))
        now = crud.utcnow()

        try:
            claimed = await crud.claim_transition(
                db, report_id,
                old_status=ReportStatus.draft.value,
                new_status=ReportStatus.submitted.value,
                now=now, stamp_submitted=True,
            )
            if not claimed:
                raise ValidationError(ALREADY_SUBMITTED)
            await self.mailer.send(message)
        except Exception:
            await db.rollback()
            raise

        # Le mail est parti: l'écriture ne doit plus être annulée par une déconnexion client.
        task = asyncio.ensure_future(self._finalize(db, report, message, requester, now))
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            await task
            raise

        logger.info("[submit] %s sent to %s (%s)", report["case_number"], authority.name, authority.email)
        return SubmitOut(
            case_number=report["case_number"],
            status=ReportStatus.submitted,
            submitted_at=now,
            recipient=message.recipient,
            sender=message.sender,
        )

    async def _finalize(
        self,
        db: AsyncSession,
        report: Dict[str, Any],
        message: OutboundMessage,
        requester: str,
        now: datetime,
    ) -> None:
        try:
            await crud.insert_email_log(
                db, report_id=report["id"], direction="outbound",
                from_email=message.sender, to_email=message.recipient,
                subject=message.subject, body=message.body, now=now,
            )
            await crud.insert_status_history(
                db, report_id=report["id"],
                old_status=ReportStatus.draft.value, new_status=ReportStatus.submitted.value,
                changed_by=requester, notes=f"sent to {message.recipient}", now=now,
            )
            await db.commit()
        except Exception:
            logger.error("[submit] %s mailed but commit failed", report["case_number"])
            await db.rollback()
            raise
