# ruo/services/workflow.py
from datetime import datetime
from typing import Dict, FrozenSet, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ruo import crud
from ruo.errors import NotFoundError, ValidationError
from ruo.schemas import ReportStatus

S = ReportStatus

# Graphe des statuts: on n'avance jamais en arrière.
TRANSITIONS: Dict[ReportStatus, FrozenSet[ReportStatus]] = {
    S.draft: frozenset({S.submitted}),
    S.submitted: frozenset({S.in_progress}),
    S.in_progress: frozenset({S.completed, S.rejected}),
    S.completed: frozenset(),
    S.rejected: frozenset(),
}

# draft -> submitted passe uniquement par l'orchestrateur de soumission
ADMIN_TRANSITIONS = {
    (old, new) for old, targets in TRANSITIONS.items() for new in targets if old is not S.draft
}


def can_transition(old: ReportStatus, new: ReportStatus) -> bool:
    return new in TRANSITIONS.get(old, frozenset())


async def apply_admin_transition(
    db: AsyncSession,
    report_id: int,
    new_status: ReportStatus,
    *,
    actor: Optional[str],
    note: Optional[str],
    now: Optional[datetime] = None,
) -> ReportStatus:
    """
    Transition administrative (submitted -> in_progress -> completed|rejected).
    UPDATE conditionnel + entrée d'historique dans la même transaction.
    Retourne l'ancien statut.
    """
    report = await crud.get_report(db, report_id)
    if report is None:
        raise NotFoundError("report not found")

    old = ReportStatus(report["status"])
    if (old, new_status) not in ADMIN_TRANSITIONS:
        raise ValidationError(f"illegal transition {old.value} -> {new_status.value}")

    now = now or crud.utcnow()
    try:
        if not await crud.claim_transition(
            db, report_id, old_status=old.value, new_status=new_status.value, now=now
        ):
            raise ValidationError("status changed concurrently, retry")
        await crud.insert_status_history(
            db, report_id=report_id, old_status=old.value, new_status=new_status.value,
            changed_by=actor, notes=note, now=now,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return old
