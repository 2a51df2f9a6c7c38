# ruo/security.py
from typing import Optional

from fastapi import Header, HTTPException, Request

from ruo import config


async def get_requester(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Identité du demandeur, posée par la passerelle d'authentification en amont
    (en-tête x-user-id). Pas d'identité => 401.
    """
    uid = (x_user_id or "").strip()
    if not uid or len(uid) > 64:
        raise HTTPException(status_code=401, detail="missing requester identity")
    return uid


def requester_name(x_user_name: Optional[str] = Header(None)) -> Optional[str]:
    name = (x_user_name or "").strip()
    return name[:255] or None


def check_admin_token(request: Request):
    """Compare l'en-tête x-admin-token à ADMIN_TOKEN; sans ADMIN_TOKEN, les routes admin sont fermées."""
    req_tok = (request.headers.get("x-admin-token") or "").strip()
    if not config.ADMIN_TOKEN or req_tok != config.ADMIN_TOKEN:
        raise HTTPException(status_code=401, detail="invalid admin token")
