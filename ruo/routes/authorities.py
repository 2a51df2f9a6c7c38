# ruo/routes/authorities.py
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ruo.db import get_db
from ruo.errors import NO_RESPONSIBLE_AUTHORITY, NotFoundError, ValidationError
from ruo.schemas import AuthorityRecord
from ruo.services.authorities import normalize_postal_code
from ruo.services.container import Services, get_services

router = APIRouter(prefix="/authorities", tags=["authorities"])


@router.get("/{postal_code}", response_model=AuthorityRecord)
async def get_authority(
    postal_code: str,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services),
):
    if normalize_postal_code(postal_code) is None:
        raise ValidationError("invalid postal code")
    authority = await services.authorities.resolve(db, postal_code)
    if authority is None:
        raise NotFoundError(NO_RESPONSIBLE_AUTHORITY)
    return authority
