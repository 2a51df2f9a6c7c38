# ruo/routes/geocode.py
from fastapi import APIRouter, Depends, Query

from ruo.services.container import Services, get_services

router = APIRouter(tags=["geocode"])


@router.get("/reverse")
async def reverse(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    services: Services = Depends(get_services),
):
    loc = await services.geocoder.normalize(lat, lng)
    if loc is None:
        # géocodeur indisponible ou point sans adresse: pas une erreur pour le client
        return {"ok": False, "address": None, "postal_code": None, "locality": None}
    return {"ok": True, **loc.model_dump()}
