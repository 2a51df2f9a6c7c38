# ruo/services/proximity.py
import math
from typing import List, Optional

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.types import Float

from ruo import config
from ruo.schemas import NearbyReport, ProximityWarning

# Rayon terrestre utilisé par MySQL ST_Distance_Sphere
EARTH_RADIUS_M = 6370986.0
METERS_PER_DEG_LAT = 111320.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def _bbox(lat: float, lng: float, radius_m: float):
    """Bounding box (degrés) autour du point; lng=None si la boîte est inutilisable (pôles, antiméridien)."""
    # marge de 10% pour ne rien perdre à cause de l'approximation
    dlat = radius_m * 1.1 / METERS_PER_DEG_LAT
    cos_lat = math.cos(math.radians(lat))
    if cos_lat < 1e-6:
        return (lat - dlat, lat + dlat), None
    dlng = radius_m * 1.1 / (METERS_PER_DEG_LAT * cos_lat)
    if lng - dlng < -180 or lng + dlng > 180:
        return (lat - dlat, lat + dlat), None
    return (lat - dlat, lat + dlat), (lng - dlng, lng + dlng)


async def find_nearby(
    db: AsyncSession,
    lat: float,
    lng: float,
    *,
    radius_m: float = config.PROXIMITY_RADIUS_M,
    exclude_report_id: Optional[int] = None,
    limit: int = config.PROXIMITY_LIMIT,
) -> List[NearbyReport]:
    """
    Reports existants à <= radius_m du point, triés par distance croissante
    (puis id), au plus `limit`. Préfiltre SQL par bounding box, distance exacte
    (haversine) calculée ici. Information indicative, pas une contrainte.
    """
    (min_lat, max_lat), lng_range = _bbox(lat, lng, radius_m)

    where_lng = "AND location_lng BETWEEN :min_lng AND :max_lng" if lng_range else ""
    where_excl = "AND id <> :exclude" if exclude_report_id is not None else ""
    q = text(f"""
        SELECT id, case_number, status, location_lat, location_lng
          FROM reports
         WHERE location_lat IS NOT NULL
           AND location_lng IS NOT NULL
           AND location_lat BETWEEN :min_lat AND :max_lat
           {where_lng}
           {where_excl}
    """).bindparams(
        bindparam("min_lat", type_=Float),
        bindparam("max_lat", type_=Float),
    )
    params = {"min_lat": min_lat, "max_lat": max_lat}
    if lng_range:
        q = q.bindparams(bindparam("min_lng", type_=Float), bindparam("max_lng", type_=Float))
        params["min_lng"], params["max_lng"] = lng_range
    if exclude_report_id is not None:
        params["exclude"] = exclude_report_id

    res = await db.execute(q, params)

    hits = []
    for r in res.fetchall():
        d = haversine_m(lat, lng, float(r.location_lat), float(r.location_lng))
        if d <= radius_m:
            hits.append((d, r.id, r))
    hits.sort(key=lambda h: (h[0], h[1]))

    return [
        NearbyReport(
            report_id=r.id,
            case_number=r.case_number,
            status=r.status,
            distance_m=int(round(d)),
        )
        for d, _, r in hits[:max(0, int(limit))]
    ]


def as_warning(nearby: List[NearbyReport]) -> Optional[ProximityWarning]:
    if not nearby:
        return None
    return ProximityWarning(found=True, count=len(nearby), reports=nearby)
