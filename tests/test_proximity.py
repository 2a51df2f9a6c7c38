from ruo.services.proximity import _bbox, as_warning, find_nearby, haversine_m

from conftest import BERLIN, make_report, place_report

LAT, LNG = BERLIN
# 1e-5 degré de latitude ~ 1.112 m
M = 1e-5 / 1.1119


async def _placed(db, dlat_m: float, user_id="user-1"):
    r = await make_report(db, user_id=user_id)
    await place_report(db, r["id"], LAT + dlat_m * M, LNG)
    return r


def test_haversine_matches_sphere_distance():
    assert haversine_m(LAT, LNG, LAT, LNG) == 0
    d = haversine_m(LAT, LNG, LAT + 0.000135, LNG)
    assert 15.0 < d < 15.1


def test_bbox_drops_longitude_filter_near_antimeridian():
    (lo, hi), lng_range = _bbox(10.0, 179.9999, 50)
    assert lo < 10.0 < hi
    assert lng_range is None


async def test_two_reports_fifteen_meters_apart(db):
    first = await make_report(db, user_id="alice")
    await place_report(db, first["id"], LAT, LNG)
    second = await make_report(db, user_id="bob")
    await place_report(db, second["id"], LAT + 0.000135, LNG)

    nearby = await find_nearby(db, LAT + 0.000135, LNG, radius_m=50, exclude_report_id=second["id"])

    assert [n.report_id for n in nearby] == [first["id"]]
    assert 10 < nearby[0].distance_m < 20
    assert nearby[0].case_number == first["case_number"]


async def test_only_reports_inside_radius(db):
    near = await _placed(db, 30)
    await _placed(db, 80)

    nearby = await find_nearby(db, LAT, LNG, radius_m=50)

    assert [n.report_id for n in nearby] == [near["id"]]
    assert all(n.distance_m <= 50 for n in nearby)


async def test_results_sorted_by_distance(db):
    far = await _placed(db, 40)
    close = await _placed(db, 10)
    mid = await _placed(db, 25)

    nearby = await find_nearby(db, LAT, LNG, radius_m=50)

    assert [n.report_id for n in nearby] == [close["id"], mid["id"], far["id"]]
    assert [n.distance_m for n in nearby] == sorted(n.distance_m for n in nearby)


async def test_equal_distances_ordered_by_id(db):
    a = await _placed(db, 20)
    b = await _placed(db, 20)

    nearby = await find_nearby(db, LAT, LNG)

    assert [n.report_id for n in nearby] == [a["id"], b["id"]]


async def test_result_capped_at_limit(db):
    for i in range(12):
        await _placed(db, i * 3)

    assert len(await find_nearby(db, LAT, LNG)) == 10
    assert len(await find_nearby(db, LAT, LNG, limit=3)) == 3


async def test_reports_without_location_ignored(db):
    await make_report(db)
    assert await find_nearby(db, LAT, LNG) == []


def test_no_warning_without_neighbours():
    assert as_warning([]) is None


async def test_diagonal_neighbour_one_ten_thousandth_degree_away(db):
    other = await make_report(db, user_id="alice")
    await place_report(db, other["id"], 52.5201, 13.4051)
    mine = await make_report(db, user_id="bob")
    await place_report(db, mine["id"], 52.5200, 13.4050)

    nearby = await find_nearby(db, 52.5200, 13.4050, radius_m=50, exclude_report_id=mine["id"])

    assert [n.report_id for n in nearby] == [other["id"]]
    assert 12 <= nearby[0].distance_m <= 16
