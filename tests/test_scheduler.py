from datetime import timedelta

from ruo.scheduler import refresh_tick, start_scheduler, stop_scheduler
from ruo.services.authorities import AuthorityCache

from conftest import BERLIN_ZIP


async def test_tick_refreshes_through_its_own_session(sessionmaker, directory):
    cache = AuthorityCache(directory, max_age=timedelta(seconds=1))
    async with sessionmaker() as db:
        await cache.resolve(db, BERLIN_ZIP)
    cache.max_age = timedelta(microseconds=1)

    assert await refresh_tick(sessionmaker, cache) == 1
    assert directory.calls == [BERLIN_ZIP, BERLIN_ZIP]


async def test_tick_swallows_directory_outage(sessionmaker, directory):
    cache = AuthorityCache(directory, max_age=timedelta(seconds=1))
    async with sessionmaker() as db:
        await cache.resolve(db, BERLIN_ZIP)
    cache.max_age = timedelta(microseconds=1)
    directory.fail = True

    assert await refresh_tick(sessionmaker, cache) == 0


async def test_start_and_stop(sessionmaker, directory):
    scheduler = start_scheduler(sessionmaker, AuthorityCache(directory), interval_min=5)
    assert scheduler.running
    assert scheduler.get_job("ruo_authority_refresh") is not None
    stop_scheduler(scheduler)
