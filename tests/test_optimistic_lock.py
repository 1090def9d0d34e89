"""
with_optimistic_retry: replays on version conflicts, rolls back on anything else.
"""
import pytest
from sqlalchemy.orm.exc import StaleDataError

from campus_eats.core.errors import BusinessRuleError
from campus_eats.core.optimistic_lock import with_optimistic_retry


@pytest.mark.asyncio
async def test_retries_until_the_conflict_clears(db):
    calls = []

    @with_optimistic_retry(max_retries=3)
    async def flaky(db):
        calls.append(1)
        if len(calls) < 3:
            raise StaleDataError("version mismatch")
        return "done"

    assert await flaky(db) == "done"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_gives_up_after_max_retries(db):
    calls = []

    @with_optimistic_retry(max_retries=2)
    async def always_stale(db):
        calls.append(1)
        raise StaleDataError("version mismatch")

    with pytest.raises(StaleDataError):
        await always_stale(db=db)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_other_errors_are_not_retried(db):
    calls = []

    @with_optimistic_retry()
    async def refuses(db):
        calls.append(1)
        raise BusinessRuleError("nope")

    with pytest.raises(BusinessRuleError):
        await refuses(db)
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_needs_a_session():
    @with_optimistic_retry()
    async def no_session(value):
        return value

    with pytest.raises(TypeError):
        await no_session("not a session")
