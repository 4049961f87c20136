"""
Tests for the registration unit of work: single finish, rollback on error,
and optimistic concurrency conflicts.
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from leaguereg.database.models import Registration
from leaguereg.database.unit_of_work import ConflictError, RegistrationUnitOfWork, UnitOfWorkError
from leaguereg.tests.factories import make_job, make_registration, make_team


async def _count_registrations(session_factory) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count(Registration.registration_id)))
        return result.scalar_one()


def _new_registration(job_id: int) -> Registration:
    return Registration(job_id=job_id, family_user_id="family-1", player_user_id="p1")


@pytest.mark.asyncio
async def test_commit_persists(db_session, session_factory):
    job = await make_job(db_session)

    async with RegistrationUnitOfWork(session_factory) as uow:
        uow.session.add(_new_registration(job.id))
        await uow.commit()

    assert await _count_registrations(session_factory) == 1


@pytest.mark.asyncio
async def test_exit_without_commit_rolls_back(db_session, session_factory):
    job = await make_job(db_session)

    async with RegistrationUnitOfWork(session_factory) as uow:
        uow.session.add(_new_registration(job.id))
        await uow.session.flush()

    assert uow.finished
    assert await _count_registrations(session_factory) == 0


@pytest.mark.asyncio
async def test_exception_rolls_back_and_propagates(db_session, session_factory):
    job = await make_job(db_session)

    with pytest.raises(RuntimeError, match="boom"):
        async with RegistrationUnitOfWork(session_factory) as uow:
            uow.session.add(_new_registration(job.id))
            await uow.session.flush()
            raise RuntimeError("boom")

    assert await _count_registrations(session_factory) == 0


@pytest.mark.asyncio
async def test_cancellation_rolls_back(db_session, session_factory):
    job = await make_job(db_session)

    with pytest.raises(asyncio.CancelledError):
        async with RegistrationUnitOfWork(session_factory) as uow:
            uow.session.add(_new_registration(job.id))
            await uow.session.flush()
            raise asyncio.CancelledError()

    assert await _count_registrations(session_factory) == 0


@pytest.mark.asyncio
async def test_finish_exactly_once(session_factory):
    async with RegistrationUnitOfWork(session_factory) as uow:
        await uow.commit()
        with pytest.raises(UnitOfWorkError):
            await uow.commit()
        with pytest.raises(UnitOfWorkError):
            await uow.rollback()


@pytest.mark.asyncio
async def test_session_unavailable_outside_context(session_factory):
    uow = RegistrationUnitOfWork(session_factory)

    with pytest.raises(UnitOfWorkError):
        uow.session
    with pytest.raises(UnitOfWorkError):
        await uow.commit()


@pytest.mark.asyncio
async def test_concurrent_modification_raises_conflict(db_session, session_factory):
    job = await make_job(db_session)
    team = await make_team(db_session, job)
    registration = await make_registration(db_session, job, team, "p1", fee_base=Decimal("100"))

    with pytest.raises(ConflictError):
        async with RegistrationUnitOfWork(session_factory) as uow:
            loaded = await uow.session.get(Registration, registration.registration_id)
            # Another writer bumps the row version behind this session's back
            await uow.session.execute(
                update(Registration.__table__)
                .where(Registration.__table__.c.registration_id == registration.registration_id)
                .values(version=Registration.__table__.c.version + 1)
            )
            loaded.fee_base = Decimal("150")
            await uow.commit()

    async with session_factory() as session:
        stored = await session.get(Registration, registration.registration_id)
        assert stored.fee_base == Decimal("100")
