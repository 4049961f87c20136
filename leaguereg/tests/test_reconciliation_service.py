"""
Tests for pre-submit reconciliation of team selections.

Covers creation, team moves before and after payment, CAC forks, capacity,
multi-team rules, validation rollback and the fail-open flag.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select

from leaguereg.database.models import Registration
from leaguereg.database.unit_of_work import RegistrationUnitOfWork
from leaguereg.models.schemas import TeamSelection
from leaguereg.services import reconciliation_service, validation_service
from leaguereg.services.job_config_service import JobNotFoundError
from leaguereg.tests.factories import (
    CALLER,
    FAMILY,
    make_agegroup,
    make_job,
    make_registration,
    make_team,
)
from leaguereg.utils import constants
from leaguereg.utils.datetime_utils import utcnow

CAC_TOKEN = "CAC09|BYAGEGROUP"


@pytest.fixture(autouse=True)
def default_processing_percent(monkeypatch):
    monkeypatch.delenv("CC_PROCESSING_PERCENT", raising=False)
    monkeypatch.delenv("VALIDATION_FAIL_OPEN", raising=False)


async def _pre_submit(session_factory, job, *selections, **kwargs):
    async with RegistrationUnitOfWork(session_factory) as uow:
        return await reconciliation_service.pre_submit(
            uow, job.id, FAMILY, list(selections), CALLER, **kwargs
        )


async def _registrations(session_factory, job, player_id=None):
    async with session_factory() as session:
        query = select(Registration).where(Registration.job_id == job.id)
        if player_id is not None:
            query = query.where(Registration.player_user_id == player_id)
        result = await session.execute(query.order_by(Registration.registration_ts))
        return list(result.scalars().all())


def _sel(player_id, team, **form_values):
    team_id = team if isinstance(team, int) else team.id
    return TeamSelection(player_id=player_id, team_id=team_id, form_values=form_values)


@pytest_asyncio.fixture
async def pp_job(db_session):
    return await make_job(db_session)


@pytest_asyncio.fixture
async def cac_job(db_session):
    return await make_job(db_session, core_regform_player=CAC_TOKEN)


# ============================================================================
# Single-team (PP) selections
# ============================================================================


@pytest.mark.asyncio
async def test_new_registration_priced_from_agegroup(db_session, session_factory, pp_job):
    """A free-looking team picks up its age group fee on a brand-new registration."""
    agegroup = await make_agegroup(db_session, team_fee=Decimal("200"))
    team = await make_team(db_session, pp_job, fee_base=Decimal("0"), agegroup=agegroup)

    response = await _pre_submit(session_factory, pp_job, _sel("p1", team, JerseySize="YM"))

    assert response.next_tab == constants.NEXT_TAB_PAYMENT
    assert response.validation_errors is None
    [result] = response.team_results
    assert result.registration_created is True
    assert result.message == constants.MSG_CREATED
    assert result.team_name == "U12 Blue"

    [reg] = await _registrations(session_factory, pp_job)
    assert reg.player_user_id == "p1"
    assert reg.family_user_id == FAMILY
    assert reg.assigned_team_id == team.id
    assert reg.assignment == "Player: U12 Blue"
    assert reg.active is False
    assert reg.modified_by == CALLER
    assert reg.jersey_size == "YM"
    assert reg.fee_base == Decimal("200.00")
    assert reg.fee_processing == Decimal("7.00")
    assert reg.fee_total == Decimal("207.00")
    assert reg.owed_total == Decimal("207.00")


@pytest.mark.asyncio
async def test_paid_registration_blocks_move_to_pricier_team(db_session, session_factory, pp_job):
    t1 = await make_team(db_session, pp_job, name="T1", fee_base=Decimal("200"))
    t2 = await make_team(db_session, pp_job, name="T2", fee_base=Decimal("300"))
    paid = await make_registration(
        db_session,
        pp_job,
        t1,
        "p1",
        fee_base=Decimal("200"),
        fee_processing=Decimal("7.00"),
        paid_total=Decimal("207.00"),
        active=True,
    )

    response = await _pre_submit(session_factory, pp_job, _sel("p1", t2))

    [result] = response.team_results
    assert result.message == constants.MSG_TEAM_CHANGE_BLOCKED
    assert result.team_id == t1.id
    assert result.team_name == "T1"
    assert result.registration_created is False

    [reg] = await _registrations(session_factory, pp_job)
    assert reg.registration_id == paid.registration_id
    assert reg.assigned_team_id == t1.id
    assert reg.fee_base == Decimal("200.00")
    assert reg.fee_processing == Decimal("7.00")
    assert reg.fee_total == Decimal("207.00")


@pytest.mark.asyncio
async def test_paid_registration_moves_to_same_cost_team(db_session, session_factory, pp_job):
    t1 = await make_team(db_session, pp_job, name="T1", fee_base=Decimal("200"))
    t2 = await make_team(db_session, pp_job, name="T2", per_registrant_fee=Decimal("200"))
    await make_registration(
        db_session, pp_job, t1, "p1", fee_base=Decimal("200"), fee_processing=Decimal("7.00"),
        paid_total=Decimal("207.00"),
    )

    response = await _pre_submit(session_factory, pp_job, _sel("p1", t2))

    assert response.team_results[0].message == constants.MSG_TEAM_CHANGED_SAME_COST
    [reg] = await _registrations(session_factory, pp_job)
    assert reg.assigned_team_id == t2.id
    assert reg.assignment == "Player: T2"
    assert reg.fee_total == Decimal("207.00")


@pytest.mark.asyncio
async def test_unpaid_registration_moves_and_is_repriced(db_session, session_factory, pp_job):
    t1 = await make_team(db_session, pp_job, name="T1", fee_base=Decimal("200"))
    t2 = await make_team(db_session, pp_job, name="T2", fee_base=Decimal("300"))
    await make_registration(
        db_session, pp_job, t1, "p1", fee_base=Decimal("200"), fee_processing=Decimal("7.00")
    )

    response = await _pre_submit(session_factory, pp_job, _sel("p1", t2))

    assert response.team_results[0].message == constants.MSG_TEAM_CHANGED
    [reg] = await _registrations(session_factory, pp_job)
    assert reg.assigned_team_id == t2.id
    assert reg.fee_base == Decimal("300.00")
    assert reg.fee_processing == Decimal("10.50")
    assert reg.fee_total == Decimal("310.50")
    assert reg.owed_total == Decimal("310.50")


@pytest.mark.asyncio
async def test_unpaid_registration_moved_to_free_team_owes_nothing(db_session, session_factory, pp_job):
    t1 = await make_team(db_session, pp_job, name="T1", fee_base=Decimal("200"))
    t2 = await make_team(db_session, pp_job, name="T2")
    await make_registration(
        db_session, pp_job, t1, "p1", fee_base=Decimal("200"), fee_processing=Decimal("7.00")
    )

    response = await _pre_submit(session_factory, pp_job, _sel("p1", t2))

    assert response.team_results[0].message == constants.MSG_TEAM_CHANGED
    [reg] = await _registrations(session_factory, pp_job)
    assert reg.assigned_team_id == t2.id
    assert reg.fee_base == Decimal("0.00")
    assert reg.fee_processing == Decimal("0.00")
    assert reg.fee_total == max(
        Decimal("0"), reg.fee_base + reg.fee_processing - reg.fee_discount - reg.fee_donation
    )
    assert reg.fee_total == Decimal("0.00")
    assert reg.owed_total == Decimal("0.00")


@pytest.mark.asyncio
async def test_resubmitting_same_batch_is_idempotent(db_session, session_factory, pp_job):
    team = await make_team(db_session, pp_job, fee_base=Decimal("200"))

    await _pre_submit(session_factory, pp_job, _sel("p1", team))
    response = await _pre_submit(session_factory, pp_job, _sel("p1", team))

    assert response.team_results[0].message == constants.MSG_UPDATED
    assert response.team_results[0].registration_created is False
    [reg] = await _registrations(session_factory, pp_job)
    assert reg.fee_total == Decimal("207.00")


@pytest.mark.asyncio
async def test_multiple_teams_rejected_in_single_team_job(db_session, session_factory, pp_job):
    t1 = await make_team(db_session, pp_job, name="T1", fee_base=Decimal("200"))
    t2 = await make_team(db_session, pp_job, name="T2", fee_base=Decimal("200"))

    response = await _pre_submit(session_factory, pp_job, _sel("p1", t1), _sel("p1", t2))

    assert [r.message for r in response.team_results] == [constants.MSG_MULTI_TEAM_NOT_ALLOWED] * 2
    assert not any(r.is_full for r in response.team_results)
    assert await _registrations(session_factory, pp_job) == []


# ============================================================================
# Capacity and unknown teams
# ============================================================================


@pytest.mark.asyncio
async def test_full_team_rejects_selection(db_session, session_factory, pp_job):
    team = await make_team(db_session, pp_job, fee_base=Decimal("200"), max_count=2)
    now = utcnow()
    for i, player in enumerate(("x1", "x2")):
        await make_registration(
            db_session, pp_job, team, player, active=True, family_user_id="other-family",
            modified=now - timedelta(minutes=i),
        )

    response = await _pre_submit(session_factory, pp_job, _sel("p1", team))

    [result] = response.team_results
    assert result.is_full is True
    assert result.message == constants.MSG_TEAM_FULL
    assert response.next_tab == constants.NEXT_TAB_TEAM
    assert await _registrations(session_factory, pp_job, "p1") == []


@pytest.mark.asyncio
async def test_full_team_does_not_block_other_players(db_session, session_factory, pp_job):
    full = await make_team(db_session, pp_job, name="Full", fee_base=Decimal("200"), max_count=1)
    open_team = await make_team(db_session, pp_job, name="Open", fee_base=Decimal("200"))
    await make_registration(db_session, pp_job, full, "x1", active=True, family_user_id="other")

    response = await _pre_submit(session_factory, pp_job, _sel("p1", full), _sel("p2", open_team))

    assert [r.is_full for r in response.team_results] == [True, False]
    assert len(await _registrations(session_factory, pp_job, "p2")) == 1


@pytest.mark.asyncio
async def test_unknown_team_reported(session_factory, pp_job):
    response = await _pre_submit(session_factory, pp_job, _sel("p1", 9999))

    [result] = response.team_results
    assert result.message == constants.MSG_TEAM_NOT_FOUND
    assert result.team_name == "Unknown"
    assert result.is_full is True


@pytest.mark.asyncio
async def test_team_from_another_job_is_unknown(db_session, session_factory, pp_job):
    other_job = await make_job(db_session, name="Other")
    foreign = await make_team(db_session, other_job, fee_base=Decimal("200"))

    response = await _pre_submit(session_factory, pp_job, _sel("p1", foreign))

    assert response.team_results[0].message == constants.MSG_TEAM_NOT_FOUND


# ============================================================================
# Multi-team (CAC) selections
# ============================================================================


@pytest.mark.asyncio
async def test_paid_player_gets_parallel_registration(db_session, session_factory, cac_job):
    t1 = await make_team(db_session, cac_job, name="T1", fee_base=Decimal("200"))
    t2 = await make_team(db_session, cac_job, name="T2", fee_base=Decimal("300"))
    paid = await make_registration(
        db_session, cac_job, t1, "p1", fee_base=Decimal("200"), fee_processing=Decimal("7.00"),
        paid_total=Decimal("207.00"), active=True,
    )

    response = await _pre_submit(session_factory, cac_job, _sel("p1", t2))

    [result] = response.team_results
    assert result.message == constants.MSG_FORKED
    assert result.registration_created is True

    regs = {r.assigned_team_id: r for r in await _registrations(session_factory, cac_job)}
    assert set(regs) == {t1.id, t2.id}
    assert regs[t1.id].registration_id == paid.registration_id
    assert regs[t1.id].paid_total == Decimal("207.00")
    assert regs[t1.id].active is True
    assert regs[t2.id].active is False
    assert regs[t2.id].fee_total == Decimal("310.50")


@pytest.mark.asyncio
async def test_multi_team_updates_exact_match_and_creates_the_rest(db_session, session_factory, cac_job):
    t1 = await make_team(db_session, cac_job, name="T1", fee_base=Decimal("200"))
    t2 = await make_team(db_session, cac_job, name="T2", fee_base=Decimal("100"))
    existing = await make_registration(
        db_session, cac_job, t1, "p1", fee_base=Decimal("200"), fee_processing=Decimal("7.00")
    )

    response = await _pre_submit(session_factory, cac_job, _sel("p1", t1), _sel("p1", t2))

    assert [r.message for r in response.team_results] == [constants.MSG_UPDATED, constants.MSG_CREATED]
    regs = {r.assigned_team_id: r for r in await _registrations(session_factory, cac_job)}
    assert regs[t1.id].registration_id == existing.registration_id
    assert regs[t2.id].fee_total == Decimal("103.50")


@pytest.mark.asyncio
async def test_multi_team_reassigns_unselected_unpaid_registration(db_session, session_factory, cac_job):
    t1 = await make_team(db_session, cac_job, name="T1", fee_base=Decimal("200"))
    t2 = await make_team(db_session, cac_job, name="T2", fee_base=Decimal("200"))
    t3 = await make_team(db_session, cac_job, name="T3", fee_base=Decimal("150"))
    stale = await make_registration(
        db_session, cac_job, t3, "p1", fee_base=Decimal("150"), fee_processing=Decimal("5.25")
    )

    response = await _pre_submit(session_factory, cac_job, _sel("p1", t1), _sel("p1", t2))

    assert [r.message for r in response.team_results] == [constants.MSG_TEAM_CHANGED, constants.MSG_CREATED]
    regs = {r.assigned_team_id: r for r in await _registrations(session_factory, cac_job)}
    assert set(regs) == {t1.id, t2.id}
    assert regs[t1.id].registration_id == stale.registration_id
    assert regs[t1.id].fee_base == Decimal("200.00")


# ============================================================================
# Validation, atomicity and fail-open
# ============================================================================


@pytest.mark.asyncio
async def test_admin_only_and_hidden_fields_are_not_written_by_raw_name(db_session, session_factory):
    job = await make_job(
        db_session,
        metadata={
            "fields": [
                {"name": "medicalNote", "dbColumn": "medical_note", "adminOnly": True},
                {"name": "schoolGrade", "visibility": "hidden"},
                {"name": "JerseySize"},
            ]
        },
    )
    team = await make_team(db_session, job, fee_base=Decimal("200"))

    await _pre_submit(
        session_factory,
        job,
        _sel("p1", team, medical_note="tampered", school_grade="12", JerseySize="YM"),
    )

    [reg] = await _registrations(session_factory, job)
    assert reg.medical_note is None
    assert reg.school_grade is None
    assert reg.jersey_size == "YM"


REQUIRED_SCHOOL = {"fields": [{"name": "SchoolName", "type": "text", "required": True}]}


@pytest.mark.asyncio
async def test_validation_failure_rolls_back_whole_batch(db_session, session_factory):
    job = await make_job(db_session, metadata=REQUIRED_SCHOOL)
    team = await make_team(db_session, job, fee_base=Decimal("200"))

    response = await _pre_submit(
        session_factory, job, _sel("p1", team, SchoolName="Central"), _sel("p2", team)
    )

    assert [(e.player_id, e.field, e.message) for e in response.validation_errors] == [
        ("p2", "SchoolName", "Required")
    ]
    assert response.next_tab == constants.NEXT_TAB_FORMS
    assert len(response.team_results) == 2
    assert response.insurance is not None
    assert await _registrations(session_factory, job) == []


@pytest.mark.asyncio
async def test_full_team_outranks_forms_tab(db_session, session_factory):
    job = await make_job(db_session, metadata=REQUIRED_SCHOOL)
    full = await make_team(db_session, job, fee_base=Decimal("200"), max_count=1)
    await make_registration(db_session, job, full, "x1", active=True, family_user_id="other")

    response = await _pre_submit(session_factory, job, _sel("p1", full))

    assert response.validation_errors
    assert response.next_tab == constants.NEXT_TAB_TEAM


@pytest.mark.asyncio
async def test_validation_exception_fails_open(db_session, session_factory, pp_job, monkeypatch):
    team = await make_team(db_session, pp_job, fee_base=Decimal("200"))

    def broken(*args, **kwargs):
        raise RuntimeError("bad metadata")

    monkeypatch.setattr(validation_service, "validate_player_form_values", broken)

    response = await _pre_submit(session_factory, pp_job, _sel("p1", team))

    assert response.validation_errors is None
    assert response.next_tab == constants.NEXT_TAB_PAYMENT
    assert len(await _registrations(session_factory, pp_job)) == 1


@pytest.mark.asyncio
async def test_validation_exception_fails_closed_when_configured(db_session, session_factory, pp_job, monkeypatch):
    team = await make_team(db_session, pp_job, fee_base=Decimal("200"))

    def broken(*args, **kwargs):
        raise RuntimeError("bad metadata")

    monkeypatch.setattr(validation_service, "validate_player_form_values", broken)

    with pytest.raises(RuntimeError):
        await _pre_submit(session_factory, pp_job, _sel("p1", team), validation_fail_open=False)

    assert await _registrations(session_factory, pp_job) == []


@pytest.mark.asyncio
async def test_fail_closed_from_environment(db_session, session_factory, pp_job, monkeypatch):
    team = await make_team(db_session, pp_job, fee_base=Decimal("200"))
    monkeypatch.setenv("VALIDATION_FAIL_OPEN", "false")

    def broken(*args, **kwargs):
        raise RuntimeError("bad metadata")

    monkeypatch.setattr(validation_service, "validate_player_form_values", broken)

    with pytest.raises(RuntimeError):
        await _pre_submit(session_factory, pp_job, _sel("p1", team))


@pytest.mark.asyncio
async def test_insurance_offer_lists_family_registrations(db_session, session_factory):
    job = await make_job(db_session, offer_player_insurance=True)
    team = await make_team(db_session, job, fee_base=Decimal("200"))

    response = await _pre_submit(session_factory, job, _sel("p1", team))

    assert response.insurance["available"] is True
    [entry] = response.insurance["registrations"]
    assert entry["player_id"] == "p1"
    assert Decimal(entry["fee_total"]) == Decimal("207.00")


@pytest.mark.asyncio
async def test_unknown_job_raises(session_factory):
    with pytest.raises(JobNotFoundError):
        async with RegistrationUnitOfWork(session_factory) as uow:
            await reconciliation_service.pre_submit(uow, 4242, FAMILY, [], CALLER)
