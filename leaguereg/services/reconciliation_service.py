"""
Pre-submit reconciliation of a family's team selections.

A batch of (player, team, form values) selections is reconciled against the
players' existing registrations for the job inside one unit of work:
registrations are created, moved between teams, forked or left alone, fees
are applied, and form values are copied in. The batch is validated against
the job's form metadata before anything is committed; a validation failure
rolls back the whole batch.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leaguereg.database.models import (
    Job,
    Registration,
    RegistrationMode,
    RegistrationRole,
    Team,
    new_registration_id,
)
from leaguereg.database.unit_of_work import RegistrationUnitOfWork
from leaguereg.models.schemas import PreSubmitResponse, TeamResult, TeamSelection
from leaguereg.services import (
    capacity_service,
    fee_application_service,
    fee_resolution_service,
    field_mapper,
    insurance_service,
    job_config_service,
    registration_matcher,
    settings_service,
    validation_service,
)
from leaguereg.services.registration_matcher import PlayerTeamKey
from leaguereg.services.team_lookup_service import TeamNotFoundError
from leaguereg.utils.constants import (
    MSG_CREATED,
    MSG_FORKED,
    MSG_MULTI_TEAM_NOT_ALLOWED,
    MSG_TEAM_CHANGE_BLOCKED,
    MSG_TEAM_CHANGED,
    MSG_TEAM_CHANGED_SAME_COST,
    MSG_TEAM_FULL,
    MSG_TEAM_NOT_FOUND,
    MSG_UPDATED,
    NEXT_TAB_FORMS,
    NEXT_TAB_PAYMENT,
    NEXT_TAB_TEAM,
    ZERO,
)
from leaguereg.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

UNKNOWN_TEAM_NAME = "Unknown"


@dataclass
class ReconciliationContext:
    """Everything loaded once per batch."""

    job: Job
    family_user_id: str
    caller_user_id: str
    mode: str
    teams: Dict[int, Team]
    roster_counts: Dict[int, int]
    name_map: field_mapper.FieldNameMap
    cc_percent: Decimal
    existing_by_player: Dict[str, List[Registration]]
    existing_by_player_team: Dict[PlayerTeamKey, Registration]
    claimed: Set[str] = field(default_factory=set)

    def team(self, team_id: int) -> Team:
        team = self.teams.get(team_id)
        if team is None:
            raise TeamNotFoundError(f"Team {team_id} not found in job {self.job.id}")
        return team


async def build_context(
    session: AsyncSession,
    job_id: int,
    family_user_id: str,
    caller_user_id: str,
    selections: Sequence[TeamSelection],
) -> ReconciliationContext:
    """
    Load the job, candidate teams, roster counts and existing registrations.

    Args:
        session: Session of the open unit of work
        job_id: Job ID
        family_user_id: Family the registrations belong to
        caller_user_id: Caller recorded as modified_by
        selections: Submitted team selections

    Returns:
        ReconciliationContext for the batch
    """
    job = await job_config_service.get_job(session, job_id)

    player_ids = list(dict.fromkeys(s.player_id for s in selections))
    existing: List[Registration] = []
    if player_ids:
        result = await session.execute(
            select(Registration)
            .where(
                Registration.job_id == job_id,
                Registration.family_user_id == family_user_id,
                Registration.player_user_id.in_(player_ids),
            )
            .order_by(Registration.modified.desc())
        )
        existing = list(result.scalars().all())
    by_player, by_player_team = registration_matcher.index_registrations(existing)

    selected_team_ids = {s.team_id for s in selections}
    # Assigned teams are needed when a paid registration keeps its team
    team_ids = selected_team_ids | {r.assigned_team_id for r in existing if r.assigned_team_id is not None}
    teams: Dict[int, Team] = {}
    if team_ids:
        result = await session.execute(
            select(Team).where(Team.job_id == job_id, Team.id.in_(team_ids))
        )
        teams = {team.id: team for team in result.scalars().all()}

    roster_counts = await capacity_service.get_roster_counts(session, job_id, selected_team_ids)

    return ReconciliationContext(
        job=job,
        family_user_id=family_user_id,
        caller_user_id=caller_user_id,
        mode=job_config_service.get_registration_mode(job.core_regform_player, job.json_options),
        teams=teams,
        roster_counts=roster_counts,
        name_map=field_mapper.build_field_name_map(job.player_profile_metadata_json),
        cc_percent=await settings_service.get_cc_percent(session, job),
        existing_by_player=by_player,
        existing_by_player_team=by_player_team,
    )


def _assignment_label(team: Team) -> str:
    return f"{RegistrationRole.PLAYER.value}: {team.name}"


def _touch(ctx: ReconciliationContext, registration: Registration) -> None:
    registration.modified = utcnow()
    registration.modified_by = ctx.caller_user_id


def _result(
    player_id: str,
    team_id: int,
    message: str,
    team_name: str = "",
    is_full: bool = False,
    created: bool = False,
) -> TeamResult:
    return TeamResult(
        player_id=player_id,
        team_id=team_id,
        is_full=is_full,
        team_name=team_name,
        message=message,
        registration_created=created,
    )


def _capacity_gate(ctx: ReconciliationContext, player_id: str, team_id: int) -> Optional[TeamResult]:
    """Result rejecting the selection when the team is unknown or full, else None."""
    team = ctx.teams.get(team_id)
    if team is None:
        return _result(player_id, team_id, MSG_TEAM_NOT_FOUND, UNKNOWN_TEAM_NAME, is_full=True)
    if capacity_service.is_full(team, ctx.roster_counts.get(team_id, 0)):
        return _result(player_id, team_id, MSG_TEAM_FULL, team.name, is_full=True)
    return None


async def _apply_fees(session: AsyncSession, ctx: ReconciliationContext, registration: Registration, team: Team) -> None:
    await fee_application_service.apply_initial_fees(
        session,
        registration,
        team.id,
        team_fee_base_hint=team.fee_base if (team.fee_base or ZERO) > 0 else None,
        team_per_registrant_fee_hint=team.per_registrant_fee if (team.per_registrant_fee or ZERO) > 0 else None,
        cc_percent=ctx.cc_percent,
        team=team,
    )


def _index_new(ctx: ReconciliationContext, registration: Registration) -> None:
    ctx.existing_by_player.setdefault(registration.player_user_id, []).insert(0, registration)
    ctx.existing_by_player_team[(registration.player_user_id, registration.assigned_team_id)] = registration
    ctx.claimed.add(registration.registration_id)


async def _create_registration(
    session: AsyncSession, ctx: ReconciliationContext, selection: TeamSelection, team: Team
) -> Registration:
    """New inactive registration pending payment."""
    now = utcnow()
    registration = Registration(
        registration_id=new_registration_id(),
        job_id=ctx.job.id,
        family_user_id=ctx.family_user_id,
        player_user_id=selection.player_id,
        role=RegistrationRole.PLAYER.value,
        assigned_team_id=team.id,
        assignment=_assignment_label(team),
        active=False,
        registration_ts=now,
        modified=now,
        modified_by=ctx.caller_user_id,
        fee_base=ZERO,
        fee_processing=ZERO,
        fee_discount=ZERO,
        fee_donation=ZERO,
        fee_late_fee=ZERO,
        fee_total=ZERO,
        paid_total=ZERO,
        owed_total=ZERO,
    )
    session.add(registration)
    field_mapper.apply_form_values(registration, selection.form_values, ctx.name_map)
    await _apply_fees(session, ctx, registration, team)
    _index_new(ctx, registration)
    return registration


async def _reassign_unpaid(
    session: AsyncSession,
    ctx: ReconciliationContext,
    registration: Registration,
    selection: TeamSelection,
    team: Team,
) -> bool:
    """Move an unpaid registration onto `team` and re-price it. Returns True if the team changed."""
    changed = registration.assigned_team_id != team.id
    if changed:
        key = (registration.player_user_id, registration.assigned_team_id)
        if ctx.existing_by_player_team.get(key) is registration:
            del ctx.existing_by_player_team[key]
        registration.assigned_team_id = team.id
        registration.assignment = _assignment_label(team)
        # Priced for the old team; let the new team's fee apply
        registration.fee_base = ZERO
        registration.fee_processing = ZERO
        ctx.existing_by_player_team[(registration.player_user_id, team.id)] = registration
    field_mapper.apply_form_values(registration, selection.form_values, ctx.name_map)
    await _apply_fees(session, ctx, registration, team)
    ctx.claimed.add(registration.registration_id)
    _touch(ctx, registration)
    return changed


async def _process_single_team(
    session: AsyncSession, ctx: ReconciliationContext, selection: TeamSelection
) -> TeamResult:
    """One team for the player in a single-team (PP) job."""
    player_id, team_id = selection.player_id, selection.team_id
    rejected = _capacity_gate(ctx, player_id, team_id)
    if rejected is not None:
        return rejected
    team = ctx.team(team_id)

    match = registration_matcher.find_match(
        ctx.existing_by_player, ctx.existing_by_player_team, player_id, team_id
    )
    if match is None:
        await _create_registration(session, ctx, selection, team)
        return _result(player_id, team_id, MSG_CREATED, team.name, created=True)

    if not fee_application_service.has_payment(match):
        changed = await _reassign_unpaid(session, ctx, match, selection, team)
        return _result(player_id, team_id, MSG_TEAM_CHANGED if changed else MSG_UPDATED, team.name)

    # Paid: fees are locked, only a move to an equally priced team is allowed
    field_mapper.apply_form_values(match, selection.form_values, ctx.name_map)
    _touch(ctx, match)
    if match.assigned_team_id == team_id:
        return _result(player_id, team_id, MSG_UPDATED, team.name)

    assigned_team = ctx.teams.get(match.assigned_team_id)
    existing_base = fee_resolution_service.coalesce(match.fee_base)
    if existing_base <= 0 and match.assigned_team_id is not None:
        existing_base = await fee_resolution_service.resolve_base_fee(
            session, match.assigned_team_id, team=assigned_team
        )
    new_base = fee_resolution_service.team_row_fee(team)
    if new_base <= 0:
        new_base = await fee_resolution_service.resolve_base_fee(session, team_id, team=team)

    if existing_base > 0 and new_base > 0 and existing_base == new_base:
        match.assigned_team_id = team.id
        match.assignment = _assignment_label(team)
        logger.info(f"Moved paid registration {match.registration_id} to same-cost team {team_id}")
        return _result(player_id, team_id, MSG_TEAM_CHANGED_SAME_COST, team.name)

    logger.info(
        f"Blocked team change for paid registration {match.registration_id}: "
        f"{existing_base} -> {new_base}"
    )
    if match.assigned_team_id is not None:
        await fee_application_service.apply_initial_fees(
            session, match, match.assigned_team_id, cc_percent=ctx.cc_percent, team=assigned_team
        )
    return _result(
        player_id,
        match.assigned_team_id if match.assigned_team_id is not None else team_id,
        MSG_TEAM_CHANGE_BLOCKED,
        assigned_team.name if assigned_team is not None else team.name,
    )


async def _process_multi_team_selection(
    session: AsyncSession,
    ctx: ReconciliationContext,
    selection: TeamSelection,
    desired_team_ids: Set[int],
) -> TeamResult:
    """One team of a player's selections in a multi-team (CAC) job."""
    player_id, team_id = selection.player_id, selection.team_id
    rejected = _capacity_gate(ctx, player_id, team_id)
    if rejected is not None:
        return rejected
    team = ctx.team(team_id)

    exact = ctx.existing_by_player_team.get((player_id, team_id))
    if exact is not None:
        field_mapper.apply_form_values(exact, selection.form_values, ctx.name_map)
        await _apply_fees(session, ctx, exact, team)
        ctx.claimed.add(exact.registration_id)
        _touch(ctx, exact)
        return _result(player_id, team_id, MSG_UPDATED, team.name)

    if registration_matcher.player_has_paid_registration(ctx.existing_by_player, player_id):
        await _create_registration(session, ctx, selection, team)
        return _result(player_id, team_id, MSG_FORKED, team.name, created=True)

    reassignable = registration_matcher.find_reassignable(
        ctx.existing_by_player, player_id, desired_team_ids, ctx.claimed
    )
    if reassignable is not None:
        await _reassign_unpaid(session, ctx, reassignable, selection, team)
        return _result(player_id, team_id, MSG_TEAM_CHANGED, team.name)

    await _create_registration(session, ctx, selection, team)
    return _result(player_id, team_id, MSG_CREATED, team.name, created=True)


def _group_by_player(selections: Sequence[TeamSelection]) -> Dict[str, List[TeamSelection]]:
    """Selections per player in submission order; repeats of a team are merged, later values winning."""
    grouped: Dict[str, Dict[int, TeamSelection]] = {}
    for selection in selections:
        per_team = grouped.setdefault(selection.player_id, {})
        previous = per_team.get(selection.team_id)
        if previous is None:
            per_team[selection.team_id] = selection
        else:
            per_team[selection.team_id] = TeamSelection(
                player_id=selection.player_id,
                team_id=selection.team_id,
                form_values={**previous.form_values, **selection.form_values},
            )
    return {player_id: list(per_team.values()) for player_id, per_team in grouped.items()}


async def process_player_selections(
    session: AsyncSession, ctx: ReconciliationContext, player_selections: List[TeamSelection]
) -> List[TeamResult]:
    """Run the single- or multi-team rules for one player's selections."""
    if ctx.mode == RegistrationMode.CAC.value:
        desired = {s.team_id for s in player_selections}
        return [
            await _process_multi_team_selection(session, ctx, selection, desired)
            for selection in player_selections
        ]

    if len(player_selections) > 1:
        return [
            _result(
                s.player_id,
                s.team_id,
                MSG_MULTI_TEAM_NOT_ALLOWED,
                ctx.teams[s.team_id].name if s.team_id in ctx.teams else UNKNOWN_TEAM_NAME,
            )
            for s in player_selections
        ]

    return [await _process_single_team(session, ctx, player_selections[0])]


async def _build_insurance(session: AsyncSession, job_id: int, family_user_id: str) -> Optional[dict]:
    try:
        return await insurance_service.build_offer(session, job_id, family_user_id)
    except Exception as e:
        logger.warning(f"Could not build insurance offer for job {job_id}: {e}", exc_info=True)
        return None


async def pre_submit(
    uow: RegistrationUnitOfWork,
    job_id: int,
    family_user_id: str,
    selections: Sequence[TeamSelection],
    caller_user_id: str,
    validation_fail_open: Optional[bool] = None,
) -> PreSubmitResponse:
    """
    Reconcile a batch of team selections and commit or roll back as a whole.

    Args:
        uow: Open unit of work; finished (commit or rollback) here
        job_id: Job ID
        family_user_id: Family the players belong to
        selections: Team selections in submission order
        caller_user_id: Caller identity recorded on modified rows
        validation_fail_open: Whether an exception raised by validation lets
            the batch save; None reads the validation_fail_open setting

    Returns:
        PreSubmitResponse with one TeamResult per outcome

    Raises:
        JobNotFoundError: If the job does not exist
        ConflictError: If a registration was modified concurrently
    """
    session = uow.session
    logger.info(
        f"Pre-submit job={job_id} family={family_user_id} selections={len(selections)}"
    )

    ctx = await build_context(session, job_id, family_user_id, caller_user_id, selections)
    if validation_fail_open is None:
        validation_fail_open = await settings_service.get_validation_fail_open(session)

    team_results: List[TeamResult] = []
    for player_selections in _group_by_player(selections).values():
        team_results.extend(await process_player_selections(session, ctx, player_selections))

    response = PreSubmitResponse(
        team_results=team_results,
        next_tab=NEXT_TAB_TEAM if any(r.is_full for r in team_results) else NEXT_TAB_PAYMENT,
    )

    try:
        validation_errors = validation_service.validate_player_form_values(
            ctx.job.player_profile_metadata_json, selections
        )
    except Exception:
        if not validation_fail_open:
            logger.error(f"Form validation raised for job {job_id}; rolling back", exc_info=True)
            raise
        logger.warning(f"Form validation raised for job {job_id}; saving anyway", exc_info=True)
        validation_errors = []

    if validation_errors:
        await uow.rollback()
        logger.info(
            f"Pre-submit job={job_id} family={family_user_id} rolled back: "
            f"{len(validation_errors)} validation error(s)"
        )
        response.validation_errors = validation_errors
        if not response.has_full_teams:
            response.next_tab = NEXT_TAB_FORMS
        response.insurance = await _build_insurance(session, job_id, family_user_id)
        return response

    try:
        await uow.commit()
    except Exception as e:
        logger.error(f"Pre-submit job={job_id} family={family_user_id} failed to save: {e}")
        raise

    created = sum(1 for r in team_results if r.registration_created)
    logger.info(
        f"Pre-submit job={job_id} family={family_user_id} committed: "
        f"{len(team_results)} result(s), {created} created, next_tab={response.next_tab}"
    )
    response.insurance = await _build_insurance(session, job_id, family_user_id)
    return response
