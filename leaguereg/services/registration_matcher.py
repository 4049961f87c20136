"""
Finds which pre-existing registration a player's team selection should reuse.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Set, Tuple

from leaguereg.database.models import Registration
from leaguereg.services.fee_application_service import has_payment

PlayerTeamKey = Tuple[str, int]


def index_registrations(
    registrations: Iterable[Registration],
) -> Tuple[Dict[str, List[Registration]], Dict[PlayerTeamKey, Registration]]:
    """
    Group registrations by player and by (player, team).

    Input must be ordered newest-modified first; each list keeps that order
    and each (player, team) key keeps its newest registration.
    """
    by_player: Dict[str, List[Registration]] = defaultdict(list)
    by_player_team: Dict[PlayerTeamKey, Registration] = {}
    for registration in registrations:
        if registration.player_user_id is None:
            continue
        by_player[registration.player_user_id].append(registration)
        if registration.assigned_team_id is not None:
            key = (registration.player_user_id, registration.assigned_team_id)
            by_player_team.setdefault(key, registration)
    return dict(by_player), by_player_team


def find_match(
    existing_by_player: Dict[str, List[Registration]],
    existing_by_player_team: Dict[PlayerTeamKey, Registration],
    player_id: str,
    team_id: int,
) -> Optional[Registration]:
    """
    Registration to reuse for a single-team selection.

    The exact (player, team) registration if there is one, else the player's
    most recently modified registration (the player is moving teams), else
    None (a new registration is needed).
    """
    exact = existing_by_player_team.get((player_id, team_id))
    if exact is not None:
        return exact
    registrations = existing_by_player.get(player_id) or []
    return registrations[0] if registrations else None


def player_has_paid_registration(
    existing_by_player: Dict[str, List[Registration]], player_id: str
) -> bool:
    return any(has_payment(r) for r in existing_by_player.get(player_id, []))


def find_reassignable(
    existing_by_player: Dict[str, List[Registration]],
    player_id: str,
    desired_team_ids: Set[int],
    claimed: Set[str],
) -> Optional[Registration]:
    """
    Unpaid registration a multi-team selection may move onto a new team.

    Skips registrations already used by this batch and those sitting on
    another team the player selected (they are updated in place instead).
    """
    for registration in existing_by_player.get(player_id, []):
        if registration.registration_id in claimed:
            continue
        if has_payment(registration):
            continue
        if registration.assigned_team_id in desired_team_ids:
            continue
        return registration
    return None
