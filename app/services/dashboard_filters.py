"""Filtres locaux des dashboards d'administration.

Fonctions pures de (lignes, recherche, filtres): elles ne modifient jamais
leurs entrees et renvoient une nouvelle liste. ``"all"`` desactive un filtre.
"""

from collections.abc import Iterable, Sequence

from app.schemas.admin import (
    AdminAction,
    FinancialDispute,
    Profile,
    ProfileSummary,
    UserActivityLog,
)

ALL = "all"


def _matches_search(search: str, candidates: Iterable[str | None]) -> bool:
    if not search:
        return True
    needle = search.lower()
    return any(value and needle in value.lower() for value in candidates)


def _name_and_email(profile: ProfileSummary | None) -> list[str | None]:
    if profile is None:
        return []
    return [profile.email, profile.full_name]


def filter_admin_actions(
    actions: Sequence[AdminAction], search: str = "", action_type: str = ALL
) -> list[AdminAction]:
    """Recherche sur action_type, email de l'admin et email de l'utilisateur cible."""
    return [
        action
        for action in actions
        if _matches_search(
            search,
            [
                action.action_type,
                action.admin.email if action.admin else None,
                action.target_user.email if action.target_user else None,
            ],
        )
        and (action_type == ALL or action.action_type == action_type)
    ]


def filter_disputes(
    disputes: Sequence[FinancialDispute], search: str = "", status: str = ALL
) -> list[FinancialDispute]:
    """Recherche sur dispute_type, email et nom de l'utilisateur; filtre par statut."""
    return [
        dispute
        for dispute in disputes
        if _matches_search(search, [dispute.dispute_type, *_name_and_email(dispute.user)])
        and (status == ALL or dispute.status == status)
    ]


def filter_activities(
    activities: Sequence[UserActivityLog],
    search: str = "",
    activity_type: str = ALL,
    role: str = ALL,
) -> list[UserActivityLog]:
    """Recherche sur activity_type, email et nom; filtres type d'activite et role."""
    return [
        activity
        for activity in activities
        if _matches_search(search, [activity.activity_type, *_name_and_email(activity.user)])
        and (activity_type == ALL or activity.activity_type == activity_type)
        and (role == ALL or (activity.user is not None and activity.user.role == role))
    ]


def filter_profiles(
    profiles: Sequence[Profile], search: str = "", role: str = ALL
) -> list[Profile]:
    """Recherche sur email et nom complet; filtre par role."""
    return [
        profile
        for profile in profiles
        if _matches_search(search, [profile.email, profile.full_name])
        and (role == ALL or profile.role == role)
    ]
