"""
RFC 9457 Problem Details pour HTTP APIs.

Ce module définit les exceptions métier du service au-dessus de
``fastapi_problem_details.ProblemException``. Chaque exception porte son code
HTTP, un titre stable et un ``type`` URI; le handler installé par
``problem.init_app(app)`` les sérialise en ``application/problem+json``.
"""

from typing import Any

from fastapi_problem_details import Problem, ProblemException

ERROR_TYPE_BASE = "https://consultation-admin.app/errors"


class ServiceProblem(ProblemException):
    """
    Exception de base de toutes les erreurs métier.

    Les sous-classes fixent ``status``, ``title`` et ``error_type``; seul
    ``detail`` (et éventuellement ``instance``) varie d'une occurrence à l'autre.
    """

    status: int = 500
    title: str = "Internal Server Error"
    error_type: str = "internal-error"

    def __init__(
        self,
        detail: str | None = None,
        instance: str | None = None,
        headers: dict[str, str] | None = None,
        **extra: Any,
    ):
        super().__init__(
            status=type(self).status,
            title=type(self).title,
            detail=detail,
            type=f"{ERROR_TYPE_BASE}/{type(self).error_type}",
            instance=instance,
            headers=headers,
            **extra,
        )

    def __str__(self) -> str:
        return self.detail or self.title


class NotFoundError(ServiceProblem):
    status = 404
    title = "Not Found"
    error_type = "not-found"


class ConflictError(ServiceProblem):
    status = 409
    title = "Conflict"
    error_type = "conflict"


class ValidationError(ServiceProblem):
    status = 422
    title = "Unprocessable Entity"
    error_type = "validation-error"


class ServiceUnavailableError(ServiceProblem):
    status = 503
    title = "Service Unavailable"
    error_type = "service-unavailable"


class RemoteServiceError(ServiceUnavailableError):
    """
    Exception levée lorsque le backend distant est injoignable ou renvoie une erreur.

    Example:
        ```python
        try:
            rows = await client.select("profiles")
        except SupabaseError as e:
            raise RemoteServiceError(detail=f"Cannot load profiles: {e}") from e
        ```
    """

    error_type = "remote-service"

    def __init__(self, detail: str = "Remote data service is unavailable", **kwargs: Any):
        super().__init__(detail=detail, **kwargs)


class ResourceNotFoundError(NotFoundError):
    """Ligne introuvable dans une table distante."""

    def __init__(self, resource: str, resource_id: str, **kwargs: Any):
        super().__init__(detail=f"{resource} {resource_id} not found", **kwargs)
        self.resource = resource
        self.resource_id = resource_id


class SessionNotFoundError(NotFoundError):
    """Session de consultation introuvable."""

    error_type = "session-not-found"

    def __init__(self, session_id: str, **kwargs: Any):
        super().__init__(
            detail="Session not found",
            instance=f"/api/v1/sessions/{session_id}",
            **kwargs,
        )
        self.session_id = session_id


class InvalidSessionStateError(ConflictError):
    """
    Un RPC sécurisé a renvoyé ``false``.

    Le serveur ne distingue pas un refus d'autorisation d'un état invalide,
    le message reste donc volontairement générique.
    """

    title = "Invalid Session State"
    error_type = "invalid-session-state"

    def __init__(self, operation: str, session_id: str, **kwargs: Any):
        super().__init__(
            detail=f"Failed to {operation} session - unauthorized or invalid state",
            instance=f"/api/v1/sessions/{session_id}",
            **kwargs,
        )
        self.operation = operation
        self.session_id = session_id


class SessionTransitionError(ConflictError):
    """Transition de statut non monotone (ex: completed → scheduled)."""

    title = "Invalid Session Transition"
    error_type = "session-transition"

    def __init__(self, current: str, target: str, session_id: str | None = None, **kwargs: Any):
        super().__init__(
            detail=f"Cannot move session from '{current}' to '{target}'",
            instance=f"/api/v1/sessions/{session_id}" if session_id else None,
            current_status=current,
            target_status=target,
            **kwargs,
        )
        self.current = current
        self.target = target


class MissingStartTimeError(ConflictError):
    """Fin de session demandée alors que ``started_at`` est absent."""

    title = "Missing Session Start Time"
    error_type = "missing-start-time"

    def __init__(self, session_id: str, **kwargs: Any):
        super().__init__(
            detail=f"Session {session_id} has no start time; duration cannot be computed",
            instance=f"/api/v1/sessions/{session_id}",
            **kwargs,
        )
        self.session_id = session_id


class RecoveryFailedError(ServiceUnavailableError):
    """Toutes les tentatives de récupération de session ont échoué."""

    title = "Session Recovery Failed"
    error_type = "session-recovery-failed"

    def __init__(self, session_id: str, attempts: int, reason: str | None = None, **kwargs: Any):
        detail = f"Failed to recover session after {attempts} attempts"
        if reason:
            detail = f"{detail}: {reason}"
        super().__init__(
            detail=detail,
            instance=f"/api/v1/sessions/{session_id}/recover",
            attempts=attempts,
            **kwargs,
        )
        self.session_id = session_id
        self.attempts = attempts


class BroadcastValidationError(ValidationError):
    """Alerte d'urgence incomplète (titre ou message manquant)."""

    error_type = "broadcast-validation"

    def __init__(self, detail: str = "Please fill in title and message", **kwargs: Any):
        super().__init__(detail=detail, **kwargs)


class MediaAccessError(ServiceProblem):
    """Impossible d'acquérir la caméra ou le microphone local."""

    status = 424
    title = "Media Access Failed"
    error_type = "media-access"

    def __init__(self, detail: str = "Failed to access camera/microphone", **kwargs: Any):
        super().__init__(detail=detail, **kwargs)


__all__ = [
    "BroadcastValidationError",
    "ConflictError",
    "InvalidSessionStateError",
    "MediaAccessError",
    "MissingStartTimeError",
    "NotFoundError",
    "Problem",
    "RecoveryFailedError",
    "RemoteServiceError",
    "ResourceNotFoundError",
    "ServiceProblem",
    "ServiceUnavailableError",
    "SessionNotFoundError",
    "SessionTransitionError",
    "ValidationError",
]
