"""
Schémas de réponses OpenAPI pour RFC 9457 Problem Details.

Les erreurs sont sérialisées par ``fastapi_problem_details`` avec le modèle
``Problem``; ce module déclare les réponses documentées par route.
"""

from typing import Any

from fastapi_problem_details import Problem


def _problem(description: str) -> dict[str, Any]:
    return {"model": Problem, "description": description}


COMMON_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _problem("Authentication required"),
    403: _problem("Insufficient role"),
    422: _problem("Request validation failed"),
    503: _problem("Remote data service unavailable"),
}


def build_responses(*status_codes: int) -> dict[int | str, dict[str, Any]]:
    """Construit un dictionnaire ``responses`` pour les codes donnés."""
    descriptions = {
        404: "Resource not found",
        409: "Conflicting state",
        424: "Media access failed",
    }
    return {code: _problem(descriptions.get(code, "Error")) for code in status_codes}


session_responses = build_responses(404, 409)
read_responses = build_responses(404)

__all__ = [
    "COMMON_RESPONSES",
    "build_responses",
    "read_responses",
    "session_responses",
]
