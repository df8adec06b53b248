"""
LOT 3: Identity Service

Frontière avec le service d'identité distant:
- Login, profil courant, rafraîchissement, logout
- Traduction des échecs HTTP en erreurs typées
- Résolution du tenant depuis le nom d'hôte
"""

from .interfaces import (
    # Data classes
    User,
    TokenPair,
    LoginCredentials,
    LoginResponse,
    # Interfaces
    IIdentityService,
    # Exceptions
    IdentityServiceError,
    RefreshRejectedError,
    NetworkFailureError,
)
from .http_client import HttpIdentityService
from .tenant import resolve_tenant_from_host

__all__ = [
    "User",
    "TokenPair",
    "LoginCredentials",
    "LoginResponse",
    "IIdentityService",
    "HttpIdentityService",
    "resolve_tenant_from_host",
    "IdentityServiceError",
    "RefreshRejectedError",
    "NetworkFailureError",
]
