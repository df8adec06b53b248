"""
LOT 5: Session

Cycle de vie de la session côté client:
- Suivi de l'expiration du jeton d'accès (avertissement, expiration)
- Machine d'états login / restauration / prolongation / logout
- Garde de concurrence par famille d'opérations
- Vue de présentation (décompte, prolonger, se déconnecter)
"""

from .interfaces import (
    # Constantes
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    USER_KEY,
    CREDENTIAL_KEYS,
    # Enums
    SessionPhase,
    LoginFailureReason,
    TickOutcome,
    # Data classes
    SessionState,
    LoginFailure,
    LoginResult,
    MonitorConfig,
    MonitorHandle,
    SessionPresentation,
    # Interfaces
    ISessionMonitor,
    ISessionOrchestrator,
)
from .session_monitor import SessionMonitor
from .session_orchestrator import SessionOrchestrator, SessionOrchestratorError
from .presentation import ExpiryUrgency, format_countdown, progress_percentage
from .factory import build_orchestrator, create_backend, create_logger, resolve_tenant

__all__ = [
    # Constantes
    "ACCESS_TOKEN_KEY",
    "REFRESH_TOKEN_KEY",
    "USER_KEY",
    "CREDENTIAL_KEYS",
    # Enums
    "SessionPhase",
    "LoginFailureReason",
    "TickOutcome",
    # Data classes
    "SessionState",
    "LoginFailure",
    "LoginResult",
    "MonitorConfig",
    "MonitorHandle",
    "SessionPresentation",
    # Interfaces
    "ISessionMonitor",
    "ISessionOrchestrator",
    # Implementations
    "SessionMonitor",
    "SessionOrchestrator",
    "ExpiryUrgency",
    "format_countdown",
    "progress_percentage",
    "build_orchestrator",
    "create_backend",
    "create_logger",
    "resolve_tenant",
    # Exceptions
    "SessionOrchestratorError",
]
