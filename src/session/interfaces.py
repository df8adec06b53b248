"""
LOT 5: Session - Interfaces

Contrats du suivi d'expiration (SessionMonitor) et de la machine d'états de
session (SessionOrchestrator).

Phases:
    UNAUTHENTICATED → AUTHENTICATING → AUTHENTICATED ⇄ RENEWING
    logout() ramène toujours à UNAUTHENTICATED (aucun état terminal).
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from src.identity import LoginCredentials, TokenPair, User


ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"
USER_KEY = "user"

# Clés persistées (contrat stable, ne pas renommer sans changer la version d'enveloppe)
CREDENTIAL_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY)

SessionCallback = Callable[[], Union[None, Awaitable[None]]]
TickCallback = Callable[[int], Union[None, Awaitable[None]]]


# ══════════════════════════════════════════════════════════════════════════════
# TYPES
# ══════════════════════════════════════════════════════════════════════════════


class SessionPhase(Enum):
    """Phase de la session côté client."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    RENEWING = "renewing"


class LoginFailureReason(Enum):
    """Motifs structurés d'échec de login."""

    INVALID_CREDENTIALS = "invalid_credentials"  # réessayable
    PENDING_APPROVAL = "pending_approval"  # compte valide, non activé
    WRONG_TENANT = "wrong_tenant"  # redirection vers le bon tenant
    REQUIRES_ONBOARDING = "requires_onboarding"  # redirection, pas une erreur
    NETWORK_FAILURE = "network_failure"  # transitoire


class TickOutcome(Enum):
    """Résultat d'un tick du moniteur."""

    NO_TOKEN = "no_token"
    EXPIRED = "expired"
    WARNING = "warning"
    COUNTING = "counting"
    STOPPED = "stopped"
    SUPERSEDED = "superseded"  # jeton lu avant un renouvellement


@dataclass(frozen=True)
class SessionState:
    """
    Instantané de l'état de session.

    Attributes:
        phase: Phase courante
        user: Profil courant (None hors session)
        seconds_remaining: Secondes avant expiration du jeton d'accès
        warning_active: Avertissement d'expiration en cours
    """

    phase: SessionPhase = SessionPhase.UNAUTHENTICATED
    user: Optional[User] = None
    seconds_remaining: int = 0
    warning_active: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.phase in (SessionPhase.AUTHENTICATED, SessionPhase.RENEWING)


@dataclass(frozen=True)
class LoginFailure:
    """Échec de login typé."""

    reason: LoginFailureReason
    message: str
    redirect_to: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.reason in (
            LoginFailureReason.INVALID_CREDENTIALS,
            LoginFailureReason.NETWORK_FAILURE,
        )


@dataclass(frozen=True)
class LoginResult:
    """Résultat de login (jamais une exception vers la présentation)."""

    success: bool
    user: Optional[User] = None
    requires_onboarding: bool = False
    failure: Optional[LoginFailure] = None

    @classmethod
    def succeeded(cls, user: User, requires_onboarding: bool = False) -> "LoginResult":
        return cls(success=True, user=user, requires_onboarding=requires_onboarding)

    @classmethod
    def failed(
        cls,
        reason: LoginFailureReason,
        message: str,
        redirect_to: Optional[str] = None,
    ) -> "LoginResult":
        return cls(
            success=False,
            failure=LoginFailure(reason=reason, message=message, redirect_to=redirect_to),
        )


@dataclass
class MonitorConfig:
    """
    Configuration d'un suivi d'expiration.

    Attributes:
        on_warning: Appelé une fois par instance de jeton sous le seuil
        on_expired: Appelé une fois à l'expiration
        warning_lead_time: Délai avant expiration du premier avertissement
        poll_interval: Intervalle entre deux ticks
        on_tick: Reçoit seconds_remaining à chaque tick (optionnel)
    """

    on_warning: SessionCallback
    on_expired: SessionCallback
    warning_lead_time: timedelta = timedelta(minutes=5)
    poll_interval: timedelta = timedelta(seconds=10)
    on_tick: Optional[TickCallback] = None

    def __post_init__(self) -> None:
        if self.warning_lead_time < timedelta(0):
            raise ValueError("warning_lead_time cannot be negative")
        if self.poll_interval <= timedelta(0):
            raise ValueError("poll_interval must be positive")


@dataclass
class MonitorHandle:
    """
    État explicite d'un suivi d'expiration.

    warning_triggered n'est réarmé que lorsqu'une nouvelle instance de jeton
    (token_identity différent) est installée.

    renewals est incrémenté au début et à la fin de chaque renew(): un tick
    qui a lu le jeton avant ou pendant un renouvellement abandonne son
    résultat.
    """

    handle_id: str
    config: MonitorConfig
    warning_triggered: bool = False
    token_identity: Optional[str] = None
    warning_active: bool = False
    seconds_remaining: int = 0
    expired_fired: bool = False
    stopped: bool = False
    renewals: int = 0
    task: Optional["asyncio.Task[Any]"] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return not self.stopped


@dataclass(frozen=True)
class SessionPresentation:
    """Vue exposée à la couche de présentation."""

    seconds_remaining: int
    warning_active: bool
    extend: Callable[[], Awaitable[bool]]
    sign_out: Callable[[], Awaitable[None]]


# ══════════════════════════════════════════════════════════════════════════════
# INTERFACES
# ══════════════════════════════════════════════════════════════════════════════


class ISessionMonitor(ABC):
    """Suivi de la fenêtre de validité du jeton d'accès."""

    @abstractmethod
    async def start(self, config: MonitorConfig) -> MonitorHandle:
        """Premier tick immédiat puis poll périodique."""
        pass

    @abstractmethod
    async def tick(self, handle: MonitorHandle) -> TickOutcome:
        """Recalcule le temps restant depuis le jeton stocké le plus récent."""
        pass

    @abstractmethod
    async def renew(self, handle: Optional[MonitorHandle] = None) -> TokenPair:
        """
        Échange le jeton de rafraîchissement contre une nouvelle paire.

        Raises:
            RefreshRejectedError: Jeton refusé (absent, consommé, révoqué)
            NetworkFailureError: Échec transitoire
        """
        pass

    @abstractmethod
    def stop(self, handle: MonitorHandle) -> None:
        """Annule le poll. Idempotent."""
        pass


class ISessionOrchestrator(ABC):
    """Machine d'états de session."""

    @property
    @abstractmethod
    def state(self) -> SessionState:
        """Instantané courant."""
        pass

    @abstractmethod
    async def check_session(self) -> SessionState:
        """Restaure une session persistée. Ne lève jamais."""
        pass

    @abstractmethod
    async def login(self, credentials: LoginCredentials) -> LoginResult:
        """Authentifie. Ne lève jamais."""
        pass

    @abstractmethod
    async def logout(self) -> None:
        """Termine la session et purge les identifiants persistés."""
        pass

    @abstractmethod
    async def extend_session(self) -> bool:
        """Renouvelle les jetons; échec de rafraîchissement → logout."""
        pass

    @abstractmethod
    async def refresh_user_profile(self) -> User:
        """Recharge et remplace en bloc le profil utilisateur."""
        pass
