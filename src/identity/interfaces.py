"""
LOT 3: Identity Service - Interfaces

Frontière avec le service d'identité distant (émission, rafraîchissement et
révocation des jetons, profil utilisateur).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ══════════════════════════════════════════════════════════════════════════════
# TYPES
# ══════════════════════════════════════════════════════════════════════════════


class User(BaseModel):
    """
    Profil utilisateur retourné par le service d'identité.

    Instantané opaque: remplacé en bloc, jamais patché champ par champ.
    Les champs inconnus sont conservés.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    email: Optional[str] = None
    first_name: Optional[str] = Field(default=None, alias="firstName")
    last_name: Optional[str] = Field(default=None, alias="lastName")
    role: Optional[Union[str, Dict[str, Any]]] = None
    merchant: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def normalize_id(cls, data: Any) -> Any:
        """Accepte _id (documents Mongo) et les identifiants numériques."""
        if isinstance(data, dict):
            data = dict(data)
            if "id" not in data and "_id" in data:
                data["id"] = data.pop("_id")
            if isinstance(data.get("id"), int):
                data["id"] = str(data["id"])
        return data

    @property
    def role_slug(self) -> Optional[str]:
        """Rôle sous forme de slug (le service renvoie une chaîne ou un objet)."""
        if isinstance(self.role, dict):
            return self.role.get("slug") or self.role.get("name")
        return self.role

    @property
    def tenant(self) -> Optional[str]:
        """Sous-domaine du tenant de l'utilisateur."""
        if self.merchant:
            return self.merchant.get("subdomain")
        return None

    def snapshot(self) -> Dict[str, Any]:
        """Forme persistable (alias du service conservés)."""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class TokenPair:
    """Couple jeton d'accès / jeton de rafraîchissement."""

    access_token: str
    refresh_token: str

    def __repr__(self) -> str:
        return "TokenPair(access_token=***, refresh_token=***)"


@dataclass(frozen=True)
class LoginCredentials:
    """Identifiants saisis par l'utilisateur."""

    email: str
    password: str
    tenant: Optional[str] = None

    def __repr__(self) -> str:
        return f"LoginCredentials(email={self.email!r}, password=***, tenant={self.tenant!r})"


@dataclass(frozen=True)
class LoginResponse:
    """
    Réponse de login.

    Le user retourné ici est partiel: il n'est pas utilisé pour les
    décisions d'autorisation.
    """

    tokens: TokenPair
    user: Optional[Dict[str, Any]] = None
    requires_onboarding: bool = False


# ══════════════════════════════════════════════════════════════════════════════
# EXCEPTIONS
# ══════════════════════════════════════════════════════════════════════════════


class IdentityServiceError(Exception):
    """
    Réponse non-2xx du service d'identité.

    Attributes:
        message: Message du corps {message, code?}
        status_code: Statut HTTP (None hors HTTP)
        code: Code applicatif optionnel
        payload: Corps brut décodé
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.code = code
        self.payload = payload or {}
        super().__init__(message)


class RefreshRejectedError(IdentityServiceError):
    """Jeton de rafraîchissement consommé, expiré ou révoqué."""

    pass


class NetworkFailureError(IdentityServiceError):
    """Échec transitoire (transport, timeout, 5xx). Réessayable."""

    pass


# ══════════════════════════════════════════════════════════════════════════════
# INTERFACES
# ══════════════════════════════════════════════════════════════════════════════


class IIdentityService(ABC):
    """Client du service d'identité."""

    @abstractmethod
    async def login(self, credentials: LoginCredentials) -> LoginResponse:
        """
        POST /login {email, password, tenant?}.

        Raises:
            IdentityServiceError: Identifiants rejetés
            NetworkFailureError: Échec transitoire
        """
        pass

    @abstractmethod
    async def get_current_user(self, access_token: str) -> User:
        """
        GET /me.

        Raises:
            IdentityServiceError: Jeton rejeté
            NetworkFailureError: Échec transitoire
        """
        pass

    @abstractmethod
    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        POST /refresh {refreshToken}.

        Raises:
            RefreshRejectedError: Jeton de rafraîchissement refusé
            NetworkFailureError: Échec transitoire
        """
        pass

    @abstractmethod
    async def logout(self, access_token: Optional[str]) -> None:
        """POST /logout (best effort côté appelant)."""
        pass

    async def aclose(self) -> None:
        """Libère les ressources réseau (aucune par défaut)."""
        pass
