"""
LOT 2: Interfaces Auth

Lecture locale des claims du jeton d'accès.

Le client ne valide jamais la signature: il lit seulement l'échéance (exp)
pour suivre la fenêtre de validité de la session. L'autorisation reste du
ressort du service d'identité.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class TokenClaims:
    """
    Claims lus (non validés) du jeton d'accès.

    Attributes:
        exp: Échéance du jeton (UTC), None si claim absent ou illisible
        subject: Identifiant utilisateur (sub claim)
        iat: Date d'émission (UTC)
        session_id: Identifiant session émetteur (sid claim)
    """

    exp: Optional[datetime]
    subject: Optional[str] = None
    iat: Optional[datetime] = None
    session_id: Optional[str] = None


class ITokenDecoder(ABC):
    """Interface décodage local d'un jeton auto-descriptif."""

    @abstractmethod
    def decode_without_validation(self, token: str) -> dict:
        """
        Décode payload sans valider la signature.

        ⚠️ NE JAMAIS utiliser pour authentification.

        Raises:
            TokenDecodeError: Jeton illisible
        """
        pass

    @abstractmethod
    def read_claims(self, token: str) -> TokenClaims:
        """
        Extrait les claims utiles au suivi d'expiration.

        Raises:
            TokenDecodeError: Jeton illisible
        """
        pass

    @abstractmethod
    def get_expiry(self, token: str) -> Optional[datetime]:
        """
        Retourne l'échéance du jeton (exp secondes epoch → datetime UTC).

        Returns:
            None si jeton illisible ou exp absent/invalide
        """
        pass

    @abstractmethod
    def token_identity(self, token: str) -> str:
        """Empreinte courte et stable d'une instance de jeton."""
        pass
