"""
LOT 2: Token Decoder

Lecture de l'échéance embarquée dans le jeton d'accès (claim exp, secondes
depuis epoch).
"""

import hashlib
from datetime import datetime, timezone
from typing import Any, Optional

import jwt

from .interfaces import ITokenDecoder, TokenClaims


class TokenDecodeError(Exception):
    """Jeton illisible (structure, base64 ou JSON invalide)."""

    pass


# Aucune vérification: seule la lecture des claims est attendue ici.
_NO_VERIFICATION = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
}


class TokenDecoder(ITokenDecoder):
    """
    Décodeur local de jetons JWT.

    Un exp absent, non numérique ou hors plage est rapporté comme None; le
    moniteur de session traite ce cas comme un jeton déjà expiré.

    Example:
        decoder = TokenDecoder()
        expiry = decoder.get_expiry(access_token)
    """

    def decode_without_validation(self, token: str) -> dict:
        """Décode sans valider. ⚠️ NE JAMAIS utiliser pour authentification."""
        if not isinstance(token, str) or not token:
            raise TokenDecodeError("Token must be a non-empty string")
        try:
            payload = jwt.decode(token, options=_NO_VERIFICATION)
        except jwt.InvalidTokenError as e:
            raise TokenDecodeError(f"Invalid token: {e}")
        if not isinstance(payload, dict):
            raise TokenDecodeError("Token payload is not an object")
        return payload

    def read_claims(self, token: str) -> TokenClaims:
        payload = self.decode_without_validation(token)
        subject = payload.get("sub")
        return TokenClaims(
            exp=self._to_datetime(payload.get("exp")),
            subject=str(subject) if subject is not None else None,
            iat=self._to_datetime(payload.get("iat")),
            session_id=payload.get("sid"),
        )

    def get_expiry(self, token: str) -> Optional[datetime]:
        try:
            return self.read_claims(token).exp
        except TokenDecodeError:
            return None

    def token_identity(self, token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]

    @staticmethod
    def _to_datetime(value: Any) -> Optional[datetime]:
        """Convertit un timestamp epoch (secondes) en datetime UTC."""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
