"""
LOT 2: Auth

Lecture locale des jetons d'accès (échéance, sujet, empreinte d'instance).
"""

from .interfaces import ITokenDecoder, TokenClaims
from .token_decoder import TokenDecoder, TokenDecodeError

__all__ = [
    # Interfaces
    "ITokenDecoder",
    # Data classes
    "TokenClaims",
    # Implementations
    "TokenDecoder",
    # Exceptions
    "TokenDecodeError",
]
