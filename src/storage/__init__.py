"""
LOT 1: Secure Store

Persistance locale des identifiants:
- Enveloppe versionnée v1:tag:payload:writtenAt
- Tag d'intégrité bcrypt salé (détection, pas chiffrement)
- Entrée corrompue = entrée absente (auto-réparation)
- Écritures à résultat typé (StorageResult)
"""

from .interfaces import (
    # Constantes
    ENVELOPE_VERSION,
    # Data classes
    StoredEnvelope,
    StorageError,
    StorageErrorKind,
    StorageResult,
    # Interfaces
    IKeyValueBackend,
    ISecureStore,
    # Exceptions
    EnvelopeFormatError,
)
from .key_value_backend import InMemoryKeyValueBackend, JsonFileKeyValueBackend
from .secure_store import SecureStore

__all__ = [
    "ENVELOPE_VERSION",
    "StoredEnvelope",
    "StorageError",
    "StorageErrorKind",
    "StorageResult",
    "IKeyValueBackend",
    "ISecureStore",
    "EnvelopeFormatError",
    "InMemoryKeyValueBackend",
    "JsonFileKeyValueBackend",
    "SecureStore",
]
