"""
LOT 4: Logging

Logging structuré JSON partagé par tous les composants de session:
- Champs obligatoires et timestamp ISO 8601 UTC
- Masquage des jetons, mots de passe et tags d'intégrité
- Historique borné consultable (diagnostic, tests)
"""

from .interfaces import (
    # Enums
    LogLevel,
    # Dataclasses
    LogEntry,
    LogConfig,
    # Interfaces
    IStructuredLogger,
    ISensitiveMasker,
)
from .sensitive_masker import SensitiveMasker
from .structured_logger import (
    StructuredLogger,
    MissingRequiredFieldError,
    stderr_handler,
)

__all__ = [
    # Enums
    "LogLevel",
    # Dataclasses
    "LogEntry",
    "LogConfig",
    # Interfaces
    "IStructuredLogger",
    "ISensitiveMasker",
    # Implementations
    "SensitiveMasker",
    "StructuredLogger",
    "stderr_handler",
    # Exceptions
    "MissingRequiredFieldError",
]
