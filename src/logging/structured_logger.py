"""
LOT 4: Logging - Structured Logger

Logger JSON structuré avec champs obligatoires et historique borné.
"""

import sys
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, List, Optional

from .interfaces import (
    IStructuredLogger,
    ISensitiveMasker,
    LogConfig,
    LogEntry,
    LogLevel,
)
from .sensitive_masker import SensitiveMasker


class MissingRequiredFieldError(Exception):
    """Champ obligatoire manquant."""

    def __init__(self, field_name: str) -> None:
        self.field_name = field_name
        super().__init__(f"Required field missing: {field_name}")


class StructuredLogger(IStructuredLogger):
    """
    Logger JSON structuré.

    Chaque entrée est masquée (jetons, mots de passe), conservée dans un
    historique borné puis transmise à l'output handler s'il existe.

    Example:
        logger = StructuredLogger("session.monitor")
        logger.info("Session warning raised", seconds_remaining=290)
    """

    def __init__(
        self,
        name: str,
        config: Optional[LogConfig] = None,
        masker: Optional[ISensitiveMasker] = None,
        output_handler: Optional[Callable[[str], None]] = None,
    ) -> None:
        """
        Initialise le logger structuré.

        Args:
            name: Nom du logger (identifiant du composant)
            config: Configuration optionnelle
            masker: Masker pour données sensibles
            output_handler: Handler personnalisé pour output (stderr, tests...)

        Raises:
            ValueError: Si name vide
        """
        if not name or not name.strip():
            raise ValueError("Logger name cannot be empty")

        self._name = name.strip()
        self._config = config or LogConfig()
        self._masker = masker or SensitiveMasker()
        self._output_handler = output_handler
        self._entries: Deque[LogEntry] = deque(maxlen=self._config.history_size)
        self._default_tenant_id: str = self._config.default_tenant_id
        self._default_correlation_id: Optional[str] = self._config.default_correlation_id

    @property
    def name(self) -> str:
        """Retourne le nom du logger."""
        return self._name

    @property
    def config(self) -> LogConfig:
        """Retourne la configuration."""
        return self._config

    def set_default_tenant(self, tenant_id: str) -> None:
        """Définit tenant_id par défaut."""
        self._default_tenant_id = tenant_id

    def set_default_correlation(self, correlation_id: Optional[str]) -> None:
        """Définit correlation_id par défaut."""
        self._default_correlation_id = correlation_id

    def child(self, name: str) -> "StructuredLogger":
        """
        Crée un logger pour un sous-composant.

        Le logger enfant partage la configuration, le masker et l'output
        handler du parent.

        Args:
            name: Suffixe ajouté au nom du parent

        Returns:
            Nouveau StructuredLogger
        """
        child = StructuredLogger(
            f"{self._name}.{name}",
            config=self._config,
            masker=self._masker,
            output_handler=self._output_handler,
        )
        child.set_default_tenant(self._default_tenant_id)
        child.set_default_correlation(self._default_correlation_id)
        return child

    def log(
        self,
        level: LogLevel,
        message: str,
        correlation_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        **extra: Any,
    ) -> Optional[LogEntry]:
        """
        Crée un log structuré JSON.

        Processus:
            1. Vérifie niveau >= min_level
            2. Résout correlation_id et tenant_id
            3. Masque données sensibles dans extra
            4. Stocke l'entrée et l'envoie à l'output handler

        Returns:
            LogEntry créé ou None si filtré

        Raises:
            MissingRequiredFieldError: Si message vide
        """
        if not self._should_log(level):
            return None

        if not message:
            raise MissingRequiredFieldError("message")

        resolved_correlation = correlation_id or self._default_correlation_id
        if not resolved_correlation:
            resolved_correlation = str(uuid.uuid4())

        resolved_tenant = tenant_id or self._default_tenant_id
        if not resolved_tenant:
            raise MissingRequiredFieldError("tenant_id")

        masked_extra = {}
        if extra and self._config.include_extra:
            if self._config.mask_sensitive:
                masked_extra = self._masker.mask(dict(extra))
            else:
                masked_extra = dict(extra)

        entry = LogEntry(
            timestamp=self._generate_timestamp(),
            level=level,
            correlation_id=resolved_correlation,
            tenant_id=resolved_tenant,
            message=message,
            extra=masked_extra,
            logger_name=self._name,
        )
        self._entries.append(entry)

        if self._output_handler:
            self._output_handler(entry.to_json())

        return entry

    def _generate_timestamp(self) -> str:
        """
        Génère timestamp ISO 8601 UTC avec millisecondes.

        Format: 2024-12-04T14:30:00.123Z
        """
        now = datetime.now(timezone.utc)
        return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"

    def _should_log(self, level: LogLevel) -> bool:
        return LogLevel.get_priority(level) >= LogLevel.get_priority(
            self._config.min_level
        )

    def debug(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau DEBUG."""
        return self.log(LogLevel.DEBUG, message, **extra)

    def info(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau INFO."""
        return self.log(LogLevel.INFO, message, **extra)

    def warn(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau WARN."""
        return self.log(LogLevel.WARN, message, **extra)

    def error(self, message: str, **extra: Any) -> Optional[LogEntry]:
        """Log niveau ERROR."""
        return self.log(LogLevel.ERROR, message, **extra)

    def get_entries(self) -> List[LogEntry]:
        """Retourne les entrées de log capturées."""
        return list(self._entries)

    def clear_entries(self) -> None:
        """Efface les entrées capturées."""
        self._entries.clear()

    def get_entries_by_level(self, level: LogLevel) -> List[LogEntry]:
        """Filtre les entrées par niveau."""
        return [e for e in self._entries if e.level == level]

    def find(self, message: str) -> List[LogEntry]:
        """Retourne les entrées dont le message correspond exactement."""
        return [e for e in self._entries if e.message == message]


def stderr_handler(line: str) -> None:
    """Output handler écrivant une ligne JSON sur stderr."""
    sys.stderr.write(line + "\n")
    sys.stderr.flush()
