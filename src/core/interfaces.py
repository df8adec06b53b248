"""
ZYNAXIA Session - Core Interfaces
Contrats de configuration du sous-système de session.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


ENV_PREFIX = "SESSION_"


# ══════════════════════════════════════════════════════════════════════════════
# TYPES
# ══════════════════════════════════════════════════════════════════════════════


class SessionConfig(BaseModel):
    """
    Configuration du sous-système de session.

    Attributes:
        api_base_url: URL de base de l'API (ex: https://api.example.com/api/v1)
        auth_path: Préfixe des routes d'authentification
        tenant: Tenant par défaut envoyé au login
        origin: Origine partagée du store persistant
        storage_dir: Répertoire du store fichier (None = mémoire)
        poll_interval_seconds: Intervalle du poll d'expiration
        warning_lead_time_seconds: Délai d'avertissement avant expiration
        hash_rounds: Coût bcrypt du tag d'intégrité (4-31)
        request_timeout_seconds: Timeout des requêtes HTTP
        log_level: Niveau minimal de log
    """

    model_config = ConfigDict(extra="forbid")

    api_base_url: str = Field(min_length=1)
    auth_path: str = "/auth"
    tenant: Optional[str] = None
    origin: str = Field(default="default", min_length=1)
    storage_dir: Optional[Path] = None
    poll_interval_seconds: float = Field(default=10.0, gt=0)
    warning_lead_time_seconds: float = Field(default=300.0, ge=0)
    hash_rounds: int = Field(default=10, ge=4, le=31)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized == "WARNING":
            normalized = "WARN"
        if normalized not in ("DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {value}")
        return normalized

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        **defaults: Any,
    ) -> "SessionConfig":
        """
        Construit la config depuis les variables SESSION_*.

        SESSION_API_BASE_URL, SESSION_HASH_ROUNDS, ... surchargent les
        valeurs passées en defaults.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = dict(defaults)
        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        return cls.model_validate(values)


# ══════════════════════════════════════════════════════════════════════════════
# INTERFACES
# ══════════════════════════════════════════════════════════════════════════════


class IConfigLoader(ABC):
    """Charge la configuration de session depuis un profil."""

    @abstractmethod
    async def load(self, profile: str) -> SessionConfig:
        """
        Charge la config d'un profil.

        Raises:
            ConfigIntegrityError: Fichier absent, YAML invalide ou valeurs refusées
        """
        pass
