"""
ZYNAXIA Session - Config Loader Implementation
Charge la configuration de session depuis fichiers YAML.
"""

from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError

from .interfaces import IConfigLoader, SessionConfig


class ConfigIntegrityError(Exception):
    """Erreur d'intégrité de configuration."""

    pass


class ConfigLoader(IConfigLoader):
    """Chargement des configurations depuis fichiers YAML."""

    def __init__(self, configs_path: str = "configs"):
        self.configs_path = Path(configs_path)

    async def load(self, profile: str) -> SessionConfig:
        """
        Charge la config d'un profil.

        Args:
            profile: Nom du profil (fichier <profile>.yaml)

        Returns:
            SessionConfig validée

        Raises:
            ConfigIntegrityError: Si fichier inexistant ou structure invalide
        """
        config_file = self.configs_path / f"{profile}.yaml"

        if not config_file.exists():
            raise ConfigIntegrityError(f"Configuration non trouvée pour profil: {profile}")

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigIntegrityError(f"Erreur de parsing YAML: {e}")
        except OSError as e:
            raise ConfigIntegrityError(f"Erreur de lecture fichier: {e}")

        if not isinstance(raw, dict):
            raise ConfigIntegrityError("Configuration doit être un objet YAML")

        return self._validate(raw)

    def _validate(self, raw: Dict[str, Any]) -> SessionConfig:
        """Valide la structure contre SessionConfig."""
        # Section "session:" optionnelle
        section = raw.get("session", raw)
        if not isinstance(section, dict):
            raise ConfigIntegrityError("session doit être un objet")

        try:
            return SessionConfig.model_validate(section)
        except ValidationError as e:
            fields = ", ".join(
                ".".join(str(part) for part in error["loc"]) for error in e.errors()
            )
            raise ConfigIntegrityError(f"Configuration invalide: {fields}")
