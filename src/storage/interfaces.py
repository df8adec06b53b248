"""
LOT 1: Secure Store - Interfaces

Contrats de la persistance locale des identifiants.

Le store enveloppe chaque valeur dans une enveloppe versionnée et marquée
d'un tag d'intégrité (empreinte bcrypt salée). Ce tag détecte la corruption
et la falsification; ce n'est PAS un chiffrement: toute personne ayant accès
à l'appareil peut lire le payload base64.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Optional


ENVELOPE_VERSION = "v1"
ENVELOPE_DELIMITER = ":"
ENVELOPE_FIELD_COUNT = 4


class EnvelopeFormatError(ValueError):
    """Enveloppe mal formée ou de version inconnue."""

    pass


@dataclass(frozen=True)
class StoredEnvelope:
    """
    Unité persistée dans le backend clé/valeur.

    Attributes:
        version: Tag de format fixe (migration future du format)
        integrity_tag: Empreinte bcrypt salée calculée à l'écriture
        payload: Valeur sérialisée encodée en base64
        written_at: Horodatage de création (epoch millisecondes)
    """

    version: str
    integrity_tag: str
    payload: str
    written_at: int

    def serialize(self) -> str:
        """Forme persistée: version:integrity_tag:payload:written_at."""
        return ENVELOPE_DELIMITER.join(
            [self.version, self.integrity_tag, self.payload, str(self.written_at)]
        )

    @classmethod
    def parse(cls, raw: str) -> "StoredEnvelope":
        """
        Décode la forme persistée.

        Raises:
            EnvelopeFormatError: Nombre de champs incorrect, version inconnue,
                champ vide ou horodatage invalide
        """
        parts = raw.split(ENVELOPE_DELIMITER)
        if len(parts) != ENVELOPE_FIELD_COUNT:
            raise EnvelopeFormatError(
                f"Expected {ENVELOPE_FIELD_COUNT} fields, got {len(parts)}"
            )

        version, integrity_tag, payload, written_at = parts
        if version != ENVELOPE_VERSION:
            raise EnvelopeFormatError(f"Unsupported envelope version: {version!r}")
        if not integrity_tag or not payload:
            raise EnvelopeFormatError("Missing integrity tag or payload")
        try:
            written_at_ms = int(written_at)
        except ValueError:
            raise EnvelopeFormatError(f"Invalid written_at: {written_at!r}")

        return cls(
            version=version,
            integrity_tag=integrity_tag,
            payload=payload,
            written_at=written_at_ms,
        )


class StorageErrorKind(Enum):
    """Catégories d'échec d'écriture."""

    SERIALIZATION = "serialization"
    HASHING = "hashing"
    BACKEND = "backend"


@dataclass(frozen=True)
class StorageError:
    """Échec d'écriture typé, retourné (jamais levé) par put()."""

    kind: StorageErrorKind
    key: str
    message: str


@dataclass(frozen=True)
class StorageResult:
    """
    Résultat d'une écriture.

    Un put() en échec signifie "la valeur peut ne pas survivre au
    rechargement"; l'appelant décide si c'est acceptable.
    """

    ok: bool
    error: Optional[StorageError] = None

    @classmethod
    def success(cls) -> "StorageResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, kind: StorageErrorKind, key: str, message: str) -> "StorageResult":
        return cls(ok=False, error=StorageError(kind=kind, key=key, message=message))


class IKeyValueBackend(ABC):
    """
    Store clé/valeur synchrone, partagé par origine.

    Les implémentations ne connaissent que des chaînes; l'enveloppe est
    entièrement gérée par le SecureStore.
    """

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        """Retourne la chaîne stockée ou None."""
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """
        Écrit (écrase) la chaîne pour key.

        Raises:
            OSError: Échec d'écriture du support
        """
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        """Supprime key. Idempotent."""
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        """Liste des clés présentes."""
        pass


class ISecureStore(ABC):
    """
    Persistance des identifiants avec contrôle d'intégrité.

    Une enveloppe corrompue, falsifiée ou d'un format inconnu est traitée
    exactement comme une clé absente.
    """

    @abstractmethod
    async def put(self, key: str, value: Any) -> StorageResult:
        """
        Sérialise, marque et écrit value. Ne lève jamais.

        Returns:
            StorageResult (ok ou erreur typée)
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """
        Lit, vérifie et décode la valeur.

        Returns:
            Valeur décodée, ou None si absente ou non vérifiable
        """
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        """Suppression inconditionnelle, idempotente; un échec du backend est loggé, jamais levé."""
        pass

    @abstractmethod
    def remove_many(self, keys: Iterable[str]) -> None:
        """Suppression de plusieurs clés; chaque clé est tentée même si une autre échoue."""
        pass
