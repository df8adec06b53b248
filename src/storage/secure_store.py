"""
LOT 1: Secure Store Implementation

Persistance des identifiants dans une enveloppe à contrôle d'intégrité.

Format persisté:
    v1:<empreinte bcrypt>:<payload base64>:<horodatage ms>

Threat model:
    L'empreinte bcrypt est un détecteur de falsification/corruption, pas un
    chiffrement. Le payload base64 reste lisible par tout processus ayant
    accès à l'appareil; c'est une limite acceptée.
"""

import asyncio
import base64
import binascii
import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

import bcrypt

from src.logging import IStructuredLogger, StructuredLogger
from .interfaces import (
    ENVELOPE_VERSION,
    EnvelopeFormatError,
    IKeyValueBackend,
    ISecureStore,
    StorageErrorKind,
    StorageResult,
    StoredEnvelope,
)


class SecureStore(ISecureStore):
    """
    Store d'identifiants avec enveloppe versionnée et tag d'intégrité.

    Chaque écriture tire un sel bcrypt neuf: la même valeur écrite deux fois
    produit deux enveloppes différentes. Le coût (hash_rounds) ralentit
    volontairement chaque appel; le calcul tourne dans un thread pour ne pas
    bloquer la boucle asyncio.

    Example:
        store = SecureStore(InMemoryKeyValueBackend())
        result = await store.put("accessToken", token)
        token = await store.get("accessToken")  # None si falsifié
    """

    DEFAULT_HASH_ROUNDS: int = 10
    MIN_HASH_ROUNDS: int = 4
    MAX_HASH_ROUNDS: int = 31

    def __init__(
        self,
        backend: IKeyValueBackend,
        hash_rounds: int = DEFAULT_HASH_ROUNDS,
        logger: Optional[IStructuredLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Args:
            backend: Store clé/valeur synchrone sous-jacent
            hash_rounds: Facteur de coût bcrypt (4-31)
            logger: Logger structuré (défaut: "storage.secure_store")
            clock: Horloge UTC injectable (horodatage des enveloppes)

        Raises:
            ValueError: Si hash_rounds hors bornes
        """
        if not self.MIN_HASH_ROUNDS <= hash_rounds <= self.MAX_HASH_ROUNDS:
            raise ValueError(
                f"hash_rounds must be between {self.MIN_HASH_ROUNDS} "
                f"and {self.MAX_HASH_ROUNDS}, got {hash_rounds}"
            )

        self._backend = backend
        self._hash_rounds = hash_rounds
        self._logger = logger or StructuredLogger("storage.secure_store")
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def backend(self) -> IKeyValueBackend:
        """Backend clé/valeur sous-jacent."""
        return self._backend

    async def put(self, key: str, value: Any) -> StorageResult:
        """
        Sérialise, marque et écrit value (écrase l'enveloppe existante).

        Ne lève jamais: chaque échec est loggé et retourné typé.

        Args:
            key: Clé de stockage
            value: Valeur JSON-sérialisable

        Returns:
            StorageResult.success() ou failure(kind, key, message)
        """
        try:
            serialized = self._serialize(value)
        except (TypeError, ValueError) as e:
            return self._write_failed(StorageErrorKind.SERIALIZATION, key, e)

        try:
            integrity_tag = await asyncio.to_thread(self._digest, serialized)
        except ValueError as e:
            return self._write_failed(StorageErrorKind.HASHING, key, e)

        envelope = StoredEnvelope(
            version=ENVELOPE_VERSION,
            integrity_tag=integrity_tag,
            payload=base64.b64encode(serialized).decode("ascii"),
            written_at=int(self._clock().timestamp() * 1000),
        )

        try:
            self._backend.set_item(key, envelope.serialize())
        except Exception as e:
            return self._write_failed(StorageErrorKind.BACKEND, key, e)

        self._logger.debug("Secure entry written", entry=key, written_at=envelope.written_at)
        return StorageResult.success()

    async def get(self, key: str) -> Optional[Any]:
        """
        Lit, vérifie et décode la valeur de key.

        Rejets (tous équivalents à "absent"):
            - enveloppe mal formée ou version inconnue
            - payload non base64 ou JSON invalide
            - empreinte qui ne vérifie pas le payload décodé

        Une entrée rejetée est supprimée du backend.

        Returns:
            Valeur décodée ou None
        """
        try:
            raw = self._backend.get_item(key)
        except OSError as e:
            self._logger.warn("Secure entry unreadable", entry=key, error=str(e))
            return None

        if raw is None:
            return None

        try:
            envelope = StoredEnvelope.parse(raw)
            serialized = base64.b64decode(envelope.payload, validate=True)
        except (EnvelopeFormatError, binascii.Error) as e:
            self._discard(key, raw, f"malformed envelope: {e}")
            return None

        verified = await asyncio.to_thread(self._verify, serialized, envelope.integrity_tag)
        if not verified:
            self._discard(key, raw, "integrity check failed")
            return None

        try:
            return json.loads(serialized.decode("utf-8"))
        except ValueError as e:
            self._discard(key, raw, f"undecodable payload: {e}")
            return None

    def remove(self, key: str) -> None:
        """Supprime key (idempotent). Un échec du backend est loggé, jamais levé."""
        if self._remove_entry(key):
            self._logger.debug("Secure entry removed", entry=key)

    def remove_many(self, keys: Iterable[str]) -> None:
        """
        Supprime toutes les clés données (idempotent).

        Chaque clé est tentée même si une suppression précédente échoue.
        """
        removed = []
        failed = []
        for key in keys:
            if self._remove_entry(key):
                removed.append(key)
            else:
                failed.append(key)
        self._logger.info("Secure entries cleared", entries=removed, count=len(removed))
        if failed:
            self._logger.error("Secure entries not cleared", entries=failed, count=len(failed))

    # ------------------------------------------------------------------
    # Internes
    # ------------------------------------------------------------------

    @staticmethod
    def _serialize(value: Any) -> bytes:
        return json.dumps(
            value, ensure_ascii=False, separators=(",", ":"), allow_nan=False
        ).encode("utf-8")

    @staticmethod
    def _prehash(serialized: bytes) -> bytes:
        """
        Condensat SHA-256 (base64, 44 octets) du payload.

        bcrypt ne prend que 72 octets en entrée; un jeton JWT les dépasse.
        """
        return base64.b64encode(hashlib.sha256(serialized).digest())

    def _digest(self, serialized: bytes) -> str:
        salt = bcrypt.gensalt(rounds=self._hash_rounds)
        return bcrypt.hashpw(self._prehash(serialized), salt).decode("ascii")

    def _verify(self, serialized: bytes, integrity_tag: str) -> bool:
        """Comparaison à temps constant via bcrypt.checkpw."""
        try:
            return bcrypt.checkpw(self._prehash(serialized), integrity_tag.encode("ascii"))
        except ValueError:
            # Sel invalide ou tag non ASCII
            return False

    def _discard(self, key: str, raw: str, reason: str) -> None:
        """
        Supprime une entrée non vérifiable (StorageCorrupt).

        Une écriture concurrente plus récente n'est pas effacée: la
        suppression n'a lieu que si le backend contient encore la chaîne lue.
        """
        self._logger.warn(
            "Secure entry discarded",
            entry=key,
            event="storage_corrupt",
            reason=reason,
        )
        if self._backend.get_item(key) == raw:
            self._remove_entry(key)

    def _remove_entry(self, key: str) -> bool:
        try:
            self._backend.remove_item(key)
        except OSError as e:
            self._logger.error("Secure entry not removed", entry=key, error=str(e))
            return False
        return True

    def _write_failed(self, kind: StorageErrorKind, key: str, error: Exception) -> StorageResult:
        self._logger.error(
            "Secure entry not persisted",
            entry=key,
            kind=kind.value,
            error=str(error),
        )
        return StorageResult.failure(kind, key, str(error))
