"""
LOT 5: Session Monitor Implementation

Suivi de l'échéance du jeton d'accès stocké.

Chaque tick relit le jeton le plus récent dans le SecureStore (jamais de
cache entre deux ticks) et calcule remaining = exp * 1000 - now en
millisecondes. Le moniteur ne parle au réseau que dans renew().
"""

import asyncio
import inspect
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from src.auth import ITokenDecoder, TokenDecoder
from src.identity import IIdentityService, RefreshRejectedError, TokenPair
from src.logging import IStructuredLogger, StructuredLogger
from src.storage import ISecureStore
from .interfaces import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    ISessionMonitor,
    MonitorConfig,
    MonitorHandle,
    TickOutcome,
)


class SessionMonitor(ISessionMonitor):
    """
    Moniteur d'expiration de session.

    Règles par tick:
        - Aucun jeton stocké → arrêt, aucun callback
        - remaining <= 0 → on_expired() une seule fois, arrêt du poll
        - remaining <= warning_lead_time et avertissement non émis pour
          cette instance de jeton → warning_active, on_warning() une fois
        - seconds_remaining = max(0, floor(remaining_ms / 1000)) toujours

    Un claim exp absent ou illisible est traité comme déjà expiré.

    Example:
        monitor = SessionMonitor(store, identity_service)
        handle = await monitor.start(MonitorConfig(on_warning=warn, on_expired=expire))
        ...
        monitor.stop(handle)
    """

    DEFAULT_POLL_INTERVAL: timedelta = timedelta(seconds=10)

    def __init__(
        self,
        store: ISecureStore,
        identity_service: IIdentityService,
        decoder: Optional[ITokenDecoder] = None,
        logger: Optional[IStructuredLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """
        Args:
            store: Store des identifiants (source du jeton à chaque tick)
            identity_service: Service d'identité (renew uniquement)
            decoder: Décodeur de jetons (défaut: TokenDecoder)
            logger: Logger structuré (défaut: "session.monitor")
            clock: Horloge UTC injectable
        """
        self._store = store
        self._identity = identity_service
        self._decoder = decoder or TokenDecoder()
        self._logger = logger or StructuredLogger("session.monitor")
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._handles: Dict[str, MonitorHandle] = {}

    @property
    def handles(self) -> List[MonitorHandle]:
        """Suivis actifs."""
        return [h for h in self._handles.values() if h.active]

    async def start(self, config: MonitorConfig) -> MonitorHandle:
        """
        Démarre un suivi: premier tick immédiat, puis poll périodique.

        Args:
            config: Seuil d'avertissement, intervalle et callbacks

        Returns:
            MonitorHandle (déjà arrêté si aucun jeton ou jeton expiré)
        """
        handle = MonitorHandle(handle_id=uuid.uuid4().hex, config=config)
        self._handles[handle.handle_id] = handle
        self._logger.debug(
            "Session monitor started",
            handle_id=handle.handle_id,
            warning_lead_seconds=config.warning_lead_time.total_seconds(),
            poll_seconds=config.poll_interval.total_seconds(),
        )

        await self.tick(handle)
        if handle.active:
            handle.task = asyncio.get_running_loop().create_task(self._poll(handle))
        return handle

    async def tick(self, handle: MonitorHandle) -> TickOutcome:
        """
        Un passage du poll.

        Les drapeaux du handle sont mis à jour avant tout callback, si bien
        qu'un tick concurrent ne peut pas émettre deux fois le même
        événement.

        Returns:
            TickOutcome du passage
        """
        if handle.stopped:
            return TickOutcome.STOPPED

        renewals = handle.renewals
        token = await self._store.get(ACCESS_TOKEN_KEY)
        if handle.stopped:
            return TickOutcome.STOPPED
        if handle.renewals != renewals:
            self._logger.debug("Stale session monitor tick dropped", handle_id=handle.handle_id)
            return TickOutcome.SUPERSEDED

        if not isinstance(token, str) or not token:
            handle.seconds_remaining = 0
            handle.warning_active = False
            self._halt(handle)
            self._logger.info("No access token, session monitor stopped", handle_id=handle.handle_id)
            return TickOutcome.NO_TOKEN

        identity = self._decoder.token_identity(token)
        if identity != handle.token_identity:
            handle.token_identity = identity
            handle.warning_triggered = False
            handle.warning_active = False

        remaining_ms = self._remaining_ms(token)
        handle.seconds_remaining = max(0, math.floor(remaining_ms / 1000))
        config = handle.config

        if remaining_ms <= 0:
            handle.warning_active = False
            self._halt(handle)
            outcome = TickOutcome.EXPIRED
            fire_expired = not handle.expired_fired
            handle.expired_fired = True
        elif (
            remaining_ms <= config.warning_lead_time / timedelta(milliseconds=1)
            and not handle.warning_triggered
        ):
            handle.warning_triggered = True
            handle.warning_active = True
            outcome = TickOutcome.WARNING
            fire_expired = False
        else:
            outcome = TickOutcome.COUNTING
            fire_expired = False

        if config.on_tick is not None:
            await self._fire(config.on_tick, "on_tick", handle.seconds_remaining)

        if outcome is TickOutcome.EXPIRED and fire_expired:
            self._logger.warn("Session expired", handle_id=handle.handle_id)
            await self._fire(config.on_expired, "on_expired")
        elif outcome is TickOutcome.WARNING:
            self._logger.info(
                "Session expiry warning",
                handle_id=handle.handle_id,
                seconds_remaining=handle.seconds_remaining,
            )
            await self._fire(config.on_warning, "on_warning")

        return outcome

    async def renew(self, handle: Optional[MonitorHandle] = None) -> TokenPair:
        """
        Échange le jeton de rafraîchissement stocké contre une nouvelle paire.

        La nouvelle paire est persistée, l'avertissement est réarmé et le
        décompte repart sur l'échéance du nouveau jeton. Les échecs sont
        propagés: la décision de déconnecter revient à l'appelant.

        Raises:
            RefreshRejectedError: Aucun jeton stocké, ou jeton refusé
            NetworkFailureError: Échec transitoire
        """
        if handle is not None:
            handle.renewals += 1

        refresh_token = await self._store.get(REFRESH_TOKEN_KEY)
        if not isinstance(refresh_token, str) or not refresh_token:
            raise RefreshRejectedError("No refresh token available")

        tokens = await self._identity.refresh(refresh_token)

        for key, value in (
            (ACCESS_TOKEN_KEY, tokens.access_token),
            (REFRESH_TOKEN_KEY, tokens.refresh_token),
        ):
            result = await self._store.put(key, value)
            if not result.ok:
                self._logger.warn("Renewed credential not persisted", entry=key)

        if handle is not None:
            handle.renewals += 1
        self._logger.info("Session tokens renewed")

        if handle is not None and handle.active:
            handle.token_identity = self._decoder.token_identity(tokens.access_token)
            handle.warning_triggered = False
            handle.warning_active = False
            await self.tick(handle)

        return tokens

    def stop(self, handle: MonitorHandle) -> None:
        """Annule le poll du handle. Idempotent."""
        if not handle.stopped:
            self._logger.debug("Session monitor stopped", handle_id=handle.handle_id)
        self._halt(handle)
        self._handles.pop(handle.handle_id, None)

    def stop_all(self) -> None:
        """Annule tous les suivis (démontage)."""
        for handle in list(self._handles.values()):
            self.stop(handle)

    # ------------------------------------------------------------------
    # Internes
    # ------------------------------------------------------------------

    def _remaining_ms(self, token: str) -> float:
        """Millisecondes avant échéance; 0 si exp illisible (fail closed)."""
        expiry = self._decoder.get_expiry(token)
        if expiry is None:
            self._logger.warn("Access token has no readable expiry")
            return 0.0
        return (expiry - self._clock()) / timedelta(milliseconds=1)

    def _halt(self, handle: MonitorHandle) -> None:
        """
        Marque le handle arrêté et annule sa tâche.

        La tâche courante n'est jamais annulée: un stop émis depuis un
        callback du poll (expiration → logout) laisse le callback finir,
        la boucle sort d'elle-même.
        """
        handle.stopped = True
        task = handle.task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

    async def _poll(self, handle: MonitorHandle) -> None:
        interval = handle.config.poll_interval.total_seconds()
        while handle.active:
            await asyncio.sleep(interval)
            if not handle.active:
                break
            try:
                await self.tick(handle)
            except Exception as e:
                self._logger.error(
                    "Session monitor tick failed",
                    handle_id=handle.handle_id,
                    error=str(e),
                )

    async def _fire(self, callback: Callable[..., Any], name: str, *args: Any) -> None:
        """Appelle un callback synchrone ou asynchrone; ses erreurs sont loggées."""
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self._logger.error("Session monitor callback failed", callback=name, error=str(e))
