"""
LOT 5: Session Orchestrator Implementation

Machine d'états de session côté client.

    UNAUTHENTICATED → AUTHENTICATING → AUTHENTICATED ⇄ RENEWING
    * --logout()--> UNAUTHENTICATED

Garde de concurrence:
    login, check_session et extend_session forment une seule famille.
    Un appel identique à une opération en vol rejoint son résultat; un
    appel différent attend son tour. logout n'attend jamais: il incrémente
    la génération de session, ce qui invalide les résultats en vol.
"""

import asyncio
import hashlib
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from src.auth import ITokenDecoder, TokenDecoder
from src.identity import (
    IIdentityService,
    IdentityServiceError,
    LoginCredentials,
    NetworkFailureError,
    User,
)
from src.logging import IStructuredLogger, StructuredLogger
from src.storage import ISecureStore
from .interfaces import (
    ACCESS_TOKEN_KEY,
    CREDENTIAL_KEYS,
    REFRESH_TOKEN_KEY,
    USER_KEY,
    ISessionMonitor,
    ISessionOrchestrator,
    LoginFailureReason,
    LoginResult,
    MonitorConfig,
    MonitorHandle,
    SessionPhase,
    SessionPresentation,
    SessionState,
)


SessionListener = Callable[[SessionState], None]


class SessionOrchestratorError(Exception):
    """Opération impossible dans l'état de session courant."""
    pass


def _lookup(payload: Dict[str, Any], name: str) -> Any:
    """Cherche un champ au premier niveau ou sous "data"."""
    if name in payload:
        return payload[name]
    data = payload.get("data")
    if isinstance(data, dict):
        return data.get(name)
    return None


class SessionOrchestrator(ISessionOrchestrator):
    """
    Orchestrateur de session.

    Seul propriétaire du SessionState: les appelants reçoivent des
    instantanés immuables, via state ou subscribe().

    Example:
        orchestrator = SessionOrchestrator(store, identity_service, monitor)
        result = await orchestrator.login(LoginCredentials("a@b.c", "secret"))
        if not result.success:
            print(result.failure.reason)
    """

    def __init__(
        self,
        store: ISecureStore,
        identity_service: IIdentityService,
        monitor: ISessionMonitor,
        decoder: Optional[ITokenDecoder] = None,
        logger: Optional[IStructuredLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        warning_lead_time: timedelta = timedelta(minutes=5),
        poll_interval: timedelta = timedelta(seconds=10),
        owns_identity_service: bool = False,
    ) -> None:
        """
        Args:
            store: Store des identifiants persistés
            identity_service: Service d'identité distant
            monitor: Moniteur d'expiration
            decoder: Décodeur de jetons (défaut: TokenDecoder)
            logger: Logger structuré (défaut: "session.orchestrator")
            clock: Horloge UTC injectable
            warning_lead_time: Délai d'avertissement avant expiration
            poll_interval: Intervalle de poll du moniteur
            owns_identity_service: close() ferme aussi le service d'identité
        """
        self._store = store
        self._identity = identity_service
        self._monitor = monitor
        self._decoder = decoder or TokenDecoder()
        self._logger = logger or StructuredLogger("session.orchestrator")
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._warning_lead_time = warning_lead_time
        self._poll_interval = poll_interval
        self._owns_identity_service = owns_identity_service

        self._state = SessionState()
        self._listeners: List[SessionListener] = []
        self._lock = asyncio.Lock()
        self._inflight: Dict[Tuple[str, ...], "asyncio.Task[Any]"] = {}
        self._generation = 0
        self._handle: Optional[MonitorHandle] = None
        self._closed = False

    @property
    def state(self) -> SessionState:
        return self._state

    # ------------------------------------------------------------------
    # Opérations publiques
    # ------------------------------------------------------------------

    async def check_session(self) -> SessionState:
        """
        Restaure une session persistée (démarrage de l'application).

        Ne lève jamais: tout échec se présente comme "déconnecté".
        """
        return await self._guarded(("check_session",), self._check_session)

    async def login(self, credentials: LoginCredentials) -> LoginResult:
        """
        Authentifie l'utilisateur.

        Ne lève jamais: les refus sont traduits en LoginResult typé.
        """
        return await self._guarded(
            ("login", self._fingerprint(credentials)),
            partial(self._login, credentials),
        )

    async def extend_session(self) -> bool:
        """
        Prolonge la session (bouton "rester connecté").

        Returns:
            True si une nouvelle paire de jetons est installée
        """
        return await self._guarded(("extend_session",), self._extend_session)

    async def logout(self) -> None:
        """
        Termine la session.

        La purge locale est inconditionnelle; la notification du service
        d'identité est best effort.
        """
        self._generation += 1
        self._stop_monitor()

        access_token = None
        try:
            access_token = await self._store.get(ACCESS_TOKEN_KEY)
        finally:
            self._purge()

        self._logger.info("Session signed out")

        if isinstance(access_token, str) and access_token:
            try:
                await self._identity.logout(access_token)
            except Exception as e:
                self._logger.warn("Remote sign-out failed", error=str(e))

    async def refresh_user_profile(self) -> User:
        """
        Recharge le profil courant et remplace l'instantané en bloc.

        Raises:
            SessionOrchestratorError: Aucune session active
            IdentityServiceError: Refus ou échec du service d'identité
        """
        if not self._state.is_authenticated:
            raise SessionOrchestratorError("No active session")

        generation = self._generation
        access_token = await self._store.get(ACCESS_TOKEN_KEY)
        if not isinstance(access_token, str) or not access_token:
            raise SessionOrchestratorError("No stored access token")

        user = await self._identity.get_current_user(access_token)
        if generation != self._generation:
            raise SessionOrchestratorError("Session ended during profile refresh")

        await self._persist(USER_KEY, user.snapshot())
        self._update(user=user)
        self._logger.info("User profile refreshed", user_id=user.id)
        return user

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """
        Abonne un listener aux changements d'état.

        Returns:
            Fonction de désabonnement (idempotente)
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def presentation(self) -> SessionPresentation:
        """Vue courante pour la couche de présentation."""
        return SessionPresentation(
            seconds_remaining=self._state.seconds_remaining,
            warning_active=self._state.warning_active,
            extend=self.extend_session,
            sign_out=self.logout,
        )

    async def close(self) -> None:
        """
        Démontage: arrête tous les timers, sans purger les identifiants.

        Le service d'identité n'est fermé que s'il appartient à cet
        orchestrateur (pile assemblée par build_orchestrator).
        """
        if self._closed:
            return
        self._closed = True
        self._stop_monitor()
        self._listeners.clear()
        if self._owns_identity_service:
            await self._identity.aclose()
        self._logger.debug("Session orchestrator closed")

    # ------------------------------------------------------------------
    # Garde de concurrence
    # ------------------------------------------------------------------

    async def _guarded(
        self,
        key: Tuple[str, ...],
        operation: Callable[[], Awaitable[Any]],
    ) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._exclusive(operation))
            self._inflight[key] = task
            task.add_done_callback(partial(self._release, key))
        else:
            self._logger.debug("Joining in-flight session operation", operation=key[0])
        return await asyncio.shield(task)

    async def _exclusive(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        async with self._lock:
            return await operation()

    def _release(self, key: Tuple[str, ...], task: "asyncio.Task[Any]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    @staticmethod
    def _fingerprint(credentials: LoginCredentials) -> str:
        material = "\x00".join(
            (credentials.email, credentials.password, credentials.tenant or "")
        )
        return hashlib.sha256(material.encode("utf-8")).hexdigest()

    # ------------------------------------------------------------------
    # Opérations gardées
    # ------------------------------------------------------------------

    async def _login(self, credentials: LoginCredentials) -> LoginResult:
        generation = self._generation
        self._stop_monitor()
        self._transition(SessionState(phase=SessionPhase.AUTHENTICATING))

        try:
            response = await self._identity.login(credentials)
        except Exception as e:
            return self._login_failed(generation, self._map_login_error(e))

        if generation != self._generation:
            return self._interrupted()

        await self._persist(ACCESS_TOKEN_KEY, response.tokens.access_token)
        await self._persist(REFRESH_TOKEN_KEY, response.tokens.refresh_token)
        if generation != self._generation:
            self._discard_late_writes()
            return self._interrupted()

        # Le user de la réponse de login est partiel: second aller-retour
        try:
            user = await self._identity.get_current_user(response.tokens.access_token)
        except Exception as e:
            if generation == self._generation:
                self._store.remove_many(CREDENTIAL_KEYS)
            return self._login_failed(generation, self._map_login_error(e))

        if generation != self._generation:
            self._discard_late_writes()
            return self._interrupted()

        await self._persist(USER_KEY, user.snapshot())
        if generation != self._generation:
            self._discard_late_writes()
            return self._interrupted()

        self._transition(SessionState(phase=SessionPhase.AUTHENTICATED, user=user))
        await self._start_monitor(generation)
        if generation != self._generation:
            return self._interrupted()

        self._logger.info(
            "Login succeeded",
            user_id=user.id,
            requires_onboarding=response.requires_onboarding,
        )
        return LoginResult.succeeded(user, requires_onboarding=response.requires_onboarding)

    async def _check_session(self) -> SessionState:
        generation = self._generation
        try:
            await self._restore(generation)
        except Exception as e:
            self._logger.error("Session check failed", error=str(e))
            if generation == self._generation:
                self._stop_monitor()
                self._transition(SessionState())
        return self._state

    async def _restore(self, generation: int) -> None:
        self._stop_monitor()

        access_token = await self._store.get(ACCESS_TOKEN_KEY)
        if generation != self._generation:
            return
        if not isinstance(access_token, str) or not access_token:
            self._logger.info("No stored session")
            self._purge()
            return

        self._transition(SessionState(phase=SessionPhase.AUTHENTICATING))

        if self._is_expired(access_token):
            refresh_token = await self._store.get(REFRESH_TOKEN_KEY)
            if not isinstance(refresh_token, str) or not refresh_token:
                self._logger.info("Stored session expired")
                self._purge()
                return
            try:
                tokens = await self._monitor.renew()
            except NetworkFailureError as e:
                self._degrade(generation, e)
                return
            except IdentityServiceError as e:
                self._reject(generation, e)
                return
            if generation != self._generation:
                self._discard_late_writes()
                return
            access_token = tokens.access_token

        try:
            user = await self._identity.get_current_user(access_token)
        except NetworkFailureError as e:
            self._degrade(generation, e)
            return
        except IdentityServiceError as e:
            self._reject(generation, e)
            return

        if generation != self._generation:
            self._discard_late_writes()
            return

        await self._persist(USER_KEY, user.snapshot())
        if generation != self._generation:
            self._discard_late_writes()
            return

        self._transition(SessionState(phase=SessionPhase.AUTHENTICATED, user=user))
        await self._start_monitor(generation)
        if generation == self._generation:
            self._logger.info("Session restored", user_id=user.id)

    async def _extend_session(self) -> bool:
        if not self._state.is_authenticated:
            return False

        generation = self._generation
        self._update(phase=SessionPhase.RENEWING)

        try:
            await self._monitor.renew(self._handle)
        except NetworkFailureError as e:
            self._logger.warn("Session renewal unavailable", error=str(e))
            if generation == self._generation:
                self._update(phase=SessionPhase.AUTHENTICATED)
            return False
        except Exception as e:
            self._logger.warn("Session renewal rejected", error=str(e))
            if generation == self._generation:
                await self.logout()
            return False

        if generation != self._generation:
            self._discard_late_writes()
            return False

        handle = self._handle
        if handle is None or not handle.active:
            await self._start_monitor(generation)
            handle = self._handle

        self._update(
            phase=SessionPhase.AUTHENTICATED,
            warning_active=handle.warning_active if handle else False,
            seconds_remaining=handle.seconds_remaining if handle else 0,
        )
        self._logger.info("Session extended")
        return True

    # ------------------------------------------------------------------
    # Moniteur
    # ------------------------------------------------------------------

    async def _start_monitor(self, generation: int) -> None:
        if self._closed:
            return
        self._stop_monitor()
        config = MonitorConfig(
            on_warning=partial(self._on_warning, generation),
            on_expired=partial(self._on_expired, generation),
            warning_lead_time=self._warning_lead_time,
            poll_interval=self._poll_interval,
            on_tick=partial(self._on_tick, generation),
        )
        handle = await self._monitor.start(config)
        if generation != self._generation or self._closed:
            self._monitor.stop(handle)
            return
        self._handle = handle

    def _stop_monitor(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            self._monitor.stop(handle)

    def _on_tick(self, generation: int, seconds_remaining: int) -> None:
        """Réconcilie le décompte et l'avertissement avec le handle à chaque tick."""
        if generation != self._generation or not self._state.is_authenticated:
            return
        changes: Dict[str, Any] = {"seconds_remaining": seconds_remaining}
        handle = self._handle
        if handle is not None:
            changes["warning_active"] = handle.warning_active
        self._update(**changes)

    def _on_warning(self, generation: int) -> None:
        if generation == self._generation and self._state.is_authenticated:
            self._update(warning_active=True)

    async def _on_expired(self, generation: int) -> None:
        if generation == self._generation:
            await self.logout()

    # ------------------------------------------------------------------
    # Internes
    # ------------------------------------------------------------------

    def _is_expired(self, token: str) -> bool:
        expiry = self._decoder.get_expiry(token)
        return expiry is None or expiry <= self._clock()

    async def _persist(self, key: str, value: Any) -> None:
        """Écrit une entrée; un échec d'écriture est accepté et loggé."""
        result = await self._store.put(key, value)
        if not result.ok:
            self._logger.warn("Credential not persisted", entry=key)

    def _purge(self) -> None:
        """Purge les identifiants; l'état repasse à UNAUTHENTICATED quoi qu'il arrive."""
        try:
            self._store.remove_many(CREDENTIAL_KEYS)
        finally:
            self._transition(SessionState())

    def _discard_late_writes(self) -> None:
        self._logger.info("Discarding result of operation interrupted by sign-out")
        self._store.remove_many(CREDENTIAL_KEYS)

    def _degrade(self, generation: int, error: Exception) -> None:
        """Échec transitoire: déconnecté en mémoire, identifiants conservés."""
        self._logger.warn("Session check unavailable", error=str(error))
        if generation == self._generation:
            self._transition(SessionState())

    def _reject(self, generation: int, error: Exception) -> None:
        """Session refusée par le service: purge complète."""
        self._logger.info("Stored session rejected", error=str(error))
        if generation == self._generation:
            self._purge()

    def _login_failed(self, generation: int, result: LoginResult) -> LoginResult:
        if generation == self._generation:
            self._transition(SessionState())
        failure = result.failure
        self._logger.info(
            "Login failed",
            reason=failure.reason.value if failure else None,
        )
        return result

    def _interrupted(self) -> LoginResult:
        return LoginResult.failed(
            LoginFailureReason.NETWORK_FAILURE,
            "Login interrupted by sign-out",
        )

    def _map_login_error(self, error: Exception) -> LoginResult:
        """Traduit un échec du service d'identité en LoginResult typé."""
        if isinstance(error, NetworkFailureError):
            return LoginResult.failed(LoginFailureReason.NETWORK_FAILURE, error.message)
        if not isinstance(error, IdentityServiceError):
            self._logger.error("Unexpected login failure", error=str(error))
            return LoginResult.failed(
                LoginFailureReason.NETWORK_FAILURE, "Unexpected identity service failure"
            )

        payload = error.payload or {}
        code = (error.code or _lookup(payload, "code") or "")
        code = code.upper() if isinstance(code, str) else ""
        message = error.message

        if _lookup(payload, "pendingApproval") or code == "PENDING_APPROVAL":
            return LoginResult.failed(LoginFailureReason.PENDING_APPROVAL, message)
        if _lookup(payload, "requiresOnboarding") or code == "REQUIRES_ONBOARDING":
            return LoginResult.failed(LoginFailureReason.REQUIRES_ONBOARDING, message)

        redirect_to = _lookup(payload, "redirectTo") or _lookup(payload, "correctSubdomain")
        if code == "WRONG_TENANT" or redirect_to:
            return LoginResult.failed(
                LoginFailureReason.WRONG_TENANT,
                message,
                redirect_to=str(redirect_to) if redirect_to else None,
            )
        return LoginResult.failed(LoginFailureReason.INVALID_CREDENTIALS, message)

    def _update(self, **changes: Any) -> None:
        self._transition(replace(self._state, **changes))

    def _transition(self, state: SessionState) -> None:
        if state == self._state:
            return
        previous = self._state.phase
        self._state = state
        if state.phase is not previous:
            self._logger.debug(
                "Session phase changed",
                previous=previous.value,
                phase=state.phase.value,
            )
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                self._logger.error("Session listener failed", error=str(e))
