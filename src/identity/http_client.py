"""
LOT 3: Identity Service - HTTP Client

Client httpx du service d'identité.

Endpoints (relatifs à base_url + auth_path):
    POST /login    {email, password, tenant?} → {accessToken, refreshToken, user, requiresOnboarding?}
    GET  /me       → {user}
    POST /refresh  {refreshToken} → {accessToken, refreshToken}
    POST /logout

Les corps peuvent être enveloppés dans {"data": {...}}. Les erreurs non-2xx
portent {message, code?}.
"""

from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from src.logging import IStructuredLogger, StructuredLogger
from .interfaces import (
    IIdentityService,
    IdentityServiceError,
    LoginCredentials,
    LoginResponse,
    NetworkFailureError,
    RefreshRejectedError,
    TokenPair,
    User,
)


class HttpIdentityService(IIdentityService):
    """
    Client HTTP du service d'identité.

    Traduction des échecs:
        - transport / timeout / 5xx → NetworkFailureError
        - refresh non-2xx (hors 5xx) → RefreshRejectedError
        - autre non-2xx → IdentityServiceError (status, code, payload)

    Aucun timeout propre n'est imposé au-delà de celui du client httpx.

    Example:
        service = HttpIdentityService("https://api.example.com/api/v1", tenant="faith")
        response = await service.login(LoginCredentials("a@b.c", "secret"))
    """

    DEFAULT_TIMEOUT_SECONDS: float = 30.0

    def __init__(
        self,
        base_url: str,
        auth_path: str = "/auth",
        tenant: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        logger: Optional[IStructuredLogger] = None,
    ) -> None:
        """
        Args:
            base_url: URL de base de l'API (ex: https://api.example.com/api/v1)
            auth_path: Préfixe des routes d'authentification
            tenant: Tenant envoyé au login si les identifiants n'en portent pas
            timeout: Timeout httpx (secondes) du client créé par défaut
            client: Client httpx fourni (non fermé par aclose())
            logger: Logger structuré (défaut: "identity.http")

        Raises:
            ValueError: Si base_url vide
        """
        if not base_url or not base_url.strip():
            raise ValueError("base_url cannot be empty")

        self._base_url = base_url.rstrip("/")
        self._auth_path = "/" + auth_path.strip("/") if auth_path.strip("/") else ""
        self._tenant = tenant
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._logger = logger or StructuredLogger("identity.http")

    @property
    def tenant(self) -> Optional[str]:
        """Tenant envoyé par défaut au login."""
        return self._tenant

    async def login(self, credentials: LoginCredentials) -> LoginResponse:
        body: Dict[str, Any] = {"email": credentials.email, "password": credentials.password}
        tenant = credentials.tenant or self._tenant
        if tenant:
            body["tenant"] = tenant

        data = await self._request("POST", "/login", json=body)
        user = data.get("user")
        return LoginResponse(
            tokens=self._parse_tokens(data),
            user=user if isinstance(user, dict) else None,
            requires_onboarding=bool(data.get("requiresOnboarding", False)),
        )

    async def get_current_user(self, access_token: str) -> User:
        data = await self._request("GET", "/me", token=access_token)
        raw_user = data.get("user", data)
        try:
            return User.model_validate(raw_user)
        except ValidationError as e:
            raise IdentityServiceError(f"Malformed user profile: {e.error_count()} error(s)")

    async def refresh(self, refresh_token: str) -> TokenPair:
        try:
            data = await self._request("POST", "/refresh", json={"refreshToken": refresh_token})
            return self._parse_tokens(data)
        except NetworkFailureError:
            raise
        except IdentityServiceError as e:
            raise RefreshRejectedError(
                e.message, status_code=e.status_code, code=e.code, payload=e.payload
            ) from e

    async def logout(self, access_token: Optional[str]) -> None:
        await self._request("POST", "/logout", token=access_token)

    async def aclose(self) -> None:
        """Ferme le client httpx s'il a été créé ici."""
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Internes
    # ------------------------------------------------------------------

    def _url(self, path: str) -> str:
        return f"{self._base_url}{self._auth_path}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = await self._client.request(
                method, self._url(path), json=json, headers=headers
            )
        except httpx.TransportError as e:
            self._logger.warn("Identity service unreachable", path=path, error=type(e).__name__)
            raise NetworkFailureError(f"Identity service unreachable: {e}") from e

        body = self._decode(response)
        if response.is_success:
            return self._unwrap(body)

        message = body.get("message") or response.reason_phrase or "Identity service error"
        code = body.get("code")
        self._logger.info(
            "Identity service rejected request",
            path=path,
            status_code=response.status_code,
            code=code,
        )
        if response.status_code >= 500:
            raise NetworkFailureError(message, response.status_code, code, body)
        raise IdentityServiceError(message, response.status_code, code, body)

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _unwrap(body: Dict[str, Any]) -> Dict[str, Any]:
        """Retire l'enveloppe {"data": {...}} si présente."""
        data = body.get("data")
        return data if isinstance(data, dict) else body

    @staticmethod
    def _parse_tokens(data: Dict[str, Any]) -> TokenPair:
        access_token = data.get("accessToken")
        refresh_token = data.get("refreshToken")
        if not isinstance(access_token, str) or not isinstance(refresh_token, str):
            raise IdentityServiceError("Malformed token response")
        if not access_token or not refresh_token:
            raise IdentityServiceError("Malformed token response")
        return TokenPair(access_token=access_token, refresh_token=refresh_token)
