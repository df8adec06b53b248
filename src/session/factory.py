"""
LOT 5: Session - Factory

Assemblage explicite d'un orchestrateur depuis une SessionConfig
(aucun singleton de module: chaque appel construit une instance).
"""

from datetime import timedelta
from typing import Callable, Optional

from src.core.interfaces import SessionConfig
from src.identity import HttpIdentityService, IIdentityService, resolve_tenant_from_host
from src.logging import LogConfig, LogLevel, StructuredLogger, stderr_handler
from src.storage import (
    IKeyValueBackend,
    InMemoryKeyValueBackend,
    JsonFileKeyValueBackend,
    SecureStore,
)
from .session_monitor import SessionMonitor
from .session_orchestrator import SessionOrchestrator


def resolve_tenant(config: SessionConfig) -> Optional[str]:
    """Tenant configuré, sinon sous-domaine de l'origine (faith.example.com → faith)."""
    return config.tenant or resolve_tenant_from_host(config.origin)


def create_logger(
    config: SessionConfig,
    output_handler: Optional[Callable[[str], None]] = stderr_handler,
) -> StructuredLogger:
    """Logger racine "session" (lignes JSON sur stderr par défaut)."""
    logger = StructuredLogger(
        "session",
        config=LogConfig(min_level=LogLevel.from_name(config.log_level)),
        output_handler=output_handler,
    )
    tenant = resolve_tenant(config)
    if tenant:
        logger.set_default_tenant(tenant)
    return logger


def create_backend(config: SessionConfig) -> IKeyValueBackend:
    """Store fichier si storage_dir est configuré, mémoire sinon."""
    if config.storage_dir is not None:
        return JsonFileKeyValueBackend(config.storage_dir, origin=config.origin)
    return InMemoryKeyValueBackend()


def build_orchestrator(
    config: SessionConfig,
    identity_service: Optional[IIdentityService] = None,
    backend: Optional[IKeyValueBackend] = None,
    logger: Optional[StructuredLogger] = None,
) -> SessionOrchestrator:
    """
    Construit la pile complète: backend → SecureStore → moniteur → orchestrateur.

    Un HttpIdentityService créé ici appartient à l'orchestrateur: close()
    ferme son client httpx. Un service injecté reste à la charge de
    l'appelant.

    Args:
        config: Configuration de session
        identity_service: Service d'identité (défaut: HttpIdentityService)
        backend: Backend clé/valeur (défaut: selon storage_dir)
        logger: Logger racine (défaut: create_logger(config))

    Returns:
        SessionOrchestrator prêt (état UNAUTHENTICATED)
    """
    logger = logger or create_logger(config)
    tenant = resolve_tenant(config)

    store = SecureStore(
        backend or create_backend(config),
        hash_rounds=config.hash_rounds,
        logger=logger.child("storage"),
    )
    owns_identity_service = identity_service is None
    identity = identity_service or HttpIdentityService(
        config.api_base_url,
        auth_path=config.auth_path,
        tenant=tenant,
        timeout=config.request_timeout_seconds,
        logger=logger.child("identity"),
    )
    monitor = SessionMonitor(store, identity, logger=logger.child("monitor"))

    logger.info(
        "Session stack assembled",
        origin=config.origin,
        tenant=tenant,
        persistent=config.storage_dir is not None,
    )
    return SessionOrchestrator(
        store,
        identity,
        monitor,
        logger=logger.child("orchestrator"),
        warning_lead_time=timedelta(seconds=config.warning_lead_time_seconds),
        poll_interval=timedelta(seconds=config.poll_interval_seconds),
        owns_identity_service=owns_identity_service,
    )
