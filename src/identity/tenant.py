"""
LOT 3: Identity Service - Tenant Resolution

Déduit le tenant (sous-domaine) à partir du nom d'hôte du client.
"""

from typing import Optional


def resolve_tenant_from_host(hostname: Optional[str]) -> Optional[str]:
    """
    Extrait le sous-domaine tenant d'un nom d'hôte.

    Règles:
        - faith.localhost        → "faith"
        - faith.example.com      → "faith"
        - localhost, example.com → None
        - www.example.com        → None

    Args:
        hostname: Nom d'hôte (port éventuel ignoré)

    Returns:
        Sous-domaine ou None
    """
    if not hostname:
        return None

    host = hostname.strip().lower().split(":", 1)[0].rstrip(".")
    parts = [p for p in host.split(".") if p]

    if parts and parts[-1] == "localhost":
        if len(parts) == 2:
            return parts[0]
        return None

    if len(parts) >= 3 and parts[0] != "www":
        return parts[0]
    return None
