"""
LOT 1: Secure Store - Key/Value Backends

Backends synchrones sous le SecureStore:
    - InMemoryKeyValueBackend: dictionnaire du processus
    - JsonFileKeyValueBackend: un document JSON par origine, partagé par
      tous les processus de la même origine (dernier écrit gagne)
"""

import json
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

from .interfaces import IKeyValueBackend


_ORIGIN_SAFE = re.compile(r"[^A-Za-z0-9._-]+")


class InMemoryKeyValueBackend(IKeyValueBackend):
    """Backend mémoire (tests, clients sans disque)."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._items.keys())


class JsonFileKeyValueBackend(IKeyValueBackend):
    """
    Backend fichier, scopé par origine.

    Le fichier est relu à chaque lecture afin de refléter les écritures
    d'autres processus de la même origine. Les écritures passent par un
    fichier temporaire puis os.replace (remplacement atomique).

    Example:
        backend = JsonFileKeyValueBackend("~/.sessions", origin="faith.example.com")
        backend.set_item("accessToken", "v1:...")
    """

    def __init__(self, directory: Union[str, Path], origin: str = "default") -> None:
        """
        Args:
            directory: Répertoire des documents
            origin: Origine (un fichier par origine)

        Raises:
            ValueError: Si origin vide
        """
        if not origin or not origin.strip():
            raise ValueError("origin cannot be empty")

        self._directory = Path(directory).expanduser()
        self._origin = origin.strip()
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        """Chemin du document de cette origine."""
        safe_origin = _ORIGIN_SAFE.sub("_", self._origin)
        return self._directory / f"{safe_origin}.json"

    def get_item(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            items = self._read()
            items[key] = value
            self._write(items)

    def remove_item(self, key: str) -> None:
        with self._lock:
            items = self._read()
            if key in items:
                del items[key]
                self._write(items)

    def keys(self) -> List[str]:
        return sorted(self._read().keys())

    def _read(self) -> Dict[str, str]:
        """Document courant; un fichier absent ou illisible vaut {}."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, items: Dict[str, str]) -> None:
        """Écriture atomique; fichier temporaire unique par écriture."""
        self._directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=self._directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(items, f, ensure_ascii=False, sort_keys=True)
                f.write("\n")
            os.replace(tmp, self.path)
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)
