import json
import os
from pathlib import Path
from typing import Any, Optional

__all__ = ["SecretsManager", "secrets", "get_secret"]


class SecretsManager:
    """Resolve credentials: merchant signing key, operator API tokens, JWT secret.

    Lookup order for a key ``K``:

    1. ``K`` in the JSON document at ``SECRETS_PATH`` (read once, cached)
    2. contents of the file named by ``K_FILE`` (e.g. a ``solana-keygen``
       keypair mounted into the container)
    3. the environment variable ``K``

    Tests replace the JSON document via :meth:`set_override`.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(
            path or os.getenv("SECRETS_PATH", "/var/run/secrets/treasury.json")
        )
        self._doc: dict[str, Any] | None = None

    def _document(self) -> dict[str, Any]:
        if self._doc is None:
            try:
                self._doc = json.loads(self._path.read_text(encoding="utf-8"))
            except FileNotFoundError:
                self._doc = {}
        return self._doc

    @staticmethod
    def _from_file(key: str) -> Optional[str]:
        ref = os.getenv(f"{key}_FILE")
        if not ref:
            return None
        return Path(ref).read_text(encoding="utf-8").strip()

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        value = self._document().get(key)
        if value is None:
            value = self._from_file(key)
        if value is None:
            value = os.getenv(key)
        return default if value is None else value

    def set_override(self, data: dict[str, Any]) -> None:
        self._doc = dict(data)


secrets = SecretsManager()


def get_secret(key: str, default: Optional[Any] = None) -> Any:
    return secrets.get(key, default)
