"""
Holds the API key that authorizes calls to the AI provider.

Two sources exist. A deployment-provided key (environment variable or key
file) is read-only and always wins. A user-supplied key is entered through
the login form and persisted in the key-value store.
"""
import logging
import os
from typing import Optional

from config import API_KEY_KEY, DEPLOYMENT_API_KEY_ENV, DEPLOYMENT_API_KEY_PATH
from errors import CredentialMissing, PersistenceError
from storage import KeyValueStore


def load_deployment_key(env_var: str = DEPLOYMENT_API_KEY_ENV, key_path: str = DEPLOYMENT_API_KEY_PATH) -> Optional[str]:
    """Reads the deployment key from the environment, falling back to the private key file."""
    value = os.environ.get(env_var, "").strip()
    if value:
        return value
    try:
        with open(key_path, "r") as f:
            return f.read().strip() or None
    except FileNotFoundError:
        return None


class CredentialStore:
    def __init__(self, store: KeyValueStore, deployment_key: Optional[str] = None):
        self.store = store
        self.deployment_key = deployment_key or None
        self._user_key: Optional[str] = None
        self.reload()

    def reload(self) -> Optional[str]:
        """Re-reads the user-supplied key from storage and returns the effective credential."""
        try:
            self._user_key = self.store.get(API_KEY_KEY) or None
        except PersistenceError as e:
            logging.error(f"Could not read the stored API key: {e}")
        return self.current_credential()

    def current_credential(self) -> Optional[str]:
        return self.deployment_key or self._user_key

    def set_user_credential(self, value: str) -> None:
        """Persists a user-supplied key. Blank values are ignored."""
        value = (value or "").strip()
        if not value:
            return
        self.store.set(API_KEY_KEY, value)
        self._user_key = value
        logging.info("User-supplied API key stored.")

    def has_access(self) -> bool:
        return bool(self.current_credential())

    def require(self) -> str:
        """
        Returns the effective credential, reloading from storage once if none is cached.

        Raises:
            CredentialMissing: If no credential is available after the reload.
        """
        credential = self.current_credential() or self.reload()
        if not credential:
            raise CredentialMissing()
        return credential
