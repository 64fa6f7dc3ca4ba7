"""Device identity: a stable, one-way fingerprint for this install's device."""

from __future__ import annotations

import hashlib
import logging
import secrets
import threading
import uuid
from typing import Callable, Optional

from wayfarer.client.secure_store import SecureStore
from wayfarer.errors import StorageUnavailable

logger = logging.getLogger(__name__)

FINGERPRINT_NAMESPACE = "com.wayfarer.startup-bonus.v1"
SECRET_STORE_KEY = "com.wayfarer.device-identity.secret"
SECRET_BYTES = 32


def hardware_salt() -> str:
    """Vendor-scoped hardware identifier used when the host app supplies none."""
    return hex(uuid.getnode())


class DeviceIdentityProvider:
    """Derives ``sha256(namespace, secret, salt)`` from a secret kept in ``store``.

    The secret is generated on first use and then only ever read, so the
    fingerprint survives app reinstalls for as long as the store entry does.
    Only the hex digest leaves the device.
    """

    def __init__(
        self,
        store: SecureStore,
        salt_provider: Optional[Callable[[], str]] = None,
        namespace: str = FINGERPRINT_NAMESPACE,
    ):
        self.store = store
        self._salt_provider = salt_provider or hardware_salt
        self.namespace = namespace
        self._lock = threading.Lock()

    def get_fingerprint(self) -> str:
        secret = self._load_or_create_secret()
        salt = self._salt_provider()
        if not salt:
            raise StorageUnavailable("device identifier is not available yet")
        digest = hashlib.sha256()
        digest.update(self.namespace.encode("utf-8"))
        digest.update(b"\x00")
        digest.update(secret)
        digest.update(b"\x00")
        digest.update(salt.encode("utf-8"))
        return digest.hexdigest()

    def reset(self) -> None:
        """Forget the device secret; the next fingerprint is unrelated to the old one."""
        with self._lock:
            self.store.delete(SECRET_STORE_KEY)

    def _load_or_create_secret(self) -> bytes:
        with self._lock:
            secret = self.store.get(SECRET_STORE_KEY)
            if secret:
                return secret
            secret = secrets.token_bytes(SECRET_BYTES)
            self.store.set(SECRET_STORE_KEY, secret)
            logger.info("Generated new device identity secret")
            return secret
