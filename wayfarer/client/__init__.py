"""Client-side pieces of the startup bonus: device identity and the claim facade."""

from wayfarer.client.api import BonusApiClient
from wayfarer.client.config import ClientConfig
from wayfarer.client.facade import ClaimUiState, LocalBalance, StartupBonusClaimer
from wayfarer.client.identity import DeviceIdentityProvider
from wayfarer.client.secure_store import FileSecureStore, InMemorySecureStore, SecureStore

__all__ = [
    "BonusApiClient",
    "ClientConfig",
    "ClaimUiState",
    "DeviceIdentityProvider",
    "FileSecureStore",
    "InMemorySecureStore",
    "LocalBalance",
    "SecureStore",
    "StartupBonusClaimer",
]
