"""
Provider selection.

``select_for_user`` hashes the raw user id bytes with SHA-256, so a user keeps
the same vendor across restarts and hosts (the builtin ``hash`` is salted per
process and cannot be used here).
"""
import hashlib
import logging
from datetime import datetime
from typing import Callable, Optional

import httpx

from kyc_service.core.config import settings
from kyc_service.core.errors import ConfigurationError
from kyc_service.db.models.base import utcnow
from kyc_service.services.providers.base import ProviderAdapter
from kyc_service.services.providers.onfido import OnfidoAdapter
from kyc_service.services.providers.sumsub import SumSubAdapter

log = logging.getLogger(__name__)

ROUTING_DEFAULT = "default"
ROUTING_USER_HASH = "user_hash"


class ProviderRouter:
    def __init__(
        self,
        adapters: list[ProviderAdapter],
        default: Optional[str] = None,
        mode: Optional[str] = None,
    ):
        if not adapters:
            raise ConfigurationError("No KYC providers configured")
        self.adapters = {adapter.name: adapter for adapter in adapters}
        # Sorted so the hash bucket -> provider mapping does not depend on registration order.
        self._ordered = [self.adapters[name] for name in sorted(self.adapters)]
        self.default = (default or settings.KYC_DEFAULT_PROVIDER).lower()
        self.mode = (mode or settings.KYC_ROUTING_MODE).lower()

    def select_adapter(self, name: Optional[str] = None) -> ProviderAdapter:
        key = (name or self.default).lower()
        adapter = self.adapters.get(key)
        if adapter is None:
            raise ConfigurationError(f"Unknown KYC provider: {key}")
        return adapter

    def select_for_user(self, user_id: str) -> ProviderAdapter:
        digest = hashlib.sha256(str(user_id).encode("utf-8")).digest()
        return self._ordered[int.from_bytes(digest[:8], "big") % len(self._ordered)]

    def route(self, user_id: str, name: Optional[str] = None) -> ProviderAdapter:
        if name:
            return self.select_adapter(name)
        if self.mode == ROUTING_USER_HASH:
            return self.select_for_user(user_id)
        return self.select_adapter()


def build_router(
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Callable[[], datetime] = utcnow,
) -> ProviderRouter:
    return ProviderRouter([
        OnfidoAdapter(transport=transport, clock=clock),
        SumSubAdapter(transport=transport, clock=clock),
    ])
