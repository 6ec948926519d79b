"""Provider registry.

Built once at startup by ``build_provider_registry`` and handed to whatever
needs adapters (the orchestrator, the providers router). There is no
module-level registry instance.
"""

from dataclasses import dataclass

from ledgersync.config import Settings
from ledgersync.exceptions import ProviderNotFound
from ledgersync.logging_config import get_logger
from ledgersync.providers.base import ProviderAdapter, ProviderConfig


logger = get_logger("providers.registry")


@dataclass
class RegistryEntry:
    adapter: ProviderAdapter
    enabled: bool
    reason: str | None = None


class ProviderRegistry:
    """Maps provider ids to adapters, tracking which ones are usable."""

    def __init__(self):
        self._entries: dict[str, RegistryEntry] = {}

    def register(self, adapter: ProviderAdapter) -> bool:
        """Register an adapter, disabling it if its configuration is invalid.

        Returns:
            True if the provider is enabled.
        """
        provider_id = adapter.provider_id
        if provider_id in self._entries:
            logger.warning(f"Provider {provider_id} already registered, replacing")

        try:
            valid = adapter.validate_configuration()
            reason = None if valid else "configuration invalid or missing settings"
        except (ValueError, TypeError) as e:
            valid = False
            reason = f"configuration check failed: {e}"

        self._entries[provider_id] = RegistryEntry(adapter=adapter, enabled=valid, reason=reason)
        if valid:
            logger.info(f"Registered provider {provider_id}")
        else:
            logger.warning(f"Provider {provider_id} registered but disabled: {reason}")
        return valid

    def get(self, provider_id: str) -> ProviderAdapter:
        """Get an enabled adapter.

        Raises:
            ProviderNotFound: If the provider is unknown or disabled.
        """
        entry = self._entries.get(provider_id)
        if entry is None:
            raise ProviderNotFound(f"Unknown provider: {provider_id}", provider_id=provider_id)
        if not entry.enabled:
            raise ProviderNotFound(
                f"Provider {provider_id} is disabled: {entry.reason}", provider_id=provider_id
            )
        return entry.adapter

    def is_enabled(self, provider_id: str) -> bool:
        entry = self._entries.get(provider_id)
        return bool(entry and entry.enabled)

    def list_metadata(self) -> list[dict]:
        """Describe every registered provider, enabled or not."""
        return [
            {
                **entry.adapter.config.model_dump(exclude={"required_settings"}),
                "enabled": entry.enabled,
                "reason": entry.reason,
            }
            for entry in self._entries.values()
        ]

    def enabled_providers(self) -> list[ProviderConfig]:
        return [entry.adapter.config for entry in self._entries.values() if entry.enabled]

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._entries


def build_provider_registry(settings: Settings) -> ProviderRegistry:
    """Create the registry with every built-in adapter."""
    from ledgersync.providers.plaid_provider import PlaidProvider
    from ledgersync.providers.simplefin_provider import SimplefinProvider
    from ledgersync.providers.tink_provider import TinkProvider

    registry = ProviderRegistry()
    options = {
        "max_concurrent_requests": settings.provider_max_concurrent_requests,
        "timeout": settings.provider_timeout_seconds,
    }
    for adapter_cls in (PlaidProvider, SimplefinProvider, TinkProvider):
        registry.register(adapter_cls(settings, **options))

    logger.info(
        f"Provider registry ready: {[c.provider_id for c in registry.enabled_providers()]} enabled"
    )
    return registry
