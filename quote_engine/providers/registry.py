"""
Provider registry: central catalog of available quote providers.

Providers register under an asset class. A priority list (config-driven)
determines which providers are tried in what order for each class.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type, Union

from .base import AssetClass, QuoteProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    Registry mapping (asset class, provider name) to factories/instances.

    Usage:
        registry = ProviderRegistry()
        registry.register(AssetClass.EQUITY, "alphavantage", AlphaVantageEquityProvider)
        registry.register(AssetClass.EQUITY, "finnhub", FinnhubEquityProvider)

        chain = registry.build_chain(AssetClass.EQUITY, ["alphavantage", "finnhub"])
    """

    def __init__(self) -> None:
        self._factories: Dict[AssetClass, Dict[str, Any]] = {ac: {} for ac in AssetClass}
        self._instances: Dict[AssetClass, Dict[str, QuoteProvider]] = {ac: {} for ac in AssetClass}

    def register(
        self,
        asset_class: AssetClass,
        name: str,
        factory: Union[Type[QuoteProvider], QuoteProvider],
    ) -> None:
        """Register a provider (class or instance) for an asset class."""
        self._factories[asset_class][name] = factory
        self._instances[asset_class].pop(name, None)
        logger.debug("Registered %s provider: %s", asset_class.value, name)

    def get(self, asset_class: AssetClass, name: str) -> QuoteProvider:
        """Get or instantiate a provider by name."""
        instances = self._instances[asset_class]
        if name not in instances:
            factory = self._factories[asset_class].get(name)
            if factory is None:
                raise KeyError(
                    f"Unknown {asset_class.value} provider '{name}'. "
                    f"Available: {list(self._factories[asset_class])}"
                )
            instances[name] = factory() if isinstance(factory, type) else factory
        return instances[name]

    def names(self, asset_class: AssetClass) -> List[str]:
        return list(self._factories[asset_class])

    def build_chain(
        self, asset_class: AssetClass, priority: Optional[List[str]] = None
    ) -> List[QuoteProvider]:
        """Build an ordered provider list from a priority list; unknown names are skipped."""
        known = self._factories[asset_class]
        names = priority or list(known)
        chain = []
        for n in names:
            if n not in known:
                logger.warning("Ignoring unknown %s provider in priority list: %s", asset_class.value, n)
                continue
            chain.append(self.get(asset_class, n))
        return chain
