"""Pick a fetch strategy per target site."""

import logging
from enum import Enum
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit

from pricewatch.ingest.base import BaseStrategy

logger = logging.getLogger(__name__)


class StrategyKind(str, Enum):
    HTTP_FAST = "HTTP_FAST"
    BROWSER_HARD = "BROWSER_HARD"


# Ordered (host fragment, strategy, difficulty); first substring match wins
DOMAIN_RULES: Tuple[Tuple[str, StrategyKind, str], ...] = (
    ("mercadolibre.com.co", StrategyKind.BROWSER_HARD, "hard"),
    ("mercadolibre.com.mx", StrategyKind.BROWSER_HARD, "hard"),
    ("mercadolibre.com.br", StrategyKind.BROWSER_HARD, "hard"),
    ("mercadolibre.com.ar", StrategyKind.BROWSER_HARD, "hard"),
    ("mercadolibre.cl", StrategyKind.BROWSER_HARD, "hard"),
    ("mercadolibre.com", StrategyKind.BROWSER_HARD, "hard"),
    ("mercadolivre.com.br", StrategyKind.BROWSER_HARD, "hard"),
    ("amazon.com", StrategyKind.BROWSER_HARD, "hard"),
)

DEFAULT_KIND = StrategyKind.HTTP_FAST


def _hostname(url: str) -> str:
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def resolve_rule(url: str) -> Optional[Tuple[str, StrategyKind, str]]:
    """First matching domain rule for a URL, or None for unmapped hosts."""
    host = _hostname(url)
    if not host:
        return None
    for rule in DOMAIN_RULES:
        if rule[0] in host:
            return rule
    return None


def kind_for_url(url: str) -> StrategyKind:
    """
    Strategy kind for a URL.

    Matches on the lower-cased hostname without ``www.``, so country-code
    subdomains (``articulo.mercadolibre.com.co``) resolve like the bare domain.
    Unmapped or malformed URLs get HTTP_FAST.
    """
    rule = resolve_rule(url)
    return rule[1] if rule else DEFAULT_KIND


class StrategySelector:
    """Owns one strategy instance per kind and hands them out by URL."""

    def __init__(self, http_strategy: BaseStrategy, browser_strategy: BaseStrategy):
        self._strategies: Dict[StrategyKind, BaseStrategy] = {
            StrategyKind.HTTP_FAST: http_strategy,
            StrategyKind.BROWSER_HARD: browser_strategy,
        }

    def kind_for(self, url: str) -> StrategyKind:
        return kind_for_url(url)

    def select(self, url: str) -> BaseStrategy:
        kind = self.kind_for(url)
        logger.debug(f"Strategy {kind.value} for {url[:80]}")
        return self._strategies[kind]

    def strategy(self, kind: StrategyKind) -> BaseStrategy:
        return self._strategies[kind]

    async def close_all(self):
        """Close every strategy; a failing close does not stop the others."""
        for kind, strategy in self._strategies.items():
            try:
                await strategy.close()
            except Exception as e:
                logger.error(f"Error closing {kind.value} strategy: {e}")
