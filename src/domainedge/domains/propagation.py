"""DNS propagation estimate for a freshly published verification record.

The verification TXT record is queried against several public resolvers at
once. A record seen by at least ``threshold`` of them counts as propagated;
otherwise a rough wait in minutes is estimated from the fraction that
already sees it.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Any

import structlog

from domainedge.domains.verification import DNSVerifier

logger = structlog.get_logger()

DEFAULT_RESOLVERS = ("8.8.8.8", "1.1.1.1", "208.67.222.222")


@dataclass
class PropagationStatus:
    """Result of a propagation check."""

    propagated: bool
    estimated_minutes_remaining: int
    servers_checked: int
    servers_found: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "propagated": self.propagated,
            "estimatedTimeRemaining": self.estimated_minutes_remaining,
            "serversChecked": self.servers_checked,
            "serversFound": self.servers_found,
        }


def estimate_propagation(servers_found: int, servers_checked: int, threshold: float = 0.7) -> PropagationStatus:
    """Decide propagation from resolver counts.

    Not propagated: ``max(5, 30 - fraction * 25)`` minutes, rounded half up.
    """
    fraction = servers_found / servers_checked if servers_checked else 0.0
    propagated = servers_checked > 0 and fraction >= threshold
    remaining = 0
    if not propagated:
        remaining = math.floor(max(5.0, 30.0 - fraction * 25.0) + 0.5)
    return PropagationStatus(
        propagated=propagated,
        estimated_minutes_remaining=remaining,
        servers_checked=servers_checked,
        servers_found=servers_found,
    )


class PropagationChecker:
    """Queries each public resolver for the verification record."""

    def __init__(
        self,
        resolvers: list[str] | tuple[str, ...] = DEFAULT_RESOLVERS,
        platform_name: str = "einvite",
        timeout: float = 5.0,
        threshold: float = 0.7,
    ) -> None:
        self.resolvers = list(resolvers)
        self.threshold = threshold
        self._verifiers = {
            address: DNSVerifier(
                platform_name=platform_name,
                timeout=timeout,
                max_retries=1,
                nameservers=[address],
            )
            for address in self.resolvers
        }

    async def _seen_by(self, address: str, domain: str, token: str) -> bool:
        result = await self._verifiers[address].verify_ownership(domain, token)
        logger.debug("Propagation lookup", resolver=address, domain=domain, found=result.success)
        return result.success

    async def check(self, domain: str, token: str) -> PropagationStatus:
        """Check how many resolvers already see ``token``."""
        results = await asyncio.gather(
            *(self._seen_by(address, domain, token) for address in self.resolvers),
            return_exceptions=True,
        )
        found = sum(1 for seen in results if seen is True)
        status = estimate_propagation(found, len(self.resolvers), self.threshold)
        logger.info(
            "DNS propagation checked",
            domain=domain,
            servers_found=status.servers_found,
            servers_checked=status.servers_checked,
            propagated=status.propagated,
        )
        return status
