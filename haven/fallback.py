"""
Fallback chains for Haven.

Providers are tried as an explicit ordered list of strategies. Each strategy
returns a result-or-failure outcome instead of raising, so the order in which
providers are consulted is a visible contract of the chain.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Raised when an external AI or analysis provider fails or misbehaves."""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class FallbackExhaustedError(Exception):
    """Raised when every strategy in a chain failed."""


@dataclass
class StrategyOutcome:
    """Result of a single strategy attempt."""
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any) -> "StrategyOutcome":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "StrategyOutcome":
        return cls(error=error or "unknown error")


class Strategy:
    """
    Base class for one provider in a fallback chain.

    Subclasses implement ``attempt`` and convert their own provider errors
    into ``StrategyOutcome.failure``.
    """

    name = "strategy"

    async def attempt(self, *args, **kwargs) -> StrategyOutcome:
        raise NotImplementedError


@dataclass
class StrategyStatus:
    """Health of a strategy as seen by its chain."""
    successes: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None


class FallbackChain:
    """
    Tries strategies in order until one succeeds.

    Every attempt is bounded by ``timeout``; a timeout is treated exactly
    like a provider failure.
    """

    def __init__(self, name: str, strategies: List[Strategy], timeout: float = 10.0):
        """
        Initialize the chain.

        Args:
            name: Chain name used in logs and health summaries.
            strategies: Strategies in the order they should be tried.
            timeout: Per-attempt timeout in seconds.
        """
        if not strategies:
            raise ValueError(f"Fallback chain '{name}' needs at least one strategy")
        self.name = name
        self.timeout = timeout
        self._strategies = list(strategies)
        self._status = {s.name: StrategyStatus() for s in self._strategies}

    @property
    def order(self) -> List[str]:
        """Strategy names in the order they are tried."""
        return [s.name for s in self._strategies]

    def get_status(self, strategy_name: str) -> StrategyStatus:
        return self._status[strategy_name]

    async def run(self, *args, **kwargs) -> Any:
        """
        Run the chain and return the first successful value.

        Raises:
            FallbackExhaustedError: If every strategy failed.
        """
        errors = []
        for strategy in self._strategies:
            outcome = await self._attempt(strategy, *args, **kwargs)
            status = self._status[strategy.name]
            if outcome.ok:
                status.successes += 1
                status.consecutive_failures = 0
                status.last_error = None
                return outcome.value

            status.consecutive_failures += 1
            status.last_error = outcome.error
            errors.append(f"{strategy.name}: {outcome.error}")
            logger.warning(
                f"{self.name}: {strategy.name} failed "
                f"(#{status.consecutive_failures}): {outcome.error}"
            )

        raise FallbackExhaustedError(f"{self.name}: all strategies failed ({'; '.join(errors)})")

    async def _attempt(self, strategy: Strategy, *args, **kwargs) -> StrategyOutcome:
        try:
            return await asyncio.wait_for(strategy.attempt(*args, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError:
            return StrategyOutcome.failure(f"timed out after {self.timeout}s")
        except Exception as e:
            return StrategyOutcome.failure(f"unexpected {type(e).__name__}: {e}")

    def get_summary(self) -> dict:
        """
        Get summary of all strategy statuses.

        Returns:
            Dictionary keyed by strategy name, in chain order.
        """
        return {
            name: {
                "position": position,
                "successes": self._status[name].successes,
                "consecutive_failures": self._status[name].consecutive_failures,
                "last_error": self._status[name].last_error,
            }
            for position, name in enumerate(self.order)
        }
