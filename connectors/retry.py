"""Ordered attempt policies for upstream lookups.

A policy is a value: an ordered tuple of attempt strategies and one timeout.
The chain short-circuits on the first attempt that returns data. An attempt
that raises moves on to the next strategy only when the strategy allows it
for that error; otherwise the error propagates.

Example (card data: GET, then POST when GET is rejected):

    policy = AttemptPolicy(
        strategies=(
            AttemptStrategy("get", method="GET", continue_on=frozenset({404, 405})),
            AttemptStrategy("post", method="POST"),
        ),
        timeout_seconds=10.0,
    )
    data = await policy.run(lambda strategy: client.call(strategy))
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, FrozenSet, Optional, Tuple, TypeVar

from connectors.base import UpstreamError
from core.observability.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AttemptStrategy:
    """One way of fetching the data.

    Attributes:
        name: Label used in logs
        method: HTTP method
        path: URL path template, formatted with the lookup key
        continue_on: HTTP statuses that fall through to the next strategy;
            None means any upstream error falls through
    """
    name: str
    method: str = "GET"
    path: str = ""
    continue_on: Optional[FrozenSet[int]] = None

    def falls_through(self, error: UpstreamError) -> bool:
        if self.continue_on is None:
            return True
        return error.status_code in self.continue_on


@dataclass(frozen=True)
class AttemptPolicy:
    strategies: Tuple[AttemptStrategy, ...]
    timeout_seconds: float = 5.0

    async def run(self, attempt: Callable[[AttemptStrategy], Awaitable[Optional[T]]]) -> Optional[T]:
        """
        Run the strategies in order.

        Args:
            attempt: Coroutine function performing one strategy; returns the
                data, or None when the strategy found nothing

        Returns:
            Result of the first successful strategy, or None when every
            strategy came back empty or fell through

        Raises:
            UpstreamError: From a strategy that does not fall through on it
        """
        for strategy in self.strategies:
            try:
                result = await attempt(strategy)
            except UpstreamError as e:
                if not strategy.falls_through(e):
                    raise
                logger.debug(
                    f"Attempt {strategy.name} failed, trying next",
                    extra_fields={"status_code": e.status_code, "error": str(e)},
                )
                continue
            if result is not None:
                return result
        return None
