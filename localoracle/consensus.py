"""
Redundant execution and consensus aggregation.

A fetch is executed several times independently (one run per conceptual
oracle node) and its result is accepted only if every run agrees. Two
aggregation strategies are provided:

- IdenticalAggregation: the whole result must be equal across runs.
- FieldwiseAggregation: each named field is compared with its own equality
  predicate; any disagreeing field rejects the result.

Disagreement is an expected condition. The executor returns None and the
caller treats the source as unavailable for this cycle.
"""

import dataclasses
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Generic, Mapping, Optional, Sequence, TypeVar

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")

Equality = Callable[[Any, Any], bool]


def identical(left: Any, right: Any) -> bool:
    """Field equality predicate requiring exact equality."""
    return left == right


class AggregationStrategy(ABC, Generic[T]):
    """Reduces the results of redundant runs to a single value, or None."""

    @abstractmethod
    def aggregate(self, results: Sequence[T]) -> Optional[T]:
        raise NotImplementedError


class IdenticalAggregation(AggregationStrategy[T]):
    """Accept a result only if every run produced an equal value."""

    def aggregate(self, results: Sequence[T]) -> Optional[T]:
        if not results:
            return None

        reference = results[0]
        for index, result in enumerate(results[1:], start=1):
            if result != reference:
                logger.warning(
                    f"Consensus failed: run {index} returned {result!r}, run 0 returned {reference!r}"
                )
                return None

        return reference


class FieldwiseAggregation(AggregationStrategy[T]):
    """
    Accept a result only if every configured field agrees across runs.

    Fields not listed in the mapping are taken from the first run unchecked.
    """

    def __init__(self, fields: Mapping[str, Equality]):
        if not fields:
            raise ValueError("FieldwiseAggregation needs at least one field")
        self.fields = dict(fields)

    @classmethod
    def for_dataclass(cls, dataclass_type: type) -> "FieldwiseAggregation":
        """
        Build an aggregation that requires every field of a dataclass to be identical.

        Args:
            dataclass_type: Dataclass whose fields should be compared

        Returns:
            FieldwiseAggregation over all fields with the identical predicate
        """
        return cls({f.name: identical for f in dataclasses.fields(dataclass_type)})

    def aggregate(self, results: Sequence[T]) -> Optional[T]:
        if not results:
            return None

        reference = results[0]
        disagreeing: list[str] = []

        for name, equals in self.fields.items():
            expected = getattr(reference, name)
            if not all(equals(expected, getattr(result, name)) for result in results[1:]):
                disagreeing.append(name)

        if disagreeing:
            logger.warning(
                f"Consensus failed on field(s) {', '.join(disagreeing)} across {len(results)} runs"
            )
            return None

        return reference


class RedundantExecutor:
    """
    Executes a fetch function across N independent runs and aggregates the results.

    Runs are dispatched to a small thread pool; the caller blocks until all
    of them have finished. Results are never cached between calls.
    """

    def __init__(self, redundancy: int = 3):
        if redundancy < 1:
            raise ValueError(f"redundancy must be at least 1, got {redundancy}")
        self.redundancy = redundancy

    def run(
        self,
        fetch: Callable[..., T],
        strategy: AggregationStrategy[T],
        *args: Any,
        **kwargs: Any,
    ) -> Optional[T]:
        """
        Execute fetch redundantly and return the aggregated result.

        Args:
            fetch: Function to execute; should not raise
            strategy: Aggregation strategy applied to all run results
            *args: Positional arguments for fetch
            **kwargs: Keyword arguments for fetch

        Returns:
            Aggregated result, or None if any run raised or the runs disagreed
        """
        name = getattr(fetch, "__qualname__", repr(fetch))
        logger.debug(f"Executing {name} across {self.redundancy} redundant runs")

        with ThreadPoolExecutor(max_workers=self.redundancy) as pool:
            futures = [pool.submit(fetch, *args, **kwargs) for _ in range(self.redundancy)]

            results: list[T] = []
            for index, future in enumerate(futures):
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.error(f"Run {index} of {name} raised: {e}", exc_info=True)
                    return None

        return strategy.aggregate(results)
