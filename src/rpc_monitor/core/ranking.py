"""Ranking order of probe results within a snapshot."""

from collections.abc import Iterable

from rpc_monitor.types.models import ProbeResult


def ranking_key(result: ProbeResult) -> tuple[bool, int, float]:
    """Sort key implementing the ranking order.

    Results reporting a height come first, higher heights first, and ties
    (equal heights, or no height on both sides) go to the faster response.
    """
    height = result.block_height
    if height is None:
        return (True, 0, result.response_time)
    return (False, -height, result.response_time)


def rank_results(results: Iterable[ProbeResult]) -> tuple[ProbeResult, ...]:
    """Return results in ranking order. Stable for fully equal keys."""
    return tuple(sorted(results, key=ranking_key))
