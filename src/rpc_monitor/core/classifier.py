"""Pure status classification of probe results.

Classification compares each result against the highest block height
observed among the successful results of the same snapshot. The maximum is
recomputed for every snapshot and never carried across cycles.
"""

from collections.abc import Iterable
from typing import Final

from rpc_monitor.types.models import ProbeResult, StatusCategory

# Endpoints more than this many blocks behind the snapshot maximum are lagging
LAG_WARNING_BLOCKS: Final[int] = 2


def max_observed_height(results: Iterable[ProbeResult]) -> int:
    """Return the highest block height among successful results.

    Returns:
        Maximum height, or 0 when no successful result reports a height

    Examples:
        >>> max_observed_height([])
        0
    """
    return max(
        (result.block_height for result in results if result.is_success and result.block_height is not None),
        default=0,
    )


def classify(result: ProbeResult, max_height: int) -> StatusCategory:
    """Map a probe result to its status category.

    Args:
        result: Probe result to classify
        max_height: Maximum observed height of the result's snapshot (0 if none)

    Returns:
        ``timeout`` for expired deadlines, ``error`` for other failures,
        ``warning`` for endpoints lagging more than two blocks behind a
        positive maximum, ``success`` otherwise
    """
    if result.timeout:
        return StatusCategory.TIMEOUT

    if not result.is_success:
        return StatusCategory.ERROR

    if result.block_height is None:
        return StatusCategory.SUCCESS

    if max_height > 0 and max_height - result.block_height > LAG_WARNING_BLOCKS:
        return StatusCategory.WARNING

    return StatusCategory.SUCCESS
