"""Probe method variants.

Each supported JSON-RPC probe method is described once, as a variant
carrying its request shape and the rule that turns a successful ``result``
into a block height. Variants are selected by method name once per cycle;
the probe executor never branches on method names itself.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

__all__ = [
    "DEFAULT_METHOD",
    "FollowUp",
    "MethodVariant",
    "ProbeMethod",
    "ResponseShapeError",
    "build_request",
    "resolve_method",
]

type HeightExtractor = Callable[[object], int | None]
type ParamsBuilder = Callable[[object], list[object]]


class ProbeMethod(StrEnum):
    """Supported probe methods, valued by their JSON-RPC wire names."""

    CHAIN_GET_BLOCK = "chain_getBlock"
    CHAIN_GET_FINALIZED_HEAD = "chain_getFinalizedHead"
    ETH_BLOCK_NUMBER = "eth_blockNumber"
    SYSTEM_SYNC_STATE = "system_syncState"


DEFAULT_METHOD: Final[str] = ProbeMethod.CHAIN_GET_BLOCK.value


class ResponseShapeError(ValueError):
    """Raised when a successful JSON-RPC result does not have the expected shape."""


@dataclass(slots=True, frozen=True)
class FollowUp:
    """Second call issued with data taken from the first call's result."""

    method: str
    build_params: ParamsBuilder


@dataclass(slots=True, frozen=True)
class MethodVariant:
    """Request shape and height rule of one probe method.

    When ``follow_up`` is set, ``extract_height`` applies to the follow-up
    call's result instead of the first call's.
    """

    name: str
    extract_height: HeightExtractor
    follow_up: FollowUp | None = None


def build_request(method: str, params: Sequence[object] = (), *, request_id: int = 1) -> dict[str, object]:
    """Build a JSON-RPC 2.0 request body.

    Examples:
        >>> build_request("eth_blockNumber")
        {'jsonrpc': '2.0', 'id': 1, 'method': 'eth_blockNumber', 'params': []}
    """
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": method,
        "params": list(params),
    }


def _parse_hex(value: object, *, field: str) -> int:
    if not isinstance(value, str):
        msg = f"{field} must be a hex string, got: {value!r}"
        raise ResponseShapeError(msg)
    try:
        return int(value, 16)
    except ValueError as exc:
        msg = f"{field} is not valid hex: {value!r}"
        raise ResponseShapeError(msg) from exc


def _lookup(value: object, *path: str) -> object:
    current = value
    walked: list[str] = []
    for key in path:
        walked.append(key)
        if not isinstance(current, Mapping) or key not in current:
            msg = f"missing field result.{'.'.join(walked)}"
            raise ResponseShapeError(msg)
        current = current[key]  # pyright: ignore[reportUnknownVariableType]  # JSON boundary
    return current  # pyright: ignore[reportUnknownVariableType]  # JSON boundary


def _block_header_height(result: object) -> int:
    number = _lookup(result, "block", "header", "number")
    return _parse_hex(number, field="result.block.header.number")


def _hex_result_height(result: object) -> int:
    return _parse_hex(result, field="result")


def _sync_state_height(result: object) -> int:
    current = _lookup(result, "currentBlock")
    # Already decimal; some nodes serialize it as a string
    if isinstance(current, bool):
        msg = f"result.currentBlock must be an integer, got: {current!r}"
        raise ResponseShapeError(msg)
    if isinstance(current, int):
        return current
    if isinstance(current, str) and current.isdigit():
        return int(current)
    msg = f"result.currentBlock must be an integer, got: {current!r}"
    raise ResponseShapeError(msg)


def _no_height(_result: object) -> int | None:
    return None


def _block_hash_params(result: object) -> list[object]:
    if not isinstance(result, str) or not result:
        msg = f"result must be a block hash string, got: {result!r}"
        raise ResponseShapeError(msg)
    return [result]


_VARIANTS: Final[Mapping[str, MethodVariant]] = {
    ProbeMethod.CHAIN_GET_BLOCK.value: MethodVariant(
        name=ProbeMethod.CHAIN_GET_BLOCK.value,
        extract_height=_block_header_height,
    ),
    ProbeMethod.ETH_BLOCK_NUMBER.value: MethodVariant(
        name=ProbeMethod.ETH_BLOCK_NUMBER.value,
        extract_height=_hex_result_height,
    ),
    ProbeMethod.SYSTEM_SYNC_STATE.value: MethodVariant(
        name=ProbeMethod.SYSTEM_SYNC_STATE.value,
        extract_height=_sync_state_height,
    ),
    ProbeMethod.CHAIN_GET_FINALIZED_HEAD.value: MethodVariant(
        name=ProbeMethod.CHAIN_GET_FINALIZED_HEAD.value,
        extract_height=_block_header_height,
        follow_up=FollowUp(
            method=ProbeMethod.CHAIN_GET_BLOCK.value,
            build_params=_block_hash_params,
        ),
    ),
}


def resolve_method(name: str) -> MethodVariant:
    """Return the variant for a method name.

    Unknown names get a variant that issues the call with no params and
    reports no height.
    """
    variant = _VARIANTS.get(name)
    if variant is not None:
        return variant
    return MethodVariant(name=name, extract_height=_no_height)
