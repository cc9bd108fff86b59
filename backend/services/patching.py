import copy
import logging
from typing import Any, Iterable, List, Mapping, NamedTuple, Union

from pydantic import ValidationError

from .schemas import PatchOperation

logger = logging.getLogger(__name__)


class PathOperationError(Exception):
    """Raised when a single patch operation cannot be applied."""


class KeyToken(NamedTuple):
    name: str


class IndexToken(NamedTuple):
    value: int


PathToken = Union[KeyToken, IndexToken]
Container = Union[dict, list]

# Largest number of null slots a single index may append to an array.
MAX_INDEX_GROWTH = 1000


def parse_path(path: str) -> List[PathToken]:
    """Split a dotted path; a segment made only of ASCII digits is an array index."""
    if not path:
        raise PathOperationError("Patch path must not be empty")
    tokens: List[PathToken] = []
    for segment in path.split("."):
        if segment and segment.isascii() and segment.isdigit():
            try:
                tokens.append(IndexToken(int(segment)))
            except ValueError as exc:
                raise PathOperationError(f"Index segment is too long: {segment[:20]}...") from exc
        else:
            tokens.append(KeyToken(segment))
    return tokens


def _empty_for(token: PathToken) -> Container:
    return [] if isinstance(token, IndexToken) else {}


def _pad(items: list, index: int) -> None:
    if index - len(items) >= MAX_INDEX_GROWTH:
        raise PathOperationError(f"Index {index} is too far past the end of an array of {len(items)} items")
    if len(items) <= index:
        items.extend([None] * (index + 1 - len(items)))


def set_nested(target: Container, tokens: List[PathToken], value: Any) -> None:
    """Assign ``value`` at ``tokens``, creating or replacing intermediate containers as needed.

    Intermediate scalars and nulls are overwritten with a container whose type
    follows the next token. The final token is strict: an index needs a list
    and a key needs a dict.
    """
    current: Any = target
    for position, token in enumerate(tokens[:-1]):
        fresh = _empty_for(tokens[position + 1])
        if isinstance(token, IndexToken):
            if not isinstance(current, list):
                raise PathOperationError(f"Expected an array before index {token.value}")
            _pad(current, token.value)
            if not isinstance(current[token.value], (dict, list)):
                current[token.value] = fresh
            current = current[token.value]
        else:
            if not isinstance(current, dict):
                raise PathOperationError(f"Expected an object before key '{token.name}'")
            if not isinstance(current.get(token.name), (dict, list)):
                current[token.name] = fresh
            current = current[token.name]

    last = tokens[-1]
    if isinstance(last, IndexToken):
        if not isinstance(current, list):
            raise PathOperationError(f"Cannot set index {last.value} on a non-array value")
        _pad(current, last.value)
        current[last.value] = value
    else:
        if not isinstance(current, dict):
            raise PathOperationError(f"Cannot set key '{last.name}' on a non-object value")
        current[last.name] = value


def remove_nested(target: Container, tokens: List[PathToken]) -> None:
    """Delete the value at ``tokens``; a path that does not exist is left alone."""
    current: Any = target
    for token in tokens[:-1]:
        if isinstance(token, IndexToken):
            if not isinstance(current, list) or token.value >= len(current):
                return
            current = current[token.value]
        else:
            if not isinstance(current, dict) or token.name not in current:
                return
            current = current[token.name]
        if not isinstance(current, (dict, list)):
            return

    last = tokens[-1]
    if isinstance(last, IndexToken):
        if isinstance(current, list) and last.value < len(current):
            del current[last.value]
    elif isinstance(current, dict):
        current.pop(last.name, None)


def apply_patch(config: Mapping[str, Any], operations: Iterable[Union[PatchOperation, Mapping[str, Any]]]) -> dict:
    """Apply operations to a deep copy of ``config``; the original is never touched.

    Operations are independent: one that fails is logged and skipped.
    """
    patched = copy.deepcopy(dict(config))
    for raw in operations:
        try:
            operation = raw if isinstance(raw, PatchOperation) else PatchOperation.model_validate(raw)
            tokens = parse_path(operation.path)
            if operation.op == "remove":
                remove_nested(patched, tokens)
            else:
                set_nested(patched, tokens, copy.deepcopy(operation.value))
        except (PathOperationError, ValidationError, OverflowError, MemoryError) as exc:
            logger.warning("Skipping patch operation %s: %s", raw, exc)
    return patched


__all__ = [
    "IndexToken",
    "MAX_INDEX_GROWTH",
    "KeyToken",
    "PathOperationError",
    "apply_patch",
    "parse_path",
    "remove_nested",
    "set_nested",
]
