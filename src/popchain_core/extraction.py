"""Normalize transaction results into one canonical view.

The same Move call comes back in different shapes depending on the path
that executed it: the node's ``sui_executeTransactionBlock`` reply, a
``sui_getTransactionBlock`` reply after finality, or whatever an external
wallet hands back (often the node reply wrapped under ``transaction``).

Created-object lookup is an ordered chain of small strategies, each returning
an id or None; the first non-None answer wins.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

WRAPPER_KEYS = ("transaction", "result")
MAX_UNWRAP_DEPTH = 4


@dataclass(frozen=True)
class CreatedObject:
    object_id: str
    type_hint: Optional[str] = None


@dataclass(frozen=True)
class EmittedEvent:
    event_type: str
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExtractionQuery:
    """What to look for when recovering the id of a newly created object."""
    type_hint: Optional[str] = None
    event_types: Tuple[str, ...] = ()
    event_field: Optional[str] = None


@dataclass(frozen=True)
class ExecutionView:
    """Canonical view of a completed submission."""
    digest: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    created_objects: Tuple[CreatedObject, ...] = ()
    events: Tuple[EmittedEvent, ...] = ()
    effects: Mapping[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status == "failure"


def _mapping(value: Any) -> Optional[Mapping[str, Any]]:
    return value if isinstance(value, Mapping) else None


def _sequence(value: Any) -> Sequence[Any]:
    if isinstance(value, (list, tuple)):
        return value
    return ()


def _matches(type_name: Any, hint: Optional[str]) -> bool:
    return bool(hint) and isinstance(type_name, str) and hint.lower() in type_name.lower()


def from_object_changes(payload: Mapping[str, Any], query: ExtractionQuery) -> Optional[str]:
    """``objectChanges`` entries of type ``created``; type match first, then first created."""
    created = [
        change for change in _sequence(payload.get("objectChanges"))
        if isinstance(change, Mapping)
        and change.get("type") == "created"
        and isinstance(change.get("objectId"), str)
    ]
    if not created:
        return None
    for change in created:
        if _matches(change.get("objectType"), query.type_hint):
            return change["objectId"]
    return created[0]["objectId"]


def from_effects_created(payload: Mapping[str, Any], query: ExtractionQuery) -> Optional[str]:
    """``effects.created``: direct ``objectId`` or ``reference.objectId``."""
    effects = _mapping(payload.get("effects"))
    if effects is None:
        return None
    for item in _sequence(effects.get("created")):
        if not isinstance(item, Mapping):
            continue
        if isinstance(item.get("objectId"), str):
            return item["objectId"]
        reference = _mapping(item.get("reference"))
        if reference and isinstance(reference.get("objectId"), str):
            return reference["objectId"]
    return None


def from_events(payload: Mapping[str, Any], query: ExtractionQuery) -> Optional[str]:
    """A named field of the first matching creation/mint event."""
    if not query.event_types or not query.event_field:
        return None
    for event in _sequence(payload.get("events")):
        if not isinstance(event, Mapping):
            continue
        event_type = event.get("type")
        if not any(_matches(event_type, name) for name in query.event_types):
            continue
        parsed = _mapping(event.get("parsedJson"))
        if parsed and isinstance(parsed.get(query.event_field), str):
            return parsed[query.event_field]
    return None


def from_wrapped(
    payload: Mapping[str, Any],
    query: ExtractionQuery,
    _depth: int = 0,
) -> Optional[str]:
    """Recurse into a payload nested under a known wrapper key."""
    if _depth >= MAX_UNWRAP_DEPTH:
        return None
    for key in WRAPPER_KEYS:
        inner = _mapping(payload.get(key))
        if inner is not None:
            found = _first_match(inner, query, _depth + 1)
            if found:
                return found
    return None


Strategy = Callable[[Mapping[str, Any], ExtractionQuery], Optional[str]]

EXTRACTION_STRATEGIES: Tuple[Strategy, ...] = (
    from_object_changes,
    from_effects_created,
    from_events,
)


def _first_match(payload: Mapping[str, Any], query: ExtractionQuery, depth: int) -> Optional[str]:
    for strategy in EXTRACTION_STRATEGIES:
        found = strategy(payload, query)
        if found:
            return found
    return from_wrapped(payload, query, depth)


def extract_created_object_id(
    payload: Any,
    query: Optional[ExtractionQuery] = None,
) -> Optional[str]:
    """Id of the object a transaction created, or None if it cannot be determined.

    None is an expected answer: the transaction may well have succeeded.
    """
    data = _mapping(payload)
    if data is None:
        logger.warning("Cannot extract object id from %s payload", type(payload).__name__)
        return None
    try:
        found = _first_match(data, query or ExtractionQuery(), 0)
    except Exception:  # noqa: BLE001 - shape drift must not break a finalized submission
        logger.warning("Object id extraction failed on unexpected payload shape", exc_info=True)
        return None
    if found is None:
        logger.warning(
            "Could not extract created object id (digest=%s, keys=%s)",
            find_digest(data), sorted(str(k) for k in data.keys()),
        )
    return found


def find_digest(payload: Any, _depth: int = 0) -> Optional[str]:
    """Transaction digest from a payload or its wrappers."""
    data = _mapping(payload)
    if data is None or _depth > MAX_UNWRAP_DEPTH:
        return None
    digest = data.get("digest")
    if isinstance(digest, str) and digest:
        return digest
    effects = _mapping(data.get("effects"))
    if effects and isinstance(effects.get("transactionDigest"), str):
        return effects["transactionDigest"]
    for key in WRAPPER_KEYS:
        found = find_digest(data.get(key), _depth + 1)
        if found:
            return found
    return None


def _unwrap(data: Mapping[str, Any]) -> Mapping[str, Any]:
    for _ in range(MAX_UNWRAP_DEPTH):
        if any(k in data for k in ("objectChanges", "effects", "events")):
            return data
        inner = next((data[k] for k in WRAPPER_KEYS if isinstance(data.get(k), Mapping)), None)
        if inner is None:
            return data
        data = inner
    return data


def normalize_execution(payload: Any) -> ExecutionView:
    """Build an :class:`ExecutionView` from any known result shape."""
    data = _mapping(payload)
    if data is None:
        return ExecutionView()

    body = _unwrap(data)
    effects = _mapping(body.get("effects")) or {}
    status_block = _mapping(effects.get("status")) or {}
    status = status_block.get("status") if isinstance(status_block.get("status"), str) else None
    error = status_block.get("error") if isinstance(status_block.get("error"), str) else None

    created: list[CreatedObject] = []
    seen: set[str] = set()
    for change in _sequence(body.get("objectChanges")):
        if isinstance(change, Mapping) and change.get("type") == "created":
            object_id = change.get("objectId")
            if isinstance(object_id, str) and object_id not in seen:
                object_type = change.get("objectType")
                created.append(CreatedObject(object_id, object_type if isinstance(object_type, str) else None))
                seen.add(object_id)
    for item in _sequence(effects.get("created")):
        if not isinstance(item, Mapping):
            continue
        reference = _mapping(item.get("reference")) or {}
        object_id = item.get("objectId") or reference.get("objectId")
        if isinstance(object_id, str) and object_id not in seen:
            created.append(CreatedObject(object_id))
            seen.add(object_id)

    events = tuple(
        EmittedEvent(
            event_type=str(event.get("type", "")),
            payload=_mapping(event.get("parsedJson")) or {},
        )
        for event in _sequence(body.get("events"))
        if isinstance(event, Mapping)
    )

    return ExecutionView(
        digest=find_digest(data),
        status=status,
        error=error,
        created_objects=tuple(created),
        events=events,
        effects=dict(effects),
    )


def merge_views(primary: ExecutionView, fallback: ExecutionView) -> ExecutionView:
    """Prefer ``primary`` fields, filling gaps from ``fallback``."""
    return ExecutionView(
        digest=primary.digest or fallback.digest,
        status=primary.status or fallback.status,
        error=primary.error or fallback.error,
        created_objects=primary.created_objects or fallback.created_objects,
        events=primary.events or fallback.events,
        effects=primary.effects or fallback.effects,
    )
