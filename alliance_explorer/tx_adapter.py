"""
Input adapters for Terra transaction responses.

The ledger can be queried two ways and the responses differ in shape:

- LCD (``/cosmos/tx/v1beta1/txs``): a tx_response with ``txhash``, ``height``,
  ``code``, ``timestamp``, a decoded ``tx``, per-message ``logs`` and a
  top-level ``events`` list. ``GetTx`` wraps it as ``{tx, tx_response}``.
- RPC (``/tx_search``): ``{hash, height, tx_result: {code, log, events}, tx}``
  where event attribute keys/values may be base64 encoded and ``tx`` is an
  encoded blob.

Both are converted into one ``LedgerTx`` before classification, so the
extractors only ever deal with a single canonical shape. Parsing is defensive:
missing structure becomes an empty value instead of an error.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .messages import ContractCall, decode_base64, parse_calls

logger = logging.getLogger(__name__)

Event = Dict[str, Any]


@dataclass(frozen=True)
class LedgerTx:
    """Canonical view of one transaction, independent of the API variant."""
    txhash: str
    height: int
    timestamp: Optional[str] = None
    code: int = 0
    memo: str = ''
    messages: List[Dict[str, Any]] = field(default_factory=list)
    calls: List[ContractCall] = field(default_factory=list)
    log_events: List[Event] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)
    fee: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @property
    def all_events(self) -> List[Event]:
        """Per-log events followed by top-level events."""
        return self.log_events + self.events

    @property
    def succeeded(self) -> bool:
        return self.code == 0


def _safe_get(data: Any, key: str, default: Any = None) -> Any:
    """Safely get a value from a dict (defensive parsing)."""
    if not isinstance(data, dict):
        return default
    value = data.get(key, default)
    return default if value is None else value


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def attribute(event: Event, key: str) -> Optional[str]:
    """Value of the first attribute named ``key`` in an event."""
    attributes = _safe_get(event, 'attributes', [])
    for attr in attributes if isinstance(attributes, list) else []:
        if isinstance(attr, dict) and attr.get('key') == key:
            return attr.get('value')
    return None


def is_wasm_event(event: Event) -> bool:
    """True for contract-emitted events (``wasm`` and ``wasm-<name>``)."""
    event_type = _safe_get(event, 'type', '')
    if not isinstance(event_type, str):
        return False
    return event_type == 'wasm' or event_type.startswith('wasm-')


def _normalize_events(events: Any, decode: bool = False) -> List[Event]:
    """Copy events into ``{type, attributes: [{key, value}]}`` form."""
    normalized = []
    for event in events if isinstance(events, list) else []:
        if not isinstance(event, dict):
            continue
        attributes = []
        raw_attributes = _safe_get(event, 'attributes', [])
        for attr in raw_attributes if isinstance(raw_attributes, list) else []:
            if not isinstance(attr, dict):
                continue
            key = attr.get('key')
            value = attr.get('value')
            if decode:
                key = decode_base64(key)
                value = decode_base64(value)
            attributes.append({'key': key, 'value': '' if value is None else str(value)})
        normalized.append({'type': str(_safe_get(event, 'type', '')), 'attributes': attributes})
    return normalized


def _flatten_logs(logs: Any, decode: bool = False) -> List[Event]:
    flattened = []
    for log in logs if isinstance(logs, list) else []:
        flattened.extend(_normalize_events(_safe_get(log, 'events', []), decode=decode))
    return flattened


def _tx_parts(tx: Any) -> Dict[str, Any]:
    """Pull memo, messages and fee out of a decoded ``tx`` object."""
    body = _safe_get(tx, 'body', {})
    messages = _safe_get(body, 'messages', [])
    if not isinstance(messages, list):
        messages = []
    memo = _safe_get(body, 'memo', '')
    fee = _safe_get(_safe_get(tx, 'auth_info', {}), 'fee', {})
    return {
        'memo': memo if isinstance(memo, str) else '',
        'messages': messages,
        'fee': fee if isinstance(fee, dict) else {},
    }


def from_lcd(response: Dict[str, Any], timestamp: Optional[str] = None) -> LedgerTx:
    """Adapt an LCD tx_response (bare or ``{tx, tx_response}`` wrapped)."""
    tx_response = _safe_get(response, 'tx_response', response)
    tx = _safe_get(tx_response, 'tx', None) or _safe_get(response, 'tx', {})
    parts = _tx_parts(tx)

    return LedgerTx(
        txhash=str(_safe_get(tx_response, 'txhash', '')),
        height=_to_int(_safe_get(tx_response, 'height', 0)),
        timestamp=_safe_get(tx_response, 'timestamp', None) or timestamp,
        code=_to_int(_safe_get(tx_response, 'code', 0)),
        memo=parts['memo'],
        messages=parts['messages'],
        calls=parse_calls(parts['messages']),
        log_events=_flatten_logs(_safe_get(tx_response, 'logs', [])),
        events=_normalize_events(_safe_get(tx_response, 'events', [])),
        fee=parts['fee'],
        raw=response,
    )


def _parse_rpc_log(log: Any) -> List[Any]:
    """The RPC ``log`` field holds the JSON logs array on older nodes."""
    if not isinstance(log, str) or not log.startswith('['):
        return []
    try:
        parsed = json.loads(log)
    except json.JSONDecodeError:
        return []
    return parsed if isinstance(parsed, list) else []


def from_rpc_search(item: Dict[str, Any], timestamp: Optional[str] = None) -> LedgerTx:
    """
    Adapt one ``tx_search`` result.

    The RPC response carries no block time; pass ``timestamp`` when the caller
    has looked it up. The encoded ``tx`` blob is only used when a node returns
    it already decoded.
    """
    tx_result = _safe_get(item, 'tx_result', {})
    tx = item.get('tx') if isinstance(item.get('tx'), dict) else {}
    parts = _tx_parts(tx)

    return LedgerTx(
        txhash=str(_safe_get(item, 'hash', '')),
        height=_to_int(_safe_get(item, 'height', 0)),
        timestamp=_safe_get(item, 'timestamp', None) or timestamp,
        code=_to_int(_safe_get(tx_result, 'code', 0)),
        memo=parts['memo'],
        messages=parts['messages'],
        calls=parse_calls(parts['messages']),
        log_events=_flatten_logs(_parse_rpc_log(_safe_get(tx_result, 'log', '')), decode=True),
        events=_normalize_events(_safe_get(tx_result, 'events', []), decode=True),
        fee=parts['fee'],
        raw=item,
    )


def adapt(raw: Union[LedgerTx, Dict[str, Any], None], timestamp: Optional[str] = None) -> LedgerTx:
    """Detect the response variant and return the canonical ``LedgerTx``."""
    if isinstance(raw, LedgerTx):
        return raw
    if not isinstance(raw, dict):
        logger.debug(f"Adapting non-dict transaction of type {type(raw).__name__}")
        return LedgerTx(txhash='', height=0, timestamp=timestamp, raw={})
    if 'tx_result' in raw:
        return from_rpc_search(raw, timestamp=timestamp)
    return from_lcd(raw, timestamp=timestamp)
