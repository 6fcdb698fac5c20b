"""
Contract-call model for Terra transaction messages.

Raw messages arrive in several shapes: a MsgExecuteContract whose ``msg`` is a
JSON object (LCD), a base64/JSON string (amino, some RPC encoders), an authz
MsgExec wrapping further messages, or a proxy ``execute_contract`` call whose
inner message is itself JSON. ``parse_calls`` flattens all of them into a list
of ``ContractCall`` records so the classifier and the extractors can match on
actions instead of searching serialized text.
"""

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

_BASE64_RE = re.compile(r'^[A-Za-z0-9+/]*={0,2}$')

# Keys under which a call carries a base64 sub-message for the receiving contract
_HOOK_MESSAGE_KEYS = ('send_nft', 'send')


class PayloadDecodeError(ValueError):
    """Raised when an embedded message payload cannot be decoded."""


@dataclass(frozen=True)
class ContractCall:
    """A single execute-contract call, reduced to its action and arguments."""
    sender: str
    contract: str
    action: str
    args: Dict[str, Any] = field(default_factory=dict)
    funds: Tuple[Dict[str, Any], ...] = ()
    inner_action: Optional[str] = None
    inner_args: Dict[str, Any] = field(default_factory=dict)

    @property
    def actions(self) -> Tuple[str, ...]:
        """Outer and inner action names, lowercased."""
        names = [self.action.lower()] if self.action else []
        if self.inner_action:
            names.append(self.inner_action.lower())
        return tuple(names)

    def find_args(self, action: str) -> Optional[Dict[str, Any]]:
        """Arguments for ``action`` whether it is the outer or inner action."""
        if self.action == action:
            return self.args
        if self.inner_action == action:
            return self.inner_args
        return None


def decode_base64(value: Any) -> Any:
    """Decode a base64 string, returning the input unchanged when it is not base64."""
    if not isinstance(value, str) or not value or len(value) % 4 != 0:
        return value
    if not _BASE64_RE.match(value):
        return value
    try:
        return base64.b64decode(value).decode('utf-8')
    except (binascii.Error, UnicodeDecodeError):
        return value


def decode_payload(value: Any) -> Dict[str, Any]:
    """
    Decode an embedded message payload to a dict.

    Accepts a dict (returned as is), a JSON string, or base64-encoded JSON.

    Raises:
        PayloadDecodeError: If the value cannot be turned into a JSON object
    """
    if isinstance(value, dict):
        return value
    if not isinstance(value, str):
        raise PayloadDecodeError(f"Unsupported payload type: {type(value).__name__}")

    text = value.strip()
    if not text.startswith('{'):
        try:
            text = base64.b64decode(text, validate=True).decode('utf-8')
        except (binascii.Error, UnicodeDecodeError) as e:
            raise PayloadDecodeError(f"Payload is neither JSON nor base64: {e}") from e

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise PayloadDecodeError(f"Payload is not valid JSON: {e}") from e

    if not isinstance(decoded, dict):
        raise PayloadDecodeError("Payload does not decode to an object")
    return decoded


def _split_action(payload: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """Split ``{"action": {...}}`` into its action name and arguments."""
    if not payload:
        return '', {}
    action = next(iter(payload))
    args = payload[action]
    return action, args if isinstance(args, dict) else {}


def _inner_message(action: str, args: Dict[str, Any]) -> Tuple[Optional[str], Dict[str, Any]]:
    """Resolve the sub-message a call forwards to another contract, if any."""
    if action in _HOOK_MESSAGE_KEYS and 'msg' in args:
        try:
            return _split_action(decode_payload(args['msg']))
        except PayloadDecodeError as e:
            logger.debug(f"Could not decode {action} hook message: {e}")
            return None, {}

    if action == 'execute_contract' and 'msg' in args:
        try:
            return _split_action(decode_payload(args['msg']))
        except PayloadDecodeError as e:
            logger.debug(f"Could not decode execute_contract message: {e}")
            return None, {}

    return None, {}


def message_payload(message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """The execute payload of a raw message, decoding string forms."""
    msg = message.get('msg')
    if msg is None:
        msg = message.get('execute_msg')
    if msg is None:
        return None
    try:
        return decode_payload(msg)
    except PayloadDecodeError as e:
        logger.debug(f"Skipping undecodable message payload: {e}")
        return None


def parse_calls(messages: List[Any]) -> List[ContractCall]:
    """
    Flatten raw transaction messages into contract calls.

    Non-execute messages (bank sends, staking) are skipped. Authz MsgExec
    messages contribute the calls they wrap, in order.
    """
    calls: List[ContractCall] = []

    for message in messages or []:
        if not isinstance(message, dict):
            continue

        wrapped = message.get('msgs')
        if isinstance(wrapped, list):
            calls.extend(parse_calls(wrapped))
            continue

        payload = message_payload(message)
        if payload is None:
            continue

        action, args = _split_action(payload)
        inner_action, inner_args = _inner_message(action, args)
        funds = message.get('funds') or message.get('coins') or []
        if not isinstance(funds, list):
            funds = []

        calls.append(ContractCall(
            sender=message.get('sender', '') or '',
            contract=message.get('contract', '') or '',
            action=action,
            args=args,
            funds=tuple(f for f in funds if isinstance(f, dict)),
            inner_action=inner_action,
            inner_args=inner_args,
        ))

    return calls
