"""
Read-only lookup tables used for display: the community address book and the
token registry.

Neither is consulted by classification; they only turn addresses and symbols
into names for reports and exported month files.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional

import requests

from .amount_formatter import to_decimal
from .config import ADDRESS_BOOK_URL

logger = logging.getLogger(__name__)

ADDRESS_SECTIONS = ('members', 'daos', 'contracts', 'validators', 'platforms')


@dataclass(frozen=True)
class TokenRegistry:
    """Token metadata keyed by symbol."""
    tokens: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_address_book_tokens(cls, tokens: Dict[str, Dict[str, Any]]) -> 'TokenRegistry':
        """Build from the address book's ``tokens`` section (keyed by token address)."""
        by_symbol = {}
        for address, data in (tokens or {}).items():
            if not isinstance(data, dict) or not data.get('symbol'):
                continue
            by_symbol.setdefault(data['symbol'], {
                'name': data.get('name', data['symbol']),
                'logo': data.get('logo'),
                'decimals': data.get('decimals', 6),
                'address': address,
            })
        return cls(tokens=by_symbol)

    def lookup(self, symbol: Optional[str]) -> Optional[Dict[str, Any]]:
        if not symbol:
            return None
        return self.tokens.get(symbol)

    def name(self, symbol: str) -> str:
        info = self.lookup(symbol)
        return info.get('name', symbol) if info else symbol


@dataclass(frozen=True)
class AddressBook:
    """Known addresses (members, DAOs, contracts, validators, platforms)."""
    sections: Dict[str, Dict[str, Dict[str, Any]]] = field(default_factory=dict)
    tokens: TokenRegistry = field(default_factory=TokenRegistry)

    @classmethod
    def from_config(cls, data: Dict[str, Any]) -> 'AddressBook':
        """
        Build from the published address book JSON.

        Three layouts are in use: sections nested under ``known_addresses``,
        sections at the root, or an unrecognised wrapper (treated as empty
        sections).
        """
        data = data if isinstance(data, dict) else {}
        known = data.get('known_addresses')

        if isinstance(known, dict):
            sections = {'members': data.get('members') or {}}
            for name in ADDRESS_SECTIONS[1:]:
                sections[name] = known.get(name) or {}
        else:
            sections = {name: data.get(name) or {} for name in ADDRESS_SECTIONS}

        book = cls(
            sections={name: dict(entries) for name, entries in sections.items() if isinstance(entries, dict)},
            tokens=TokenRegistry.from_address_book_tokens(data.get('tokens') or {}),
        )

        counts = {name: len(entries) for name, entries in book.sections.items()}
        logger.info(f"Address book loaded: {counts}, tokens: {len(book.tokens.tokens)}")
        if not counts.get('validators'):
            logger.warning("No validators found in address book")
        return book

    def lookup(self, address: Optional[str]) -> Optional[Dict[str, Any]]:
        """Entry for ``address`` (case-insensitive), searching sections in order."""
        if not address:
            return None
        lower = address.lower()
        for name in ADDRESS_SECTIONS:
            entries = self.sections.get(name, {})
            if address in entries:
                return entries[address]
            for key, value in entries.items():
                if key.lower() == lower:
                    return value
        return None

    def __len__(self) -> int:
        return sum(len(entries) for entries in self.sections.values())


def load_address_book(url: str = ADDRESS_BOOK_URL, session: Optional[requests.Session] = None,
                      timeout: int = 30) -> AddressBook:
    """
    Fetch the address book. A failed fetch is logged and yields an empty
    book so that exports still run without names.
    """
    http = session or requests.Session()
    try:
        response = http.get(url, timeout=timeout)
        response.raise_for_status()
        return AddressBook.from_config(response.json())
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.error(f"Could not load address book from {url}: {e}")
        return AddressBook()
    finally:
        if session is None:
            http.close()


def format_address(address: Optional[str]) -> str:
    """Shorten an address to 'terra1x...wxyz'."""
    if not address or len(address) < 12:
        return address or 'N/A'
    return f"{address[:7]}...{address[-4:]}"


def format_address_with_name(address: Optional[str], address_book: Optional[AddressBook] = None) -> str:
    """Short address prefixed with its address-book name when known."""
    if not address or address == 'N/A':
        return '-'
    short = format_address(address)
    info = address_book.lookup(address) if address_book else None
    if not info:
        return short
    name = info.get('handle') or info.get('name') or short
    return f"{name} ({short})"


def format_tx_hash(tx_hash: Optional[str]) -> str:
    if not tx_hash or len(tx_hash) < 12:
        return tx_hash or 'N/A'
    return f"{tx_hash[:6]}...{tx_hash[-4:]}"


def format_amount_display(amount: Optional[str], registry: Optional[TokenRegistry] = None) -> Optional[str]:
    """
    Compact a '249.000000 LUNA' style amount for display ('249 LUNA').

    Whole numbers lose their decimals and trailing zeros are dropped
    otherwise. With a registry the token's full name is appended.
    """
    if not amount:
        return amount
    parts = amount.split(' ')
    if len(parts) != 2:
        return amount

    number = to_decimal(parts[0])
    if number is None:
        return amount
    token = parts[1]

    if number == number.to_integral_value():
        formatted = str(number.quantize(Decimal(1)))
    else:
        formatted = format(number.normalize(), 'f')

    if registry:
        name = registry.name(token)
        if name != token:
            return f"{formatted} {token} ({name})"
    return f"{formatted} {token}"
