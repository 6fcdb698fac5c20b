"""Tests for the address book and token registry."""

from unittest.mock import MagicMock

import requests

from alliance_explorer.lookups import (
    AddressBook,
    TokenRegistry,
    format_address,
    format_address_with_name,
    format_amount_display,
    format_tx_hash,
    load_address_book,
)

from tests.factories import ALICE, BOB

VALIDATOR = 'terravaloper1' + 'q' * 38

NESTED_CONFIG = {
    'members': {ALICE: {'handle': '@alice', 'name': 'Alice', 'type': 'member'}},
    'known_addresses': {
        'validators': {VALIDATOR: {'name': 'Validator One', 'type': 'validator'}},
        'daos': {BOB: {'name': 'Some DAO', 'type': 'dao'}},
    },
    'tokens': {
        'terra1ampluna': {'symbol': 'ampLUNA', 'name': 'Eris Amplified LUNA', 'decimals': 6},
        'terra1broken': 'not a dict',
    },
}


class TestAddressBook:

    def test_nested_layout(self):
        book = AddressBook.from_config(NESTED_CONFIG)
        assert book.lookup(ALICE)['handle'] == '@alice'
        assert book.lookup(VALIDATOR)['name'] == 'Validator One'
        assert book.lookup(BOB)['type'] == 'dao'
        assert len(book) == 3

    def test_root_layout(self):
        book = AddressBook.from_config({'validators': {VALIDATOR: {'name': 'V'}}})
        assert book.lookup(VALIDATOR) == {'name': 'V'}

    def test_unrecognised_layout(self, caplog):
        book = AddressBook.from_config({'data': [1, 2, 3]})
        assert len(book) == 0
        assert 'No validators' in caplog.text

    def test_case_insensitive(self):
        book = AddressBook.from_config(NESTED_CONFIG)
        assert book.lookup(VALIDATOR.upper())['name'] == 'Validator One'

    def test_missing(self):
        book = AddressBook.from_config(NESTED_CONFIG)
        assert book.lookup('terra1nobody') is None
        assert book.lookup(None) is None

    def test_tokens(self):
        book = AddressBook.from_config(NESTED_CONFIG)
        assert book.tokens.lookup('ampLUNA')['address'] == 'terra1ampluna'
        assert book.tokens.name('ampLUNA') == 'Eris Amplified LUNA'
        assert book.tokens.name('XYZ') == 'XYZ'


class TestLoadAddressBook:

    def test_success(self):
        session = MagicMock()
        session.get.return_value.json.return_value = NESTED_CONFIG
        book = load_address_book('https://example.test/book.json', session=session)
        session.get.assert_called_once_with('https://example.test/book.json', timeout=30)
        assert len(book) == 3
        session.close.assert_not_called()

    def test_failure_gives_empty_book(self):
        session = MagicMock()
        session.get.side_effect = requests.exceptions.ConnectionError('down')
        book = load_address_book('https://example.test/book.json', session=session)
        assert len(book) == 0

    def test_bad_json_gives_empty_book(self):
        session = MagicMock()
        session.get.return_value.json.side_effect = ValueError('not json')
        assert len(load_address_book('https://example.test/book.json', session=session)) == 0


class TestFormatting:

    def test_format_address(self):
        assert format_address(ALICE) == 'terra1a...aaaa'
        assert format_address('short') == 'short'
        assert format_address(None) == 'N/A'

    def test_format_address_with_name(self):
        book = AddressBook.from_config(NESTED_CONFIG)
        assert format_address_with_name(ALICE, book) == '@alice (terra1a...aaaa)'
        assert format_address_with_name(BOB, book) == 'Some DAO (terra1x...xxxx)'
        assert format_address_with_name('N/A', book) == '-'
        assert format_address_with_name(ALICE) == 'terra1a...aaaa'

    def test_format_tx_hash(self):
        assert format_tx_hash('ABCDEF1234567890') == 'ABCDEF...7890'

    def test_format_amount_display(self):
        assert format_amount_display('249.000000 LUNA') == '249 LUNA'
        assert format_amount_display('3.500000 ampLUNA') == '3.5 ampLUNA'
        assert format_amount_display('odd') == 'odd'
        assert format_amount_display(None) is None

    def test_format_amount_display_with_registry(self):
        registry = TokenRegistry(tokens={'ampLUNA': {'name': 'Eris Amplified LUNA'}})
        assert format_amount_display('3.500000 ampLUNA', registry) == '3.5 ampLUNA (Eris Amplified LUNA)'
        assert format_amount_display('1.000000 LUNA', registry) == '1 LUNA'
