import os
import sys

current_test_dir = os.path.dirname(os.path.abspath(__file__))
functions_dir = os.path.abspath(os.path.join(current_test_dir, '..'))
if functions_dir not in sys.path:
    sys.path.insert(0, functions_dir)

import unittest
from unittest.mock import MagicMock

from lambda_layers import authentik
from lambda_layers.errors import (
    AdminCredentialMissing,
    OutpostNotFound,
    SecretNotFound,
    TokenIdentifierMissing,
    TokenValueMissing,
)

HOST = 'https://account.example.com'
OUTPOSTS_URL = f'{HOST}/api/v3/outposts/instances/'


def authentik_http(outposts, view_key=None):
    http = MagicMock()

    def get_json(url, headers=None, fields=None):
        if url == OUTPOSTS_URL:
            return {'results': outposts}
        return view_key if view_key is not None else {'key': 'outpost-token-value'}

    http.get_json.side_effect = get_json
    return http


class TestTokenHelpers(unittest.TestCase):

    def test_preview_keeps_first_ten_characters(self):
        self.assertEqual(authentik.token_preview('abcdefghijklmnop'), 'abcdefghij...')

    def test_admin_token_from_json_or_raw(self):
        self.assertEqual(authentik.admin_token_from_secret('{"token": "admin-token"}'), 'admin-token')
        self.assertEqual(authentik.admin_token_from_secret('raw-token'), 'raw-token')
        self.assertEqual(authentik.admin_token_from_secret('{"other": 1}'), '{"other": 1}')

    def test_missing_or_empty_admin_token(self):
        store = MagicMock()
        for effect in (SecretNotFound('admin'), ['']):
            with self.subTest(effect=effect):
                store.get_secret_value.side_effect = effect
                with self.assertRaises(AdminCredentialMissing):
                    authentik.get_admin_token(store, 'admin')


class TestRetrieveOutpostToken(unittest.TestCase):

    def test_exact_name_match_wins_over_case_insensitive_results(self):
        http = authentik_http([
            {'name': 'LDAP-old', 'token_identifier': 'id-old'},
            {'name': 'ldap', 'token_identifier': 'id-lower'},
            {'name': 'LDAP', 'token_identifier': 'id-999'},
        ])

        token = authentik.retrieve_outpost_token(http, HOST, 'admin-token', 'LDAP')

        self.assertEqual(token, 'outpost-token-value')
        first, second = http.get_json.call_args_list
        self.assertEqual(first.kwargs['fields'], {'name__iexact': 'LDAP'})
        self.assertEqual(first.kwargs['headers']['Authorization'], 'Bearer admin-token')
        self.assertEqual(second.args[0], f'{HOST}/api/v3/core/tokens/id-999/view_key/')

    def test_default_outpost_name(self):
        http = authentik_http([{'name': 'LDAP', 'token_identifier': 'id-999'}])

        authentik.retrieve_outpost_token(http, HOST, 'admin-token', None)

        self.assertEqual(http.get_json.call_args_list[0].kwargs['fields'], {'name__iexact': 'LDAP'})

    def test_no_outposts(self):
        with self.assertRaises(OutpostNotFound) as ctx:
            authentik.retrieve_outpost_token(authentik_http([]), HOST, 'admin-token', 'LDAP')
        self.assertEqual(str(ctx.exception), 'Outpost with name LDAP not found, aborting...')

    def test_only_case_insensitive_match(self):
        http = authentik_http([{'name': 'ldap', 'token_identifier': 'id-lower'}])

        with self.assertRaises(TokenIdentifierMissing):
            authentik.retrieve_outpost_token(http, HOST, 'admin-token', 'LDAP')
        http.get_json.assert_called_once()

    def test_outpost_without_token_identifier(self):
        http = authentik_http([{'name': 'LDAP', 'token_identifier': ''}])

        with self.assertRaises(TokenIdentifierMissing):
            authentik.retrieve_outpost_token(http, HOST, 'admin-token', 'LDAP')

    def test_view_key_without_key(self):
        http = authentik_http([{'name': 'LDAP', 'token_identifier': 'id-999'}], view_key={})

        with self.assertRaises(TokenValueMissing) as ctx:
            authentik.retrieve_outpost_token(http, HOST, 'admin-token', 'LDAP')
        self.assertEqual(ctx.exception.token_identifier, 'id-999')


if __name__ == '__main__':
    unittest.main()
