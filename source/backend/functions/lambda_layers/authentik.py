# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Helpers for the Authentik REST API (v3) and the LDAP outpost token workflow.

The outpost token only exists once Authentik is running, so it is fetched
during the deployment and written into Secrets Manager where the LDAP
outpost task definition reads it.
"""

import json
import logging
from urllib.parse import urljoin

from aws_lambda_powertools.utilities.parameters.exceptions import GetParameterError

from lambda_layers.errors import (
    AdminCredentialMissing,
    OutpostNotFound,
    SecretNotFound,
    TokenIdentifierMissing,
    TokenValueMissing,
)
from lambda_layers.http_client import bearer_headers

logger = logging.getLogger(__name__)

DEFAULT_OUTPOST_NAME = 'LDAP'
PREVIEW_LENGTH = 10


def token_preview(token):
    """First characters of a credential, safe to log or return to CloudFormation."""
    return token[:PREVIEW_LENGTH] + '...'


def admin_token_from_secret(secret_string):
    """
    The admin token secret is either a JSON document with a 'token' field or
    the bare token itself.
    """
    try:
        secret = json.loads(secret_string)
    except ValueError:
        return secret_string
    if isinstance(secret, dict) and secret.get('token'):
        return secret['token']
    return secret_string


def get_admin_token(secret_store, secret_id):
    try:
        secret_string = secret_store.get_secret_value(secret_id)
    except (SecretNotFound, GetParameterError) as e:
        raise AdminCredentialMissing(f'Admin token secret {secret_id} could not be read: {e}') from e
    if not secret_string:
        raise AdminCredentialMissing(f'Admin token secret {secret_id} is empty')
    return admin_token_from_secret(secret_string)


class AuthentikApi:
    """Authentik REST calls authenticated with an admin API token."""

    def __init__(self, http_client, host, api_token):
        self.http = http_client
        self.host = host
        self.headers = bearer_headers(api_token)

    def url(self, path):
        return urljoin(self.host, path)

    def get(self, path, params=None):
        return self.http.get_json(self.url(path), headers=self.headers, fields=params)

    def post(self, path, body):
        return self.http.post_json(self.url(path), body, headers=self.headers)

    def patch(self, path, body):
        return self.http.patch_json(self.url(path), body, headers=self.headers)

    def results(self, path, params=None):
        return self.get(path, params).get('results') or []


def retrieve_outpost_token(http_client, authentik_host, api_token, outpost_name=DEFAULT_OUTPOST_NAME):
    """
    Resolves an outpost's token identifier by name and reveals the token.

    The API's name__iexact filter is case-insensitive, so the results are
    filtered again on an exact, case-sensitive name match.
    @return: The outpost token value.
    """
    outpost_name = outpost_name or DEFAULT_OUTPOST_NAME
    api = AuthentikApi(http_client, authentik_host, api_token)

    logger.info('Fetching outpost instances named %s from %s', outpost_name, authentik_host)
    results = api.results('/api/v3/outposts/instances/', {'name__iexact': outpost_name})
    if not results:
        raise OutpostNotFound(outpost_name)

    outpost = next((item for item in results if item.get('name') == outpost_name), None)
    if not outpost or not outpost.get('token_identifier'):
        raise TokenIdentifierMissing(outpost_name)

    token_identifier = outpost['token_identifier']
    logger.info('Found token identifier: %s', token_identifier)

    view_key = api.get(f'/api/v3/core/tokens/{token_identifier}/view_key/')
    token = view_key.get('key')
    if not token:
        raise TokenValueMissing(outpost_name, token_identifier)
    return token


class LdapTokenWorkflow:
    """
    Admin token -> outpost lookup -> token reveal -> secret write.

    Each step feeds the next, so any failure stops the run before the LDAP
    token secret is written.
    """

    def __init__(self, secret_store, http_client):
        self.secret_store = secret_store
        self.http_client = http_client

    def run(self, authentik_host, admin_secret_name, ldap_secret_name, outpost_name=DEFAULT_OUTPOST_NAME):
        admin_token = get_admin_token(self.secret_store, admin_secret_name)
        token = retrieve_outpost_token(self.http_client, authentik_host, admin_token, outpost_name)
        self.secret_store.put_secret_value(ldap_secret_name, token)
        logger.info('LDAP token %s stored in %s', token_preview(token), ldap_secret_name)
        return token
