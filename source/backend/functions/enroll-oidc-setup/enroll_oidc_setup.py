# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

"""
This AWS Lambda function acts as a CloudFormation Custom Resource that
prepares the Authentik side of the enrollment login: an OAuth2/OIDC provider
and the application that uses it. The client credentials and OIDC endpoints
are returned as attributes, for the load balancer's authenticate-oidc
action.

Authentik objects are managed outside of CloudFormation, so Delete does
nothing.
"""

import json
import re
from os import getenv

import boto3 # AWS SDK for Python, used for the service clients below.
from aws_lambda_powertools import Logger # Structured logging for Lambda functions.

from lambda_layers.authentik import AuthentikApi, get_admin_token # Authentik API workflows.
from lambda_layers.cfn_resource import BootstrapResource # CloudFormation custom resource helper that responds once per event.
from lambda_layers.decorators import with_logging # Logs the redacted event around the handler.
from lambda_layers.errors import BootstrapError, HttpError # Errors reported as FAILED responses.
from lambda_layers.http_client import HttpJsonClient # JSON over HTTPS client for the Authentik API.
from lambda_layers.secret_store import SecretStore # Secrets Manager reads and writes.


# Initializes the logger, named after the custom resource it serves.
logger = Logger(service='EnrollOidcSetupCustomResource')

# Initializes the CloudFormation custom resource helper.
# boto_level='CRITICAL': Keeps boto3 logging quiet.
helper = BootstrapResource(json_logging=False, log_level='INFO',
                           boto_level='CRITICAL')

# Initializes a Secrets Manager backed store for the Authentik tokens.
secret_store = SecretStore(boto3.client('secretsmanager'))
# Module-level clients are reused by warm invocations.
http_client = HttpJsonClient()

REQUIRED_SCOPES = ['email', 'openid', 'profile']
DEFAULT_AUTHORIZATION_FLOW = 'default-provider-authorization-implicit-consent'
DEFAULT_INVALIDATION_FLOW = 'default-provider-invalidation-flow'
FALLBACK_AUTHORIZATION_FLOWS = (
    'default-provider-authorization-implicit-consent',
    'default-provider-authorization-explicit-consent',
)


def load_settings():
    """Reads the function configuration from its environment variables."""
    application_name = getenv('APPLICATION_NAME', '')
    return {
        'authentik_url': getenv('AUTHENTIK_URL', '').rstrip('/'),
        'admin_secret_arn': getenv('AUTHENTIK_ADMIN_SECRET_ARN'),
        'provider_name': getenv('PROVIDER_NAME'),
        'application_name': application_name,
        'application_slug': getenv('APPLICATION_SLUG') or re.sub(r'[^a-z0-9]', '-', application_name.lower()),
        'redirect_uris': json.loads(getenv('REDIRECT_URIS', '[]')),
        'launch_url': getenv('LAUNCH_URL'),
        'open_in_new_tab': getenv('OPEN_IN_NEW_TAB', 'false').lower() == 'true',
        'group_name': getenv('GROUP_NAME'),
        'description': getenv('APPLICATION_DESCRIPTION'),
        'authentication_flow': getenv('AUTHENTICATION_FLOW_NAME', ''),
        'authorization_flow': getenv('AUTHORIZATION_FLOW_NAME') or DEFAULT_AUTHORIZATION_FLOW,
        'invalidation_flow': getenv('INVALIDATION_FLOW_NAME') or DEFAULT_INVALIDATION_FLOW,
    }


def get_flow(api, name):
    """Finds a flow by name, then by slug, then falls back to a default authorization flow."""
    logger.info(f'Looking for flow: {name}')
    results = api.results('/api/v3/flows/instances/', {'name': name})
    if results:
        return results[0]

    flows = api.results('/api/v3/flows/instances/')
    for flow in flows:
        if flow.get('slug') == name:
            return flow
    for flow in flows:
        if flow.get('slug') in FALLBACK_AUTHORIZATION_FLOWS:
            logger.info(f'Using fallback flow: {flow["slug"]}')
            return flow
    raise BootstrapError(f'Flow not found: {name}')


def get_or_create_scope_mapping(api, scope_name):
    results = api.results('/api/v3/propertymappings/provider/scope/', {'scope_name': scope_name})
    if results:
        return results[0]
    logger.info(f'Creating scope mapping for {scope_name}')
    return api.post('/api/v3/propertymappings/provider/scope/', {
        'name': f"authentik default OAuth Mapping: OpenID '{scope_name}'",
        'scope_name': scope_name,
        'expression': 'return {}',
        'description': f'Standard OpenID Connect scope: {scope_name}',
    })


def create_or_update_provider(api, provider_data):
    existing = api.results('/api/v3/providers/oauth2/', {'name': provider_data['name']})
    if existing:
        logger.info(f'Updating existing provider with ID {existing[0]["pk"]}')
        provider = api.patch(f'/api/v3/providers/oauth2/{existing[0]["pk"]}/', provider_data)
    else:
        logger.info('Creating new OAuth2 provider')
        provider = api.post('/api/v3/providers/oauth2/', provider_data)

    if not provider.get('client_id') or not provider.get('client_secret'):
        # Some Authentik versions omit the credentials from write responses.
        provider = api.get(f'/api/v3/providers/oauth2/{provider["pk"]}/')
    return provider


def create_or_update_application(api, application_data):
    existing = api.results('/api/v3/core/applications/', {'slug': application_data['slug']})
    if existing:
        return api.patch(f'/api/v3/core/applications/{existing[0]["slug"]}/', application_data)
    return api.post('/api/v3/core/applications/', application_data)


def assign_group(api, application_slug, group_name):
    """Group binding is best effort: a failure is logged and the setup goes on."""
    try:
        api.patch(f'/api/v3/core/applications/{application_slug}/', {'group': group_name})
    except BootstrapError as e:
        logger.warning(f'Could not assign group {group_name} to {application_slug}: {e}')


def fixed_oidc_endpoints(authentik_url, application_slug):
    return {
        'issuer': f'{authentik_url}/application/o/{application_slug}/',
        'authorizeUrl': f'{authentik_url}/application/o/authorize/',
        'tokenUrl': f'{authentik_url}/application/o/token/',
        'userInfoUrl': f'{authentik_url}/application/o/userinfo/',
        'jwksUri': f'{authentik_url}/application/o/jwks/',
    }


def get_oidc_configuration(http, authentik_url, application_slug):
    """
    Resolves the OIDC endpoints from the application's discovery document,
    then the global one. Endpoints missing from the document keep Authentik's
    fixed URL layout.
    """
    endpoints = fixed_oidc_endpoints(authentik_url, application_slug)
    for url in (f'{endpoints["issuer"]}.well-known/openid-configuration',
                f'{authentik_url}/.well-known/openid-configuration'):
        try:
            document = http.get_json(url)
        except BootstrapError as e:
            logger.warning(f'OIDC configuration not available at {url}: {e}')
            continue
        discovered = {
            # The global document's issuer is not the application's.
            'issuer': document.get('issuer') if url.startswith(endpoints['issuer']) else None,
            'authorizeUrl': document.get('authorization_endpoint'),
            'tokenUrl': document.get('token_endpoint'),
            'userInfoUrl': document.get('userinfo_endpoint'),
            'jwksUri': document.get('jwks_uri'),
        }
        endpoints.update({key: value for key, value in discovered.items() if value})
        break
    return endpoints


def setup_oidc_application(settings, store, http):
    """
    Creates or updates the provider and application.
    @return: (provider pk, attributes for Fn::GetAtt)
    """
    admin_token = get_admin_token(store, settings['admin_secret_arn'])
    api = AuthentikApi(http, settings['authentik_url'], admin_token)

    authorization_flow = get_flow(api, settings['authorization_flow'])
    invalidation_flow = get_flow(api, settings['invalidation_flow'])
    authentication_flow = get_flow(api, settings['authentication_flow']) if settings['authentication_flow'] else None

    scope_mappings = [get_or_create_scope_mapping(api, scope)['pk'] for scope in REQUIRED_SCOPES]

    provider_data = {
        'name': settings['provider_name'],
        'authorization_flow': authorization_flow['pk'],
        'invalidation_flow': invalidation_flow['pk'],
        'redirect_uris': [{'url': uri, 'matching_mode': 'strict'} for uri in settings['redirect_uris']],
        'client_type': 'confidential',
        'include_claims_in_id_token': True,
        'access_code_validity': 'minutes=1',
        'access_token_validity': 'minutes=5',
        'refresh_token_validity': 'days=30',
        'signing_key': None,
        'property_mappings': scope_mappings,
    }
    if authentication_flow:
        provider_data['authentication_flow'] = authentication_flow['pk']
    provider = create_or_update_provider(api, provider_data)

    application_data = {
        'name': settings['application_name'],
        'slug': settings['application_slug'],
        'provider': provider['pk'],
        'meta_launch_url': settings['launch_url'],
        'open_in_new_tab': settings['open_in_new_tab'],
    }
    if settings['description']:
        application_data['meta_description'] = settings['description']
    application = create_or_update_application(api, application_data)

    if settings['group_name']:
        assign_group(api, application.get('slug', settings['application_slug']), settings['group_name'])

    oidc = get_oidc_configuration(http, settings['authentik_url'], settings['application_slug'])

    if not provider.get('client_id'):
        raise BootstrapError('Provider client_id is missing in the response from Authentik')
    if not oidc['issuer']:
        raise BootstrapError('OIDC issuer is missing in the configuration')

    logger.info('OIDC provider ready', extra={'client_id': provider['client_id'], 'issuer': oidc['issuer']})
    attributes = {
        'clientId': provider['client_id'],
        'clientSecret': provider.get('client_secret'),
        'providerName': settings['provider_name'],
        **oidc,
    }
    # Fn::GetAtt attributes are strings; absent values are left out.
    return str(provider['pk']), {key: str(value) for key, value in attributes.items() if value is not None}


@helper.create
@helper.update
def create(event, _):
    # Data carries the client secret.
    helper.NoEcho = True
    settings = load_settings()
    logger.info('Setting up Authentik OIDC application', extra={
        'authentik_url': settings['authentik_url'],
        'provider_name': settings['provider_name'],
        'application_slug': settings['application_slug'],
    })
    try:
        physical_id, data = setup_oidc_application(settings, secret_store, http_client)
    except HttpError as e:
        raise BootstrapError(f'{e} (url: {e.url})') from e
    helper.Data.update(data)
    return physical_id


@helper.delete
def delete(event, _):
    logger.info('Delete request - Authentik resources are managed outside CloudFormation')


@logger.inject_lambda_context
@with_logging
def handler(event, context):
    helper(event, context)
