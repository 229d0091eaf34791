# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

"""
This AWS Lambda function acts as a CloudFormation Custom Resource that
retrieves the Authentik LDAP outpost token once the Authentik server is up,
and stores it in AWS Secrets Manager for the LDAP outpost service.
The resource carries an UpdateTimestamp property so that it runs again on
every deployment; the stored token is overwritten each time.
"""

import boto3 # AWS SDK for Python, used for the service clients below.
from aws_lambda_powertools import Logger # Structured logging for Lambda functions.
from typing import TypedDict

from lambda_layers.authentik import DEFAULT_OUTPOST_NAME, LdapTokenWorkflow, token_preview # Authentik API workflows.
from lambda_layers.cfn_resource import BootstrapResource # CloudFormation custom resource helper that responds once per event.
from lambda_layers.decorators import with_logging # Logs the redacted event around the handler.
from lambda_layers.http_client import HttpJsonClient # JSON over HTTPS client for the Authentik API.
from lambda_layers.secret_store import SecretStore # Secrets Manager reads and writes.


# Initializes the logger, named after the custom resource it serves.
logger = Logger(service='LdapTokenRetrieverCustomResource')

# Initializes the CloudFormation custom resource helper.
# boto_level='CRITICAL': Keeps boto3 logging quiet.
helper = BootstrapResource(json_logging=False, log_level='INFO',
                           boto_level='CRITICAL')

# Initializes a Secrets Manager backed store for the Authentik tokens.
secret_store = SecretStore(boto3.client('secretsmanager'))
# Module-level clients are reused by warm invocations.
http_client = HttpJsonClient()
# Fetches or creates the LDAP outpost token and stores it.
workflow = LdapTokenWorkflow(secret_store, http_client)


class LdapTokenProperties(TypedDict, total=False):
    Environment: str
    AuthentikHost: str
    OutpostName: str
    AdminSecretName: str
    LDAPSecretName: str
    UpdateTimestamp: str # Changes on every deployment to force an update.


@helper.create
@helper.update
def create(event, _):
    """
    Handles CloudFormation Create and Update events: retrieves the outpost
    token and writes it to the LDAP token secret.
    """
    props: LdapTokenProperties = event['ResourceProperties']
    logger.info('Processing LDAP token retrieval', extra={
        'environment': props.get('Environment'),
        'authentik_host': props['AuthentikHost'],
        'outpost_name': props.get('OutpostName'),
        'admin_secret_name': props['AdminSecretName'],
        'ldap_secret_name': props['LDAPSecretName'],
    })

    token = workflow.run(
        authentik_host=props['AuthentikHost'],
        admin_secret_name=props['AdminSecretName'],
        ldap_secret_name=props['LDAPSecretName'],
        outpost_name=props.get('OutpostName') or DEFAULT_OUTPOST_NAME,
    )

    helper.Data.update({
        'Message': 'LDAP token retrieved and updated successfully',
        'LDAPToken': token_preview(token),
    })


@helper.delete
def delete(event, _):
    """
    The token secret is left in place on delete, since the LDAP outpost may
    still be using it.
    """
    logger.info('Delete request - no action needed for LDAP token retrieval')
    helper.Data.update({'Message': 'Delete completed'})


@logger.inject_lambda_context
@with_logging
def handler(event, context):
    helper(event, context)
