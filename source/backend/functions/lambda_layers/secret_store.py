# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Thin wrapper over AWS Secrets Manager: read and overwrite opaque secret
values by name or ARN.
"""

import logging

from aws_lambda_powertools.utilities import parameters
from aws_lambda_powertools.utilities.parameters.exceptions import GetParameterError
from botocore.exceptions import ClientError

from lambda_layers.errors import SecretNotFound, SecretWriteError

logger = logging.getLogger(__name__)


class SecretStore:

    def __init__(self, secrets_client):
        self._client = secrets_client
        self._provider = parameters.SecretsProvider(boto3_client=secrets_client)

    def get_secret_value(self, secret_id):
        """
        Returns the raw SecretString. Values are always fetched from the
        backend, the provider cache is never used across invocations.
        @raise SecretNotFound: if Secrets Manager has no such secret.
        """
        try:
            return self._provider.get(secret_id, force_fetch=True)
        except GetParameterError as e:
            if 'ResourceNotFoundException' in str(e):
                raise SecretNotFound(secret_id) from e
            raise

    def put_secret_value(self, secret_id, value):
        """
        Overwrites the current value of a secret. Errors (commonly a KMS
        permission denial) are not retried.
        """
        try:
            self._client.put_secret_value(SecretId=secret_id, SecretString=value)
        except ClientError as e:
            raise SecretWriteError(secret_id, str(e)) from e
        logger.info('Secret %s updated', secret_id)
