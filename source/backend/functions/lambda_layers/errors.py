# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Exceptions raised by the bootstrap custom resources.

Workflows raise these and never talk to CloudFormation themselves; the
custom resource helper turns any exception into a FAILED response whose
Reason is the exception message.
"""


class BootstrapError(Exception):
    """Base class for every failure raised by the bootstrap workflows."""


class AdminCredentialMissing(BootstrapError):
    """The Authentik admin token secret is absent or unreadable."""


class OutpostNotFound(BootstrapError):
    def __init__(self, outpost_name):
        super().__init__(f'Outpost with name {outpost_name} not found, aborting...')
        self.outpost_name = outpost_name


class TokenIdentifierMissing(BootstrapError):
    def __init__(self, outpost_name):
        super().__init__(f'Token identifier for outpost {outpost_name} not found, aborting...')
        self.outpost_name = outpost_name


class TokenValueMissing(BootstrapError):
    def __init__(self, outpost_name, token_identifier):
        super().__init__(
            f'Token for outpost {outpost_name} (identifier {token_identifier}) not found, aborting...')
        self.outpost_name = outpost_name
        self.token_identifier = token_identifier


class SecretNotFound(BootstrapError):
    def __init__(self, secret_id):
        super().__init__(f'Secret {secret_id} not found')
        self.secret_id = secret_id


class SecretWriteError(BootstrapError):
    def __init__(self, secret_id, detail):
        super().__init__(f'Failed to write secret {secret_id}: {detail}')
        self.secret_id = secret_id


class InvalidRepositoryArn(BootstrapError, ValueError):
    def __init__(self, arn):
        super().__init__(f'Invalid ECR repository ARN: {arn}')
        self.arn = arn


class MissingRequiredImages(BootstrapError):
    def __init__(self, repository_name, missing, available):
        super().__init__(
            f'Required images missing from ECR repository {repository_name}: '
            f'{", ".join(missing)}. Available tags: {", ".join(available) or "(none)"}')
        self.repository_name = repository_name
        self.missing = list(missing)
        self.available = list(available)


class ListenerRuleNotFound(BootstrapError):
    """No listener rule matched the rule ARN, priority or hostname given."""


class HttpError(BootstrapError):
    def __init__(self, status, body, url=None):
        super().__init__(f'HTTP error! status: {status}, body: {body}')
        self.status = status
        self.body = body
        self.url = url


class InvalidResponse(BootstrapError):
    def __init__(self, detail):
        super().__init__(f'Invalid JSON response: {detail}')


class CfnResponseError(BootstrapError):
    """The response could not be delivered to the CloudFormation callback URL."""
