# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

"""
This AWS Lambda function acts as a CloudFormation Custom Resource that
checks, before the ECS services are deployed, that every container image tag
the deployment needs is present in the Amazon ECR repository.
It has no teardown semantics: Delete always succeeds without any check.
"""

import re

import boto3 # AWS SDK for Python, used for the service clients below.
from aws_lambda_powertools import Logger # Structured logging for Lambda functions.

from lambda_layers.boto_utils import paginate # Utility for paginating AWS SDK responses.
from lambda_layers.cfn_resource import BootstrapResource # CloudFormation custom resource helper that responds once per event.
from lambda_layers.decorators import with_logging # Logs the redacted event around the handler.
from lambda_layers.errors import InvalidRepositoryArn, MissingRequiredImages # Errors reported as FAILED responses.


# Initializes the logger, named after the custom resource it serves.
logger = Logger(service='EcrImageValidatorCustomResource')

# Initializes the CloudFormation custom resource helper.
# boto_level='CRITICAL': Keeps boto3 logging quiet.
helper = BootstrapResource(json_logging=False, log_level='INFO',
                           boto_level='CRITICAL')

# Initializes an ECR client, which provides a low-level interface to ECR API calls.
ecr_client = boto3.client('ecr')

REPOSITORY_ARN_PATTERN = re.compile(r'^arn:aws[a-z-]*:ecr:[a-z0-9-]+:\d{12}:repository/.+$')


def parse_repository_arn(repository_arn):
    """
    Extracts the repository name (last path segment) from an ECR repository ARN.
    @raise InvalidRepositoryArn: if the ARN does not have the
        arn:aws:ecr:<region>:<account>:repository/<name> shape.
    """
    if not isinstance(repository_arn, str) or not REPOSITORY_ARN_PATTERN.match(repository_arn):
        raise InvalidRepositoryArn(repository_arn)
    return repository_arn.split('/')[-1]


def parse_required_tags(required_tags):
    """RequiredTags arrives either as a list or as a comma separated string."""
    if isinstance(required_tags, str):
        required_tags = required_tags.split(',')
    tags = []
    for tag in required_tags or []:
        tag = tag.strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class EcrImageValidator:
    """
    Pre-flight check of the tags present in an ECR repository.

    The repository ARN is validated when the validator is built, before any
    call to ECR is made.
    """

    def __init__(self, repository_arn, required_tags, client=None):
        self.repository_name = parse_repository_arn(repository_arn)
        self.required_tags = parse_required_tags(required_tags)
        self.client = client or ecr_client

    def available_tags(self):
        images = paginate(self.client, 'describe_images', ['imageDetails'],
                          repositoryName=self.repository_name)
        return {tag for image in images for tag in image.get('imageTags', [])}

    def validate(self):
        """
        @return: The sorted list of tags available in the repository.
        @raise MissingRequiredImages: listing both missing and available tags.
        """
        available = self.available_tags()
        missing = [tag for tag in self.required_tags if tag not in available]
        if missing:
            raise MissingRequiredImages(self.repository_name, missing, sorted(available))
        return sorted(available)


@helper.create
@helper.update
def create(event, _):
    """
    Handles CloudFormation Create and Update events by validating that all
    RequiredTags exist in the repository.
    """
    props = event['ResourceProperties']
    validator = EcrImageValidator(props['RepositoryArn'], props['RequiredTags'])
    logger.info('Validating images in ECR repository', extra={
        'repository': validator.repository_name,
        'required_tags': validator.required_tags,
        'environment': props.get('Environment'),
    })

    validator.validate()

    logger.info('All required images are present')
    helper.Data.update({
        'Message': f'All required images found in {validator.repository_name}',
        'ValidatedTags': ','.join(validator.required_tags),
    })


@helper.delete
def delete(event, _):
    logger.info('Delete request - no validation needed')


@logger.inject_lambda_context
@with_logging
def handler(event, context):
    helper(event, context)
