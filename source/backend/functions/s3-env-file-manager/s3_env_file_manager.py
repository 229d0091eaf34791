# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

"""
This AWS Lambda function acts as a CloudFormation Custom Resource that makes
sure the Authentik environment file referenced by the ECS task definitions
exists in the configuration bucket.
A commented placeholder is written only when the object is absent. The file
is operator-managed afterwards: it is never overwritten and it outlives the
stack.
"""

import boto3 # AWS SDK for Python, used for the service clients below.
from aws_lambda_powertools import Logger # Structured logging for Lambda functions.
from botocore.exceptions import ClientError # Raised by boto3 clients on AWS API errors.

from lambda_layers.cfn_resource import BootstrapResource # CloudFormation custom resource helper that responds once per event.
from lambda_layers.decorators import with_logging # Logs the redacted event around the handler.


# Initializes the logger, named after the custom resource it serves.
logger = Logger(service='S3EnvFileManagerCustomResource')

# Initializes the CloudFormation custom resource helper.
# boto_level='CRITICAL': Keeps boto3 logging quiet.
helper = BootstrapResource(json_logging=False, log_level='INFO',
                           boto_level='CRITICAL')

# Initializes an S3 client, which provides a low-level interface to S3 API calls.
s3_client = boto3.client('s3')

DEFAULT_OBJECT_KEY = 'authentik-config.env'
NOT_FOUND_CODES = ('404', 'NoSuchKey', 'NotFound')

PLACEHOLDER_ENV_FILE = """# Authentik Configuration Environment File
# This file is automatically created by the AuthInfra stack
# Add your custom Authentik configuration variables here
#
# Common configurations:
# AUTHENTIK_EMAIL__HOST=smtp.example.com
# AUTHENTIK_EMAIL__PORT=587
# AUTHENTIK_EMAIL__USERNAME=your-email@example.com
# AUTHENTIK_EMAIL__PASSWORD=your-password
# AUTHENTIK_EMAIL__USE_TLS=true
# AUTHENTIK_EMAIL__FROM=authentik@example.com
#
# For more configuration options, see:
# https://docs.goauthentik.io/docs/install-config/configuration/
"""


def object_exists(client, bucket_name, object_key):
    try:
        client.head_object(Bucket=bucket_name, Key=object_key)
    except ClientError as e:
        if e.response['Error']['Code'] in NOT_FOUND_CODES:
            return False
        raise e
    return True


def ensure_env_file(client, bucket_name, object_key):
    """
    Writes the placeholder env file unless the object already exists.
    @return: True if the file was created.
    """
    if object_exists(client, bucket_name, object_key):
        logger.info(f'File {object_key} already exists in bucket {bucket_name}, not modifying')
        return False

    logger.info(f'Creating placeholder file {object_key} in bucket {bucket_name}')
    client.put_object(
        Bucket=bucket_name,
        Key=object_key,
        Body=PLACEHOLDER_ENV_FILE.encode('utf-8'),
        ContentType='text/plain',
        ServerSideEncryption='AES256',
    )
    return True


@helper.create
@helper.update
def create(event, _):
    props = event['ResourceProperties']
    bucket_name = props['BucketName']
    object_key = props.get('ObjectKey') or DEFAULT_OBJECT_KEY

    created = ensure_env_file(s3_client, bucket_name, object_key)

    helper.Data.update({
        'EnvFileKey': object_key,
        'EnvFileArn': f'arn:aws:s3:::{bucket_name}/{object_key}',
        'Created': 'true' if created else 'false',
    })
    return f's3://{bucket_name}/{object_key}'


@helper.delete
def delete(event, _):
    logger.info('Delete request - environment file is preserved')


@logger.inject_lambda_context
@with_logging
def handler(event, context):
    helper(event, context)
