# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Delivers the terminal response of a CloudFormation custom resource.

CloudFormation waits on the presigned S3 URL in the event's ResponseURL. The
response must be PUT there exactly once, with an empty content-type header so
the request matches the URL's signature.
"""

import json
import logging

import urllib3

from lambda_layers.decorators import redact
from lambda_layers.errors import CfnResponseError

logger = logging.getLogger(__name__)

SUCCESS = 'SUCCESS'
FAILED = 'FAILED'

MAX_REASON_LENGTH = 1024
TRUNCATED_SUFFIX = ' (truncated)'

http = urllib3.PoolManager()


def _default_reason(context):
    return f'See the details in CloudWatch Log Stream: {getattr(context, "log_stream_name", "")}'


def _truncate(reason):
    if len(reason) <= MAX_REASON_LENGTH:
        return reason
    return reason[:MAX_REASON_LENGTH - len(TRUNCATED_SUFFIX)] + TRUNCATED_SUFFIX


def build_response(event, context, status, data=None, physical_resource_id=None, reason=None, no_echo=False):
    """
    Builds the response body for a custom resource event.
    @param event: The CloudFormation custom resource event.
    @param context: The Lambda context object, used for log stream references.
    @param status: SUCCESS or FAILED.
    @param data: Attributes exposed to Fn::GetAtt.
    @param physical_resource_id: Overrides the event's PhysicalResourceId.
    @param reason: Overrides the default log stream reason.
    @param no_echo: Masks Data in the CloudFormation console and API output.
    @return: The response body as a dictionary.
    """
    if status not in (SUCCESS, FAILED):
        raise ValueError(f'Invalid custom resource status: {status}')

    physical_resource_id = (physical_resource_id
                            or event.get('PhysicalResourceId')
                            or getattr(context, 'log_stream_name', None))

    return {
        'Status': status,
        'Reason': _truncate(str(reason or _default_reason(context))),
        'PhysicalResourceId': str(physical_resource_id),
        'StackId': event.get('StackId'),
        'RequestId': event.get('RequestId'),
        'LogicalResourceId': event.get('LogicalResourceId'),
        'NoEcho': no_echo,
        'Data': data or {},
    }


def _encode(event, context, response_body):
    """
    Serializes the response body. A body that is not JSON serializable is
    replaced by a FAILED response without Data, so the callback still
    receives an outcome.
    """
    try:
        return response_body, json.dumps(response_body).encode('utf-8')
    except (TypeError, ValueError) as e:
        logger.error('Response body could not be serialized: %s', e, exc_info=True)
        failed_body = build_response(event, context, FAILED,
                                     physical_resource_id=response_body['PhysicalResourceId'],
                                     reason=f'Response could not be serialized: {e}',
                                     no_echo=response_body['NoEcho'])
        return failed_body, json.dumps(failed_body).encode('utf-8')


def respond(event, context, status, data=None, physical_resource_id=None, reason=None, no_echo=False):
    """
    Sends the response for a custom resource event to its ResponseURL.

    The response is not retried and the status code of the PUT is only logged.
    A network failure raises CfnResponseError since there is no other channel
    left to report the outcome on.
    @return: The HTTP status code returned by the callback URL.
    """
    response_body = build_response(event, context, status, data, physical_resource_id, reason, no_echo)
    response_body, encoded_body = _encode(event, context, response_body)

    logged_body = dict(response_body, Data='***' if no_echo else redact(response_body['Data']))
    logger.info('Sending %s response to CloudFormation: %s',
                response_body['Status'], json.dumps(logged_body, default=str))

    headers = {'content-type': '', 'content-length': str(len(encoded_body))}
    try:
        response = http.request('PUT', event['ResponseURL'], body=encoded_body, headers=headers, retries=False)
    except urllib3.exceptions.HTTPError as e:
        logger.error('Failed to send response to CloudFormation: %s', e, exc_info=True)
        raise CfnResponseError(f'Failed to send response to CloudFormation: {e}') from e

    logger.info('CloudFormation returned status code: %s', response.status)
    return response.status
