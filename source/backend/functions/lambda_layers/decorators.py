# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

import functools
import json
import logging

logger = logging.getLogger(__name__)

# Keys whose values are credentials and must never reach the logs.
SENSITIVE_KEYS = frozenset({'ClientSecret', 'clientSecret', 'client_secret', 'key', 'token'})


def redact(value):
    """
    Returns a copy of a (possibly nested) event structure with every value
    stored under a sensitive key replaced by '***'.
    """
    if isinstance(value, dict):
        return {k: '***' if k in SENSITIVE_KEYS else redact(v) for k, v in value.items()}
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def with_logging(handler):
    """
    Decorator which logs the handler name and the incoming event, with
    credentials redacted, before calling the handler.
    """

    @functools.wraps(handler)
    def wrapper(event, *args, **kwargs):
        logger.info('## HANDLER: %s', handler.__name__)
        logger.info('## EVENT: %s', json.dumps(redact(event), default=str))
        return handler(event, *args, **kwargs)

    return wrapper
