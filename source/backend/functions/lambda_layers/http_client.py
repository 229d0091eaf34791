# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Minimal JSON-over-HTTP(S) client used to talk to the Authentik REST API.

Calls are never retried: the workflows decide whether a failure is final.
Every call carries an explicit connect/read timeout so a stalled upstream
cannot use up the whole Lambda budget before a FAILED response is sent.
"""

import json
import logging
from os import getenv

import urllib3

from lambda_layers.errors import HttpError, InvalidResponse

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECONDS = float(getenv('HTTP_CONNECT_TIMEOUT_SECONDS', '5'))
READ_TIMEOUT_SECONDS = float(getenv('HTTP_TIMEOUT_SECONDS', '30'))


def bearer_headers(token):
    return {
        'Accept': 'application/json',
        'Authorization': f'Bearer {token}',
    }


class HttpJsonClient:
    """
    Wraps a urllib3 pool manager. One instance is created per Lambda process
    and shared by every invocation served by that process.
    """

    def __init__(self, pool_manager=None, timeout=None):
        self._http = pool_manager or urllib3.PoolManager()
        self._timeout = timeout or urllib3.Timeout(connect=CONNECT_TIMEOUT_SECONDS, read=READ_TIMEOUT_SECONDS)

    def request(self, method, url, body=None, headers=None, fields=None):
        """
        Performs a request and returns the raw response body.
        @raise HttpError: when the status code is outside [200, 300).
        """
        logger.debug('%s %s', method, url)
        response = self._http.request(
            method,
            url,
            body=body,
            fields=fields,
            headers=headers or {},
            timeout=self._timeout,
            retries=False,
        )
        if not 200 <= response.status < 300:
            raise HttpError(response.status, response.data.decode('utf-8', errors='replace'), url)
        return response.data

    def _request_json(self, method, url, body=None, headers=None, fields=None):
        payload = None
        request_headers = {'Accept': 'application/json'}
        request_headers.update(headers or {})
        if body is not None:
            payload = json.dumps(body).encode('utf-8')
            request_headers['Content-Type'] = 'application/json'

        raw = self.request(method, url, body=payload, headers=request_headers, fields=fields)
        try:
            return json.loads(raw)
        except ValueError as e:
            raise InvalidResponse(str(e)) from e

    def get_json(self, url, headers=None, fields=None):
        """GET a JSON document; fields are encoded into the query string."""
        return self._request_json('GET', url, headers=headers, fields=fields)

    def post_json(self, url, body, headers=None):
        return self._request_json('POST', url, body=body, headers=headers)

    def patch_json(self, url, body, headers=None):
        return self._request_json('PATCH', url, body=body, headers=headers)
