# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Custom resource dispatcher shared by the bootstrap functions.

crhelper's CfnResource already routes events to the @create/@update/@delete
handlers, turns handler exceptions into FAILED and guards the whole invocation
with a catch-all. This subclass only replaces the way the response is
delivered, so that every outcome goes through cfn_response.respond: a single
PUT, no retry loop, and a raised error if the callback cannot be reached.

crhelper may call _send more than once per event: from its timeout timer
thread, from the normal completion path and from its catch-all. Only the
first call delivers a response.
"""

import logging
import threading

from crhelper import CfnResource

from lambda_layers import cfn_response
from lambda_layers.errors import CfnResponseError

logger = logging.getLogger(__name__)

SUCCESS = cfn_response.SUCCESS
FAILED = cfn_response.FAILED


class BootstrapResource(CfnResource):

    def __init__(self, *args, **kwargs):
        self._send_lock = threading.Lock()
        self._responded = False
        self._delivery_error = None
        super().__init__(*args, **kwargs)

    def __call__(self, event, context):
        with self._send_lock:
            self._responded = False
            self._delivery_error = None
        super().__call__(event, context)

    def _send(self, status=None, reason="", send_response=None):
        with self._send_lock:
            if self._delivery_error:
                raise self._delivery_error
            if self._responded:
                logger.warning('Response for %s %s already sent, not sending %s',
                               self.LogicalResourceId, self._event.get('RequestType'), status or self.Status)
                return
            self._responded = True

            if status:
                self.Status = status
                self.Reason = reason
            if not self.PhysicalResourceId or self.PhysicalResourceId is True:
                # Failures before the handler ran still need a stable id.
                self.PhysicalResourceId = self._event.get('PhysicalResourceId') or None

            logger.info('Custom resource %s %s finished with %s',
                        self.LogicalResourceId, self._event.get('RequestType'), self.Status)
            if self.Status == FAILED:
                logger.error('Failure reason: %s', self.Reason)

            try:
                cfn_response.respond(
                    self._event,
                    self._context,
                    self.Status or FAILED,
                    data=self.Data,
                    physical_resource_id=self.PhysicalResourceId,
                    reason=self.Reason,
                    no_echo=self.NoEcho,
                )
            except CfnResponseError as e:
                self._delivery_error = e
                raise
