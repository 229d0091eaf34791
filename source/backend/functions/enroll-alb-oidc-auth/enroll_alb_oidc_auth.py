# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

"""
This AWS Lambda function acts as a CloudFormation Custom Resource that puts
OIDC authentication in front of the enrollment listener rule of the
Application Load Balancer.

The authenticate-oidc action is written with a direct ModifyRule call on the
Elastic Load Balancing v2 API. Create and Update issue the same call, and
reapplying identical actions does not change the rule, so no diff is made
first. Delete leaves the rule alone: the rule's own resource owns its
lifecycle.
"""

from dataclasses import dataclass
from typing import Optional

import boto3 # AWS SDK for Python, used for the service clients below.
from aws_lambda_powertools import Logger # Structured logging for Lambda functions.

from lambda_layers.cfn_resource import BootstrapResource # CloudFormation custom resource helper that responds once per event.
from lambda_layers.decorators import with_logging # Logs the redacted event around the handler.
from lambda_layers.errors import ListenerRuleNotFound # Errors reported as FAILED responses.


# Initializes the logger, named after the custom resource it serves.
logger = Logger(service='EnrollAlbOidcAuthCustomResource')

# Initializes the CloudFormation custom resource helper.
# boto_level='CRITICAL': Keeps boto3 logging quiet.
helper = BootstrapResource(json_logging=False, log_level='INFO',
                           boto_level='CRITICAL')

# Initializes an ELBv2 client for the load balancer listener rules.
elbv2_client = boto3.client('elbv2')

DEFAULT_SCOPE = 'openid email profile'
DEFAULT_SESSION_COOKIE_NAME = 'AWSELBAuthSessionCookie'
DEFAULT_SESSION_TIMEOUT_SECONDS = 604800
DEFAULT_PRIORITY = 100


@dataclass
class OidcRuleSpec:
    listener_arn: str
    target_group_arn: str
    client_id: str
    client_secret: str
    issuer: str
    authorize_url: str
    token_url: str
    user_info_url: str
    scope: str = DEFAULT_SCOPE
    session_cookie_name: str = DEFAULT_SESSION_COOKIE_NAME
    session_timeout_seconds: int = DEFAULT_SESSION_TIMEOUT_SECONDS
    priority: int = DEFAULT_PRIORITY
    existing_rule_arn: Optional[str] = None
    hostname: Optional[str] = None

    @classmethod
    def from_properties(cls, props):
        """Builds the spec from the custom resource properties (all strings)."""
        return cls(
            listener_arn=props['ListenerArn'],
            target_group_arn=props['TargetGroupArn'],
            client_id=props['ClientId'],
            client_secret=props['ClientSecret'],
            issuer=props['Issuer'],
            authorize_url=props['AuthorizeUrl'],
            token_url=props['TokenUrl'],
            user_info_url=props['UserInfoUrl'],
            scope=props.get('Scope') or DEFAULT_SCOPE,
            session_cookie_name=props.get('SessionCookieName') or DEFAULT_SESSION_COOKIE_NAME,
            session_timeout_seconds=int(props.get('SessionTimeout') or DEFAULT_SESSION_TIMEOUT_SECONDS),
            priority=int(props.get('Priority') or DEFAULT_PRIORITY),
            existing_rule_arn=props.get('ListenerRuleArn') or None,
            hostname=props.get('EnrollmentHostname') or None,
        )

    def actions(self):
        return [
            {
                'Type': 'authenticate-oidc',
                'Order': 1,
                'AuthenticateOidcConfig': {
                    'Issuer': self.issuer,
                    'AuthorizationEndpoint': self.authorize_url,
                    'TokenEndpoint': self.token_url,
                    'UserInfoEndpoint': self.user_info_url,
                    'ClientId': self.client_id,
                    'ClientSecret': self.client_secret,
                    'SessionCookieName': self.session_cookie_name,
                    'Scope': self.scope,
                    'SessionTimeout': self.session_timeout_seconds,
                    'OnUnauthenticatedRequest': 'authenticate',
                },
            },
            {
                'Type': 'forward',
                'Order': 2,
                'TargetGroupArn': self.target_group_arn,
            },
        ]


class ListenerRuleApi:
    """
    The only place that calls the load balancer control plane. Responses are
    returned as the raw API shapes.
    """

    def __init__(self, client):
        self.client = client

    def describe_rule(self, rule_arn):
        rules = self.client.describe_rules(RuleArns=[rule_arn])['Rules']
        if not rules:
            raise ListenerRuleNotFound(f'Listener rule {rule_arn} not found')
        return rules[0]

    def describe_listener_rules(self, listener_arn):
        # DescribeRules has no boto3 paginator, so follow NextMarker by hand.
        rules = []
        kwargs = {'ListenerArn': listener_arn}
        while True:
            response = self.client.describe_rules(**kwargs)
            rules.extend(response.get('Rules', []))
            if not response.get('NextMarker'):
                return rules
            kwargs['Marker'] = response['NextMarker']

    def modify_rule(self, rule_arn, actions):
        return self.client.modify_rule(RuleArn=rule_arn, Actions=actions)


def _host_header_values(rule):
    for condition in rule.get('Conditions', []):
        if condition.get('Field') == 'host-header':
            return condition.get('Values') or condition.get('HostHeaderConfig', {}).get('Values', [])
    return []


def find_rule(api, spec):
    """
    Locates the listener rule to modify: the explicit rule ARN when given,
    otherwise the rule holding the expected priority, otherwise the rule whose
    host-header condition matches the enrollment hostname.
    """
    if spec.existing_rule_arn:
        return api.describe_rule(spec.existing_rule_arn)

    rules = api.describe_listener_rules(spec.listener_arn)
    for rule in rules:
        if rule.get('Priority') == str(spec.priority):
            return rule
    if spec.hostname:
        for rule in rules:
            if any(spec.hostname in value for value in _host_header_values(rule)):
                return rule

    raise ListenerRuleNotFound(
        f'Could not find rule with priority {spec.priority}'
        + (f' or hostname {spec.hostname}' if spec.hostname else '')
        + f' on listener {spec.listener_arn}')


def configure_oidc_rule(api, spec):
    """
    Replaces the actions of the selected rule with authenticate-oidc followed
    by a forward to the target group.
    @return: The ARN of the modified rule.
    """
    rule = find_rule(api, spec)
    rule_arn = rule['RuleArn']
    logger.info('Adding OIDC authentication to listener rule', extra={
        'rule_arn': rule_arn,
        'priority': rule.get('Priority'),
        'issuer': spec.issuer,
    })
    api.modify_rule(rule_arn, spec.actions())
    return rule_arn


@helper.create
@helper.update
def create(event, _):
    spec = OidcRuleSpec.from_properties(event['ResourceProperties'])
    rule_arn = configure_oidc_rule(ListenerRuleApi(elbv2_client), spec)
    helper.Data.update({'ListenerRuleArn': rule_arn})
    return rule_arn


@helper.delete
def delete(event, _):
    logger.info('Delete request - listener rule is left to its own resource')


@logger.inject_lambda_context
@with_logging
def handler(event, context):
    helper(event, context)
