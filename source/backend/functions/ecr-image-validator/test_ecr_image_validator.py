import os
import sys

current_test_dir = os.path.dirname(os.path.abspath(__file__))
functions_dir = os.path.abspath(os.path.join(current_test_dir, '..'))
for path in (current_test_dir, functions_dir):
    if path not in sys.path:
        sys.path.insert(0, path)

os.environ.setdefault('AWS_DEFAULT_REGION', 'us-east-1')

import unittest
from unittest.mock import patch, MagicMock

import ecr_image_validator
from lambda_layers.errors import InvalidRepositoryArn, MissingRequiredImages

REPOSITORY_ARN = 'arn:aws:ecr:us-east-1:123456789012:repository/test-repo'


def lambda_context():
    context = MagicMock()
    context.function_name = 'ecr-image-validator'
    context.memory_limit_in_mb = 128
    context.invoked_function_arn = 'arn:aws:lambda:us-east-1:123456789012:function:ecr-image-validator'
    context.aws_request_id = 'request-1'
    context.log_stream_name = 'log-stream'
    context.get_remaining_time_in_millis.return_value = 20000
    return context


def ecr_with_pages(*pages):
    client = MagicMock()
    client.get_paginator.return_value.paginate.return_value = [
        {'imageDetails': [{'imageTags': tags} if tags is not None else {} for tags in page]}
        for page in pages
    ]
    return client


class TestParseRepositoryArn(unittest.TestCase):

    def test_extracts_repository_name(self):
        self.assertEqual(ecr_image_validator.parse_repository_arn(REPOSITORY_ARN), 'test-repo')

    def test_uses_last_path_segment(self):
        arn = 'arn:aws:ecr:us-west-2:123456789012:repository/team/auth-infra'
        self.assertEqual(ecr_image_validator.parse_repository_arn(arn), 'auth-infra')

    def test_rejects_malformed_arns(self):
        for arn in ['not-an-arn', 'invalid-arn', '', None,
                    'arn:aws:s3:::bucket/key',
                    'arn:aws:ecr:us-east-1:123456789012:repository/']:
            with self.subTest(arn=arn):
                with self.assertRaises(InvalidRepositoryArn):
                    ecr_image_validator.parse_repository_arn(arn)


class TestEcrImageValidator(unittest.TestCase):

    def test_invalid_arn_fails_before_any_aws_call(self):
        client = MagicMock()
        with self.assertRaises(InvalidRepositoryArn) as ctx:
            ecr_image_validator.EcrImageValidator('not-an-arn', ['v1'], client)
        self.assertEqual(str(ctx.exception), 'Invalid ECR repository ARN: not-an-arn')
        self.assertEqual(client.mock_calls, [])

    def test_required_tags_accepts_comma_separated_string(self):
        validator = ecr_image_validator.EcrImageValidator(REPOSITORY_ARN, ' v1, v2 ,,v1', MagicMock())
        self.assertEqual(validator.required_tags, ['v1', 'v2'])

    def test_missing_tags_are_enumerated_with_available_ones(self):
        client = ecr_with_pages([['v1']])
        validator = ecr_image_validator.EcrImageValidator(REPOSITORY_ARN, ['v1', 'v2'], client)

        with self.assertRaises(MissingRequiredImages) as ctx:
            validator.validate()

        self.assertEqual(ctx.exception.missing, ['v2'])
        self.assertEqual(ctx.exception.available, ['v1'])
        message = str(ctx.exception)
        self.assertIn('v2', message)
        self.assertIn('Available tags: v1', message)
        client.get_paginator.assert_called_once_with('describe_images')
        client.get_paginator.return_value.paginate.assert_called_once_with(repositoryName='test-repo')

    def test_tags_are_collected_across_pages_and_images(self):
        client = ecr_with_pages([['auth-infra-server-abc123', 'latest'], None],
                                [['auth-infra-ldap-abc123']])
        validator = ecr_image_validator.EcrImageValidator(
            REPOSITORY_ARN, ['auth-infra-server-abc123', 'auth-infra-ldap-abc123'], client)

        self.assertEqual(validator.validate(),
                         ['auth-infra-ldap-abc123', 'auth-infra-server-abc123', 'latest'])


class TestEcrImageValidatorHandler(unittest.TestCase):

    def setUp(self):
        respond_patcher = patch('lambda_layers.cfn_response.respond')
        self.mock_respond = respond_patcher.start()
        self.addCleanup(respond_patcher.stop)

    def _create_cfn_event(self, request_type, repository_arn=REPOSITORY_ARN, required_tags=None):
        return {
            'RequestType': request_type,
            'ResourceProperties': {
                'RepositoryArn': repository_arn,
                'RequiredTags': required_tags or ['v1', 'v2'],
                'Environment': 'test',
                'Timestamp': '2026-10-19T00:00:00Z',
            },
            'LogicalResourceId': 'ImageValidation',
            'RequestId': 'TestRequestId',
            'StackId': 'arn:aws:cloudformation:us-east-1:123456789012:stack/TestStack/guid',
            'ResponseURL': 'https://example.com/cfnresponse',
        }

    def _sent_response(self):
        self.mock_respond.assert_called_once()
        args, kwargs = self.mock_respond.call_args
        return args[2], kwargs

    @patch('ecr_image_validator.ecr_client')
    def test_create_succeeds_when_all_tags_exist(self, mock_ecr_client):
        mock_ecr_client.get_paginator.return_value.paginate.return_value = [
            {'imageDetails': [{'imageTags': ['v1']}, {'imageTags': ['v2']}]}]

        ecr_image_validator.handler(self._create_cfn_event('Create'), lambda_context())

        status, kwargs = self._sent_response()
        self.assertEqual(status, 'SUCCESS')
        self.assertEqual(kwargs['data']['ValidatedTags'], 'v1,v2')

    @patch('ecr_image_validator.ecr_client')
    def test_update_fails_with_missing_and_available_tags(self, mock_ecr_client):
        mock_ecr_client.get_paginator.return_value.paginate.return_value = [
            {'imageDetails': [{'imageTags': ['v1']}]}]

        ecr_image_validator.handler(self._create_cfn_event('Update'), lambda_context())

        status, kwargs = self._sent_response()
        self.assertEqual(status, 'FAILED')
        self.assertIn('v2', kwargs['reason'])
        self.assertIn('Available tags: v1', kwargs['reason'])

    @patch('ecr_image_validator.ecr_client')
    def test_delete_always_succeeds_without_checks(self, mock_ecr_client):
        ecr_image_validator.handler(self._create_cfn_event('Delete', repository_arn='not-an-arn'),
                                    lambda_context())

        mock_ecr_client.get_paginator.assert_not_called()
        status, _ = self._sent_response()
        self.assertEqual(status, 'SUCCESS')

    @patch('ecr_image_validator.ecr_client')
    def test_malformed_arn_is_reported_as_failure(self, mock_ecr_client):
        ecr_image_validator.handler(self._create_cfn_event('Create', repository_arn='not-an-arn'),
                                    lambda_context())

        mock_ecr_client.get_paginator.assert_not_called()
        status, kwargs = self._sent_response()
        self.assertEqual(status, 'FAILED')
        self.assertEqual(kwargs['reason'], 'Invalid ECR repository ARN: not-an-arn')


if __name__ == '__main__':
    unittest.main()
