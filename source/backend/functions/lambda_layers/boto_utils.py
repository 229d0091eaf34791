# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0

from functools import reduce


def paginate(client, operation_name, result_path, **kwargs):
    """
    Yields every item found under result_path across all pages of a boto3
    paginated operation.
    @param client: A boto3 client.
    @param operation_name: The snake_case operation, e.g. 'describe_images'.
    @param result_path: List of keys leading to the result list in each page.
    """
    paginator = client.get_paginator(operation_name)
    for page in paginator.paginate(**kwargs):
        yield from reduce(lambda acc, key: acc.get(key, {}), result_path[:-1], page).get(result_path[-1], [])
