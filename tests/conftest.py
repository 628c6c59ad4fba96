"""Pytest fixtures for effortless-deploy tests."""

import asyncio
from collections.abc import Awaitable
from unittest.mock import patch

import pytest
from moto import mock_aws

from tests.fixtures.services import FakeCloud

MOTO_ENV = {
    "AWS_ACCESS_KEY_ID": "testing",
    "AWS_SECRET_ACCESS_KEY": "testing",
    "AWS_SESSION_TOKEN": "testing",
    "AWS_DEFAULT_REGION": "us-east-1",
}


def _async_moto_responses():
    """
    Let aiobotocore read moto's in-memory responses.

    moto answers with a synchronous body; aiobotocore awaits it. Wrapping the
    body in a finished future keeps both sides happy.
    See https://github.com/aio-libs/aiobotocore/discussions/1300
    """
    from aiobotocore import endpoint

    convert = endpoint.convert_to_response_dict

    async def convert_moto_response(http_response, operation_model):
        if not isinstance(getattr(http_response, "content", None), Awaitable):
            ready: asyncio.Future[bytes] = asyncio.Future()
            ready.set_result(http_response.content)
            http_response._content = ready
        return await convert(http_response, operation_model)

    return patch.object(endpoint, "convert_to_response_dict", convert_moto_response)


@pytest.fixture
def aws_credentials(monkeypatch):
    """Dummy credentials; requests must never leave the process."""
    for name, value in MOTO_ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)


@pytest.fixture
def mock_dynamodb(aws_credentials):
    """moto-backed DynamoDB reachable through aioboto3 clients."""
    with mock_aws(), _async_moto_responses():
        yield


@pytest.fixture
def cloud() -> FakeCloud:
    """In-memory fakes of every service a deploy touches."""
    return FakeCloud()


@pytest.fixture
def services(cloud):
    """Reconcilers wired to the in-memory fakes."""
    return cloud.services()


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Keep stage and region resolution independent of the caller's shell."""
    for var in ("EFF_STAGE", "EFF_REGION", "AWS_REGION", "AWS_DEFAULT_REGION"):
        monkeypatch.delenv(var, raising=False)
