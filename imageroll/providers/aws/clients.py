"""AWS client factories with dependency injection.

AWSBackend never builds SDK clients itself. It receives one factory per
service; each call to a factory opens a short-lived aioboto3 client as an
async context manager. Tests bind factories that yield fakes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, ClassVar

import aioboto3
from injector import Module, provider, singleton

from .config import AWS

type ClientOpener = Callable[[], AbstractAsyncContextManager[Any]]


class ServiceClientFactory:
    """Opens clients for one AWS service. Subclasses give each service its own DI key."""

    service: ClassVar[str]

    def __init__(self, opener: ClientOpener) -> None:
        self._opener = opener

    def __call__(self) -> AbstractAsyncContextManager[Any]:
        return self._opener()


class EC2ClientFactory(ServiceClientFactory):
    service = "ec2"


class ELBClientFactory(ServiceClientFactory):
    """Classic Elastic Load Balancing (not elbv2)."""

    service = "elb"


def session_opener(session: aioboto3.Session, service: str, region: str) -> ClientOpener:
    @asynccontextmanager
    async def open_client() -> AsyncIterator[Any]:
        async with session.client(service, region_name=region) as client:
            yield client

    return open_client


class AWSModule(Module):
    """DI module that provides the AWS session and per-service client factories.

    Usage:
        >>> injector = Injector([AWSModule()])
        >>> injector.binder.bind(AWS, to=AWS(access_key_id=..., secret_access_key=..., region="us-east-1"))
        >>> ec2 = injector.get(EC2ClientFactory)
        >>> async with ec2() as client:
        ...     await client.describe_instances()
    """

    @singleton
    @provider
    def provide_session(self, config: AWS) -> aioboto3.Session:
        """One session per backend, built from the explicit credentials only."""
        return aioboto3.Session(
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            aws_session_token=config.session_token,
            region_name=config.region,
        )

    @singleton
    @provider
    def provide_ec2(self, session: aioboto3.Session, config: AWS) -> EC2ClientFactory:
        return EC2ClientFactory(session_opener(session, EC2ClientFactory.service, config.region))

    @singleton
    @provider
    def provide_elb(self, session: aioboto3.Session, config: AWS) -> ELBClientFactory:
        return ELBClientFactory(session_opener(session, ELBClientFactory.service, config.region))


__all__ = [
    "AWSModule",
    "ClientOpener",
    "EC2ClientFactory",
    "ELBClientFactory",
    "ServiceClientFactory",
    "session_opener",
]
