from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Optional

import boto3

from lifecycled.infrastructure.metadata import InstanceMetadata


@dataclass
class AwsClients:
    """boto3 clients used by the daemon and the queue cleaner."""

    sqs: Any
    sns: Any
    autoscaling: Any
    ec2: Any
    session: Any


def resolve_region(metadata: InstanceMetadata, region: Optional[str] = None) -> str:
    """Return ``region``, ``AWS_REGION`` or the region reported by instance metadata."""
    if region:
        return region

    env_region = os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION")
    if env_region:
        return env_region

    return metadata.region()


def create_clients(region: str) -> AwsClients:
    session = boto3.session.Session(region_name=region)
    return AwsClients(
        sqs=session.client("sqs"),
        sns=session.client("sns"),
        autoscaling=session.client("autoscaling"),
        ec2=session.client("ec2"),
        session=session,
    )
