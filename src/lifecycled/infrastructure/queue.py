"""
SQS relay queue subscribed to an SNS topic.

Autoscaling lifecycle hooks only publish to SNS, so each daemon run creates a
dedicated queue, subscribes it to the topic and tears both down on exit.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from lifecycled.core.context import RunContext
from lifecycled.core.tags import parse_tags
from lifecycled.utils.diagnostics import ProvisioningError
from lifecycled.utils.logs import FieldLogger

QUEUE_NAME_PREFIX = "lifecycled-"
MAX_WAIT_SECONDS = 20
NON_EXISTENT_QUEUE_CODES = {
    "AWS.SimpleQueueService.NonExistentQueue",
    "QueueDoesNotExist",
}


def queue_name_for(instance_id: str) -> str:
    """Return the relay queue name used for an instance."""
    return f"{QUEUE_NAME_PREFIX}{instance_id}"


def topic_access_policy(topic_arn: str) -> str:
    """Queue policy allowing only the given topic to deliver messages."""
    return json.dumps(
        {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Effect": "Allow",
                    "Principal": {"AWS": "*"},
                    "Action": ["sqs:SendMessage"],
                    "Resource": ["*"],
                    "Condition": {"ArnEquals": {"aws:SourceArn": topic_arn}},
                }
            ],
        }
    )


def is_non_existent_queue(exc: ClientError) -> bool:
    code = exc.response.get("Error", {}).get("Code", "")
    return code in NON_EXISTENT_QUEUE_CODES


class RelayQueue:
    """Relay queue owned by one autoscaling listener for one daemon run."""

    def __init__(
        self,
        name: str,
        topic_arn: str,
        sqs: Any,
        sns: Any,
        logger: FieldLogger,
        tags: str = "",
        wait_seconds: int = MAX_WAIT_SECONDS,
    ) -> None:
        self.name = name
        self.topic_arn = topic_arn
        self.sqs = sqs
        self.sns = sns
        self.tags = tags
        self.wait_seconds = min(max(wait_seconds, 0), MAX_WAIT_SECONDS)
        self.log = logger.bind(queue=name)

        self.url: Optional[str] = None
        self.arn: Optional[str] = None
        self.subscription_arn: Optional[str] = None

    def create(self) -> None:
        """Create the queue and resolve its ARN.

        Tags are validated before anything is created.
        """
        tags = parse_tags(self.tags)

        request: Dict[str, Any] = {
            "QueueName": self.name,
            "Attributes": {
                "Policy": topic_access_policy(self.topic_arn),
                "ReceiveMessageWaitTimeSeconds": str(MAX_WAIT_SECONDS),
            },
        }
        if tags:
            request["tags"] = tags

        try:
            response = self.sqs.create_queue(**request)
        except (BotoCoreError, ClientError) as exc:
            raise ProvisioningError(f"Failed to create queue {self.name}: {exc}") from exc
        self.url = response["QueueUrl"]

        try:
            attributes = self.sqs.get_queue_attributes(
                QueueUrl=self.url,
                AttributeNames=["QueueArn"],
            )
        except (BotoCoreError, ClientError) as exc:
            raise ProvisioningError(f"Failed to look up arn for queue {self.name}: {exc}") from exc
        self.arn = attributes["Attributes"]["QueueArn"]
        self.log.bind(url=self.url).debug("Created queue")

    def subscribe(self) -> None:
        if self.arn is None:
            raise ProvisioningError(f"Queue {self.name} must be created before subscribing")

        try:
            response = self.sns.subscribe(
                TopicArn=self.topic_arn,
                Protocol="sqs",
                Endpoint=self.arn,
            )
        except (BotoCoreError, ClientError) as exc:
            raise ProvisioningError(f"Failed to subscribe queue {self.name} to {self.topic_arn}: {exc}") from exc
        self.subscription_arn = response["SubscriptionArn"]
        self.log.bind(topic=self.topic_arn).debug("Subscribed queue to topic")

    def receive(self, ctx: RunContext) -> List[Dict[str, Any]]:
        """Long-poll for at most one message; empty when the run is cancelled."""
        if ctx.cancelled() or self.url is None:
            return []

        response = self.sqs.receive_message(
            QueueUrl=self.url,
            MaxNumberOfMessages=1,
            WaitTimeSeconds=self.wait_seconds,
            VisibilityTimeout=0,
        )
        if ctx.cancelled():
            return []
        return list(response.get("Messages") or [])

    def delete_message(self, receipt_handle: str) -> None:
        self.sqs.delete_message(QueueUrl=self.url, ReceiptHandle=receipt_handle)

    def unsubscribe(self) -> None:
        """Remove the topic subscription; a no-op when there is none."""
        if self.subscription_arn is None:
            return
        self.sns.unsubscribe(SubscriptionArn=self.subscription_arn)
        self.subscription_arn = None

    def delete(self) -> None:
        """Delete the queue; a queue that is already gone counts as deleted."""
        if self.url is None:
            return

        try:
            self.sqs.delete_queue(QueueUrl=self.url)
        except ClientError as exc:
            if not is_non_existent_queue(exc):
                raise
        self.url = None
        self.arn = None

    def teardown(self) -> None:
        """Unsubscribe then delete, attempting both regardless of failures."""
        try:
            self.unsubscribe()
        except (BotoCoreError, ClientError) as exc:
            self.log.bind(error=str(exc)).error("Failed to unsubscribe from sns topic")

        try:
            self.delete()
        except (BotoCoreError, ClientError) as exc:
            self.log.bind(error=str(exc)).error("Failed to delete queue")
