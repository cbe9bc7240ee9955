"""
Garbage collection for relay queues and subscriptions left behind by
instances that no longer exist.
"""

from __future__ import annotations

import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Set

from botocore.exceptions import ClientError

from lifecycled.infrastructure.queue import QUEUE_NAME_PREFIX, is_non_existent_queue
from lifecycled.utils.logs import FieldLogger

QUEUE_URL_PATTERN = re.compile(r"^https://sqs\.(.+?)\.amazonaws.com/(.+?)/lifecycled-(i-.+)$")
SUBSCRIPTION_ENDPOINT_MARKER = "lifecycled-i"
ACTIVE_INSTANCE_STATES = ["running", "pending"]


class QueueCleaner:
    """Deletes orphaned lifecycled queues and SNS subscriptions."""

    def __init__(
        self,
        sqs: Any,
        sns: Any,
        ec2: Any,
        logger: FieldLogger,
        parallel: int = 20,
        subscription_pause: float = 2.0,
        queue_pause: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.sqs = sqs
        self.sns = sns
        self.ec2 = ec2
        self.log = logger
        self.parallel = max(parallel, 1)
        self.subscription_pause = subscription_pause
        self.queue_pause = queue_pause
        self.sleep = sleep

    def run(self) -> Dict[str, int]:
        """Delete subscriptions then queues, repeating each until a pass deletes nothing."""
        totals = {"subscriptions": 0, "queues": 0}

        while True:
            count = self.delete_inactive_subscriptions()
            if count == 0:
                break
            totals["subscriptions"] += count
            self.log.bind(count=count).info("Deleted subscriptions, running again as aws limits subscriptions returned to 100")
            self.sleep(self.subscription_pause)

        while True:
            count = self.delete_inactive_queues()
            if count == 0:
                break
            totals["queues"] += count
            self.log.bind(count=count).info("Deleted queues, running again as aws limits queues returned to 1000")
            self.sleep(self.queue_pause)

        return totals

    def list_instances(self) -> Set[str]:
        """Return ids of running or pending instances."""
        instances: Set[str] = set()
        paginator = self.ec2.get_paginator("describe_instances")
        pages = paginator.paginate(
            Filters=[{"Name": "instance-state-name", "Values": ACTIVE_INSTANCE_STATES}]
        )
        for page in pages:
            for reservation in page.get("Reservations", []):
                for instance in reservation.get("Instances", []):
                    instances.add(instance["InstanceId"])
        return instances

    def list_queues(self) -> List[str]:
        response = self.sqs.list_queues(QueueNamePrefix=QUEUE_NAME_PREFIX)
        return list(response.get("QueueUrls") or [])

    def list_inactive_queues(self) -> List[str]:
        instances = self.list_instances()
        self.log.bind(count=len(instances)).info("Found running instances")

        queues = self.list_queues()
        self.log.bind(count=len(queues)).info("Found queues total (aws returns max 1000)")

        inactive: List[str] = []
        for url in queues:
            match = QUEUE_URL_PATTERN.match(url)
            if match is None:
                continue
            if match.group(3) not in instances:
                inactive.append(url)

        self.log.bind(count=len(inactive)).info("Found inactive queues")
        return inactive

    def delete_inactive_queues(self) -> int:
        queues = self.list_inactive_queues()
        if not queues:
            return 0

        total = len(queues)
        with ThreadPoolExecutor(max_workers=self.parallel) as pool:
            results = list(pool.map(lambda item: self._delete_queue(item[1], item[0] + 1, total), enumerate(queues)))
        return sum(results)

    def topic_exists(self, topic_arn: str) -> bool:
        try:
            self.sns.get_topic_attributes(TopicArn=topic_arn)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "NotFound":
                return False
            raise
        return True

    def list_inactive_subscriptions(self) -> List[str]:
        inactive: List[str] = []
        topics: Dict[str, bool] = {}
        count = 0

        paginator = self.sns.get_paginator("list_subscriptions")
        for page in paginator.paginate():
            subscriptions = page.get("Subscriptions", [])
            count += len(subscriptions)
            for subscription in subscriptions:
                if SUBSCRIPTION_ENDPOINT_MARKER not in subscription.get("Endpoint", ""):
                    continue

                topic_arn = subscription["TopicArn"]
                if topic_arn not in topics:
                    topics[topic_arn] = self.topic_exists(topic_arn)
                if not topics[topic_arn]:
                    inactive.append(subscription["SubscriptionArn"])

        self.log.bind(count=count).info("Found sns subscriptions in total")
        return inactive

    def delete_inactive_subscriptions(self) -> int:
        subscriptions = self.list_inactive_subscriptions()
        self.log.bind(count=len(subscriptions)).info("Found inactive subscriptions")

        deleted = 0
        for index, arn in enumerate(subscriptions, start=1):
            self.log.bind(subscription=arn, progress=f"{index}/{len(subscriptions)}").info("Deleting sns subscription")
            self.sns.unsubscribe(SubscriptionArn=arn)
            deleted += 1
        return deleted

    def _delete_queue(self, url: str, index: int, total: int) -> int:
        self.log.bind(queue=url, progress=f"{index}/{total}").info("Deleting queue")
        try:
            self.sqs.delete_queue(QueueUrl=url)
        except ClientError as exc:
            if is_non_existent_queue(exc):
                return 0
            raise
        return 1
