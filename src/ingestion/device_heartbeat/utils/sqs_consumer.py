import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import aioboto3
from botocore.client import Config

logger = logging.getLogger("sqs-consumer")


@dataclass(frozen=True)
class QueueMessage:
    body: str
    receipt_handle: str
    message_id: str


class SqsConsumer:
    """
    Asynchronous wrapper around an SQS queue.

    Messages are received with long polling and must be acknowledged one by
    one with ``ack`` once they are durably buffered; unacknowledged messages
    reappear after the queue's visibility timeout.
    """

    def __init__(
        self,
        queue_url: str,
        region_name: str = "us-east-1",
        session: aioboto3.Session | None = None,
        endpoint_url: str | None = None,
    ):
        """
        Args:
            queue_url: URL of the SQS queue to consume
            region_name: AWS region of the queue
            session: Optional aioboto3 session (default credential chain otherwise)
            endpoint_url: Optional endpoint override (e.g. a local SQS emulator)
        """
        self.queue_url = queue_url
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self.session = session or aioboto3.Session(region_name=region_name)

        # Long polls may hold the connection for WaitTimeSeconds
        self._boto_config = Config(
            read_timeout=60,
            retries={"max_attempts": 3, "mode": "standard"},
        )
        self._client: Any | None = None
        self._client_cm: Any | None = None
        self._client_lock = asyncio.Lock()

        logger.info(f"SqsConsumer initialized: queue_url={queue_url}")

    async def _get_client(self):
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    self._client_cm = self.session.client(
                        "sqs",
                        region_name=self.region_name,
                        endpoint_url=self.endpoint_url,
                        config=self._boto_config,
                    )
                    self._client = await self._client_cm.__aenter__()
        return self._client

    async def receive(
        self, max_messages: int = 10, wait_seconds: int = 20
    ) -> list[QueueMessage]:
        """Long-poll the queue and return between 0 and max_messages messages."""
        client = await self._get_client()
        response = await client.receive_message(
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=max_messages,
            WaitTimeSeconds=wait_seconds,
        )
        messages = [
            QueueMessage(
                body=message.get("Body", ""),
                receipt_handle=message["ReceiptHandle"],
                message_id=message.get("MessageId", ""),
            )
            for message in response.get("Messages", [])
        ]
        if messages:
            logger.debug(f"Received {len(messages)} messages")
        return messages

    async def ack(self, receipt_handle: str) -> None:
        """Delete a processed message from the queue."""
        client = await self._get_client()
        await client.delete_message(
            QueueUrl=self.queue_url, ReceiptHandle=receipt_handle
        )

    async def close(self) -> None:
        if self._client_cm is not None:
            async with self._client_lock:
                if self._client_cm is not None:
                    await self._client_cm.__aexit__(None, None, None)
                    self._client = None
                    self._client_cm = None
                    logger.info("SQS client closed")
