"""
Work queue - Redis list carrying documents from the ingestion router to the
dispatch filter. Each message is a JSON envelope holding the filename and the
base64-encoded file content.
"""
import base64
import binascii
import json
import logging
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class WorkItem:
    """A document waiting for conversion"""
    filename: str
    payload: bytes

    def to_message(self):
        return json.dumps({
            "filename": self.filename,
            "payload": base64.b64encode(self.payload).decode("ascii"),
            "queued_at": time.time()
        })

    @classmethod
    def from_message(cls, message):
        data = json.loads(message)
        filename = data["filename"]
        if not isinstance(filename, str) or not filename:
            raise ValueError("filename must be a non-empty string")
        return cls(filename=filename, payload=base64.b64decode(data["payload"], validate=True))


class WorkQueue:
    """Named Redis list used as the broker between router and dispatcher"""

    def __init__(self, client, name="fileQueue"):
        """
        Args:
            client: Redis client (decode_responses=True) from the shared pool
            name: Redis key of the list
        """
        self.client = client
        self.name = name

    def publish(self, item):
        self.client.rpush(self.name, item.to_message())
        logger.info(f"stage=ingestion event=queued file={item.filename} queue={self.name} bytes={len(item.payload)}")

    def requeue(self, item):
        """Put an item back at the tail of the queue"""
        self.client.rpush(self.name, item.to_message())
        logger.info(f"stage=dispatch event=requeued file={item.filename} queue={self.name}")

    def consume(self, timeout=5):
        """
        Blocking pop of the oldest item.

        Returns:
            WorkItem, or None on timeout or when the message is malformed
        """
        result = self.client.blpop(self.name, timeout=timeout)
        if not result:
            logger.debug(f"stage=dispatch event=queue_empty queue={self.name}")
            return None

        _, message = result
        try:
            return WorkItem.from_message(message)
        except (ValueError, KeyError, TypeError, binascii.Error) as e:
            logger.error(f"stage=dispatch event=malformed_message queue={self.name} error={e}")
            return None

    def __len__(self):
        return self.client.llen(self.name)
