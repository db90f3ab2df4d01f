import json
import logging
from channels.generic.websocket import AsyncWebsocketConsumer

from .utils import KITCHEN_GROUP, RECEPTION_GROUP, customer_group

logger = logging.getLogger("channels")


# ==============================================================================
# Base Helper
# ==============================================================================
class SafeConsumer(AsyncWebsocketConsumer):
    """
    Base consumer: joins one group on connect, forwards ``order_update`` and
    ``table_update`` events to the socket as JSON.
    """

    group_name = None

    def get_group_name(self):
        return self.group_name

    async def connect(self):
        self.group_name = self.get_group_name()
        await self.channel_layer.group_add(self.group_name, self.channel_name)
        await self.accept()
        logger.info(f"{self.__class__.__name__} connected ({self.group_name})")

    async def disconnect(self, code):
        if self.group_name:
            await self.channel_layer.group_discard(self.group_name, self.channel_name)

    async def safe_send(self, data: dict):
        try:
            await self.send(text_data=json.dumps(data))
        except Exception as exc:
            logger.error(f"{self.__class__.__name__} failed to send data: {exc}")

    async def receive(self, text_data=None, bytes_data=None):
        # displays are receive-only
        logger.debug(f"{self.__class__.__name__} inbound ignored: {text_data}")

    async def order_update(self, event):
        """Order created or moved to another status."""
        await self.safe_send({"type": "order_update", **event["data"]})

    async def table_update(self, event):
        """Table flag/status repaired by the reconciler."""
        await self.safe_send({"type": "table_update", **event["data"]})


# ==============================================================================
# Kitchen Display (KDS)
# ==============================================================================
class KitchenDisplayConsumer(SafeConsumer):
    group_name = KITCHEN_GROUP


# ==============================================================================
# Reception / Front desk
# ==============================================================================
class ReceptionConsumer(SafeConsumer):
    group_name = RECEPTION_GROUP


# ==============================================================================
# Customer Display (Per Table)
# ==============================================================================
class CustomerDisplayConsumer(SafeConsumer):
    def get_group_name(self):
        return customer_group(self.scope["url_route"]["kwargs"]["table_id"])
