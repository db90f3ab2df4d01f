from channels.db import database_sync_to_async
from channels.layers import get_channel_layer
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from django.test import TransactionTestCase, override_settings

from dining.models import Order, Table
from dining.routing import websocket_urlpatterns
from dining.utils import KITCHEN_GROUP, RECEPTION_GROUP, customer_group

IN_MEMORY_LAYER = {"default": {"BACKEND": "channels.layers.InMemoryChannelLayer"}}


@override_settings(CHANNEL_LAYERS=IN_MEMORY_LAYER)
class DisplayConsumerTests(TransactionTestCase):
    def connect(self, path):
        return WebsocketCommunicator(URLRouter(websocket_urlpatterns), path)

    async def test_kitchen_receives_order_updates(self):
        communicator = self.connect("/ws/kitchen/")
        connected, _ = await communicator.connect()
        self.assertTrue(connected)

        await get_channel_layer().group_send(KITCHEN_GROUP, {
            "type": "order_update",
            "data": {"event": "order_created", "order": {"id": 1, "status": "pending"}},
        })
        message = await communicator.receive_json_from()
        self.assertEqual(message, {
            "type": "order_update",
            "event": "order_created",
            "order": {"id": 1, "status": "pending"},
        })
        await communicator.disconnect()

    async def test_reception_receives_table_updates(self):
        communicator = self.connect("/ws/reception/")
        connected, _ = await communicator.connect()
        self.assertTrue(connected)

        await get_channel_layer().group_send(RECEPTION_GROUP, {
            "type": "table_update",
            "data": {"event": "table_reconciled", "table": {"id": 3, "has_active_order": False}},
        })
        message = await communicator.receive_json_from()
        self.assertEqual(message["type"], "table_update")
        self.assertEqual(message["table"]["id"], 3)
        await communicator.disconnect()

    async def test_customer_display_only_gets_its_table(self):
        mine = self.connect("/ws/customer/5/")
        other = self.connect("/ws/customer/6/")
        self.assertTrue((await mine.connect())[0])
        self.assertTrue((await other.connect())[0])

        await get_channel_layer().group_send(customer_group(5), {
            "type": "order_update",
            "data": {"event": "order_updated", "order": {"id": 9, "status": "ready"}},
        })
        message = await mine.receive_json_from()
        self.assertEqual(message["order"]["status"], "ready")
        self.assertTrue(await other.receive_nothing())

        await mine.disconnect()
        await other.disconnect()

    async def test_inbound_messages_are_ignored(self):
        communicator = self.connect("/ws/kitchen/")
        await communicator.connect()
        await communicator.send_to(text_data='{"hello": "kitchen"}')
        self.assertTrue(await communicator.receive_nothing())
        await communicator.disconnect()

    async def test_saved_order_reaches_kitchen_display(self):
        communicator = self.connect("/ws/kitchen/")
        self.assertTrue((await communicator.connect())[0])

        order = await database_sync_to_async(self.open_order)()

        message = await communicator.receive_json_from()
        self.assertEqual(message["event"], "order_created")
        self.assertEqual(message["order"]["order_number"], order.order_number)
        self.assertTrue(await database_sync_to_async(self.table_is_flagged)(order.table_id))
        await communicator.disconnect()

    def open_order(self):
        table = Table.objects.create(table_number="W1")
        return Order.objects.create(table=table)

    def table_is_flagged(self, table_id):
        return Table.objects.get(pk=table_id).has_active_order
