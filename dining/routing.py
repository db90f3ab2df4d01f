"""
dining/routing.py
=====================================================================================
WebSocket route mappings for Django Channels. Each display joins one channel
group and receives ``order_update`` / ``table_update`` events pushed by
dining/utils.py.
=====================================================================================
"""

from django.urls import re_path
from . import consumers

websocket_urlpatterns = [
    # -------------------------------------------------------------------------
    # Kitchen Display System (KDS)
    # -------------------------------------------------------------------------
    re_path(r"^ws/kitchen/$", consumers.KitchenDisplayConsumer.as_asgi()),

    # -------------------------------------------------------------------------
    # Reception: order board plus table reconciliation notices
    # -------------------------------------------------------------------------
    re_path(r"^ws/reception/$", consumers.ReceptionConsumer.as_asgi()),

    # -------------------------------------------------------------------------
    # Customer Display, one group per table
    # Example connection: ws://host/ws/customer/3/
    # -------------------------------------------------------------------------
    re_path(r"^ws/customer/(?P<table_id>\d+)/$", consumers.CustomerDisplayConsumer.as_asgi()),
]
