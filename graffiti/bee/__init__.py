"""
Bee node transport — HTTP chunk upload/download and GSOC websocket push.

Modules:
    client  — BeeClient: SOC upload, chunk download, postage, node addresses
    gsoc    — gsoc_subscribe / Subscription: live websocket subscription
"""

from graffiti.bee.client import BeeClient, UploadOptions
from graffiti.bee.gsoc import Subscription, gsoc_subscribe

__all__ = [
    "BeeClient",
    "UploadOptions",
    "Subscription",
    "gsoc_subscribe",
]
