# app/services/shipping_service.py
"""
Shipping collaborator.

Carrier rate/label APIs are outside this service; the fulfillment machine
only needs a label (tracking number + carrier) when an order ships.
SimulatedShippingService is the default and produces UPS/FedEx style
tracking numbers.
"""

import random
from dataclasses import dataclass
from typing import Protocol

from app.models.order import Order

UPS = "UPS"
FEDEX = "FedEx"

_CARRIER_BY_METHOD = {
    "ground": UPS,
    "threeday": UPS,
    "twoday": FEDEX,
    "overnight": FEDEX,
}


@dataclass(frozen=True)
class ShippingLabel:
    tracking_number: str
    carrier: str
    service: str


class ShippingService(Protocol):
    def create_label(self, order: Order) -> ShippingLabel: ...


class SimulatedShippingService:
    def __init__(self, rng: random.Random | None = None):
        self._rng = rng or random.Random()

    def _digits(self, count: int) -> str:
        return "".join(str(self._rng.randint(0, 9)) for _ in range(count))

    def create_label(self, order: Order) -> ShippingLabel:
        method = (order.shipping_method or "ground").lower()
        carrier = _CARRIER_BY_METHOD.get(method, UPS)
        if carrier == UPS:
            tracking_number = "1Z" + self._digits(10)
        else:
            tracking_number = "7" + self._digits(11)
        return ShippingLabel(tracking_number=tracking_number, carrier=carrier, service=method)


_default_service = SimulatedShippingService()


def get_shipping_service() -> ShippingService:
    return _default_service
