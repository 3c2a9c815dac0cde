from fleetledger.models.order import Order
from fleetledger.models.delivery import (
    DeliveryStatus,
    PaymentType,
    ActorType,
    DeliveryZone,
    DeliveryZonePincode,
    DeliveryAgent,
    AgentZone,
    DeliveryAssignment,
    DeliveryStatusLog,
)
from fleetledger.models.ledger import (
    PayoutRequestStatus,
    DeliveryEarning,
    DeliveryPayoutRequest,
    DeliveryPayout,
)

__all__ = [
    "Order",
    # Dispatch
    "DeliveryStatus",
    "PaymentType",
    "ActorType",
    "DeliveryZone",
    "DeliveryZonePincode",
    "DeliveryAgent",
    "AgentZone",
    "DeliveryAssignment",
    "DeliveryStatusLog",
    # Ledger
    "PayoutRequestStatus",
    "DeliveryEarning",
    "DeliveryPayoutRequest",
    "DeliveryPayout",
]
