from .setup import setup_observability
from .metrics import (
    ecomm_orders_created_total,
    ecomm_order_transitions_total,
    ecomm_cancellations_total,
    ecomm_refunds_total,
    ecomm_side_effects_total,
    ecomm_gateway_request_duration_seconds
)
