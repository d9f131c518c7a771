from prometheus_client import Counter, Histogram

# Business Metrics
ecomm_orders_created_total = Counter(
    "ecomm_orders_created_total",
    "Total orders created",
    ["payment_method"]  # Labels: 'cod', 'online'
)

ecomm_order_transitions_total = Counter(
    "ecomm_order_transitions_total",
    "Order status transitions applied",
    ["to_status"]
)

ecomm_cancellations_total = Counter(
    "ecomm_cancellations_total",
    "Cancellation requests and decisions",
    ["decision"]  # Labels: 'approve', 'reject'
)

ecomm_refunds_total = Counter(
    "ecomm_refunds_total",
    "Refund attempts against the payment gateway",
    ["outcome"]  # Labels: 'completed', 'failed'
)

ecomm_side_effects_total = Counter(
    "ecomm_side_effects_total",
    "Outbox side effects executed",
    ["kind", "outcome"]  # kind: 'decrement_stock', 'restore_stock', 'notify'
)

ecomm_gateway_request_duration_seconds = Histogram(
    "ecomm_gateway_request_duration_seconds",
    "Payment gateway call duration in seconds",
    ["operation"]
)
