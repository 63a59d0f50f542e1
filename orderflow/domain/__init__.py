"""Доменная логика: граф переходов позиций, payload исполнения, roll-up заказа"""

from orderflow.domain.line_item_state_machine import (
    InvalidStateTransitionError,
    LineItemStateMachine,
    LineItemTransitionResult,
    RefundNotAllowedError,
)
from orderflow.domain.order_rollup import compute_order_status
from orderflow.domain.refund_policy import RefundDecision, RefundPolicy


__all__ = [
    "InvalidStateTransitionError",
    "LineItemStateMachine",
    "LineItemTransitionResult",
    "RefundDecision",
    "RefundNotAllowedError",
    "RefundPolicy",
    "compute_order_status",
]
