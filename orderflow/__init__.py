"""Ядро исполнения заказов маркетплейса: FSM позиций, журнал переходов и outbox"""

__version__ = "1.0.0"
