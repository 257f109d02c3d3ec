#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Enumerations for the PayPal Express Checkout server.

This module defines the enums used throughout the server application to
represent the lifecycle of orders, account payments and their adjustments.
"""

import enum


class OrderState(str, enum.Enum):
  """Checkout states of an order, listed in the order they are reached."""

  CART = "cart"
  ADDRESS = "address"
  DELIVERY = "delivery"
  PAYMENT = "payment"
  CONFIRM = "confirm"
  COMPLETE = "complete"

  @property
  def ordinal(self) -> int:
    return _ORDER_STATE_SEQUENCE.index(self)

  def next_state(self) -> "OrderState | None":
    """Returns the state following this one, or None for the last state."""
    index = self.ordinal + 1
    if index >= len(_ORDER_STATE_SEQUENCE):
      return None
    return _ORDER_STATE_SEQUENCE[index]


_ORDER_STATE_SEQUENCE = tuple(OrderState)


def compare_states(left: OrderState | str, right: OrderState | str) -> int:
  """Compares two order states by their position in the checkout sequence.

  Args:
    left: The first state (enum member or its value).
    right: The second state (enum member or its value).

  Returns:
    A negative number if `left` precedes `right`, zero if they are equal and
    a positive number if `left` follows `right`.
  """
  return OrderState(left).ordinal - OrderState(right).ordinal


class PaymentState(str, enum.Enum):
  CHECKOUT = "checkout"
  PROCESSING = "processing"
  PENDING = "pending"
  COMPLETED = "completed"
  FAILED = "failed"
  VOID = "void"


# Payments that have not settled yet but still count towards the balance.
UNSETTLED_PAYMENT_STATES = (
    PaymentState.CHECKOUT,
    PaymentState.PROCESSING,
    PaymentState.PENDING,
)


class OrderPaymentState(str, enum.Enum):
  BALANCE_DUE = "balance_due"
  PAID = "paid"
  CREDIT_OWED = "credit_owed"


class AdjustmentCategory(str, enum.Enum):
  TAX = "tax"
  SHIPPING = "shipping"
  PROMOTION = "promotion"
  OTHER = "other"


class GatewayServer(str, enum.Enum):
  SANDBOX = "sandbox"
  LIVE = "live"


class GatewayMode(str, enum.Enum):
  PAYPAL = "paypal"
  MOCK = "mock"


class ReconcileMode(str, enum.Enum):
  DEFERRED = "deferred"
  IMMEDIATE = "immediate"
