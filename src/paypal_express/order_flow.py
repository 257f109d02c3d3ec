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

"""Order state machine and payment predicates.

Orders move forward through `OrderState` one transition at a time. Each
transition checks its own preconditions and refuses to move when they do not
hold, so callers driving an order to completion must expect it to stop early.
"""

import datetime
import logging
from typing import Callable, Dict, List

from . import db
from .enums import OrderPaymentState
from .enums import OrderState
from .enums import PaymentState
from .enums import UNSETTLED_PAYMENT_STATES
from .enums import compare_states

logger = logging.getLogger(__name__)


def _has_line_items(order: db.Order) -> bool:
  return bool(order.line_items)


def _has_bill_address(order: db.Order) -> bool:
  return order.bill_address is not None


def _always(order: db.Order) -> bool:
  del order  # Unused.
  return True


def unreconciled_captures(order: db.Order) -> int:
  """Cents captured by account payments that have no completed child payment.

  With deferred reconciliation the order's payment_total only catches up once
  the child payments are processed; until then these captures are missing
  from it.
  """
  reconciled = {
      p.account_payment_id
      for p in order.payments
      if p.state == PaymentState.COMPLETED.value
  }
  return sum(
      p.amount or 0
      for p in order.account_payments
      if p.state == PaymentState.COMPLETED.value and p.id not in reconciled
  )


def balance_due(order: db.Order) -> int:
  """Outstanding balance in cents, net of captures not yet reconciled."""
  return order.outstanding_balance - unreconciled_captures(order)


def payments_cover_balance(order: db.Order) -> bool:
  """True if the non-failed account payments cover the outstanding balance."""
  authorized = sum(
      p.amount or 0
      for p in order.account_payments
      if PaymentState(p.state) in UNSETTLED_PAYMENT_STATES
  )
  return authorized >= balance_due(order)


# Guard checked before leaving the keyed state.
_TRANSITION_GUARDS: Dict[OrderState, Callable[[db.Order], bool]] = {
    OrderState.CART: _has_line_items,
    OrderState.ADDRESS: _has_bill_address,
    OrderState.DELIVERY: _always,
    OrderState.PAYMENT: payments_cover_balance,
    OrderState.CONFIRM: _always,
}


def precedes(order: db.Order, state: OrderState) -> bool:
  return compare_states(order.state, state) < 0


def advance(order: db.Order) -> bool:
  """Moves the order one state forward.

  Returns:
    True if the order moved, False if the transition's guard refused or the
    order is already complete.
  """
  current = OrderState(order.state)
  target = current.next_state()
  if target is None:
    return False
  if not _TRANSITION_GUARDS[current](order):
    logger.info(
        "Order %s cannot leave state %s", order.number, current.value
    )
    return False
  order.state = target.value
  if target == OrderState.COMPLETE:
    order.completed_at = datetime.datetime.now(
        datetime.timezone.utc
    ).isoformat()
  return True


def advance_to_complete(order: db.Order) -> OrderState:
  """Advances the order until it is complete or a transition halts.

  Returns:
    The state the order ended in.
  """
  while precedes(order, OrderState.COMPLETE) and advance(order):
    pass
  return OrderState(order.state)


def is_paid(order: db.Order) -> bool:
  if order.payment_state in (
      OrderPaymentState.PAID.value,
      OrderPaymentState.CREDIT_OWED.value,
  ):
    return True
  return unreconciled_captures(order) > 0 and balance_due(order) <= 0


def final_payments_pending(order: db.Order) -> bool:
  """True if unsettled account payments would settle the whole balance."""
  if is_paid(order):
    return False
  pending = sum(
      p.amount or 0
      for p in order.account_payments
      if p.state
      in (PaymentState.PROCESSING.value, PaymentState.PENDING.value)
  )
  return pending > 0 and pending >= balance_due(order)


def customer_submit_errors(
    order: db.Order, skip_payment: bool = False
) -> List[str]:
  """Returns the order errors, including line item errors, blocking submission.

  Args:
    order: The order about to be submitted.
    skip_payment: Do not require existing payments to cover the balance. Used
      while the payment for this very submission is being created.

  Returns:
    A list of user-visible messages; empty when the order can be submitted.
  """
  errors = []
  if not order.email:
    errors.append("Email can't be blank")
  if not order.bill_address:
    errors.append("Bill address can't be blank")
  if not order.line_items:
    errors.append("Order must contain at least one line item")
  for item in order.line_items:
    if (item.quantity or 0) <= 0:
      errors.append(f"{item.product_name}: Quantity must be greater than 0")
  if not skip_payment and not payments_cover_balance(order):
    errors.append("Payments do not cover the order total")
  return errors


def update_payment_totals(order: db.Order) -> None:
  """Recomputes payment_total and payment_state from completed payments."""
  order.payment_total = sum(
      p.amount or 0
      for p in order.payments
      if p.state == PaymentState.COMPLETED.value
  )
  if order.payment_total > (order.total or 0):
    order.payment_state = OrderPaymentState.CREDIT_OWED.value
  elif order.payment_total == (order.total or 0):
    order.payment_state = OrderPaymentState.PAID.value
  else:
    order.payment_state = OrderPaymentState.BALANCE_DUE.value
