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

"""Express checkout service for paying purchase orders through PayPal.

This module provides the `ExpressCheckoutService` class, which drives the
three steps of the PayPal Express Checkout flow:

- `initiate`: opens a PayPal checkout session for the requested amount and
  sends the buyer to PayPal for approval.
- `confirm`: handles the buyer's return from PayPal. It records an account
  payment, advances the order to completion, captures the payment and
  reconciles the child payments, all in one transaction.
- `cancel`: handles the buyer backing out on PayPal's side.

Every step answers with a `RedirectDirective`. Problems the buyer can fix
(pending or settled orders, invalid payments, declines, connectivity) are
reported in the directive and never raised.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .. import config
from .. import db
from .. import order_flow
from ..enums import OrderState
from ..enums import PaymentState
from ..exceptions import ResourceNotFoundError
from ..gateway import GatewayDeclined
from ..gateway import GatewayFactory
from ..gateway import GatewayMidTransactionError
from ..gateway import GatewayOutcome
from ..gateway import GatewaySuccess
from ..gateway import GatewayTransportError
from ..models import PaymentSpec
from ..models import RedirectDirective
from ..money import from_cents
from ..money import parse_amount
from ..money import to_cents
from . import request_builder
from .payment_reconciler import PaymentReconciler
from .payment_reconciler import orders_amount_sum
from .payment_reconciler import payment_specs_for

logger = logging.getLogger(__name__)

GENERIC_ERROR = "PayPal failed. {reasons}"
CONNECTION_FAILED = "Could not connect to PayPal."
CAPTURE_FAILED = "Payment capture failed"
CANCEL_NOTICE = "Don't want to use PayPal? No problems."
PAYMENTS_PENDING = "Payments are already pending for this order."
ALREADY_PAID = "This order is already paid."
PAYMENT_CREATED = "Payment created"

# Gateway messages replaced by friendlier text before reaching the buyer.
FRIENDLY_GATEWAY_MESSAGES = {
    "Your card number is incorrect.": "Card number is invalid",
}


def edit_order_path(order_number: str) -> str:
  return f"/orders/{order_number}/edit"


def success_order_path(order_number: str) -> str:
  return f"/orders/{order_number}/success"


def checkout_state_path(
    order_number: str, state: str, paypal_cancel_token: Optional[str] = None
) -> str:
  path = f"/orders/{order_number}/checkout/{state}"
  if paypal_cancel_token:
    path += f"?paypal_cancel_token={paypal_cancel_token}"
  return path


def friendly_gateway_message(message: str) -> str:
  return FRIENDLY_GATEWAY_MESSAGES.get(message, message)


def account_payment_errors(
    account_payment: db.AccountPayment, order: db.Order
) -> List[str]:
  """Validates an account payment before it is saved."""
  errors = []
  if (account_payment.amount or 0) <= 0:
    errors.append("Amount must be greater than 0")
  if account_payment.source is None or not account_payment.source.token:
    errors.append("Source token can't be blank")
  if account_payment.payment_method is None:
    errors.append("Payment method can't be blank")
  balance = order_flow.balance_due(order)
  if (account_payment.orders_amount_sum or 0) > balance:
    errors.append(
        f"Amount exceeds the outstanding balance of {from_cents(balance)}"
    )
  return errors


class ExpressCheckoutService:
  """Service for paying purchase orders through PayPal Express Checkout."""

  def __init__(
      self,
      session: AsyncSession,
      gateway_factory: GatewayFactory,
      reconciler: PaymentReconciler,
      base_url: str,
      final_submit_label: str = "Submit Order",
      reconcile_incomplete_orders: bool = True,
  ):
    self.session = session
    self.gateway_factory = gateway_factory
    self.reconciler = reconciler
    self.base_url = base_url.rstrip("/")
    self.final_submit_label = final_submit_label
    self.reconcile_incomplete_orders = reconcile_incomplete_orders

  async def _find_order(self, user: db.User, order_ref: str) -> db.Order:
    order = await db.find_company_order(
        self.session, user.company_id, str(order_ref)
    )
    if order is None:
      raise ResourceNotFoundError("Order not found")
    return order

  async def _find_payment_method(
      self, payment_method_id: int
  ) -> db.PaymentMethod:
    payment_method = await db.get_payment_method(
        self.session, payment_method_id
    )
    if payment_method is None:
      raise ResourceNotFoundError("Payment method not found")
    return payment_method

  async def initiate(
      self,
      user: db.User,
      order_ref: str,
      payment_method_id: int,
      amount: str | Decimal,
      commit: Optional[str] = None,
  ) -> RedirectDirective:
    """Opens a PayPal checkout session and sends the buyer there.

    No payment records are created here. On failure the buyer goes back to
    the order and must start over; nothing is retried.
    """
    order = await self._find_order(user, order_ref)
    payment_method = await self._find_payment_method(payment_method_id)
    amount = parse_amount(amount)
    logger.info(
        "Starting express checkout for order %s (amount %s)",
        order.number,
        amount,
    )

    gateway = self.gateway_factory(payment_method)
    request = gateway.build_set_express_checkout(
        request_builder.build_request_details(
            order, payment_method, amount, self.base_url, commit
        )
    )
    outcome = await gateway.set_express_checkout(request)

    if isinstance(outcome, GatewaySuccess):
      return RedirectDirective.redirect(
          gateway.express_checkout_url(outcome.response, useraction="commit")
      )
    if isinstance(outcome, GatewayDeclined):
      logger.warning(
          "PayPal declined checkout of order %s: %s",
          order.number,
          outcome.reasons,
      )
      error = GENERIC_ERROR.format(reasons=outcome.reasons)
    else:
      logger.error(
          "Could not reach PayPal for order %s: %s",
          order.number,
          getattr(outcome, "message", outcome),
      )
      error = CONNECTION_FAILED
    return RedirectDirective.redirect(
        edit_order_path(order.number), errors=[error]
    )

  async def confirm(
      self,
      user: db.User,
      order_ref: str,
      token: str,
      payer_id: str,
      amount: str | Decimal,
      payment_method_id: int,
      commit: Optional[str] = None,
      ip_address: Optional[str] = None,
  ) -> RedirectDirective:
    """Records the payment the buyer approved on PayPal and completes the order.

    Args:
      user: The signed-in user submitting the order.
      order_ref: Number or ID of one of the user's company orders.
      token: The PayPal checkout token.
      payer_id: The PayPal payer ID.
      amount: The amount approved for this payment.
      payment_method_id: The PayPal payment method used.
      commit: The submit button value; the final submit label sends the buyer
        to the success page.
      ip_address: Fallback submitter IP when the user has no sign-in IP.

    Returns:
      A `render` directive when the order cannot take this payment or the
      payment is invalid. Otherwise a redirect, back to the edit view with
      the error when the capture failed.
    """
    order = await self._find_order(user, order_ref)
    payment_method = await self._find_payment_method(payment_method_id)
    amount = parse_amount(amount)
    order_number = order.number
    logger.info(
        "Confirming express checkout of order %s (token %s)",
        order_number,
        token,
    )

    if order_flow.final_payments_pending(order):
      return RedirectDirective.render([PAYMENTS_PENDING])
    if order_flow.is_paid(order):
      return RedirectDirective.render([ALREADY_PAID])

    account_payment = db.AccountPayment(
        order_id=order.id,
        account_id=order.account_id,
        customer_id=order.customer_id,
        vendor_id=order.vendor_id,
        source=db.PaypalExpressCheckout(token=token, payer_id=payer_id),
        payment_method=payment_method,
        payment_method_id=payment_method.id,
        amount=to_cents(amount),
        last_ip_address=user.current_sign_in_ip or ip_address,
        state=PaymentState.CHECKOUT.value,
    )
    specs = payment_specs_for(order, account_payment)
    account_payment.orders_amount_sum = to_cents(orders_amount_sum(specs))

    errors = account_payment_errors(
        account_payment, order
    ) + order_flow.customer_submit_errors(order, skip_payment=True)
    if errors:
      return RedirectDirective.render(errors)

    order.account_payments.append(account_payment)
    await self.session.commit()
    account_payment_id = account_payment.id

    try:
      outcome = await self._complete_order(order, account_payment, specs)
    except Exception:
      await self._discard_account_payment(account_payment_id)
      raise

    if not isinstance(outcome, GatewaySuccess):
      await self._discard_account_payment(account_payment_id)
      return RedirectDirective.redirect(
          edit_order_path(order_number),
          errors=[friendly_gateway_message(outcome.message)],
      )

    if order.user_id is None:
      order.user_id = user.id
      await self.session.commit()

    if commit == self.final_submit_label:
      return RedirectDirective.redirect(
          success_order_path(order_number), success=PAYMENT_CREATED
      )
    return RedirectDirective.reload(
        edit_order_path(order_number), success=PAYMENT_CREATED
    )

  async def _complete_order(
      self,
      order: db.Order,
      account_payment: db.AccountPayment,
      specs: List[PaymentSpec],
  ) -> GatewayOutcome:
    """Advances, captures and reconciles in one transaction.

    Returns:
      `GatewaySuccess` once committed, or `GatewayMidTransactionError` after
      the transaction was rolled back.
    """
    if order.state == OrderState.CART.value:
      order.channel = config.B2B_PORTAL_CHANNEL

    reached = order_flow.advance_to_complete(order)
    if reached != OrderState.COMPLETE:
      logger.warning(
          "Order %s stopped in state %s before completion",
          order.number,
          reached.value,
      )

    if (
        order.completed
        and account_payment.state == PaymentState.CHECKOUT.value
    ):
      outcome = await self._process_and_capture(order, account_payment)
      if not isinstance(outcome, GatewaySuccess):
        await self.session.rollback()
        if isinstance(outcome, GatewayTransportError):
          return GatewayMidTransactionError(message=CONNECTION_FAILED)
        if isinstance(outcome, GatewayDeclined):
          return GatewayMidTransactionError(
              message=outcome.reasons or CAPTURE_FAILED
          )
        return outcome

    if order.completed or self.reconcile_incomplete_orders:
      await self.reconciler.add_payments(self.session, account_payment, specs)
    await self.session.commit()
    return GatewaySuccess(
        token=account_payment.source.token,
        transaction_id=account_payment.response_code,
    )

  async def _process_and_capture(
      self, order: db.Order, account_payment: db.AccountPayment
  ) -> GatewayOutcome:
    account_payment.state = PaymentState.PROCESSING.value
    gateway = self.gateway_factory(account_payment.payment_method)
    outcome = await gateway.do_express_checkout_payment(
        account_payment.source.token,
        account_payment.source.payer_id,
        from_cents(account_payment.amount),
        order.currency,
    )
    if isinstance(outcome, GatewaySuccess):
      account_payment.state = PaymentState.COMPLETED.value
      account_payment.response_code = outcome.transaction_id
    else:
      account_payment.state = PaymentState.FAILED.value
      logger.warning(
          "Capture of account payment %s failed: %s",
          account_payment.id,
          outcome,
      )
    return outcome

  async def _discard_account_payment(self, account_payment_id: int) -> None:
    """Rolls back the open transaction and deletes the saved account payment."""
    await self.session.rollback()
    if await db.delete_account_payment(self.session, account_payment_id):
      await self.session.commit()
      logger.warning("Discarded account payment %s", account_payment_id)

  async def cancel(
      self, user: db.User, order_ref: str, token: Optional[str] = None
  ) -> RedirectDirective:
    """Sends a buyer who cancelled on PayPal back to the order's checkout."""
    order = await self._find_order(user, order_ref)
    logger.info("Express checkout of order %s cancelled", order.number)
    return RedirectDirective.redirect(
        checkout_state_path(order.number, order.state, token),
        notice=CANCEL_NOTICE,
    )
