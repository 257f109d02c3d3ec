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

"""Tests for the express checkout service."""

import asyncio
from decimal import Decimal

from absl.testing import absltest
from fastapi import BackgroundTasks

from .. import db
from .. import testutil
from ..enums import OrderPaymentState
from ..enums import OrderState
from ..enums import PaymentState
from ..exceptions import ResourceNotFoundError
from ..gateway import GatewayDeclined
from ..gateway import GatewayErrorDetail
from ..gateway import MockExpressCheckoutGateway
from ..models import DirectiveKind
from .express_checkout_service import ExpressCheckoutService
from .payment_reconciler import PaymentReconciler
from .payment_reconciler import ProcessDeferred
from .payment_reconciler import ProcessNow
from .payment_reconciler import ReconciliationStrategy

NUMBER = "R100000001"


class ExplodingStrategy(ReconciliationStrategy):

  async def process(self, session, account_payment, specs):
    raise RuntimeError("reconciliation failed")


class DecliningCaptureGateway(MockExpressCheckoutGateway):

  async def do_express_checkout_payment(
      self, token, payer_id, amount, currency
  ):
    await super().do_express_checkout_payment(
        token, payer_id, amount, currency
    )
    return GatewayDeclined(
        errors=[GatewayErrorDetail(long_message="Instrument declined.")]
    )


class ExpressCheckoutServiceTest(testutil.DatabaseTestCase):

  def setUp(self):
    super().setUp()
    self.gateway = MockExpressCheckoutGateway()

    async def seed():
      async with self.session_factory() as session:
        user = await testutil.seed_user(session)
        payment_method = await testutil.seed_payment_method(session)
        inactive = await testutil.seed_payment_method(session, active=False)
        return user.id, user.company_id, payment_method.id, inactive.id

    (
        self.user_id,
        self.company_id,
        self.payment_method_id,
        self.inactive_payment_method_id,
    ) = asyncio.run(seed())

  def seed_order(self, **kwargs) -> int:
    async def seed():
      async with self.session_factory() as session:
        order = await testutil.seed_order(session, self.company_id, **kwargs)
        return order.id

    return asyncio.run(seed())

  def call(
      self, method, *args, strategy=None, reconcile_incomplete=True, **kwargs
  ):
    async def run():
      async with self.session_factory() as session:
        user = await db.get_user(session, self.user_id)
        service = ExpressCheckoutService(
            session,
            lambda payment_method: self.gateway,
            PaymentReconciler(strategy or ProcessNow()),
            "https://shop.example.com/",
            reconcile_incomplete_orders=reconcile_incomplete,
        )
        return await getattr(service, method)(user, *args, **kwargs)

    return asyncio.run(run())

  def confirm(self, token="EC-1", amount="25.00", **kwargs):
    return self.call(
        "confirm",
        NUMBER,
        token,
        "PAYER1",
        amount,
        self.payment_method_id,
        **kwargs,
    )

  def load_order(self, number=NUMBER) -> db.Order:
    async def load():
      async with self.session_factory() as session:
        return await db.find_company_order(session, self.company_id, number)

    return asyncio.run(load())

  def load_account_payments(self):
    async def load():
      async with self.session_factory() as session:
        return await db.list_account_payments(session)

    return asyncio.run(load())

  def count_rows(self, model) -> int:
    return asyncio.run(self.count(model))

  def update(self, model, row_id, **values):
    async def update():
      async with self.session_factory() as session:
        row = await session.get(model, row_id)
        for key, value in values.items():
          setattr(row, key, value)
        await session.commit()

    asyncio.run(update())

  def assert_nothing_saved(self):
    self.assertEqual(self.count_rows(db.AccountPayment), 0)
    self.assertEqual(self.count_rows(db.PaypalExpressCheckout), 0)
    self.assertEqual(self.count_rows(db.Payment), 0)

  # --- initiate ---

  def test_initiate_redirects_to_paypal(self):
    self.seed_order()

    directive = self.call("initiate", NUMBER, self.payment_method_id, "25.00")

    self.assertEqual(directive.kind, DirectiveKind.REDIRECT)
    self.assertTrue(
        directive.location.startswith(MockExpressCheckoutGateway.APPROVAL_URL)
    )
    self.assertIn("useraction=commit", directive.location)
    details = self.gateway.requests[0].details
    self.assertEqual(details.invoice_id, "R100000001-1")
    self.assertStartsWith(
        details.return_url, "https://shop.example.com/paypal/confirm?"
    )
    self.assertEqual(
        details.payment_details[0].order_total.value, Decimal("25.00")
    )
    self.assert_nothing_saved()

  def test_initiate_finds_order_by_id(self):
    order_id = self.seed_order()

    directive = self.call(
        "initiate", str(order_id), self.payment_method_id, "25.00"
    )

    self.assertEqual(directive.kind, DirectiveKind.REDIRECT)

  def test_initiate_declined(self):
    self.seed_order(email=MockExpressCheckoutGateway.DECLINE_EMAIL)

    directive = self.call("initiate", NUMBER, self.payment_method_id, "25.00")

    self.assertEqual(directive.kind, DirectiveKind.REDIRECT)
    self.assertEqual(directive.location, "/orders/R100000001/edit")
    self.assertEqual(
        directive.errors,
        [
            "PayPal failed. The totals of the cart item amounts do not match"
            " order amounts."
        ],
    )

  def test_initiate_connection_failure(self):
    self.seed_order(email=MockExpressCheckoutGateway.OFFLINE_EMAIL)

    directive = self.call("initiate", NUMBER, self.payment_method_id, "25.00")

    self.assertEqual(directive.location, "/orders/R100000001/edit")
    self.assertEqual(directive.errors, ["Could not connect to PayPal."])

  def test_orders_of_other_companies_are_not_found(self):
    async def seed_foreign_order():
      async with self.session_factory() as session:
        other = await testutil.seed_user(session, company_name="Other Co")
        await testutil.seed_order(session, other.company_id, number="R9")

    asyncio.run(seed_foreign_order())

    with self.assertRaises(ResourceNotFoundError):
      self.call("initiate", "R9", self.payment_method_id, "25.00")

  def test_inactive_payment_method_is_not_found(self):
    self.seed_order()

    with self.assertRaises(ResourceNotFoundError):
      self.call(
          "initiate", NUMBER, self.inactive_payment_method_id, "25.00"
      )

  # --- confirm ---

  def test_confirm_final_submit_completes_and_captures(self):
    self.seed_order()

    directive = self.confirm(commit="Submit Order")

    self.assertEqual(directive.kind, DirectiveKind.REDIRECT)
    self.assertEqual(directive.location, "/orders/R100000001/success")
    self.assertEqual(directive.success, "Payment created")

    order = self.load_order()
    self.assertEqual(order.state, OrderState.COMPLETE.value)
    self.assertIsNotNone(order.completed_at)
    self.assertEqual(order.payment_state, OrderPaymentState.PAID.value)
    self.assertEqual(order.payment_total, 2500)
    self.assertEqual(order.channel, "b2b_portal")
    self.assertEqual(order.user_id, self.user_id)

    (account_payment,) = self.load_account_payments()
    self.assertEqual(account_payment.state, PaymentState.COMPLETED.value)
    self.assertIsNotNone(account_payment.response_code)
    self.assertEqual(account_payment.amount, 2500)
    self.assertEqual(account_payment.orders_amount_sum, 2500)
    self.assertEqual(account_payment.last_ip_address, "10.0.0.7")
    self.assertEqual(account_payment.account_id, "ACC-1")
    self.assertEqual(account_payment.source.token, "EC-1")
    self.assertEqual(account_payment.source.payer_id, "PAYER1")
    self.assertLen(account_payment.payments, 1)

    (capture,) = self.gateway.captures
    self.assertEqual(capture["token"], "EC-1")
    self.assertEqual(capture["amount"], Decimal("25.00"))
    self.assertEqual(capture["currency"], "USD")

  def test_confirm_without_final_submit_reloads(self):
    self.seed_order()

    directive = self.confirm()

    self.assertEqual(directive.kind, DirectiveKind.RELOAD)
    self.assertEqual(directive.location, "/orders/R100000001/edit")
    self.assertEqual(directive.success, "Payment created")

  def test_confirm_falls_back_to_request_ip(self):
    self.update(db.User, self.user_id, current_sign_in_ip=None)
    self.seed_order()

    self.confirm(ip_address="192.0.2.1")

    (account_payment,) = self.load_account_payments()
    self.assertEqual(account_payment.last_ip_address, "192.0.2.1")

  def test_partial_payment_stops_before_completion(self):
    self.seed_order()

    directive = self.confirm(amount="10.00")

    self.assertEqual(directive.kind, DirectiveKind.RELOAD)
    order = self.load_order()
    self.assertEqual(order.state, OrderState.PAYMENT.value)
    self.assertEqual(order.payment_state, OrderPaymentState.BALANCE_DUE.value)
    self.assertEmpty(self.gateway.captures)
    (account_payment,) = self.load_account_payments()
    self.assertEqual(account_payment.state, PaymentState.CHECKOUT.value)
    self.assertEqual(
        [p.state for p in account_payment.payments],
        [PaymentState.PENDING.value],
    )

  def test_partial_payment_without_reconciling_incomplete_orders(self):
    self.seed_order()

    self.confirm(amount="10.00", reconcile_incomplete=False)

    self.assertEqual(self.count_rows(db.AccountPayment), 1)
    self.assertEqual(self.count_rows(db.Payment), 0)

  def test_capture_failure_discards_payment(self):
    self.seed_order()

    directive = self.confirm(token=MockExpressCheckoutGateway.FAIL_TOKEN)

    self.assertEqual(directive.kind, DirectiveKind.REDIRECT)
    self.assertEqual(directive.location, "/orders/R100000001/edit")
    self.assertEqual(directive.errors, ["Card number is invalid"])
    self.assert_nothing_saved()
    order = self.load_order()
    self.assertEqual(order.state, OrderState.CART.value)
    self.assertIsNone(order.channel)

  def test_capture_connection_failure_discards_payment(self):
    self.seed_order()

    directive = self.confirm(token=MockExpressCheckoutGateway.OFFLINE_TOKEN)

    self.assertEqual(directive.kind, DirectiveKind.REDIRECT)
    self.assertEqual(directive.location, "/orders/R100000001/edit")
    self.assertEqual(directive.errors, ["Could not connect to PayPal."])
    self.assert_nothing_saved()

  def test_capture_decline_discards_payment(self):
    self.seed_order()
    self.gateway = DecliningCaptureGateway()

    directive = self.confirm()

    self.assertEqual(directive.kind, DirectiveKind.REDIRECT)
    self.assertEqual(directive.location, "/orders/R100000001/edit")
    self.assertEqual(directive.errors, ["Instrument declined."])
    self.assert_nothing_saved()
    self.assertEqual(self.load_order().state, OrderState.CART.value)

  def test_unexpected_error_discards_payment_and_propagates(self):
    self.seed_order()

    with self.assertRaisesRegex(RuntimeError, "reconciliation failed"):
      self.confirm(strategy=ExplodingStrategy())

    self.assert_nothing_saved()
    self.assertEqual(self.load_order().state, OrderState.CART.value)

  def test_paid_order_is_refused(self):
    order_id = self.seed_order()
    self.update(db.Order, order_id, payment_state=OrderPaymentState.PAID.value)

    directive = self.confirm()

    self.assertEqual(directive.kind, DirectiveKind.RENDER)
    self.assertEqual(directive.errors, ["This order is already paid."])
    self.assert_nothing_saved()
    order = self.load_order()
    self.assertEqual(order.state, OrderState.CART.value)
    self.assertIsNone(order.channel)

  def test_captured_order_awaiting_reconciliation_is_refused(self):
    self.seed_order()
    tasks = BackgroundTasks()

    first = self.confirm(
        strategy=ProcessDeferred(tasks, self.session_factory)
    )
    second = self.confirm(
        token="EC-2",
        strategy=ProcessDeferred(BackgroundTasks(), self.session_factory),
    )

    self.assertEqual(first.kind, DirectiveKind.RELOAD)
    self.assertLen(tasks.tasks, 1)
    self.assertEqual(second.kind, DirectiveKind.RENDER)
    self.assertEqual(second.errors, ["This order is already paid."])
    (capture,) = self.gateway.captures
    self.assertEqual(capture["token"], "EC-1")
    self.assertEqual(self.count_rows(db.AccountPayment), 1)
    self.assertEqual(self.count_rows(db.Payment), 0)

  def test_pending_payments_are_refused(self):
    order_id = self.seed_order()

    async def seed_pending():
      async with self.session_factory() as session:
        session.add(
            db.AccountPayment(
                order_id=order_id,
                source=db.PaypalExpressCheckout(token="EC-0", payer_id="P"),
                payment_method_id=self.payment_method_id,
                amount=2500,
                state=PaymentState.PENDING.value,
            )
        )
        await session.commit()

    asyncio.run(seed_pending())

    directive = self.confirm()

    self.assertEqual(
        directive.errors, ["Payments are already pending for this order."]
    )
    self.assertEqual(self.count_rows(db.AccountPayment), 1)
    self.assertEmpty(self.gateway.captures)
    order = self.load_order()
    self.assertEqual(order.state, OrderState.CART.value)
    self.assertIsNone(order.channel)

  def test_order_already_in_payment_state_is_completed(self):
    self.seed_order(state=OrderState.PAYMENT.value)

    directive = self.confirm()

    self.assertEqual(directive.kind, DirectiveKind.RELOAD)
    self.assertEqual(directive.location, "/orders/R100000001/edit")
    order = self.load_order()
    self.assertEqual(order.state, OrderState.COMPLETE.value)
    self.assertEqual(order.payment_state, OrderPaymentState.PAID.value)
    self.assertLen(self.gateway.captures, 1)

  def test_invalid_payment_and_order_are_rendered(self):
    self.seed_order(with_address=False)

    directive = self.confirm(amount="0")

    self.assertEqual(directive.kind, DirectiveKind.RENDER)
    self.assertEqual(
        directive.errors,
        ["Amount must be greater than 0", "Bill address can't be blank"],
    )
    self.assert_nothing_saved()

  def test_amount_above_balance_is_rendered(self):
    self.seed_order()

    directive = self.confirm(amount="30.00")

    self.assertEqual(
        directive.errors,
        ["Amount exceeds the outstanding balance of 25.00"],
    )
    self.assert_nothing_saved()

  # --- cancel ---

  def test_cancel_returns_to_checkout_state(self):
    self.seed_order(state=OrderState.DELIVERY.value)

    directive = self.call("cancel", NUMBER, "EC-1")

    self.assertEqual(directive.kind, DirectiveKind.REDIRECT)
    self.assertEqual(
        directive.location,
        "/orders/R100000001/checkout/delivery?paypal_cancel_token=EC-1",
    )
    self.assertEqual(
        directive.notice, "Don't want to use PayPal? No problems."
    )

  def test_cancel_unknown_order(self):
    with self.assertRaises(ResourceNotFoundError):
      self.call("cancel", "R404", "EC-1")


if __name__ == "__main__":
  absltest.main()
