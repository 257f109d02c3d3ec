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

"""Tests for reconciling account payments into child payments."""

import asyncio
from decimal import Decimal

from absl.testing import absltest
from fastapi import BackgroundTasks

from .. import db
from .. import testutil
from .. import worker
from ..enums import OrderPaymentState
from ..enums import OrderState
from ..enums import PaymentState
from ..models import PaymentSpec
from .payment_reconciler import PaymentReconciler
from .payment_reconciler import ProcessDeferred
from .payment_reconciler import ProcessNow
from .payment_reconciler import orders_amount_sum


class OrdersAmountSumTest(absltest.TestCase):

  def test_sums_sibling_amounts(self):
    specs = [
        PaymentSpec(order_id=1, amount=Decimal("10.00")),
        PaymentSpec(order_id=2, amount=Decimal("5.50")),
        PaymentSpec(order_id=3, amount=Decimal("2.25")),
    ]

    self.assertEqual(orders_amount_sum(specs), Decimal("17.75"))

  def test_no_specs(self):
    self.assertEqual(orders_amount_sum(None), Decimal(0))
    self.assertEqual(orders_amount_sum([]), Decimal(0))


class PaymentReconcilerTest(testutil.DatabaseTestCase):

  async def _seed(self, state=PaymentState.COMPLETED.value, orders=1):
    async with self.session_factory() as session:
      user = await testutil.seed_user(session)
      payment_method = await testutil.seed_payment_method(session)
      order_ids = []
      for n in range(orders):
        order = await testutil.seed_order(
            session,
            user.company_id,
            number=f"R10000000{n + 1}",
            state=OrderState.COMPLETE.value,
        )
        order_ids.append(order.id)
      account_payment = db.AccountPayment(
          order_id=order_ids[0],
          source=db.PaypalExpressCheckout(token="EC-1", payer_id="PAYER"),
          payment_method_id=payment_method.id,
          amount=2500,
          state=state,
      )
      session.add(account_payment)
      await session.commit()
      return order_ids, account_payment.id

  async def _reconcile(self, account_payment_id, specs, strategy, times=1):
    async with self.session_factory() as session:
      account_payment = await db.get_account_payment(
          session, account_payment_id
      )
      reconciler = PaymentReconciler(strategy)
      for _ in range(times):
        await reconciler.add_payments(session, account_payment, specs)
      await session.commit()

  async def _orders(self, order_ids):
    async with self.session_factory() as session:
      return [await db.get_order(session, order_id) for order_id in order_ids]

  def test_completed_payment_settles_order(self):
    async def run():
      order_ids, account_payment_id = await self._seed()
      specs = [PaymentSpec(order_id=order_ids[0], amount=Decimal("25.00"))]
      await self._reconcile(account_payment_id, specs, ProcessNow())
      return await self._orders(order_ids)

    (order,) = asyncio.run(run())

    self.assertLen(order.payments, 1)
    self.assertEqual(order.payments[0].state, PaymentState.COMPLETED.value)
    self.assertEqual(order.payments[0].amount, 2500)
    self.assertEqual(order.payment_total, 2500)
    self.assertEqual(order.payment_state, OrderPaymentState.PAID.value)

  def test_reconciling_twice_does_not_duplicate(self):
    async def run():
      order_ids, account_payment_id = await self._seed()
      specs = [PaymentSpec(order_id=order_ids[0], amount=Decimal("25.00"))]
      await self._reconcile(account_payment_id, specs, ProcessNow(), times=2)
      await self._reconcile(account_payment_id, specs, ProcessNow())
      return await self._orders(order_ids)

    (order,) = asyncio.run(run())

    self.assertLen(order.payments, 1)
    self.assertEqual(order.payment_total, 2500)

  def test_unsettled_payment_creates_pending_children(self):
    async def run():
      order_ids, account_payment_id = await self._seed(
          state=PaymentState.CHECKOUT.value
      )
      specs = [PaymentSpec(order_id=order_ids[0], amount=Decimal("25.00"))]
      await self._reconcile(account_payment_id, specs, ProcessNow())
      return await self._orders(order_ids)

    (order,) = asyncio.run(run())

    self.assertEqual(order.payments[0].state, PaymentState.PENDING.value)
    self.assertEqual(order.payment_total, 0)
    self.assertEqual(order.payment_state, OrderPaymentState.BALANCE_DUE.value)

  def test_splits_payment_across_orders(self):
    async def run():
      order_ids, account_payment_id = await self._seed(orders=2)
      specs = [
          PaymentSpec(order_id=order_ids[0], amount=Decimal("10.00")),
          PaymentSpec(order_id=order_ids[1], amount=Decimal("15.00")),
      ]
      await self._reconcile(account_payment_id, specs, ProcessNow())
      return await self._orders(order_ids)

    first, second = asyncio.run(run())

    self.assertEqual([p.amount for p in first.payments], [1000])
    self.assertEqual([p.amount for p in second.payments], [1500])
    self.assertEqual(first.payment_state, OrderPaymentState.BALANCE_DUE.value)

  def test_without_specs_does_nothing(self):
    async def run():
      _, account_payment_id = await self._seed()
      await self._reconcile(account_payment_id, [], ProcessNow())
      return await self.count(db.Payment)

    self.assertEqual(asyncio.run(run()), 0)

  def test_deferred_processing_runs_in_background_task(self):
    async def run():
      order_ids, account_payment_id = await self._seed()
      specs = [PaymentSpec(order_id=order_ids[0], amount=Decimal("25.00"))]
      tasks = BackgroundTasks()
      await self._reconcile(
          account_payment_id,
          specs,
          ProcessDeferred(tasks, self.session_factory),
      )
      scheduled = len(tasks.tasks)
      before = await self.count(db.Payment)
      await tasks()
      return scheduled, before, await self._orders(order_ids)

    scheduled, before, (order,) = asyncio.run(run())

    self.assertEqual(scheduled, 1)
    self.assertEqual(before, 0)
    self.assertLen(order.payments, 1)
    self.assertEqual(order.payment_state, OrderPaymentState.PAID.value)


class WorkerTest(testutil.DatabaseTestCase):

  def test_missing_account_payment_is_skipped(self):
    with self.assertLogs("paypal_express.worker", level="WARNING"):
      asyncio.run(
          worker.process_account_payment(self.session_factory, 404, [])
      )

    self.assertEqual(asyncio.run(self.count(db.Payment)), 0)


if __name__ == "__main__":
  absltest.main()
