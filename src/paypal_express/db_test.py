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

"""Tests for the persistence layer."""

import asyncio

from absl.testing import absltest

from . import db
from . import testutil
from .enums import PaymentState


class PaypalExpressCheckoutTest(absltest.TestCase):

  def test_credit(self):
    source = db.PaypalExpressCheckout(token="EC-1", payer_id="P")
    payment = db.AccountPayment(
        amount=2500, refunded_amount=0, state=PaymentState.COMPLETED.value
    )

    self.assertEqual(source.actions(), ["credit"])
    self.assertTrue(source.is_paypal())
    self.assertTrue(source.can_credit(payment))

    payment.refunded_amount = 2500
    self.assertFalse(source.can_credit(payment))

    payment.refunded_amount = 0
    payment.state = PaymentState.PENDING.value
    self.assertFalse(source.can_credit(payment))


class HelpersTest(testutil.DatabaseTestCase):

  def test_find_company_order_by_number_or_id(self):
    async def run():
      async with self.session_factory() as session:
        user = await testutil.seed_user(session)
        other = await testutil.seed_user(session, company_name="Other Co")
        order = await testutil.seed_order(session, user.company_id)
        return (
            await db.find_company_order(session, user.company_id, "R100000001"),
            await db.find_company_order(
                session, user.company_id, str(order.id)
            ),
            await db.find_company_order(
                session, other.company_id, "R100000001"
            ),
            order.id,
        )

    by_number, by_id, foreign, order_id = asyncio.run(run())

    self.assertEqual(by_number.id, order_id)
    self.assertEqual(by_id.id, order_id)
    self.assertIsNone(foreign)

  def test_delete_account_payment_removes_source(self):
    async def run():
      async with self.session_factory() as session:
        account_payment = db.AccountPayment(
            source=db.PaypalExpressCheckout(token="EC-1", payer_id="P"),
            amount=100,
        )
        session.add(account_payment)
        await session.commit()
        account_payment_id = account_payment.id
      async with self.session_factory() as session:
        deleted = await db.delete_account_payment(session, account_payment_id)
        missing = await db.delete_account_payment(session, account_payment_id)
        await session.commit()
      return deleted, missing

    deleted, missing = asyncio.run(run())

    self.assertTrue(deleted)
    self.assertFalse(missing)
    self.assertEqual(asyncio.run(self.count(db.AccountPayment)), 0)
    self.assertEqual(asyncio.run(self.count(db.PaypalExpressCheckout)), 0)


if __name__ == "__main__":
  absltest.main()
