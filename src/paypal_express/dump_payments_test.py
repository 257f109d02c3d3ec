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

"""Tests for the payment dump script."""

import asyncio
import contextlib
import io

from absl.testing import absltest

from . import db
from . import dump_payments
from . import testutil
from .enums import PaymentState


class DumpPaymentsTest(testutil.DatabaseTestCase):

  def _dump(self) -> str:
    out = io.StringIO()
    with contextlib.redirect_stdout(out):
      asyncio.run(dump_payments.dump_payments(self.db_path))
    return out.getvalue()

  def test_empty_database(self):
    self.assertEqual(self._dump(), "No payments found.\n")

  def test_prints_payments_and_children(self):
    async def seed():
      async with self.session_factory() as session:
        user = await testutil.seed_user(session)
        order = await testutil.seed_order(session, user.company_id)
        account_payment = db.AccountPayment(
            order_id=order.id,
            source=db.PaypalExpressCheckout(token="EC-7", payer_id="P"),
            amount=2500,
            state=PaymentState.COMPLETED.value,
        )
        session.add(account_payment)
        await session.flush()
        session.add(
            db.Payment(
                account_payment_id=account_payment.id,
                order_id=order.id,
                amount=2500,
                state=PaymentState.COMPLETED.value,
            )
        )
        await session.commit()

    asyncio.run(seed())

    output = self._dump()

    self.assertIn("[completed] order 1 token EC-7 $25.00", output)
    self.assertIn("  - Order 1: $25.00 [completed]", output)


if __name__ == "__main__":
  absltest.main()
