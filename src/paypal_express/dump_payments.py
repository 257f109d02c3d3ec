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

"""Utility script to dump account payments.

This script reads from the configured SQLite database and prints every
account payment with its PayPal token, state and the child payments it was
split into. It is useful for debugging and verifying the state of the server.

Usage:
  paypal-express-dump-payments --database_path=...
"""

import asyncio
import sys

from absl import app as absl_app
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker

from . import config
from . import db
from .money import from_cents


def format_account_payment(account_payment: db.AccountPayment) -> str:
  token = account_payment.source.token if account_payment.source else "N/A"
  return (
      f"Account payment: {account_payment.id} [{account_payment.state}]"
      f" order {account_payment.order_id} token {token}"
      f" ${from_cents(account_payment.amount)}"
  )


async def dump_payments(database_path: str):
  """Queries the database and prints all account payments."""
  db_url = f"sqlite+aiosqlite:///{database_path}"
  engine = create_async_engine(db_url, echo=False)
  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )

  try:
    async with session_factory() as session:
      account_payments = await db.list_account_payments(session)

      if not account_payments:
        print("No payments found.")
        return

      for account_payment in account_payments:
        print(format_account_payment(account_payment))
        if account_payment.payments:
          for payment in account_payment.payments:
            print(
                f"  - Order {payment.order_id}: ${from_cents(payment.amount)}"
                f" [{payment.state}]"
            )
        else:
          print("  (No child payments)")
        print("-" * 60)
  finally:
    await engine.dispose()


def main(argv):
  """Main entry point for the payment dump script."""
  del argv
  if not config.FLAGS.database_path:
    print("Error: --database_path is required.")
    sys.exit(1)
  asyncio.run(dump_payments(config.FLAGS.database_path))


def run() -> None:
  absl_app.run(main)


if __name__ == "__main__":
  run()
