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

"""Shared fixtures for the checkout server tests."""

import asyncio
import os
import shutil
import tempfile
from typing import Iterable, Optional, Tuple

from absl.testing import absltest
from sqlalchemy import func
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from . import db
from .enums import AdjustmentCategory
from .enums import OrderState

# (product name, sku, quantity, unit price in cents)
DEFAULT_LINE_ITEMS = (("Copy paper", "PAP-500", 2, 1250),)


class DatabaseTestCase(absltest.TestCase):
  """Test case backed by a temporary SQLite database."""

  def setUp(self) -> None:
    super().setUp()
    self.test_dir = tempfile.mkdtemp()
    self.db_path = os.path.join(self.test_dir, "test_checkout.db")
    # Tests drive the engine from several event loops; pooled aiosqlite
    # connections must not outlive a loop.
    self.engine = create_async_engine(
        f"sqlite+aiosqlite:///{self.db_path}", echo=False, poolclass=NullPool
    )
    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async def init_schema() -> None:
      async with self.engine.begin() as conn:
        await conn.run_sync(db.Base.metadata.create_all)

    asyncio.run(init_schema())

  def tearDown(self) -> None:
    asyncio.run(self.engine.dispose())
    shutil.rmtree(self.test_dir)
    super().tearDown()

  async def count(self, model) -> int:
    async with self.session_factory() as session:
      result = await session.execute(select(func.count()).select_from(model))
      return result.scalar_one()


async def seed_user(
    session: AsyncSession,
    company_name: str = "Acme Supplies",
    email: str = "buyer@example.com",
    current_sign_in_ip: Optional[str] = "10.0.0.7",
) -> db.User:
  company = db.Company(name=company_name)
  session.add(company)
  await session.flush()
  user = db.User(
      email=email,
      company_id=company.id,
      current_sign_in_ip=current_sign_in_ip,
  )
  session.add(user)
  await session.commit()
  return user


async def seed_payment_method(
    session: AsyncSession,
    preferred_solution: Optional[str] = None,
    active: bool = True,
) -> db.PaymentMethod:
  payment_method = db.PaymentMethod(
      name="PayPal",
      preferred_solution=preferred_solution,
      login="merchant_api1.example.com",
      password="secret",
      signature="signature",
      active=active,
  )
  session.add(payment_method)
  await session.commit()
  return payment_method


def build_address() -> db.Address:
  return db.Address(
      firstname="Jane",
      lastname="Doe",
      address1="1 Main St",
      city="Springfield",
      zipcode="12345",
      phone="555-0100",
      state_name="IL",
      country_iso="US",
  )


async def seed_order(
    session: AsyncSession,
    company_id: int,
    number: str = "R100000001",
    email: Optional[str] = "buyer@example.com",
    state: str = OrderState.CART.value,
    line_items: Iterable[Tuple[str, str, int, int]] = DEFAULT_LINE_ITEMS,
    adjustments: Iterable[Tuple[str, int, str]] = (),
    with_address: bool = True,
) -> db.Order:
  """Creates an order whose totals match its items and adjustments.

  Args:
    session: The database session to use.
    company_id: The company placing the order.
    number: The order number.
    email: The order email.
    state: The checkout state to start in.
    line_items: (product name, sku, quantity, unit price in cents) tuples.
    adjustments: (label, amount in cents, category) tuples.
    with_address: Attach a billing address.

  Returns:
    The committed order.
  """
  items = [
      db.LineItem(product_name=name, sku=sku, quantity=quantity, price=price)
      for name, sku, quantity, price in line_items
  ]
  adjs = [
      db.Adjustment(label=label, amount=amount, category=category)
      for label, amount, category in adjustments
  ]
  item_total = sum(i.quantity * i.price for i in items)
  tax_total = sum(
      a.amount for a in adjs if a.category == AdjustmentCategory.TAX.value
  )
  order = db.Order(
      number=number,
      email=email,
      currency="USD",
      state=state,
      company_id=company_id,
      account_id="ACC-1",
      customer_id="CUS-1",
      vendor_id="VEN-1",
      item_total=item_total,
      additional_tax_total=tax_total,
      total=item_total + sum(a.amount for a in adjs),
      payment_total=0,
      bill_address=build_address() if with_address else None,
      line_items=items,
      adjustments=adjs,
  )
  session.add(order)
  await session.commit()
  return order
