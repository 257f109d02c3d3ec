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

"""Database management and persistence layer for the checkout server.

This module provides the schema definitions, database session management, and
asynchronous data access helpers used by the server. It utilizes SQLAlchemy with
SQLite (via aiosqlite).

Key features include:
- `DatabaseManager`: Handles asynchronous engine initialization and session
  factory setup.
- WAL Mode: Enables SQLite Write-Ahead Logging so that background
  reconciliation can run while requests are served.
- Declarative Models: Companies, users, purchase orders with their line items
  and adjustments, payment methods, account payments, PayPal express checkout
  sources and child payments. Amounts are stored in cents.
- Data Access Helpers: Asynchronous lookups used by the services.
"""

import datetime
import logging
from typing import List
from typing import Optional

from sqlalchemy import Boolean
from sqlalchemy import Column
from sqlalchemy import ForeignKey
from sqlalchemy import Integer
from sqlalchemy import String
from sqlalchemy import delete
from sqlalchemy import select
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import relationship
from sqlalchemy.orm import sessionmaker

from .enums import AdjustmentCategory
from .enums import GatewayServer
from .enums import OrderPaymentState
from .enums import OrderState
from .enums import PaymentState

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utcnow() -> str:
  return datetime.datetime.now(datetime.timezone.utc).isoformat()


class DatabaseManager:
  """Manages the database engine and sessions without using global variables."""

  def __init__(self) -> None:
    self.engine: Optional[AsyncEngine] = None
    self.session_factory: Optional[sessionmaker] = None

  async def init_db(self, path: str, **engine_kwargs) -> None:
    """Initializes the database engine and creates tables."""
    url = f"sqlite+aiosqlite:///{path}"
    self.engine = create_async_engine(url, echo=False, **engine_kwargs)

    async with self.engine.connect() as conn:
      await conn.execute(text("PRAGMA journal_mode=WAL"))

    self.session_factory = sessionmaker(
        self.engine, expire_on_commit=False, class_=AsyncSession
    )

    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)

  async def close(self) -> None:
    """Closes the database engine."""
    if self.engine:
      await self.engine.dispose()


# Global manager instance (to be initialized via lifespan)
manager = DatabaseManager()


class Company(Base):
  __tablename__ = "companies"

  id = Column(Integer, primary_key=True)
  name = Column(String)


class User(Base):
  __tablename__ = "users"

  id = Column(Integer, primary_key=True)
  email = Column(String, index=True)
  company_id = Column(Integer, ForeignKey("companies.id"))
  current_sign_in_ip = Column(String, nullable=True)


class Address(Base):
  __tablename__ = "addresses"

  id = Column(Integer, primary_key=True)
  firstname = Column(String)
  lastname = Column(String)
  address1 = Column(String)
  address2 = Column(String, nullable=True)
  city = Column(String)
  zipcode = Column(String)
  phone = Column(String, nullable=True)
  state_name = Column(String, nullable=True)
  country_iso = Column(String)

  @property
  def full_name(self) -> str:
    return " ".join(p for p in (self.firstname, self.lastname) if p)


class Order(Base):
  """A purchase order placed by a company."""

  __tablename__ = "orders"

  id = Column(Integer, primary_key=True)
  number = Column(String, unique=True, index=True)
  email = Column(String, nullable=True)
  currency = Column(String, default="USD")
  state = Column(String, default=OrderState.CART.value)
  payment_state = Column(String, default=OrderPaymentState.BALANCE_DUE.value)
  channel = Column(String, nullable=True)
  # Amounts in cents
  item_total = Column(Integer, default=0)
  additional_tax_total = Column(Integer, default=0)
  total = Column(Integer, default=0)
  payment_total = Column(Integer, default=0)

  company_id = Column(Integer, ForeignKey("companies.id"))
  user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
  account_id = Column(String, nullable=True)
  customer_id = Column(String, nullable=True)
  vendor_id = Column(String, nullable=True)
  bill_address_id = Column(Integer, ForeignKey("addresses.id"), nullable=True)
  completed_at = Column(String, nullable=True)

  bill_address = relationship("Address", lazy="selectin")
  line_items = relationship(
      "LineItem",
      back_populates="order",
      lazy="selectin",
      order_by="LineItem.id",
  )
  adjustments = relationship(
      "Adjustment", lazy="selectin", order_by="Adjustment.id"
  )
  account_payments = relationship(
      "AccountPayment",
      lazy="selectin",
      order_by="AccountPayment.id",
      cascade="all, delete-orphan",
  )
  payments = relationship("Payment", lazy="selectin", order_by="Payment.id")

  @property
  def outstanding_balance(self) -> int:
    return (self.total or 0) - (self.payment_total or 0)

  @property
  def completed(self) -> bool:
    return self.state == OrderState.COMPLETE.value


class LineItem(Base):
  __tablename__ = "line_items"

  id = Column(Integer, primary_key=True)
  order_id = Column(Integer, ForeignKey("orders.id"))
  product_name = Column(String)
  sku = Column(String)
  quantity = Column(Integer)
  price = Column(Integer)  # Unit price in cents
  currency = Column(String, default="USD")

  order = relationship("Order", back_populates="line_items", lazy="raise")


class Adjustment(Base):
  __tablename__ = "adjustments"

  id = Column(Integer, primary_key=True)
  order_id = Column(Integer, ForeignKey("orders.id"))
  label = Column(String)
  amount = Column(Integer)  # Signed, in cents
  category = Column(String, default=AdjustmentCategory.OTHER.value)
  eligible = Column(Boolean, default=True)
  # Included adjustments are already part of the item prices (e.g. VAT).
  included = Column(Boolean, default=False)


class PaymentMethod(Base):
  """A configured PayPal Express Checkout payment method and its preferences."""

  __tablename__ = "payment_methods"

  id = Column(Integer, primary_key=True)
  name = Column(String)
  preferred_solution = Column(String, nullable=True)
  preferred_landing_page = Column(String, nullable=True)
  preferred_logourl = Column(String, nullable=True)
  login = Column(String, nullable=True)
  password = Column(String, nullable=True)
  signature = Column(String, nullable=True)
  server = Column(String, default=GatewayServer.SANDBOX.value)
  active = Column(Boolean, default=True)


class PaypalExpressCheckout(Base):
  """Gateway session reference (token and payer) backing an account payment."""

  __tablename__ = "paypal_express_checkouts"

  id = Column(Integer, primary_key=True)
  token = Column(String, index=True)
  payer_id = Column(String)
  created_at = Column(String, default=_utcnow)

  def actions(self) -> List[str]:
    return ["credit"]

  def can_credit(self, payment: "AccountPayment") -> bool:
    """Indicates whether it's possible to credit the payment.

    Most gateways require the payment to be settled first, which generally
    happens within 12-24 hours of the transaction.
    """
    return (
        payment.state == PaymentState.COMPLETED.value
        and payment.credit_allowed > 0
    )

  def is_paypal(self) -> bool:
    return True


class AccountPayment(Base):
  """A payment intent created from one express checkout confirmation."""

  __tablename__ = "account_payments"

  id = Column(Integer, primary_key=True)
  order_id = Column(Integer, ForeignKey("orders.id"))
  account_id = Column(String, nullable=True)
  customer_id = Column(String, nullable=True)
  vendor_id = Column(String, nullable=True)
  source_id = Column(Integer, ForeignKey("paypal_express_checkouts.id"))
  payment_method_id = Column(Integer, ForeignKey("payment_methods.id"))
  amount = Column(Integer)  # In cents
  orders_amount_sum = Column(Integer, default=0)  # In cents
  refunded_amount = Column(Integer, default=0)  # In cents
  last_ip_address = Column(String, nullable=True)
  state = Column(String, default=PaymentState.CHECKOUT.value)
  response_code = Column(String, nullable=True)
  created_at = Column(String, default=_utcnow)

  source = relationship("PaypalExpressCheckout", lazy="selectin")
  payment_method = relationship("PaymentMethod", lazy="selectin")
  payments = relationship(
      "Payment", lazy="selectin", order_by="Payment.id", viewonly=True
  )

  @property
  def credit_allowed(self) -> int:
    return (self.amount or 0) - (self.refunded_amount or 0)


class Payment(Base):
  """A child payment allocating part of an account payment to one order."""

  __tablename__ = "payments"

  id = Column(Integer, primary_key=True)
  account_payment_id = Column(Integer, ForeignKey("account_payments.id"))
  order_id = Column(Integer, ForeignKey("orders.id"))
  payment_method_id = Column(Integer, ForeignKey("payment_methods.id"))
  amount = Column(Integer)  # In cents
  state = Column(String, default=PaymentState.PENDING.value)
  created_at = Column(String, default=_utcnow)


# --- Data Access Helpers ---


async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
  """Retrieves a user by ID."""
  return await session.get(User, user_id)


async def find_company_order(
    session: AsyncSession, company_id: int, order_ref: str
) -> Optional[Order]:
  """Retrieves a company's purchase order by number or numeric ID.

  Args:
    session: The database session to use.
    company_id: The company owning the order.
    order_ref: The order number (e.g. 'R123456789') or its numeric ID.

  Returns:
    The Order if it belongs to the company, otherwise None.
  """
  result = await session.execute(
      select(Order).where(
          Order.company_id == company_id, Order.number == order_ref
      )
  )
  order = result.scalar_one_or_none()
  if order is None and str(order_ref).isdigit():
    result = await session.execute(
        select(Order).where(
            Order.company_id == company_id, Order.id == int(order_ref)
        )
    )
    order = result.scalar_one_or_none()
  return order


async def get_order(session: AsyncSession, order_id: int) -> Optional[Order]:
  """Retrieves an order by ID."""
  return await session.get(Order, order_id)


async def get_payment_method(
    session: AsyncSession, payment_method_id: int
) -> Optional[PaymentMethod]:
  """Retrieves an active payment method by ID."""
  method = await session.get(PaymentMethod, payment_method_id)
  if method is None or not method.active:
    return None
  return method


async def get_account_payment(
    session: AsyncSession, account_payment_id: int
) -> Optional[AccountPayment]:
  """Retrieves an account payment by ID."""
  return await session.get(AccountPayment, account_payment_id)


async def list_account_payments(session: AsyncSession) -> List[AccountPayment]:
  """Retrieves all account payments, oldest first."""
  result = await session.execute(
      select(AccountPayment).order_by(AccountPayment.id)
  )
  return list(result.scalars().all())


async def get_child_payment(
    session: AsyncSession, account_payment_id: int, order_id: int
) -> Optional[Payment]:
  """Retrieves the child payment of an account payment for one order."""
  result = await session.execute(
      select(Payment).where(
          Payment.account_payment_id == account_payment_id,
          Payment.order_id == order_id,
      )
  )
  return result.scalar_one_or_none()


async def delete_account_payment(
    session: AsyncSession, account_payment_id: int
) -> bool:
  """Deletes an account payment and its gateway source.

  Returns:
    True if the account payment existed.
  """
  result = await session.execute(
      select(AccountPayment.source_id).where(
          AccountPayment.id == account_payment_id
      )
  )
  row = result.first()
  if row is None:
    return False
  await session.execute(
      delete(AccountPayment).where(AccountPayment.id == account_payment_id)
  )
  if row.source_id is not None:
    await session.execute(
        delete(PaypalExpressCheckout).where(
            PaypalExpressCheckout.id == row.source_id
        )
    )
  return True
