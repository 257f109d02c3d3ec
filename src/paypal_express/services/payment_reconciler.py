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

"""Reconciliation of account payments into per-order child payments.

An account payment approved through PayPal can pay several orders at once.
Each order gets a child payment for its share. Creating and processing those
child payments can be slow, so the caller picks a strategy: `ProcessNow`
runs in the current session and transaction, `ProcessDeferred` hands the work
to a background task that runs after the response has been sent.
"""

import abc
import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from fastapi import BackgroundTasks
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from .. import db
from .. import order_flow
from .. import worker
from ..enums import PaymentState
from ..models import PaymentSpec
from ..money import from_cents
from ..money import to_cents

logger = logging.getLogger(__name__)


def orders_amount_sum(specs: Optional[Iterable[PaymentSpec]]) -> Decimal:
  """Sum of all sibling payment amounts, used to detect over-payment."""
  return sum((spec.amount for spec in specs or ()), Decimal(0))


def payment_specs_for(
    order: db.Order, account_payment: db.AccountPayment
) -> List[PaymentSpec]:
  """Allocates the whole account payment to the order it was made for."""
  return [
      PaymentSpec(order_id=order.id, amount=from_cents(account_payment.amount))
  ]


async def add_and_process_child_payments(
    session: AsyncSession,
    account_payment: db.AccountPayment,
    specs: Iterable[PaymentSpec],
) -> List[db.Payment]:
  """Creates one child payment per order and refreshes the order totals.

  Running it again for the same account payment does not duplicate child
  payments; it only brings their state in line with the account payment.

  Args:
    session: The database session to use. The caller commits.
    account_payment: The parent payment, already persisted.
    specs: The per-order allocations.

  Returns:
    The child payments of the account payment, in allocation order.
  """
  child_state = (
      PaymentState.COMPLETED.value
      if account_payment.state == PaymentState.COMPLETED.value
      else PaymentState.PENDING.value
  )
  payments = []
  for spec in specs:
    order = await db.get_order(session, spec.order_id)
    if order is None:
      logger.warning(
          "Skipping child payment of account payment %s: order %s not found",
          account_payment.id,
          spec.order_id,
      )
      continue

    payment = await db.get_child_payment(
        session, account_payment.id, order.id
    )
    if payment is None:
      payment = db.Payment(
          account_payment_id=account_payment.id,
          order_id=order.id,
          payment_method_id=account_payment.payment_method_id,
          amount=to_cents(spec.amount),
          state=child_state,
      )
      order.payments.append(payment)
    else:
      payment.state = child_state

    order_flow.update_payment_totals(order)
    payments.append(payment)
    logger.info(
        "Order %s child payment of %s is %s (order payment state: %s)",
        order.number,
        spec.amount,
        payment.state,
        order.payment_state,
    )
  await session.flush()
  return payments


class ReconciliationStrategy(abc.ABC):
  """Decides when the child payments of an account payment are processed."""

  @abc.abstractmethod
  async def process(
      self,
      session: AsyncSession,
      account_payment: db.AccountPayment,
      specs: List[PaymentSpec],
  ) -> None:
    ...


class ProcessNow(ReconciliationStrategy):
  """Processes child payments in-line, inside the caller's transaction."""

  async def process(
      self,
      session: AsyncSession,
      account_payment: db.AccountPayment,
      specs: List[PaymentSpec],
  ) -> None:
    await add_and_process_child_payments(session, account_payment, specs)


class ProcessDeferred(ReconciliationStrategy):
  """Schedules child payment processing as a background task.

  The task opens its own session once the response has been sent; the caller
  must not assume it has run.
  """

  def __init__(
      self,
      background_tasks: BackgroundTasks,
      session_factory: sessionmaker,
  ):
    self.background_tasks = background_tasks
    self.session_factory = session_factory

  async def process(
      self,
      session: AsyncSession,
      account_payment: db.AccountPayment,
      specs: List[PaymentSpec],
  ) -> None:
    del session  # Unused.
    logger.info(
        "Scheduling child payments of account payment %s", account_payment.id
    )
    self.background_tasks.add_task(
        worker.process_account_payment,
        self.session_factory,
        account_payment.id,
        [spec.model_dump(mode="json") for spec in specs],
    )


class PaymentReconciler:
  """Creates or schedules the child payments of an account payment."""

  def __init__(self, strategy: ReconciliationStrategy):
    self.strategy = strategy

  async def add_payments(
      self,
      session: AsyncSession,
      account_payment: Optional[db.AccountPayment],
      specs: Optional[List[PaymentSpec]],
  ) -> None:
    """Processes the specs with the configured strategy.

    Does nothing without specs or without an account payment.
    """
    if not specs or account_payment is None:
      return
    await session.flush()
    await session.refresh(account_payment)
    await self.strategy.process(session, account_payment, specs)
