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

"""Background processing of account payments.

Child payments are created out of band so that confirming a large multi-order
payment does not hold the request open.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy.orm import sessionmaker

from . import db
from .models import PaymentSpec

logger = logging.getLogger(__name__)


async def process_account_payment(
    session_factory: sessionmaker,
    account_payment_id: int,
    payment_specs: List[Dict[str, Any]],
) -> None:
  """Creates and processes the child payments of an account payment.

  Args:
    session_factory: Factory for a fresh session; the request session is gone.
    account_payment_id: The parent account payment.
    payment_specs: JSON-able per-order allocations (`PaymentSpec` dumps).
  """
  # Imported here to avoid a cycle with services.payment_reconciler.
  from .services import payment_reconciler  # pylint: disable=g-import-not-at-top

  specs = [PaymentSpec.model_validate(spec) for spec in payment_specs]
  async with session_factory() as session:
    account_payment = await db.get_account_payment(session, account_payment_id)
    if account_payment is None:
      logger.warning(
          "Account payment %s is gone; nothing to process", account_payment_id
      )
      return
    try:
      await payment_reconciler.add_and_process_child_payments(
          session, account_payment, specs
      )
      await session.commit()
    except Exception:
      logger.exception(
          "Processing account payment %s failed", account_payment_id
      )
      await session.rollback()
      raise
    logger.info("Processed account payment %s", account_payment_id)
