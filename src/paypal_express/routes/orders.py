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

"""Order landing pages the checkout flow redirects to."""

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Path
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from .. import db
from .. import dependencies
from ..exceptions import ResourceNotFoundError
from ..models import OrderSummary
from ..money import from_cents
from .flash import pop_flash

router = APIRouter()


async def _order_summary(
    request: Request, session: AsyncSession, user: db.User, number: str
) -> OrderSummary:
  order = await db.find_company_order(session, user.company_id, number)
  if order is None:
    raise ResourceNotFoundError("Order not found")
  return OrderSummary(
      number=order.number,
      state=order.state,
      payment_state=order.payment_state,
      channel=order.channel,
      total=from_cents(order.total),
      payment_total=from_cents(order.payment_total),
      flash=pop_flash(request),
  )


@router.get(
    "/orders/{number}/edit",
    response_model=OrderSummary,
    operation_id="edit_order",
)
async def edit_order(
    request: Request,
    number: str = Path(...),
    user: db.User = Depends(dependencies.get_current_user),
    session: AsyncSession = Depends(dependencies.get_db_session),
) -> OrderSummary:
  """The order page, where payments are started."""
  return await _order_summary(request, session, user, number)


@router.get(
    "/orders/{number}/success",
    response_model=OrderSummary,
    operation_id="order_success",
)
async def order_success(
    request: Request,
    number: str = Path(...),
    user: db.User = Depends(dependencies.get_current_user),
    session: AsyncSession = Depends(dependencies.get_db_session),
) -> OrderSummary:
  """Shown once the order has been submitted."""
  return await _order_summary(request, session, user, number)


@router.get(
    "/orders/{number}/checkout/{state}",
    response_model=OrderSummary,
    operation_id="order_checkout",
)
async def order_checkout(
    request: Request,
    number: str = Path(...),
    state: str = Path(...),
    user: db.User = Depends(dependencies.get_current_user),
    session: AsyncSession = Depends(dependencies.get_db_session),
) -> OrderSummary:
  """The checkout step the order is in."""
  del state  # Unused; the order's own state is reported.
  return await _order_summary(request, session, user, number)
