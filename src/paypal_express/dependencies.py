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

"""FastAPI dependencies for the checkout server.

This module contains dependency injection logic for FastAPI endpoints,
including:
- Database session management.
- Resolving the signed-in user from the `X-User-Id` header.
- Service instantiation (gateway factory, reconciliation strategy and
  ExpressCheckoutService).
"""

from typing import AsyncGenerator, Optional

from fastapi import BackgroundTasks
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from . import config
from . import db
from .enums import ReconcileMode
from .exceptions import AuthenticationError
from .gateway import GatewayFactory
from .gateway import gateway_factory_for
from .services.express_checkout_service import ExpressCheckoutService
from .services.payment_reconciler import PaymentReconciler
from .services.payment_reconciler import ProcessDeferred
from .services.payment_reconciler import ProcessNow
from .services.payment_reconciler import ReconciliationStrategy


def get_settings(request: Request) -> config.Settings:
  """Dependency provider for the settings of the running app."""
  return request.app.state.settings


def get_session_factory() -> sessionmaker:
  """Dependency provider for the factory used by background tasks."""
  return db.manager.session_factory


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
  """Dependency provider for a database session."""
  async with db.manager.session_factory() as session:
    yield session


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    session: AsyncSession = Depends(get_db_session),
) -> db.User:
  """Resolves the signed-in user.

  Raises:
    AuthenticationError: If the header is missing or names no user.
  """
  if not x_user_id or not x_user_id.isdigit():
    raise AuthenticationError("Sign in to continue")
  user = await db.get_user(session, int(x_user_id))
  if user is None:
    raise AuthenticationError("Sign in to continue")
  return user


def get_gateway_factory(request: Request) -> GatewayFactory:
  """Dependency provider for the gateway factory, built once per app."""
  factory = getattr(request.app.state, "gateway_factory", None)
  if factory is None:
    factory = gateway_factory_for(get_settings(request).gateway_mode)
    request.app.state.gateway_factory = factory
  return factory


def get_reconciliation_strategy(
    background_tasks: BackgroundTasks,
    settings: config.Settings = Depends(get_settings),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> ReconciliationStrategy:
  """Dependency provider for the configured reconciliation strategy."""
  if settings.reconcile_mode == ReconcileMode.IMMEDIATE:
    return ProcessNow()
  return ProcessDeferred(background_tasks, session_factory)


def get_express_checkout_service(
    request: Request,
    settings: config.Settings = Depends(get_settings),
    session: AsyncSession = Depends(get_db_session),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
    strategy: ReconciliationStrategy = Depends(get_reconciliation_strategy),
) -> ExpressCheckoutService:
  """Dependency provider for ExpressCheckoutService."""
  return ExpressCheckoutService(
      session,
      gateway_factory,
      PaymentReconciler(strategy),
      settings.base_url or str(request.base_url),
      final_submit_label=settings.final_submit_label,
      reconcile_incomplete_orders=settings.reconcile_incomplete_orders,
  )
