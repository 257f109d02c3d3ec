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

"""PayPal Express Checkout Server (Python/FastAPI)."""

import logging
import sys
from typing import Optional, Sequence

from absl import app as absl_app
from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware
import uvicorn

from . import config
from .exceptions import PaypalExpressError
from .gateway import gateway_factory_for
from .routes.orders import router as orders_router
from .routes.paypal import router as paypal_router

# --- App Setup ---

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def paypal_express_exception_handler(
    request: Request, exc: PaypalExpressError
):
  """Converts server exceptions to JSON responses."""
  del request  # Unused.
  return JSONResponse(
      status_code=exc.status_code,
      content={"detail": exc.message, "code": exc.code},
  )


def create_app(settings: Optional[config.Settings] = None) -> FastAPI:
  """Builds the application for the given settings.

  Args:
    settings: Runtime settings; resolved from flags when omitted.

  Returns:
    The configured FastAPI application.
  """
  settings = settings or config.Settings.from_flags()
  app = FastAPI(
      title="PayPal Express Checkout",
      version="0.1.0",
      description="Pays purchase orders through PayPal Express Checkout",
      lifespan=config.lifespan,
  )
  app.state.settings = settings
  app.state.gateway_factory = gateway_factory_for(settings.gateway_mode)

  app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)
  app.add_exception_handler(
      PaypalExpressError, paypal_express_exception_handler
  )
  app.include_router(paypal_router)
  app.include_router(orders_router)
  return app


app = create_app()


def main(argv: Sequence[str]) -> None:
  """Main entry point for the checkout server."""
  del argv  # Unused.

  settings = config.Settings.from_flags()
  if settings.database_path is None or settings.port is None:
    logger.error("Both --database_path and --port must be provided.")
    print("\nUsage:")
    print(config.FLAGS.main_module_help())
    sys.exit(1)

  logger.info(
      "Starting server (gateway: %s, reconciliation: %s)",
      settings.gateway_mode.value,
      settings.reconcile_mode.value,
  )
  uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


def run() -> None:
  absl_app.run(main)


if __name__ == "__main__":
  run()
