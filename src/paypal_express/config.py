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

"""Shared configuration and startup logic for the checkout server."""

import contextlib
import uuid

from absl import flags
from fastapi import FastAPI
from pydantic import BaseModel

from . import db
from .enums import GatewayMode
from .enums import ReconcileMode

FLAGS = flags.FLAGS

# Channel recorded on orders submitted through the purchase-order portal.
B2B_PORTAL_CHANNEL = "b2b_portal"

# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string("database_path", None, "Path to the SQLite database")
  flags.DEFINE_integer("port", None, "Port to run the server on")
  flags.DEFINE_string(
      "base_url",
      None,
      "Public base URL used for gateway callbacks. Defaults to the request"
      " base URL.",
  )
  flags.DEFINE_string(
      "session_secret",
      str(uuid.uuid4()),
      "Secret key used to sign the flash session cookie",
  )
  flags.DEFINE_enum_class(
      "gateway_mode",
      GatewayMode.PAYPAL,
      GatewayMode,
      "Use the PayPal NVP API or the local mock gateway",
  )
  flags.DEFINE_enum_class(
      "reconcile_mode",
      ReconcileMode.DEFERRED,
      ReconcileMode,
      "Process child payments in a background task or in-line",
  )
  flags.DEFINE_string(
      "final_submit_label",
      "Submit Order",
      "Commit value that marks the final submission of an order",
  )
  flags.DEFINE_boolean(
      "reconcile_incomplete_orders",
      True,
      "Reconcile child payments even when the order stops short of complete",
  )
except flags.DuplicateFlagError:
  pass


class Settings(BaseModel):
  """Runtime settings resolved from command-line flags."""

  database_path: str | None = None
  port: int | None = None
  base_url: str | None = None
  session_secret: str = "development-secret"
  gateway_mode: GatewayMode = GatewayMode.PAYPAL
  reconcile_mode: ReconcileMode = ReconcileMode.DEFERRED
  final_submit_label: str = "Submit Order"
  reconcile_incomplete_orders: bool = True

  @classmethod
  def from_flags(cls) -> "Settings":
    """Builds settings from parsed flags, or defaults if flags are unparsed."""
    if not FLAGS.is_parsed():
      return cls()
    return cls(
        database_path=FLAGS.database_path,
        port=FLAGS.port,
        base_url=FLAGS.base_url,
        session_secret=FLAGS.session_secret,
        gateway_mode=FLAGS.gateway_mode,
        reconcile_mode=FLAGS.reconcile_mode,
        final_submit_label=FLAGS.final_submit_label,
        reconcile_incomplete_orders=FLAGS.reconcile_incomplete_orders,
    )


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Shared lifespan manager for initializing the database."""
  settings: Settings = app.state.settings
  # In tests the database is injected through dependency overrides.
  if settings.database_path:
    await db.manager.init_db(settings.database_path)
  yield
  await db.manager.close()
