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

"""PayPal Express Checkout routes.

The buyer starts on the order page (`express`), approves the payment on
PayPal and comes back through `confirm` or `cancel`. Outcomes are returned as
redirects, or as JavaScript for pages that navigate through XHR.
"""

import json
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Path
from fastapi import Query
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.responses import RedirectResponse
from fastapi.responses import Response

from .. import db
from .. import dependencies
from ..models import DirectiveKind
from ..models import RedirectDirective
from ..services.express_checkout_service import ExpressCheckoutService
from .flash import set_flash

router = APIRouter()

JAVASCRIPT_MEDIA_TYPE = "text/javascript"


def wants_javascript(request: Request) -> bool:
  return "javascript" in request.headers.get("accept", "")


def javascript_response(directive: RedirectDirective) -> Response:
  """Returns the script navigating the browser as the directive says."""
  if directive.kind == DirectiveKind.RELOAD:
    script = "window.location.reload();"
  else:
    script = f"window.location = {json.dumps(directive.location)};"
  return Response(content=script, media_type=JAVASCRIPT_MEDIA_TYPE)


def directive_response(
    request: Request, directive: RedirectDirective, javascript: bool = False
) -> Response:
  """Converts a directive into an HTTP response.

  Args:
    request: The current request; its session receives the flash messages.
    directive: What the service decided.
    javascript: Answer with a script instead of an HTTP redirect.

  Returns:
    422 JSON for `render`, otherwise a script or a 303 redirect.
  """
  if directive.kind == DirectiveKind.RENDER:
    return JSONResponse(status_code=422, content={"errors": directive.errors})

  set_flash(request, directive.flash())
  if javascript:
    return javascript_response(directive)
  return RedirectResponse(url=directive.location, status_code=303)


@router.post(
    "/orders/{order_id}/paypal/express",
    operation_id="paypal_express",
)
async def express(
    request: Request,
    order_id: str = Path(...),
    payment_method_id: int = Query(...),
    amount: Decimal = Query(...),
    commit: Optional[str] = Query(None),
    user: db.User = Depends(dependencies.get_current_user),
    service: ExpressCheckoutService = Depends(
        dependencies.get_express_checkout_service
    ),
) -> Response:
  """Starts an express checkout and sends the buyer to PayPal."""
  directive = await service.initiate(
      user, order_id, payment_method_id, amount, commit=commit
  )
  return directive_response(request, directive, javascript=True)


@router.get("/paypal/confirm", operation_id="paypal_confirm")
async def confirm(
    request: Request,
    order_id: str = Query(...),
    token: str = Query(...),
    payer_id: str = Query(..., alias="PayerID"),
    amount: Decimal = Query(...),
    payment_method_id: int = Query(...),
    commit: Optional[str] = Query(None),
    user: db.User = Depends(dependencies.get_current_user),
    service: ExpressCheckoutService = Depends(
        dependencies.get_express_checkout_service
    ),
) -> Response:
  """Handles the buyer's return from PayPal after approving the payment."""
  directive = await service.confirm(
      user,
      order_id,
      token,
      payer_id,
      amount,
      payment_method_id,
      commit=commit,
      ip_address=request.client.host if request.client else None,
  )
  return directive_response(
      request, directive, javascript=wants_javascript(request)
  )


@router.get("/paypal/cancel", operation_id="paypal_cancel")
async def cancel(
    request: Request,
    order_id: str = Query(...),
    token: Optional[str] = Query(None),
    user: db.User = Depends(dependencies.get_current_user),
    service: ExpressCheckoutService = Depends(
        dependencies.get_express_checkout_service
    ),
) -> Response:
  """Handles the buyer cancelling on PayPal."""
  directive = await service.cancel(user, order_id, token)
  return directive_response(request, directive)
