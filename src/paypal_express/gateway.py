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

"""PayPal Express Checkout gateway clients.

This module provides the typed request schema sent to PayPal, the typed
outcomes returned by every gateway call, and two gateway implementations:

- `NvpExpressCheckoutGateway`: talks to the PayPal Classic NVP API over httpx.
- `MockExpressCheckoutGateway`: deterministic local gateway used in
  development and tests.

Gateway calls never raise for declines or connectivity problems. They return
one of `GatewaySuccess`, `GatewayDeclined`, `GatewayTransportError` or
`GatewayMidTransactionError` and the caller decides what to do with it.
"""

import abc
import collections
import logging
from decimal import Decimal
from typing import Annotated, Callable, Deque, Dict, List, Literal
from typing import Optional, Union
import urllib.parse
import uuid

import httpx
from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from . import db
from .enums import GatewayMode
from .enums import GatewayServer
from .money import format_amount

logger = logging.getLogger(__name__)

NVP_API_VERSION = "204"

_NVP_ENDPOINTS = {
    GatewayServer.SANDBOX: "https://api-3t.sandbox.paypal.com/nvp",
    GatewayServer.LIVE: "https://api-3t.paypal.com/nvp",
}

_APPROVAL_ENDPOINTS = {
    GatewayServer.SANDBOX: "https://www.sandbox.paypal.com/cgi-bin/webscr",
    GatewayServer.LIVE: "https://www.paypal.com/cgi-bin/webscr",
}

# --- Request schema ---


class _GatewayModel(BaseModel):
  model_config = ConfigDict(populate_by_name=True, frozen=True)


class BasicAmount(_GatewayModel):
  currency_id: str = Field(alias="currencyID")
  value: Decimal


class PaymentDetailsItem(_GatewayModel):
  name: str = Field(alias="Name")
  number: Optional[str] = Field(None, alias="Number")
  quantity: int = Field(alias="Quantity")
  amount: BasicAmount = Field(alias="Amount")
  item_category: Optional[str] = Field(None, alias="ItemCategory")


class ShipToAddress(_GatewayModel):
  name: Optional[str] = Field(None, alias="Name")
  street1: Optional[str] = Field(None, alias="Street1")
  street2: Optional[str] = Field(None, alias="Street2")
  city_name: Optional[str] = Field(None, alias="CityName")
  phone: Optional[str] = Field(None, alias="Phone")
  state_or_province: Optional[str] = Field(None, alias="StateOrProvince")
  country: Optional[str] = Field(None, alias="Country")
  postal_code: Optional[str] = Field(None, alias="PostalCode")


class PaymentDetails(_GatewayModel):
  """One payment request. Only `order_total` is mandatory."""

  order_total: BasicAmount = Field(alias="OrderTotal")
  item_total: Optional[BasicAmount] = Field(None, alias="ItemTotal")
  shipping_total: Optional[BasicAmount] = Field(None, alias="ShippingTotal")
  tax_total: Optional[BasicAmount] = Field(None, alias="TaxTotal")
  ship_to_address: Optional[ShipToAddress] = Field(None, alias="ShipToAddress")
  shipping_method: Optional[str] = Field(None, alias="ShippingMethod")
  payment_action: Optional[str] = Field(None, alias="PaymentAction")
  payment_details_item: Optional[List[PaymentDetailsItem]] = Field(
      None, alias="PaymentDetailsItem"
  )


class SetExpressCheckoutRequestDetails(_GatewayModel):
  invoice_id: str = Field(alias="InvoiceID")
  buyer_email: Optional[str] = Field(None, alias="BuyerEmail")
  return_url: str = Field(alias="ReturnURL")
  cancel_url: str = Field(alias="CancelURL")
  solution_type: str = Field(alias="SolutionType")
  landing_page: str = Field(alias="LandingPage")
  cpp_header_image: str = Field("", alias="cppheaderimage")
  no_shipping: int = Field(1, alias="NoShipping")
  payment_details: List[PaymentDetails] = Field(alias="PaymentDetails")


class SetExpressCheckoutRequest(_GatewayModel):
  details: SetExpressCheckoutRequestDetails = Field(
      alias="SetExpressCheckoutRequestDetails"
  )

  def to_payload(self) -> Dict:
    """Returns the nested payload with PayPal field names and no empty keys."""
    return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Outcomes ---


class GatewayErrorDetail(_GatewayModel):
  code: Optional[str] = None
  short_message: Optional[str] = None
  long_message: str


class SetExpressCheckoutResponse(_GatewayModel):
  ack: str
  token: Optional[str] = None
  errors: List[GatewayErrorDetail] = []

  @property
  def success(self) -> bool:
    return self.ack in ("Success", "SuccessWithWarning")


class GatewaySuccess(_GatewayModel):
  kind: Literal["success"] = "success"
  token: Optional[str] = None
  transaction_id: Optional[str] = None
  response: Optional[SetExpressCheckoutResponse] = None


class GatewayDeclined(_GatewayModel):
  kind: Literal["declined"] = "declined"
  errors: List[GatewayErrorDetail] = []

  @property
  def reasons(self) -> str:
    return " ".join(e.long_message for e in self.errors)


class GatewayTransportError(_GatewayModel):
  kind: Literal["transport_error"] = "transport_error"
  message: str


class GatewayMidTransactionError(_GatewayModel):
  """A gateway error raised while the confirmation transaction is open."""

  kind: Literal["mid_transaction_error"] = "mid_transaction_error"
  message: str


GatewayOutcome = Annotated[
    Union[
        GatewaySuccess,
        GatewayDeclined,
        GatewayTransportError,
        GatewayMidTransactionError,
    ],
    Field(discriminator="kind"),
]


# --- Gateways ---


class ExpressCheckoutGateway(abc.ABC):
  """Client for the express checkout flow of a payment gateway."""

  def build_set_express_checkout(
      self, details: SetExpressCheckoutRequestDetails
  ) -> SetExpressCheckoutRequest:
    return SetExpressCheckoutRequest(details=details)

  @abc.abstractmethod
  async def set_express_checkout(
      self, request: SetExpressCheckoutRequest
  ) -> GatewayOutcome:
    """Opens a checkout session; success carries the redirect token."""

  @abc.abstractmethod
  def express_checkout_url(
      self, response: SetExpressCheckoutResponse, useraction: str = "commit"
  ) -> str:
    """Returns the URL where the buyer approves the payment."""

  @abc.abstractmethod
  async def do_express_checkout_payment(
      self, token: str, payer_id: str, amount: Decimal, currency: str
  ) -> GatewayOutcome:
    """Captures the payment the buyer approved."""


def _flatten_request(request: SetExpressCheckoutRequest) -> Dict[str, str]:
  """Maps the typed request onto PayPal NVP fields."""
  details = request.details
  fields = {
      "RETURNURL": details.return_url,
      "CANCELURL": details.cancel_url,
      "SOLUTIONTYPE": details.solution_type,
      "LANDINGPAGE": details.landing_page,
      "NOSHIPPING": str(details.no_shipping),
  }
  if details.buyer_email:
    fields["EMAIL"] = details.buyer_email
  if details.cpp_header_image:
    fields["HDRIMG"] = details.cpp_header_image

  for n, payment in enumerate(details.payment_details):
    prefix = f"PAYMENTREQUEST_{n}_"
    fields[prefix + "INVNUM"] = details.invoice_id
    fields[prefix + "AMT"] = format_amount(payment.order_total.value)
    fields[prefix + "CURRENCYCODE"] = payment.order_total.currency_id
    if payment.item_total:
      fields[prefix + "ITEMAMT"] = format_amount(payment.item_total.value)
    if payment.shipping_total:
      fields[prefix + "SHIPPINGAMT"] = format_amount(
          payment.shipping_total.value
      )
    if payment.tax_total:
      fields[prefix + "TAXAMT"] = format_amount(payment.tax_total.value)
    if payment.payment_action:
      fields[prefix + "PAYMENTACTION"] = payment.payment_action
    address = payment.ship_to_address
    if address:
      for key, value in (
          ("SHIPTONAME", address.name),
          ("SHIPTOSTREET", address.street1),
          ("SHIPTOSTREET2", address.street2),
          ("SHIPTOCITY", address.city_name),
          ("SHIPTOSTATE", address.state_or_province),
          ("SHIPTOZIP", address.postal_code),
          ("SHIPTOCOUNTRYCODE", address.country),
          ("SHIPTOPHONENUM", address.phone),
      ):
        if value:
          fields[prefix + key] = value
    # ShippingMethod has no NVP counterpart for SetExpressCheckout.
    for i, item in enumerate(payment.payment_details_item or []):
      item_prefix = f"L_PAYMENTREQUEST_{n}_"
      fields[f"{item_prefix}NAME{i}"] = item.name
      fields[f"{item_prefix}QTY{i}"] = str(item.quantity)
      fields[f"{item_prefix}AMT{i}"] = format_amount(item.amount.value)
      if item.number:
        fields[f"{item_prefix}NUMBER{i}"] = item.number
      if item.item_category:
        fields[f"{item_prefix}ITEMCATEGORY{i}"] = item.item_category
  return fields


def _parse_errors(data: Dict[str, str]) -> List[GatewayErrorDetail]:
  errors = []
  n = 0
  while f"L_ERRORCODE{n}" in data or f"L_LONGMESSAGE{n}" in data:
    errors.append(
        GatewayErrorDetail(
            code=data.get(f"L_ERRORCODE{n}"),
            short_message=data.get(f"L_SHORTMESSAGE{n}"),
            long_message=data.get(f"L_LONGMESSAGE{n}")
            or data.get(f"L_SHORTMESSAGE{n}")
            or "Unknown error",
        )
    )
    n += 1
  return errors


class NvpExpressCheckoutGateway(ExpressCheckoutGateway):
  """PayPal Classic NVP API client."""

  def __init__(
      self,
      login: str,
      password: str,
      signature: str,
      server: GatewayServer = GatewayServer.SANDBOX,
      timeout: float = 10.0,
      transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    self.login = login
    self.password = password
    self.signature = signature
    self.server = GatewayServer(server)
    self.timeout = timeout
    self._transport = transport

  async def _call(self, method: str, fields: Dict[str, str]) -> Dict[str, str]:
    data = {
        "METHOD": method,
        "VERSION": NVP_API_VERSION,
        "USER": self.login,
        "PWD": self.password,
        "SIGNATURE": self.signature,
        **fields,
    }
    async with httpx.AsyncClient(
        timeout=self.timeout, transport=self._transport
    ) as client:
      response = await client.post(_NVP_ENDPOINTS[self.server], data=data)
      response.raise_for_status()
    return dict(urllib.parse.parse_qsl(response.text))

  async def set_express_checkout(
      self, request: SetExpressCheckoutRequest
  ) -> GatewayOutcome:
    try:
      data = await self._call("SetExpressCheckout", _flatten_request(request))
    except httpx.TransportError as e:
      logger.error("SetExpressCheckout transport failure: %s", e)
      return GatewayTransportError(message=str(e))
    except httpx.HTTPStatusError as e:
      logger.error("SetExpressCheckout HTTP failure: %s", e)
      return GatewayDeclined(
          errors=[
              GatewayErrorDetail(
                  long_message=f"HTTP {e.response.status_code}"
              )
          ]
      )

    response = SetExpressCheckoutResponse(
        ack=data.get("ACK", "Failure"),
        token=data.get("TOKEN"),
        errors=_parse_errors(data),
    )
    if not response.success:
      return GatewayDeclined(errors=response.errors)
    return GatewaySuccess(token=response.token, response=response)

  def express_checkout_url(
      self, response: SetExpressCheckoutResponse, useraction: str = "commit"
  ) -> str:
    query = urllib.parse.urlencode({
        "cmd": "_express-checkout",
        "token": response.token or "",
        "useraction": useraction,
    })
    return f"{_APPROVAL_ENDPOINTS[self.server]}?{query}"

  async def do_express_checkout_payment(
      self, token: str, payer_id: str, amount: Decimal, currency: str
  ) -> GatewayOutcome:
    fields = {
        "TOKEN": token,
        "PAYERID": payer_id,
        "PAYMENTREQUEST_0_AMT": format_amount(amount),
        "PAYMENTREQUEST_0_CURRENCYCODE": currency,
        "PAYMENTREQUEST_0_PAYMENTACTION": "Sale",
    }
    try:
      data = await self._call("DoExpressCheckoutPayment", fields)
    except httpx.TransportError as e:
      logger.error("DoExpressCheckoutPayment transport failure: %s", e)
      return GatewayTransportError(message=str(e))
    except httpx.HTTPStatusError as e:
      logger.error("DoExpressCheckoutPayment HTTP failure: %s", e)
      return GatewayMidTransactionError(
          message=f"HTTP {e.response.status_code}"
      )

    if data.get("ACK") not in ("Success", "SuccessWithWarning"):
      errors = _parse_errors(data)
      message = (
          " ".join(e.long_message for e in errors) or "Payment capture failed"
      )
      return GatewayMidTransactionError(message=message)
    return GatewaySuccess(
        token=token, transaction_id=data.get("PAYMENTINFO_0_TRANSACTIONID")
    )


class MockExpressCheckoutGateway(ExpressCheckoutGateway):
  """Local gateway with outcomes keyed by magic values.

  - Buyer email `decline@example.com`: SetExpressCheckout is declined.
  - Buyer email `offline@example.com`: PayPal cannot be reached.
  - Token `fail_token`: capture fails with a card error.
  - Token `offline_token`: PayPal cannot be reached during capture.
  """

  DECLINE_EMAIL = "decline@example.com"
  OFFLINE_EMAIL = "offline@example.com"
  FAIL_TOKEN = "fail_token"
  OFFLINE_TOKEN = "offline_token"
  CARD_ERROR = "Your card number is incorrect."
  APPROVAL_URL = "https://www.sandbox.paypal.com/cgi-bin/webscr"

  def __init__(self, history_limit: int = 100) -> None:
    # Only the most recent calls are kept for inspection.
    self.requests: Deque[SetExpressCheckoutRequest] = collections.deque(
        maxlen=history_limit
    )
    self.captures: Deque[Dict] = collections.deque(maxlen=history_limit)

  async def set_express_checkout(
      self, request: SetExpressCheckoutRequest
  ) -> GatewayOutcome:
    self.requests.append(request)
    email = request.details.buyer_email
    if email == self.DECLINE_EMAIL:
      return GatewayDeclined(
          errors=[
              GatewayErrorDetail(
                  code="10413",
                  short_message="Transaction refused",
                  long_message=(
                      "The totals of the cart item amounts do not match"
                      " order amounts."
                  ),
              )
          ]
      )
    if email == self.OFFLINE_EMAIL:
      return GatewayTransportError(message="getaddrinfo failed")
    token = f"EC-{uuid.uuid4().hex[:17].upper()}"
    return GatewaySuccess(
        token=token,
        response=SetExpressCheckoutResponse(ack="Success", token=token),
    )

  def express_checkout_url(
      self, response: SetExpressCheckoutResponse, useraction: str = "commit"
  ) -> str:
    query = urllib.parse.urlencode({
        "cmd": "_express-checkout",
        "token": response.token or "",
        "useraction": useraction,
    })
    return f"{self.APPROVAL_URL}?{query}"

  async def do_express_checkout_payment(
      self, token: str, payer_id: str, amount: Decimal, currency: str
  ) -> GatewayOutcome:
    self.captures.append({
        "token": token,
        "payer_id": payer_id,
        "amount": amount,
        "currency": currency,
    })
    if token == self.FAIL_TOKEN:
      return GatewayMidTransactionError(message=self.CARD_ERROR)
    if token == self.OFFLINE_TOKEN:
      return GatewayTransportError(message="getaddrinfo failed")
    return GatewaySuccess(token=token, transaction_id=uuid.uuid4().hex[:17])


GatewayFactory = Callable[[db.PaymentMethod], ExpressCheckoutGateway]


def gateway_factory_for(mode: GatewayMode) -> GatewayFactory:
  """Returns a factory building the gateway for a payment method."""
  if GatewayMode(mode) == GatewayMode.MOCK:
    mock = MockExpressCheckoutGateway()
    return lambda payment_method: mock

  def build(payment_method: db.PaymentMethod) -> ExpressCheckoutGateway:
    return NvpExpressCheckoutGateway(
        login=payment_method.login or "",
        password=payment_method.password or "",
        signature=payment_method.signature or "",
        server=GatewayServer(payment_method.server or GatewayServer.SANDBOX),
    )

  return build
