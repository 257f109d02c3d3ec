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

"""Builds SetExpressCheckout requests from purchase orders.

PayPal refuses zero-value items ("It can be a positive or negative value but
not zero."), so zero-amount line items and adjustments are dropped. When the
order has no item value left once shipping and tax are taken out, PayPal also
refuses an item breakdown; only the order total is sent and PayPal shows the
purchase as "Current purchase".
"""

from decimal import Decimal
from typing import List, Optional
import urllib.parse

from .. import db
from ..enums import AdjustmentCategory
from ..gateway import BasicAmount
from ..gateway import PaymentDetails
from ..gateway import PaymentDetailsItem
from ..gateway import SetExpressCheckoutRequestDetails
from ..gateway import ShipToAddress
from ..money import format_amount
from ..money import from_cents

DEFAULT_SOLUTION_TYPE = "Mark"
DEFAULT_LANDING_PAGE = "Billing"
DEFAULT_LOGO_URL = ""
# Solution type letting buyers pay without a PayPal account; PayPal then needs
# the billing address.
GUEST_SOLUTION_TYPE = "Sole"
SHIPPING_METHOD_NAME = "Shipping Method Name Goes Here"
PAYMENT_ACTION = "Sale"


def _amount(currency: str, value: Decimal) -> BasicAmount:
  return BasicAmount(currency_id=currency, value=value)


def line_item_entry(item: db.LineItem, currency: str) -> PaymentDetailsItem:
  return PaymentDetailsItem(
      name=item.product_name,
      number=item.sku,
      quantity=item.quantity,
      amount=_amount(item.currency or currency, from_cents(item.price)),
      item_category="Physical",
  )


def additional_adjustments(order: db.Order) -> List[db.Adjustment]:
  """Eligible adjustments charged on top of the items, except tax or freight."""
  return [
      a
      for a in order.adjustments
      if a.eligible
      and not a.included
      and a.category
      not in (AdjustmentCategory.TAX.value, AdjustmentCategory.SHIPPING.value)
  ]


def build_items(order: db.Order) -> List[PaymentDetailsItem]:
  """Returns the non-zero line items and additional adjustments of an order."""
  items = [line_item_entry(li, order.currency) for li in order.line_items]
  for adjustment in additional_adjustments(order):
    items.append(
        PaymentDetailsItem(
            name=adjustment.label,
            quantity=1,
            amount=_amount(order.currency, from_cents(adjustment.amount)),
        )
    )
  return [item for item in items if item.amount.value != 0]


def item_sum(order: db.Order) -> Decimal:
  """Item value of the order: its total without shipping and additional tax."""
  # Shipping is not charged on purchase orders.
  shipment_sum = 0
  return from_cents(
      (order.total or 0) - shipment_sum - (order.additional_tax_total or 0)
  )


def address_options(order: db.Order) -> Optional[ShipToAddress]:
  address = order.bill_address
  if address is None:
    return None
  return ShipToAddress(
      name=address.full_name or None,
      street1=address.address1,
      street2=address.address2,
      city_name=address.city,
      phone=address.phone,
      state_or_province=address.state_name,
      country=address.country_iso,
      postal_code=address.zipcode,
  )


def build_payment_details(
    order: db.Order,
    items: List[PaymentDetailsItem],
    amount: Decimal,
    address_required: bool = False,
) -> PaymentDetails:
  """Builds the payment details for the requested amount.

  Args:
    order: The order being paid.
    items: Non-zero items of the order, see `build_items`.
    amount: The amount the buyer asked to pay now.
    address_required: Send the billing address as ship-to address.

  Returns:
    Only the order total when the order has no item value, else the full
    breakdown. Items are listed only when they add up to the requested
    amount, since PayPal rejects item lists that do not match ItemTotal.
  """
  currency = order.currency
  if item_sum(order) == 0:
    return PaymentDetails(order_total=_amount(currency, amount))

  items_total = sum(
      (item.amount.value * item.quantity for item in items), Decimal(0)
  )
  return PaymentDetails(
      order_total=_amount(currency, amount),
      item_total=_amount(currency, amount),
      shipping_total=_amount(currency, Decimal(0)),
      tax_total=_amount(currency, Decimal(0)),
      ship_to_address=(
          address_options(order) if address_required else None
      )
      or ShipToAddress(),
      shipping_method=SHIPPING_METHOD_NAME,
      payment_action=PAYMENT_ACTION,
      payment_details_item=items if items and items_total == amount else None,
  )


def confirm_url(
    base_url: str,
    order: db.Order,
    payment_method_id: int,
    amount: Decimal,
    commit: Optional[str] = None,
) -> str:
  params = {
      "payment_method_id": payment_method_id,
      "utm_nooverride": 1,
      "order_id": order.id,
      "amount": format_amount(amount),
  }
  if commit:
    params["commit"] = commit
  query = urllib.parse.urlencode(params)
  return f"{base_url.rstrip('/')}/paypal/confirm?{query}"


def cancel_url(base_url: str, order: db.Order) -> str:
  query = urllib.parse.urlencode({"order_id": order.id})
  return f"{base_url.rstrip('/')}/paypal/cancel?{query}"


def invoice_id(order: db.Order) -> str:
  """Order number plus attempt sequence; PayPal refuses reused invoice IDs."""
  return f"{order.number}-{len(order.account_payments) + 1}"


def build_request_details(
    order: db.Order,
    payment_method: db.PaymentMethod,
    amount: Decimal,
    base_url: str,
    commit: Optional[str] = None,
) -> SetExpressCheckoutRequestDetails:
  """Maps an order and the amount to pay onto a SetExpressCheckout request."""
  solution = payment_method.preferred_solution or DEFAULT_SOLUTION_TYPE
  items = build_items(order)
  return SetExpressCheckoutRequestDetails(
      invoice_id=invoice_id(order),
      buyer_email=order.email,
      return_url=confirm_url(
          base_url, order, payment_method.id, amount, commit
      ),
      cancel_url=cancel_url(base_url, order),
      solution_type=solution,
      landing_page=(
          payment_method.preferred_landing_page or DEFAULT_LANDING_PAGE
      ),
      cpp_header_image=payment_method.preferred_logourl or DEFAULT_LOGO_URL,
      no_shipping=1,
      payment_details=[
          build_payment_details(
              order,
              items,
              amount,
              address_required=solution == GUEST_SOLUTION_TYPE,
          )
      ],
  )
