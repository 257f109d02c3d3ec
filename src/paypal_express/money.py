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

"""Conversions between persisted cents and decimal amounts."""

import decimal
from decimal import Decimal

from .exceptions import InvalidRequestError

_CENT = Decimal("0.01")


def parse_amount(value: str | Decimal | int | float | None) -> Decimal:
  """Parses a user supplied amount into a two-digit Decimal.

  Raises:
    InvalidRequestError: If the value is missing or not a number.
  """
  if value is None or value == "":
    raise InvalidRequestError("Amount is required")
  try:
    amount = Decimal(str(value))
  except decimal.InvalidOperation as e:
    raise InvalidRequestError(f"Invalid amount: {value}") from e
  if not amount.is_finite():
    raise InvalidRequestError(f"Invalid amount: {value}")
  return amount.quantize(_CENT, rounding=decimal.ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
  return int(
      (amount * 100).quantize(Decimal(1), rounding=decimal.ROUND_HALF_UP)
  )


def from_cents(cents: int | None) -> Decimal:
  return (Decimal(cents or 0) / 100).quantize(_CENT)


def format_amount(amount: Decimal) -> str:
  """Formats an amount the way the gateway expects it (e.g. '25.00')."""
  return f"{amount.quantize(_CENT):.2f}"
