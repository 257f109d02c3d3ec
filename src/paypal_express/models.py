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

"""Request and response models shared by the services and routes."""

import enum
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel
from pydantic import Field


class PaymentSpec(BaseModel):
  """Allocation of part of an account payment to one order."""

  order_id: int
  amount: Decimal


class DirectiveKind(str, enum.Enum):
  REDIRECT = "redirect"
  RELOAD = "reload"
  RENDER = "render"


class RedirectDirective(BaseModel):
  """Where the browser goes after a checkout step, and what it is told.

  `redirect` navigates to `location`, `reload` reloads the current page
  (falling back to `location` for plain HTML requests) and `render`
  re-renders the payment form in place with `errors`.
  """

  kind: DirectiveKind
  location: Optional[str] = None
  errors: List[str] = Field(default_factory=list)
  success: Optional[str] = None
  notice: Optional[str] = None

  @classmethod
  def redirect(cls, location: str, **flash) -> "RedirectDirective":
    return cls(kind=DirectiveKind.REDIRECT, location=location, **flash)

  @classmethod
  def reload(cls, location: str, **flash) -> "RedirectDirective":
    return cls(kind=DirectiveKind.RELOAD, location=location, **flash)

  @classmethod
  def render(cls, errors: List[str]) -> "RedirectDirective":
    return cls(kind=DirectiveKind.RENDER, errors=errors)

  def flash(self) -> dict:
    """Returns the flash messages to carry across the redirect."""
    messages = {}
    if self.errors:
      messages["errors"] = list(self.errors)
    if self.success:
      messages["success"] = self.success
    if self.notice:
      messages["notice"] = self.notice
    return messages


class OrderSummary(BaseModel):
  """Order view returned by the order landing pages."""

  number: str
  state: str
  payment_state: str
  channel: Optional[str] = None
  total: Decimal
  payment_total: Decimal
  flash: dict = Field(default_factory=dict)
