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

"""Custom exceptions for the PayPal Express Checkout server.

Gateway failures are not raised; they travel as `gateway.GatewayOutcome`
values. The exceptions below cover lookups and malformed requests only.
"""


class PaypalExpressError(Exception):
  """Base class for all server exceptions."""

  def __init__(
      self, message: str, code: str = "INTERNAL_ERROR", status_code: int = 500
  ):
    self.message = message
    self.code = code
    self.status_code = status_code
    super().__init__(self.message)


class ResourceNotFoundError(PaypalExpressError):
  """Raised when a requested order, payment method or user is not found."""

  def __init__(self, message: str):
    super().__init__(message, code="RESOURCE_NOT_FOUND", status_code=404)


class InvalidRequestError(PaypalExpressError):
  """Raised when the request is invalid (e.g. malformed amount)."""

  def __init__(self, message: str):
    super().__init__(message, code="INVALID_REQUEST", status_code=400)


class AuthenticationError(PaypalExpressError):
  """Raised when no user can be resolved for the request."""

  def __init__(self, message: str):
    super().__init__(message, code="UNAUTHENTICATED", status_code=401)
