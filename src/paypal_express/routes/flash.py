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

"""Flash messages carried across redirects in the signed session cookie."""

from typing import Any, Dict

from fastapi import Request

_FLASH_KEY = "flash"


def set_flash(request: Request, messages: Dict[str, Any]) -> None:
  if messages:
    request.session[_FLASH_KEY] = messages


def pop_flash(request: Request) -> Dict[str, Any]:
  return request.session.pop(_FLASH_KEY, None) or {}
