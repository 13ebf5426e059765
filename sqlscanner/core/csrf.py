"""Anti-CSRF token fields on discovered forms.

Token fields are never injection points. With refresh enabled, each form
probe first re-reads the token values from the page the form came from.
"""

import re
from typing import Dict, Iterable, List, Optional

import httpx

from sqlscanner.core.models import FormTarget
from sqlscanner.parsers.html import extract_forms

# Django csrfmiddlewaretoken, ASP.NET __RequestVerificationToken, Magento form_key, ...
_TOKEN_NAME_RX = re.compile(r"csrf|xsrf|token|nonce|authenticity|form_key|anti[-_]?forgery", re.I)

# user input fields that can trip the pattern above
_NOT_TOKENS = frozenset({
    "username", "password", "email", "search", "query", "q", "s", "id", "name", "url",
    "file", "host", "lang", "page", "action", "submit", "button", "type",
})


def is_csrf_field(field_name: str) -> bool:
    if field_name.lower() in _NOT_TOKENS:
        return False
    return bool(_TOKEN_NAME_RX.search(field_name))


def detect_csrf_fields(names: Iterable[str]) -> List[str]:
    return [name for name in names if is_csrf_field(name)]


def fresh_token_values(html: str, form: FormTarget, csrf_fields: List[str]) -> Dict[str, str]:
    """
    Current token values for `form` on a freshly fetched copy of its page.

    The page form with the same action and method wins; otherwise the first
    form carrying any of the token fields is used.
    """
    page_forms = extract_forms(form.page or form.action, html)
    match = next((f for f in page_forms
                  if f.action == form.action and f.method == form.method), None)
    if match is None:
        match = next((f for f in page_forms
                      if any(fld.name in csrf_fields for fld in f.fields)), None)
    if match is None:
        return {}
    return {fld.name: fld.value for fld in match.fields if fld.name in csrf_fields}


async def fetch_csrf_tokens(
    client: httpx.AsyncClient,
    form: FormTarget,
    csrf_fields: List[str],
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """Fetch the form's page and return fresh values for csrf_fields.

    An unreachable page gives {}; the caller then keeps the discovered values.
    """
    if not csrf_fields or not form.page:
        return {}
    try:
        resp = await client.get(form.page, headers=headers)
    except (httpx.HTTPError, httpx.InvalidURL):
        return {}
    if resp.status_code != 200:
        return {}
    return fresh_token_values(resp.text or "", form, csrf_fields)
