import asyncio

import httpx
import pytest

from sqlscanner.core.client import build_client
from sqlscanner.core.csrf import (
    detect_csrf_fields, fetch_csrf_tokens, fresh_token_values, is_csrf_field,
)
from sqlscanner.core.models import FormField, FormTarget

PAGE = """<html>
<form action="/search"><input type="hidden" name="csrf_token" value="search-tok"><input name="q"></form>
<form action="/submit" method="post"><input type="hidden" name="csrf_token" value="submit-tok">
<input name="comment"></form>
</html>"""

SUBMIT = FormTarget(action="http://x.test/submit", method="POST", page="http://x.test/",
                    fields=(FormField("csrf_token", "old"), FormField("comment", "")))


@pytest.mark.parametrize("name", [
    "csrf_token", "csrfmiddlewaretoken", "__RequestVerificationToken", "X-XSRF",
    "authenticity_token", "form_key", "anti-forgery", "wp_nonce",
])
def test_token_field_names(name):
    assert is_csrf_field(name)


@pytest.mark.parametrize("name", ["username", "Password", "q", "id", "comment", "product"])
def test_data_field_names(name):
    assert not is_csrf_field(name)


def test_detect_csrf_fields():
    assert detect_csrf_fields(["user", "_token", "pass"]) == ["_token"]


def test_fresh_values_come_from_the_matching_form():
    assert fresh_token_values(PAGE, SUBMIT, ["csrf_token"]) == {"csrf_token": "submit-tok"}


def test_fresh_values_fall_back_to_any_form_with_the_token():
    moved = FormTarget(action="http://x.test/v2/submit", method="POST", page="http://x.test/",
                       fields=SUBMIT.fields)
    assert fresh_token_values(PAGE, moved, ["csrf_token"]) == {"csrf_token": "search-tok"}
    assert fresh_token_values("<html>no forms</html>", SUBMIT, ["csrf_token"]) == {}


def test_fetch_csrf_tokens():
    def handler(request):
        if request.url.path == "/":
            return httpx.Response(200, html=PAGE)
        return httpx.Response(403, html="<html>forbidden</html>")

    async def go(form):
        async with build_client(1000, transport=httpx.MockTransport(handler)) as client:
            return await fetch_csrf_tokens(client, form, ["csrf_token"])

    assert asyncio.run(go(SUBMIT)) == {"csrf_token": "submit-tok"}
    locked = FormTarget(action=SUBMIT.action, method="POST", page="http://x.test/locked",
                        fields=SUBMIT.fields)
    assert asyncio.run(go(locked)) == {}
    no_page = FormTarget(action=SUBMIT.action, method="POST", fields=SUBMIT.fields)
    assert asyncio.run(go(no_page)) == {}
