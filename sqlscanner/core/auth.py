"""Pre-scan login: submit credentials once and harvest the session cookies."""

from typing import Dict, Iterable, Optional, Tuple

import httpx

from sqlscanner.core.client import build_client, cookie_header
from sqlscanner.core.comparator import response_text
from sqlscanner.core.models import AuthOptions, AuthSession, SuccessCriteria


def parse_set_cookies(values: Iterable[str]) -> Dict[str, str]:
    """Cookie map from raw Set-Cookie header values; attributes after ';' are ignored."""
    jar: Dict[str, str] = {}
    for raw in values:
        pair = raw.split(";", 1)[0]
        name, sep, value = pair.partition("=")
        name = name.strip()
        if name and sep:
            jar[name] = value.strip()
    return jar


def merge_session(
    headers: Dict[str, str],
    cookies: Dict[str, str],
    session: Optional[AuthSession],
) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Overlay the session on caller-supplied headers/cookies; session values win."""
    merged_headers = dict(headers)
    merged_cookies = dict(cookies)
    if session is not None:
        merged_headers.update(session.headers)
        merged_cookies.update(session.cookies)
    return merged_headers, merged_cookies


def _login_request(auth: AuthOptions) -> Dict:
    fields = {auth.username_field: auth.username, auth.password_field: auth.password}
    fields.update(auth.additional_fields)
    method = auth.method.upper()
    if method != "POST":
        return {"method": method, "params": fields}
    if auth.type == "json":
        return {"method": method, "json": fields}
    return {"method": method, "data": fields}


def verify_session(resp: httpx.Response, success: SuccessCriteria) -> bool:
    body = response_text(resp)
    if success.status is not None and resp.status_code != success.status:
        return False
    if success.contains_text and success.contains_text not in body:
        return False
    if success.not_contains_text and success.not_contains_text in body:
        return False
    if success.redirect_location_includes:
        location = resp.headers.get("location", "")
        if success.redirect_location_includes not in location:
            return False
    return True


async def perform_auth(
    auth: Optional[AuthOptions],
    client: Optional[httpx.AsyncClient] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    logger=None,
) -> Optional[AuthSession]:
    """
    Log in once and return the harvested session.

    Returns None when no auth is configured or the login request fails at the
    transport level. A failed verification is only logged: the cookies are
    still returned so the scan can proceed best-effort.
    """
    if auth is None:
        return None

    own_client = client is None
    if own_client:
        client = build_client(10000, transport=transport)
    headers = dict(auth.headers)
    try:
        resp = await client.request(
            url=auth.url, headers=headers, follow_redirects=False, **_login_request(auth),
        )
        cookies = parse_set_cookies(resp.headers.get_list("set-cookie"))
        if logger:
            logger.debug(f"Login {auth.method.upper()} {auth.url} -> HTTP {resp.status_code}, "
                         f"{len(cookies)} cookie(s)")

        if auth.verify_url:
            verify_headers = dict(headers)
            if cookies:
                verify_headers["Cookie"] = cookie_header(cookies)
            check = await client.get(auth.verify_url, headers=verify_headers,
                                     follow_redirects=False)
            if not verify_session(check, auth.success):
                if logger:
                    logger.warn(f"Auth verification failed at {auth.verify_url} "
                                f"(HTTP {check.status_code}); continuing with harvested cookies")
            elif logger:
                logger.ok(f"Authenticated as {auth.username}")
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        if logger:
            logger.warn(f"Auth request failed: {auth.url} ({exc}); scanning unauthenticated")
        return None
    finally:
        if own_client:
            await client.aclose()

    return AuthSession(headers=headers, cookies=cookies)
