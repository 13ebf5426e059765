import pytest

from sqlscanner.parsers.request import RawRequest, parse_cookie_header

FORM_REQUEST = (
    "post /login?next=%2Fhome HTTP/1.1\r\n"
    "Host: shop.test:8080\r\n"
    "User-Agent: Mozilla/5.0\r\n"
    "Content-Type: application/x-www-form-urlencoded\r\n"
    "Content-Length: 27\r\n"
    "Cookie: session=abc; theme=dark\r\n"
    "\r\n"
    "user=admin&pass=secret&otp="
)

JSON_REQUEST = """PUT /api/items/7 HTTP/1.1
Host: api.shop.test
Content-Type: application/json
X-Api-Key: k

{"name": "lamp", "tags": ["a", "b"], "price": 12.5}
"""


def write(tmp_path, text):
    path = tmp_path / "req.txt"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_parse_cookie_header():
    assert parse_cookie_header("a=1; b=x=y;bad; c=") == {"a": "1", "b": "x=y", "c": ""}
    assert parse_cookie_header("") == {}


def test_parse_form_request(tmp_path):
    req = RawRequest(write(tmp_path, FORM_REQUEST), protocol="http")
    parsed = req.parse()

    assert parsed["method"] == "POST"
    assert parsed["host"] == "shop.test:8080"
    assert parsed["url"] == "http://shop.test:8080/login?next=%2Fhome"
    assert parsed["cookies"] == {"session": "abc", "theme": "dark"}
    assert parsed["headers"] == {"User-Agent": "Mozilla/5.0",
                                 "Content-Type": "application/x-www-form-urlencoded"}
    assert parsed["body"] == {"user": ["admin"], "pass": ["secret"], "otp": [""]}


def test_form_request_to_scan_options(tmp_path):
    req = RawRequest(write(tmp_path, FORM_REQUEST), protocol="http")
    req.parse()
    options = req.to_scan_options(cookie_points=True, time_threshold_ms=1500)

    assert options.target == "http://shop.test:8080/login?next=%2Fhome"
    assert options.method == "POST"
    assert options.json_body is None
    assert options.time_threshold_ms == 1500
    assert options.enable.form and options.enable.cookie and not options.enable.header
    assert [(f.name, f.value) for f in options.form.fields] == [
        ("user", "admin"), ("pass", "secret"), ("otp", "")]
    assert options.form.action == options.target


def test_json_request_to_scan_options(tmp_path):
    req = RawRequest(write(tmp_path, JSON_REQUEST))
    req.parse()

    assert req.url == "https://api.shop.test/api/items/7"
    assert req.form_target() is None
    options = req.to_scan_options(header_points=True)
    assert options.method == "PUT"
    assert options.json_body == {"name": "lamp", "tags": ["a", "b"], "price": 12.5}
    assert options.headers == {"X-Api-Key": "k"}
    assert options.form is None
    assert options.enable.header and not options.enable.form


def test_broken_json_body_kept_as_text(tmp_path):
    req = RawRequest(write(tmp_path, JSON_REQUEST.replace('"price": 12.5}', '"price": ')))
    req.parse()
    assert isinstance(req.body, str)
    assert req.to_scan_options().json_body is None


def test_absolute_request_target_supplies_host(tmp_path):
    req = RawRequest(write(tmp_path, "GET http://proxy.test/item?id=1 HTTP/1.1\nAccept: */*\n\n"))
    req.parse()
    assert req.url == "https://proxy.test/item?id=1"


@pytest.mark.parametrize("text,message", [
    ("", "empty"),
    ("GET\nHost: x\n\n", "Invalid request line"),
    ("GET /a HTTP/1.1\nAccept: */*\n\n", "Host header"),
])
def test_malformed_requests(tmp_path, text, message):
    with pytest.raises(ValueError, match=message):
        RawRequest(write(tmp_path, text)).parse()

