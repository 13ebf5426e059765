"""Link and form extraction using stdlib html.parser."""

from html.parser import HTMLParser
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin

from sqlscanner.core.models import FormField, FormTarget


class _LinkExtractor(HTMLParser):
    """Extract <a href> links from HTML."""

    def __init__(self):
        super().__init__()
        self.links: List[str] = []

    def handle_starttag(self, tag, attrs):
        if tag == "a":
            for name, value in attrs:
                if name == "href" and value:
                    self.links.append(value.strip())


class _FormExtractor(HTMLParser):
    """Extract <form> elements with their named input/select/textarea fields."""

    def __init__(self):
        super().__init__()
        self.forms: List[Tuple[Dict[str, str], List[FormField]]] = []
        self._attrs: Optional[Dict[str, str]] = None
        self._fields: List[FormField] = []
        # open <select>/<textarea>: (tag, name, collected value, value locked)
        self._open: Optional[List] = None

    def handle_starttag(self, tag, attrs):
        attr_dict = {k: (v or "") for k, v in attrs}

        if tag == "form":
            self._attrs = attr_dict
            self._fields = []
            return
        if self._attrs is None:
            return

        name = attr_dict.get("name", "")
        if tag == "input":
            input_type = attr_dict.get("type", "text").lower()
            if name and input_type not in ("reset", "image"):
                self._fields.append(FormField(name, attr_dict.get("value", "")))
        elif tag == "textarea" and name:
            self._open = ["textarea", name, "", False]
        elif tag == "select" and name:
            self._open = ["select", name, "", False]
        elif tag == "option" and self._open and self._open[0] == "select":
            value = attr_dict.get("value", "")
            if "selected" in attr_dict:
                self._open[2], self._open[3] = value, True
            elif not self._open[3] and not self._open[2]:
                self._open[2] = value

    def handle_data(self, data):
        if self._open and self._open[0] == "textarea":
            self._open[2] += data

    def handle_endtag(self, tag):
        if self._open and tag == self._open[0]:
            value = self._open[2].strip() if tag == "textarea" else self._open[2]
            self._fields.append(FormField(self._open[1], value))
            self._open = None
        elif tag == "form" and self._attrs is not None:
            self.forms.append((self._attrs, self._fields))
            self._attrs = None
            self._fields = []


def extract_links(page_url: str, html: str) -> List[str]:
    """All <a href> values resolved against page_url."""
    parser = _LinkExtractor()
    try:
        parser.feed(html)
    except Exception:
        pass
    out = []
    for href in parser.links:
        try:
            out.append(urljoin(page_url, href))
        except ValueError:
            continue
    return out


def extract_forms(page_url: str, html: str) -> List[FormTarget]:
    """Forms with at least one named field, actions resolved against page_url."""
    parser = _FormExtractor()
    try:
        parser.feed(html)
    except Exception:
        pass
    forms = []
    for attrs, fields in parser.forms:
        if not fields:
            continue
        try:
            action = urljoin(page_url, attrs.get("action") or page_url)
        except ValueError:
            continue
        forms.append(FormTarget(
            action=action,
            method=(attrs.get("method") or "GET").upper(),
            fields=tuple(fields),
            enctype=attrs.get("enctype") or None,
            page=page_url,
        ))
    return forms


def extract_links_and_forms(page_url: str, html: str) -> Tuple[List[str], List[FormTarget]]:
    return extract_links(page_url, html), extract_forms(page_url, html)
