"""
question_key.py  –  comparison keys for Moodle question records
--------------------------------------------------------------
A key is built from named fields of a record (questiontext, generalfeedback,
…). Moodle hides the displayed text of a field one level deeper:

    <questiontext format="html"><text><![CDATA[<p>2 + 2 = ?</p>]]></text></questiontext>

Fields are concatenated in the order asked for. Whitespace is removed
entirely, so two records that differ only in line breaks or indentation
produce the same key.
"""

from __future__ import annotations
import re
from typing import Iterable
from bs4 import BeautifulSoup
from lxml import etree

from qbank_xml import FieldDecodeError, MalformedDocumentError, scan_tokens


WHITESPACE = re.compile(r"[ \t\n\r\f]+")
TEXT_CHILD = "text"
_FIELD_PARSER = etree.XMLParser(resolve_entities=False)


def _field_markup(inner: str, name: str) -> bytes | None:
    """Markup of the first <name> element, scanned from where its tag appears."""
    tag = "<" + name
    pos = inner.find(tag)
    while pos != -1:
        fragment = inner[pos:].encode("utf-8")
        depth = 0
        for tok in scan_tokens(fragment, encoding="UTF-8"):
            if tok.kind == "start":
                if depth == 0 and tok.name != name:
                    break  # "<name" was only a prefix of some other tag
                depth += 1
            elif tok.kind == "end":
                depth -= 1
                if depth == 0:
                    return fragment[: tok.end]
        pos = inner.find(tag, pos + 1)
    return None


def find_field(inner: str, name: str) -> tuple[str, bool]:
    """
    Return (text, found) for the first <name> element inside a record.

    A record that cannot contain the tag is rejected with a plain substring
    test, without parsing. Otherwise scanning starts at the tag, so markup
    before the field is never decoded; only the field's own element goes to
    lxml. A field without a <text> child is found but empty.
    """
    if "<" + name not in inner:
        return "", False

    try:
        markup = _field_markup(inner, name)
        if markup is None:
            return "", False
        elem = etree.fromstring(markup, _FIELD_PARSER)
    except (MalformedDocumentError, etree.XMLSyntaxError) as e:
        raise FieldDecodeError(f"<{name}>: {e}") from e

    text = elem.find(TEXT_CHILD)
    return ("".join(text.itertext()) if text is not None else ""), True


def visible_text(payload: str) -> str:
    """Drop HTML markup from a field payload, keeping what a student would see."""
    if "<" not in payload:
        return payload
    return BeautifulSoup(payload, "html.parser").get_text()


def extract_key(
    inner: str,
    fields: Iterable[str],
    normalize_whitespace: bool = True,
    *,
    strip_html: bool = False,
) -> str:
    parts: list[str] = []
    for name in fields:
        text, found = find_field(inner, name)
        if found and strip_html:
            text = visible_text(text)
        parts.append(text)

    key = "".join(parts)
    if normalize_whitespace:
        key = WHITESPACE.sub("", key)
    return key
