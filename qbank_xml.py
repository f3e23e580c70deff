"""
qbank_xml.py  –  read and write Moodle question-bank XML without touching questions
-----------------------------------------------------------------------------------
• splits <quiz> into its attributes and an ordered list of <question> records
• every record keeps its inner markup as an opaque string, copied byte for byte
• other markup directly under <quiz> (comments, PIs, stray elements) is kept
  as-is at its original position
• writes the document back with a fixed XML declaration and indented children

Tokenizing is left to expat, which is the only parser that reports byte
offsets; offsets are what let a record's content be cut out verbatim.
"""

from __future__ import annotations
import codecs, re
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator, NamedTuple, Sequence, Union
from xml.parsers import expat
from xml.sax.saxutils import escape


XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>\n'
CHUNK_SIZE = 64 * 1024

# a start tag up to its closing '>', skipping quoted attribute values
_TAG_RE = re.compile(rb"""<(?:[^>"']|"[^"]*"|'[^']*')*>""")

_ATTR_ENTITIES = {'"': "&quot;", "\t": "&#9;", "\n": "&#10;", "\r": "&#13;"}


# ──────────────── errors ─────────────────────────────────────────────────────
class QbankError(Exception):
    """Base class for everything that makes a question bank unusable."""


class MalformedDocumentError(QbankError):
    """Input is not well-formed XML or has no wrapper element."""


class FieldDecodeError(QbankError):
    """A field inside a record could not be decoded."""


# ──────────────── data model ─────────────────────────────────────────────────
class Token(NamedTuple):
    kind: str  # start | end | data | comment | pi | directive
    name: str
    attrs: dict[str, str]
    text: str
    start: int  # byte span of the markup, -1 where expat cannot tell
    end: int


@dataclass(frozen=True)
class Record:
    tag: str
    attrs: dict[str, str]
    inner: str
    index: int


@dataclass(frozen=True)
class Passthrough:
    markup: str


Node = Union[Record, Passthrough]


@dataclass
class Document:
    name: str
    attrs: dict[str, str]
    nodes: list[Node] = field(default_factory=list)
    prolog: str = ""  # <!DOCTYPE …> as written, entity declarations included

    @property
    def records(self) -> list[Record]:
        return [n for n in self.nodes if isinstance(n, Record)]


# ──────────────── 1.  TOKEN SCANNER ──────────────────────────────────────────
def _tag_end(data: bytes, pos: int) -> int:
    m = _TAG_RE.match(data, pos)
    if m is None:
        raise MalformedDocumentError(f"unterminated tag at byte {pos}")
    return m.end()


def scan_tokens(
    data: bytes, *, encoding: str | None = None, chunk_size: int = CHUNK_SIZE
) -> Iterator[Token]:
    """
    Yield the XML tokens of *data* lazily, in document order.

    *encoding* overrides whatever the document declares. Start, end, comment
    and PI tokens carry the byte span of their markup in *data*, as does the
    DOCTYPE directive; for an empty element (<a/>) the start and end token share
    the same span. Tokens read before a syntax error are still yielded.
    """
    parser = expat.ParserCreate(encoding)
    parser.buffer_text = True
    pending: list[Token] = []

    def here() -> int:
        return parser.CurrentByteIndex

    def on_xml_decl(version, declared, standalone):
        attrs = {"version": version, "encoding": declared or ""}
        pending.append(Token("pi", "xml", attrs, "", -1, -1))

    def on_start(name, attrs):
        pos = here()
        pending.append(Token("start", name, attrs, "", pos, _tag_end(data, pos)))

    def on_end(name):
        pos = here()
        if data.startswith(b"</", pos):
            end = data.index(b">", pos) + 1
        else:
            end = _tag_end(data, pos)
        pending.append(Token("end", name, {}, "", pos, end))

    def on_data(text):
        pending.append(Token("data", "", {}, text, -1, -1))

    def on_comment(text):
        pos = here()
        pending.append(Token("comment", "", {}, text, pos, data.index(b"-->", pos) + 3))

    def on_pi(target, text):
        pos = here()
        pending.append(Token("pi", target, {}, text, pos, data.index(b"?>", pos) + 2))

    doctype: list = []

    def on_doctype(name, system_id, public_id, has_internal_subset):
        # expat reports this at the '[' or '>' after the name, not at '<!'
        doctype[:] = [name, data.rfind(b"<!DOCTYPE", 0, here() + 9)]

    def on_doctype_end():
        name, start = doctype
        end = data.index(b">", here()) + 1
        pending.append(Token("directive", name, {}, "DOCTYPE", start, end))

    parser.XmlDeclHandler = on_xml_decl
    parser.StartElementHandler = on_start
    parser.EndElementHandler = on_end
    parser.CharacterDataHandler = on_data
    parser.CommentHandler = on_comment
    parser.ProcessingInstructionHandler = on_pi
    parser.StartDoctypeDeclHandler = on_doctype
    parser.EndDoctypeDeclHandler = on_doctype_end

    chunks = [data[i : i + chunk_size] for i in range(0, len(data), chunk_size)]
    for i, chunk in enumerate(chunks + [b""]):
        try:
            parser.Parse(chunk, i == len(chunks))
        except expat.ExpatError as e:
            yield from pending
            raise MalformedDocumentError(
                f"{expat.ErrorString(e.code)} (line {e.lineno}, column {e.offset})"
            ) from e
        yield from pending
        pending.clear()


# ──────────────── 2.  RECORD EXTRACTOR ───────────────────────────────────────
def _scannable(data: bytes) -> tuple[bytes, str | None]:
    """UTF-16 is re-encoded as UTF-8 so that markup can be found by byte search."""
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return data.decode("utf-16").encode("utf-8"), "UTF-8"
    return data, None


def read_document(
    data: bytes, *, record_tag: str = "question", wrapper_tag: str = "quiz"
) -> Document:
    """Split a question bank into its wrapper and verbatim wrapper-level nodes."""
    data, override = _scannable(data)
    encoding = override or "utf-8"
    doc: Document | None = None
    depth = 0
    child: Token | None = None
    prolog = ""
    cursor = 0  # first byte of wrapper content not yet accounted for

    def keep_text(upto: int) -> None:
        text = data[cursor:upto].decode(encoding).strip()
        if text:
            doc.nodes.append(Passthrough(text))

    for tok in scan_tokens(data, encoding=override):
        if tok.kind == "pi" and tok.name == "xml":
            encoding = override or tok.attrs["encoding"] or "utf-8"
        elif tok.kind == "directive" and depth == 0:
            prolog = data[tok.start : tok.end].decode(encoding)
        elif tok.kind == "start":
            depth += 1
            if depth == 1:
                if tok.name != wrapper_tag:
                    raise MalformedDocumentError(
                        f"expected <{wrapper_tag}> as root element, found <{tok.name}>"
                    )
                doc = Document(tok.name, dict(tok.attrs), prolog=prolog)
                cursor = tok.end
            elif depth == 2:
                keep_text(tok.start)
                child = tok
        elif tok.kind == "end":
            if depth == 2:
                if child.name == record_tag:
                    inner = b"" if tok.start == child.start else data[child.end : tok.start]
                    doc.nodes.append(
                        Record(
                            child.name,
                            dict(child.attrs),
                            inner.decode(encoding),
                            len(doc.records),
                        )
                    )
                else:
                    doc.nodes.append(
                        Passthrough(data[child.start : tok.end].decode(encoding))
                    )
                cursor = tok.end
            elif depth == 1 and tok.end > cursor:
                keep_text(tok.start)
            depth -= 1
        elif tok.kind in ("comment", "pi") and depth == 1:
            keep_text(tok.start)
            doc.nodes.append(Passthrough(data[tok.start : tok.end].decode(encoding)))
            cursor = tok.end

    if doc is None:
        raise MalformedDocumentError(f"no <{wrapper_tag}> element found")
    return doc


# ──────────────── 3.  DOCUMENT WRITER ────────────────────────────────────────
def _attrs(attrs: dict[str, str]) -> str:
    return "".join(f' {k}="{escape(v, _ATTR_ENTITIES)}"' for k, v in attrs.items())


def _markup(node: Node) -> str:
    if isinstance(node, Passthrough):
        return node.markup
    return f"<{node.tag}{_attrs(node.attrs)}>{node.inner}</{node.tag}>"


def write_document(
    doc: Document,
    out: BinaryIO,
    *,
    records: Sequence[Record] | None = None,
    indent: str = "  ",
) -> None:
    """
    Write *doc* as UTF-8 to *out*.

    With *records* given only those records are written; everything else under
    the wrapper is written regardless. Record content goes out exactly as read.
    """
    keep = None if records is None else {r.index for r in records}
    body = [
        n
        for n in doc.nodes
        if isinstance(n, Passthrough) or keep is None or n.index in keep
    ]

    parts = [XML_HEADER]
    if doc.prolog:
        parts.append(doc.prolog + "\n")
    parts.append(f"<{doc.name}{_attrs(doc.attrs)}>")
    if body:
        parts.append("\n")
        parts.extend(f"{indent}{_markup(n)}\n" for n in body)
    parts.append(f"</{doc.name}>\n")
    out.write("".join(parts).encode("utf-8"))
