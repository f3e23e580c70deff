#!/usr/bin/env python3
"""
dedupe_qbank.py  –  keep one copy of every question in a Moodle XML export
-------------------------------------------------------------------------
usage:
    python dedupe_qbank.py quiz.xml [quiz_clean.xml] [-f] [--dry-run]

• Reads <quiz> and compares the <questiontext> of every <question>
  (plus <generalfeedback> with -f, or any fields given with --field)
• Whitespace never counts as a difference
• If the same text appears more than once:
      – keeps the first question seen
      – drops the rest, leaving every kept question untouched
• Output goes to quiz_nodup.xml unless a name is given

Questions without any of the compared fields are always kept.
"""

from __future__ import annotations
import argparse, io, pathlib, sys
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterable, Sequence
from tqdm import tqdm

from qbank_xml import FieldDecodeError, QbankError, Record, read_document, write_document
from question_key import extract_key, find_field


NODUP_SUFFIX = "_nodup"
FEEDBACK_FIELD = "generalfeedback"


@dataclass(frozen=True)
class DedupConfig:
    fields: tuple[str, ...] = ("questiontext",)
    normalize_whitespace: bool = True
    strip_html: bool = False
    record_tag: str = "question"
    wrapper_tag: str = "quiz"
    indent: str = "  "


# ──────────────── DEDUP ENGINE ───────────────────────────────────────────────
def record_key_fn(config: DedupConfig) -> Callable[[Record], str]:
    def key_fn(record: Record) -> str:
        return extract_key(
            record.inner,
            config.fields,
            config.normalize_whitespace,
            strip_html=config.strip_html,
        )

    return key_fn


def find_duplicates(
    records: Iterable[Record], key_fn: Callable[[Record], str]
) -> list[int | None]:
    """
    For each record, the position of the earlier record it duplicates, or None.

    An empty key says nothing about a record, so it never matches anything,
    not even another empty key.
    """
    first_seen: dict[str, int] = {}
    origin: list[int | None] = []
    for i, record in enumerate(records):
        key = key_fn(record)
        if key and key in first_seen:
            origin.append(first_seen[key])
            continue
        if key:
            first_seen[key] = i
        origin.append(None)
    return origin


def dedupe(
    records: Sequence[Record], key_fn: Callable[[Record], str]
) -> tuple[list[Record], int]:
    """Return (kept records in input order, number of records dropped)."""
    origin = find_duplicates(records, key_fn)
    kept = [r for r, o in zip(records, origin) if o is None]
    return kept, len(records) - len(kept)


def dedup(
    fin: BinaryIO,
    fout: BinaryIO,
    config: DedupConfig | None = None,
    *,
    progress: bool = False,
) -> int:
    """Read a question bank from fin, write it without duplicates to fout."""
    config = config or DedupConfig()
    doc = read_document(
        fin.read(), record_tag=config.record_tag, wrapper_tag=config.wrapper_tag
    )
    key_fn = record_key_fn(config)
    with tqdm(
        total=len(doc.records), desc="Comparing", unit="q", disable=not progress
    ) as bar:

        def counted(record: Record) -> str:
            bar.update()
            return key_fn(record)

        kept, dup_count = dedupe(doc.records, counted)

    write_document(doc, fout, records=kept, indent=config.indent)
    return dup_count


# ──────────────── helpers ────────────────────────────────────────────────────
def make_name(name: str) -> str:
    """a.xml → a_nodup.xml, a.foo → a_nodup.foo, a → a_nodup"""
    stem, dot, ext = name.rpartition(".")
    if not dot:
        return name + NODUP_SUFFIX
    return f"{stem}{NODUP_SUFFIX}.{ext}"


def describe(record: Record) -> str:
    """Short label for reports: position plus the question's <name>."""
    try:
        name, _ = find_field(record.inner, "name")
    except FieldDecodeError:
        name = ""  # e.g. entities declared in the DOCTYPE
    name = " ".join(name.split())
    if len(name) > 60:
        name = name[:57] + "…"
    return f'#{record.index} "{name}"' if name else f"#{record.index}"


def report_duplicates(data: bytes, config: DedupConfig, *, progress: bool) -> None:
    doc = read_document(
        data, record_tag=config.record_tag, wrapper_tag=config.wrapper_tag
    )
    records = doc.records
    origin = find_duplicates(
        tqdm(records, desc="Comparing", unit="q", disable=not progress),
        record_key_fn(config),
    )
    dupes = [(records[j], records[i]) for j, i in enumerate(origin) if i is not None]

    print(f"\n{len(dupes)} duplicates from {len(records)}. Would drop:")
    for extra, first in dupes:
        print(f"   {describe(extra)} duplicates {describe(first)}")


# ──────────────── CLI ────────────────────────────────────────────────────────
def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        description="Remove duplicate questions from a Moodle XML question bank"
    )
    ap.add_argument("infile", type=pathlib.Path, help="Moodle XML export")
    ap.add_argument(
        "outfile",
        type=pathlib.Path,
        nargs="?",
        default=None,
        help=f"Where to write the result (default: <infile>{NODUP_SUFFIX}.xml)",
    )
    ap.add_argument(
        "-f",
        "--feedback",
        action="store_true",
        help=f"Also compare the <{FEEDBACK_FIELD}> text",
    )
    ap.add_argument(
        "--field",
        dest="fields",
        action="append",
        metavar="NAME",
        help="Field to compare (repeatable, replaces the default questiontext)",
    )
    ap.add_argument(
        "--keep-whitespace",
        action="store_true",
        help="Treat whitespace differences as real differences",
    )
    ap.add_argument(
        "--strip-html",
        action="store_true",
        help="Compare the visible text of HTML fields, ignoring markup",
    )
    ap.add_argument(
        "--indent", type=int, default=2, help="Spaces per indent level (default 2)"
    )
    ap.add_argument(
        "--dry-run", action="store_true", help="Only list duplicates, write nothing"
    )
    ap.add_argument("-q", "--quiet", action="store_true", help="No progress bar")
    args = ap.parse_args(argv)

    if not args.infile.exists():
        sys.exit(f"❌  Input file {args.infile} does not exist")

    fields = tuple(args.fields or DedupConfig.fields)
    if args.feedback and FEEDBACK_FIELD not in fields:
        fields += (FEEDBACK_FIELD,)
    config = DedupConfig(
        fields=fields,
        normalize_whitespace=not args.keep_whitespace,
        strip_html=args.strip_html,
        indent=" " * args.indent,
    )
    outfile = args.outfile or args.infile.with_name(make_name(args.infile.name))

    print(f"Input {args.infile}  Output {outfile}")
    print(f"Comparing: {', '.join(config.fields)}")
    try:
        if args.dry_run:
            report_duplicates(
                args.infile.read_bytes(), config, progress=not args.quiet
            )
            return

        buf = io.BytesIO()
        with args.infile.open("rb") as fin:
            dup_count = dedup(fin, buf, config, progress=not args.quiet)
        # nothing is written unless the whole run succeeded
        outfile.write_bytes(buf.getvalue())
    except (QbankError, OSError) as e:
        sys.exit(f"❌  {args.infile}: {e}")

    print(f"\n✔ Removed {dup_count} duplicate question(s) → {outfile}")


if __name__ == "__main__":
    main()
