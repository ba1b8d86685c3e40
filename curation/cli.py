import argparse
import logging
import sys

from . import config
from .errors import CurationError, InvalidFormat, NotFound
from .models import CuratedEntry, SourceKind, TrialRole
from .normalize import format_authors, format_citation, format_phases
from .services import CurationWorkspace

KIND_ALIASES = {
    "publications": SourceKind.PUBLICATION,
    "publication": SourceKind.PUBLICATION,
    "pubmed": SourceKind.PUBLICATION,
    "trials": SourceKind.CLINICAL_TRIAL,
    "trial": SourceKind.CLINICAL_TRIAL,
    "clinical_trial": SourceKind.CLINICAL_TRIAL,
    "media": SourceKind.MEDIA,
    "news": SourceKind.MEDIA,
}


def _kind(value: str) -> SourceKind:
    try:
        return KIND_ALIASES[value.lower()]
    except KeyError:
        raise argparse.ArgumentTypeError(f"unknown collection {value!r}; choose from {', '.join(sorted(KIND_ALIASES))}")


def _summary_line(entry: CuratedEntry) -> str:
    rec = entry.record
    flags = "visible" if entry.is_visible else "hidden"
    if entry.is_featured:
        flags += ", featured"
    date = str(rec.published_at) if rec.published_at else "n.d."
    line = f"[{rec.external_id}] {rec.title} ({rec.source_name or 'unknown'}, {date}) [{flags}]"
    if entry.role is not None:
        line += f" role={entry.role.value}"
    return line


def _details(entry: CuratedEntry) -> str:
    rec = entry.record
    lines = [_summary_line(entry), f"  state: {entry.lifecycle_state.value}", f"  type: {rec.classification}"]
    if rec.kind == SourceKind.PUBLICATION:
        lines.append(f"  citation: {format_citation(rec)}")
    elif rec.kind == SourceKind.CLINICAL_TRIAL:
        lines.append(f"  phases: {format_phases(rec.attributes.get('phases') or [])}")
        if rec.attributes.get("conditions"):
            lines.append(f"  conditions: {', '.join(rec.attributes['conditions'])}")
    else:
        lines.append(f"  author: {rec.attributes.get('author') or format_authors(rec.authors)}")
    if rec.locator:
        lines.append(f"  link: {rec.locator}")
    if rec.free_text.summary:
        lines.append(f"  summary: {rec.free_text.summary[:300]}")
    if rec.free_text.keywords:
        lines.append(f"  keywords: {', '.join(rec.free_text.keywords)}")
    return "\n".join(lines)


def cmd_discover(ws: CurationWorkspace, args) -> bool:
    result = ws.discover(args.name, args.affiliation)
    print(f"Searched {result.query_echo}: {len(result.candidates)} candidates ({result.total_found} reported)")
    for c in result.candidates:
        marker = "*" if c.id in ws.store else " "
        print(f" {marker} {_summary_line(c)}")
    if not result.candidates and result.suggested_queries:
        print("No results. Try:")
        for q in result.suggested_queries:
            print(f"   {q}")
    if args.select_all:
        added = ws.promote_all()
    elif args.select:
        added = ws.promote(args.select)
    else:
        return False
    print(f"Added {added} entries to your collection.")
    return added > 0


def cmd_add(ws: CurationWorkspace, args) -> bool:
    entry = ws.add_by_identifier(args.identifier)
    print(f"Added {_summary_line(entry)}")
    return True


def cmd_list(ws: CurationWorkspace, args) -> bool:
    entries = ws.entries()
    counts = ws.store.count_by_visibility()
    print(f"{len(entries)} {ws.kind.value} entries ({counts['visible']} visible, {counts['hidden']} hidden)")
    for e in entries:
        if args.visible_only and not e.is_visible:
            continue
        print(f"  {_summary_line(e)}")
    return False


def cmd_show(ws: CurationWorkspace, args) -> bool:
    entry = ws.store.get(args.id)
    if entry is None:
        raise NotFound(f"{args.id} is not in your {ws.kind.value} collection")
    print(_details(entry))
    return False


def cmd_visibility(ws: CurationWorkspace, args) -> bool:
    entry = ws.set_visibility(args.id, args.command == "unhide")
    print(_summary_line(entry))
    return True


def cmd_feature(ws: CurationWorkspace, args) -> bool:
    entry = ws.set_featured(args.id, not args.off)
    print(_summary_line(entry))
    return True


def cmd_role(ws: CurationWorkspace, args) -> bool:
    entry = ws.set_role(args.id, args.role)
    print(_summary_line(entry))
    return True


def cmd_classify(ws: CurationWorkspace, args) -> bool:
    entry = ws.set_classification(args.id, args.classification)
    print(_details(entry))
    return True


def cmd_remove(ws: CurationWorkspace, args) -> bool:
    ws.remove(args.id)
    print(f"Removed {args.id}.")
    return True


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser("curation", description="Curate publications, clinical trials and media coverage")
    p.add_argument("--user", default="me", help="Profile the collection belongs to")
    p.add_argument("--db", default=config.DB_PATH, help="SQLite database path")
    p.add_argument("--max-results", type=int, default=config.DEFAULT_MAX_RESULTS)
    p.add_argument("--log-level", default=config.LOG_LEVEL)
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("discover", help="Search a source for candidate records")
    s.add_argument("kind", type=_kind)
    s.add_argument("name")
    s.add_argument("--affiliation")
    pick = s.add_mutually_exclusive_group()
    pick.add_argument("--select", nargs="+", metavar="ID", help="Add these candidates to the collection")
    pick.add_argument("--select-all", action="store_true", help="Add every candidate to the collection")
    s.set_defaults(func=cmd_discover)

    s = sub.add_parser("add", help="Add one record by PMID, NCT number or URL")
    s.add_argument("kind", type=_kind)
    s.add_argument("identifier")
    s.set_defaults(func=cmd_add)

    s = sub.add_parser("list", help="List the curated collection")
    s.add_argument("kind", type=_kind)
    s.add_argument("--visible-only", action="store_true")
    s.set_defaults(func=cmd_list)

    s = sub.add_parser("show", help="Show one curated entry in detail")
    s.add_argument("kind", type=_kind)
    s.add_argument("id")
    s.set_defaults(func=cmd_show)

    for name, help_text in (("hide", "Hide an entry from the profile"), ("unhide", "Show a hidden entry on the profile")):
        s = sub.add_parser(name, help=help_text)
        s.add_argument("kind", type=_kind)
        s.add_argument("id")
        s.set_defaults(func=cmd_visibility)

    s = sub.add_parser("feature", help="Feature a media entry")
    s.add_argument("kind", type=_kind)
    s.add_argument("id")
    s.add_argument("--off", action="store_true", help="Remove the featured flag")
    s.set_defaults(func=cmd_feature)

    s = sub.add_parser("role", help="Set your role on a clinical trial")
    s.add_argument("kind", type=_kind)
    s.add_argument("id")
    s.add_argument("role", choices=[r.value for r in TrialRole])
    s.set_defaults(func=cmd_role)

    s = sub.add_parser("classify", help="Correct the type of an entry")
    s.add_argument("kind", type=_kind)
    s.add_argument("id")
    s.add_argument("classification")
    s.set_defaults(func=cmd_classify)

    s = sub.add_parser("remove", help="Delete an entry from the collection")
    s.add_argument("kind", type=_kind)
    s.add_argument("id")
    s.set_defaults(func=cmd_remove)
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    ws = CurationWorkspace.open(args.user, args.kind, db_path=args.db, max_results=args.max_results)
    try:
        changed = args.func(ws, args)
    except InvalidFormat as e:
        print(f"{e}", file=sys.stderr)
        return 2
    except (CurationError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if changed:
        ws.save(args.db)
    return 0


if __name__ == "__main__":
    sys.exit(main())
