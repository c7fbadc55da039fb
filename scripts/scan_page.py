#!/usr/bin/env python3
"""
Scan a rendered page (file or URL) and print what the classifier decided.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from livecms.core.errors import ValidationError
from livecms.scanner.scan import scan_html, scan_url


def main():
    parser = argparse.ArgumentParser(description="Classify the elements of a rendered page")
    parser.add_argument("source", help="HTML file path or http(s) URL")
    parser.add_argument("--locale", default=None, help="Locale written into injected markup")
    parser.add_argument("--type", action="append", dest="types", help="Only report editables of this type")
    parser.add_argument("--inject", action="store_true", help="Print the annotated markup instead of a report")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--all", action="store_true", help="Include ignored elements in the report")
    args = parser.parse_args()

    options = dict(locale=args.locale, types_filter=args.types, inject=args.inject, report=True)
    try:
        if args.source.startswith(("http://", "https://")):
            result = scan_url(args.source, **options)
        else:
            result = scan_html(Path(args.source).read_text(encoding="utf-8"), **options)
    except (ValidationError, OSError) as e:
        print(f"ERROR: {e}")
        return 1

    if args.inject:
        print(result.markup)
        return 0

    elements = [e for e in result.elements if args.all or e.classification.kind != "ignored"]

    if args.json:
        print(json.dumps({"elements": [e.to_dict() for e in elements], "stats": result.stats}, indent=2))
        return 0

    for element in elements:
        c = element.classification
        label = c.content_type if c.is_editable else c.reason
        source = f"{element.source_file}:{element.line_hint}" if element.source_file else "-"
        text = element.text_snapshot[:50].replace("\n", " ")
        print(f"{c.kind:<9} {label or '':<20} {element.content_id or '':<18} {source:<30} <{element.tag}> {text}")

    stats = result.stats
    print()
    print(f"Total: {stats['total']}  Editable: {stats['editable']}  "
          f"Component: {stats['component']}  Ignored: {stats['ignored']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
