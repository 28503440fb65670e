from __future__ import annotations

import argparse

from page_i18n import storage
from page_i18n.html_parser import DEFAULT_ATTRIBUTE_RULES, classify, parse_attribute_rules, parse_html, unit_records


def main() -> None:
    parser = argparse.ArgumentParser(description="Dump the translation units of an HTML page.")
    parser.add_argument("--html", required=True, help="Path to source HTML")
    parser.add_argument("--out", required=True, help="Output units.json")
    parser.add_argument(
        "--attribute",
        action="append",
        default=[],
        help="Translatable attribute entry (repeatable), e.g. alt or input[type=submit]:value",
    )
    args = parser.parse_args()

    try:
        rules = parse_attribute_rules(args.attribute) if args.attribute else DEFAULT_ATTRIBUTE_RULES
    except ValueError as exc:
        raise SystemExit(str(exc))

    html_text = storage.read_text(args.html)
    units = classify(parse_html(html_text), rules)
    storage.write_json(args.out, unit_records(units))

    n_code = sum(1 for u in units if u.kind == "code")
    print(f"Wrote {len(units)} units ({n_code} code) to {args.out}")


if __name__ == "__main__":
    main()
