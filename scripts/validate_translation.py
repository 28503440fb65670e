from __future__ import annotations

import argparse
from pathlib import Path

from page_i18n import storage
from page_i18n.postproc import restore_attributes
from page_i18n.qa import validate_fragment, validate_text


def main() -> None:
    parser = argparse.ArgumentParser(description="Check a translated fragment against its source.")
    parser.add_argument("--source", required=True, help="Path to the source fragment")
    parser.add_argument("--translated", required=True, help="Path to the translated fragment")
    parser.add_argument("--text", action="store_true", help="Compare as plain text (no markup checks)")
    args = parser.parse_args()

    for p in (args.source, args.translated):
        if not Path(p).exists():
            raise SystemExit(f"File not found: {p}")

    source = storage.read_text(args.source)
    translated = storage.read_text(args.translated)

    result = validate_text(source, translated) if args.text else validate_fragment(source, translated)
    ratio = f"{result.ratio:.2f}" if result.ratio is not None else "n/a"
    print(f"valid: {result.valid}")
    print(f"ratio: {ratio}")
    if result.reason:
        print(f"reason: {result.reason}")
        raise SystemExit(1)

    if not args.text:
        print("restored:")
        print(restore_attributes(source, translated))


if __name__ == "__main__":
    main()
