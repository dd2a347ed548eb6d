"""Command line entry point for the chunked JSON reader.

Decodes a JSON file with JsonReader and prints it back as standard JSON.

Example:
    To decode a file:
        $ json-chunk-reader data.json --indent 2
"""

import argparse
import json
import sys
from typing import Optional

from config import logger
from json_reader import JsonParseError, JsonReader


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="json-chunk-reader",
        description="Decode a JSON file in 64 KiB chunks and print it as JSON.",
    )
    parser.add_argument("path", help="JSON file to read")
    parser.add_argument(
        "--indent",
        type=int,
        default=None,
        help="indent the output by this many spaces",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=None,
        help="maximum nesting depth of objects and arrays",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        with JsonReader(args.path, max_depth=args.max_depth) as reader:
            value = reader.get_value()
            reader.get_eof()
    except JsonParseError as e:
        print(e, file=sys.stderr)
        return 1
    except OSError as e:
        logger.error({"event": "cannot open", "path": args.path, "error": str(e)})
        print(f"cannot read {args.path}: {e}", file=sys.stderr)
        return 1

    # overflowing literals such as 1e999 decode to inf, which JSON cannot hold
    try:
        output = json.dumps(value, indent=args.indent, ensure_ascii=False, allow_nan=False)
    except ValueError as e:
        logger.error({"event": "cannot encode", "path": args.path, "error": str(e)})
        print(f"cannot print {args.path} as JSON: {e}", file=sys.stderr)
        return 1

    sys.stdout.write(output + "\n")

    return 0


if __name__ == "__main__":
    sys.exit(main())
