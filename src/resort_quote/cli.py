from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .rules.quote_calculator import calculate_quote
from .rules.reference_loader import MissingReferenceField, ReferenceDataError, load_reference_data
from .schemas import QuoteRequest
from .settings import settings

logger = logging.getLogger("resort-quote")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resort-quote",
        description="Price a multi-resort quote request against a reference data registry.",
    )
    parser.add_argument("request", type=Path, help="quote request JSON file")
    parser.add_argument(
        "--reference-data",
        type=Path,
        default=None,
        help="reference data JSON (defaults to REFERENCE_DATA_PATH)",
    )
    parser.add_argument("--compact", action="store_true", help="print JSON on one line")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    try:
        data = load_reference_data(args.reference_data)
    except (MissingReferenceField, ReferenceDataError, ValueError, OSError) as exc:
        logger.error("cannot load reference data: %s", exc)
        return 2

    try:
        payload = json.loads(args.request.read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            payload.setdefault("currency_code", settings.default_currency)
        request = QuoteRequest.model_validate(payload)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        logger.error("invalid quote request: %s", exc)
        return 2

    result = calculate_quote(request, data)
    indent = None if args.compact else 2
    print(json.dumps(result.to_dict(), indent=indent))
    return 0 if result.success else 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
