"""Queue evaluations for questions (or responses) that were never scored.

Usage:
  python scripts/backfill_evaluations.py --activity <id> --limit 100
  python scripts/backfill_evaluations.py --kind response --summary
"""
import argparse
import json
import logging
import os
import sys

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from evalpipe import create_app  # noqa: E402
from evalpipe.pipeline import get_pipeline  # noqa: E402


def main(argv=None):
    parser = argparse.ArgumentParser(description="backfill pending AI evaluations")
    parser.add_argument("--activity", help="only this activity id")
    parser.add_argument("--limit", type=int, default=None)
    parser.add_argument("--kind", default="question", choices=["question", "response"])
    parser.add_argument("--summary", action="store_true", help="print counts only, queue nothing")
    args = parser.parse_args(argv)

    app = create_app()
    logging.basicConfig(level=app.config.get("LOG_LEVEL", "INFO"),
                        format="%(asctime)s %(levelname)s %(name)s %(message)s")
    with app.app_context():
        backfill = get_pipeline(app).backfill
        if args.summary:
            out = backfill.summary(activity_id=args.activity, kind=args.kind)
        else:
            out = backfill.backfill(activity_id=args.activity, limit=args.limit, kind=args.kind).to_dict()
    print(json.dumps(out, indent=2, ensure_ascii=False))
    return 1 if out.get("failedCount") else 0


if __name__ == "__main__":
    sys.exit(main())
