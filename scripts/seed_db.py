"""
Seed script for the CivicConnect mock DB or Firestore.

Usage:
  - Dry run (default): python scripts/seed_db.py
  - Apply to configured store: python scripts/seed_db.py --apply
  - Force mock DB even if Firebase configured: python scripts/seed_db.py --apply --force-mock

Seed file format (db_seed.json):
  {
    "authorities": [{"id": "auth-1", "name": "...", "department": "Sanitation",
                     "is_active": true, "latitude": 18.52, "longitude": 73.85}],
    "issues": [{"title": "...", "description": "...", "category": "trash",
                "priority": "high", "address": "...", "latitude": 18.52,
                "longitude": 73.85, "reporter_id": "citizen-1"}]
  }

Authorities are written as-is. Issues go through the lifecycle service, so
they get a deadline and an assigned authority exactly like a live report.
"""

import argparse
import json
import logging
import os

from app.core.exceptions import EngineError
from app.core.settings import settings
from app.models.issue import IssueCreate
from app.models.user import Actor, ActorRole, Authority

logger = logging.getLogger("seed_db")


def load_seed(path: str = "./db_seed.json") -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_to_store(seed: dict, apply: bool = False) -> None:
    from app.services.issue_lifecycle import IssueLifecycleService
    from app.services.store import get_issue_store

    authorities = [Authority.model_validate(a) for a in seed.get("authorities", [])]
    issues = seed.get("issues", [])

    for authority in authorities:
        logger.info(f"Preparing: authorities/{authority.id} ({authority.department})")
    for raw in issues:
        logger.info(f"Preparing: issue '{raw.get('title')}' ({raw.get('category')})")

    if not apply:
        return

    store = get_issue_store()
    for authority in authorities:
        store.save_authority(authority)
        logger.info(f"Wrote: authorities/{authority.id}")

    service = IssueLifecycleService(store=store)
    for raw in issues:
        reporter = Actor(id=raw.get("reporter_id", "seed"), role=ActorRole.CITIZEN)
        try:
            result = service.create_issue(IssueCreate.model_validate(raw), reporter)
        except (EngineError, ValueError) as e:
            logger.error(f"Failed to write issue '{raw.get('title')}': {e}")
            continue
        logger.info(f"Wrote: issues/{result.issue.id} → {result.issue.assigned_authority_id or 'unassigned'}")


def main():
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    parser = argparse.ArgumentParser()
    parser.add_argument("--apply", action="store_true", help="Write seed to the DB instead of dry-run")
    parser.add_argument("--force-mock", action="store_true", help="Force use of mock DB even if Firebase configured")
    parser.add_argument("--seed", default="db_seed.json", help="Path to the seed JSON file")
    args = parser.parse_args()

    seed_path = os.path.join(os.getcwd(), args.seed)
    if not os.path.exists(seed_path):
        logger.error(f"Seed file not found: {seed_path}")
        return

    seed = load_seed(seed_path)

    if args.force_mock:
        logger.info("Forcing mock DB usage for this run.")
        # Settings are read once at import; flip the flag before the store resolves
        settings.USE_MOCK_DB = True

    write_to_store(seed, apply=args.apply)

    if args.apply:
        logger.info("Seeding completed.")
    else:
        logger.info("Dry run complete. Re-run with --apply to write to DB.")


if __name__ == "__main__":
    main()
