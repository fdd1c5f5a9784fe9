#!/usr/bin/env python3
"""
Seed Reference Data — default lookup rows for a new district install.

Usage:
    python scripts/seed_reference_data.py              # Uses development DB
    python scripts/seed_reference_data.py --env production

This script is idempotent — safe to run multiple times. Names already
present (case-insensitive) are left alone.
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import func

from app import create_app
from app.models import db
from app.models.reference import REFERENCE_KINDS


# ═══════════════════════════════════════════════════════════════
# DEFAULTS — kind -> names
# ═══════════════════════════════════════════════════════════════
DEFAULT_REFERENCE_DATA = {
    "city": ["Jashpur Nagar", "Kunkuri", "Pathalgaon", "Bagicha"],
    "ward": ["Ward 1", "Ward 2", "Ward 3", "Ward 4", "Ward 5"],
    "department": [
        "Public Works Department",
        "Rural Engineering Service",
        "Water Resources Department",
        "Urban Administration",
    ],
    "scheme": ["MGNREGA", "PMGSY", "District Mineral Fund", "MLA Local Area Development"],
    "work_agency": ["Gram Panchayat", "Janpad Panchayat", "Nagar Palika", "Rural Engineering Service"],
    "sdo": ["SDO Jashpur", "SDO Kunkuri", "SDO Pathalgaon"],
    "type_of_work": ["CC Road", "Culvert", "Drain", "Community Hall", "School Building"],
    "type_of_location": ["Urban", "Rural"],
}


def seed_reference_data(data=None) -> dict:
    """Create missing lookup rows. Returns {kind: number created}."""
    data = DEFAULT_REFERENCE_DATA if data is None else data
    summary = {}
    for kind, names in data.items():
        model = REFERENCE_KINDS[kind][0]
        existing = {
            name for (name,) in db.session.query(func.lower(model.name)).all()
        }
        created = 0
        for name in names:
            clean = name.strip()
            if not clean or clean.lower() in existing:
                continue
            db.session.add(model(name=clean, is_active=True))
            existing.add(clean.lower())
            created += 1
        db.session.commit()
        summary[kind] = created
        print(f"  {kind}: {created} created, {len(names) - created} already existed")
    return summary


def main():
    parser = argparse.ArgumentParser(description="Seed default reference (lookup) data")
    parser.add_argument("--env", default="development", help="App environment")
    args = parser.parse_args()

    os.environ.setdefault("APP_ENV", args.env)
    app = create_app(args.env)

    with app.app_context():
        print("=" * 60)
        print("  SEED: Reference data")
        print("=" * 60)
        seed_reference_data()
        print("=" * 60)


if __name__ == "__main__":
    main()
