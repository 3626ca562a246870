#!/usr/bin/env python3
"""
Repair Foreign Mappings - rebind recipe ingredients to the selling store's stock.

Recipes copied from another store can keep pointing at the source store's
inventory items. This job lists them and, unless --dry-run is given, rebinds
each line to the store's own item with the same name.

Usage:
    python scripts/repair_foreign_mappings.py --store-id 2
    python scripts/repair_foreign_mappings.py --store-id 2 --dry-run
    python scripts/repair_foreign_mappings.py --all-stores --include-unmapped
"""

import argparse
import logging
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from stockledger.db.session import SessionLocal
from stockledger.models.store import Store
from stockledger.services.mapping_validator import MappingValidator

logger = logging.getLogger("repair_foreign_mappings")


def report(validator: MappingValidator, store: Store, include_unmapped: bool) -> int:
    foreign = validator.detect_foreign_mappings(store.id)
    unmapped = validator.detect_unmapped(store.id) if include_unmapped else []

    print(f"Store {store.id} ({store.name}): {len(foreign)} foreign, {len(unmapped)} unmapped")
    for line in foreign:
        item = line.inventory_item
        print(
            f"  recipe {line.recipe_id} '{line.ingredient_name}' -> item {item.id} "
            f"'{item.name}' of store {item.store_id}"
        )
    for line in unmapped:
        print(f"  recipe {line.recipe_id} '{line.ingredient_name}' -> (none)")
    return len(foreign) + len(unmapped)


def repair(validator: MappingValidator, store: Store, include_unmapped: bool) -> int:
    result = validator.repair_foreign_mappings(store.id, include_unmapped=include_unmapped)
    print(f"Store {store.id} ({store.name}): fixed {result.fixed}, unresolved {len(result.unresolved)}")
    for line in result.repaired:
        print(
            f"  line {line.line_id} '{line.ingredient_name}': "
            f"{line.old_inventory_item_id} -> {line.new_inventory_item_id}"
        )
    for line in result.unresolved:
        print(f"  UNRESOLVED line {line.id} recipe {line.recipe_id} '{line.ingredient_name}'")
    return len(result.unresolved)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Detect and repair cross-store ingredient mappings")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--store-id", type=int, help="Store to check")
    target.add_argument("--all-stores", action="store_true", help="Check every active store")
    parser.add_argument("--dry-run", action="store_true", help="Only list problems, change nothing")
    parser.add_argument("--include-unmapped", action="store_true",
                        help="Also bind lines with no inventory item by ingredient name")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    db = SessionLocal()
    try:
        if args.all_stores:
            stores = list(db.scalars(select(Store).where(Store.active_only()).order_by(Store.id)).all())
        else:
            store = db.get(Store, args.store_id)
            if store is None:
                print(f"Store {args.store_id} not found", file=sys.stderr)
                return 2
            stores = [store]

        validator = MappingValidator(db)
        outstanding = 0
        for store in stores:
            if args.dry_run:
                outstanding += report(validator, store, args.include_unmapped)
            else:
                outstanding += repair(validator, store, args.include_unmapped)
    finally:
        db.close()

    return 1 if outstanding else 0


if __name__ == "__main__":
    sys.exit(main())
