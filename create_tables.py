"""
Maintenance entry point for the rule store.

    python create_tables.py                  # create missing tables, list them
    python create_tables.py --seed-defaults  # ...and store the default rule set
    python create_tables.py --drop --seed-defaults  # rebuild from scratch
"""
import argparse

from sqlalchemy import inspect

from app import create_app, db
from services.rules import ensure_defaults_seeded


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Create (or rebuild) the rule store tables.")
    parser.add_argument("--drop", action="store_true", help="drop all tables before creating them")
    parser.add_argument(
        "--seed-defaults", action="store_true",
        help="insert any default ad-block rules not yet stored",
    )
    return parser.parse_args(argv)


def main(argv=None, app=None) -> dict:
    args = parse_args(argv)
    app = app or create_app()
    seeded = 0
    with app.app_context():
        if args.drop:
            app.logger.warning("Dropping all tables in %s", db.engine.url)
            db.drop_all()
        db.create_all()

        if args.seed_defaults:
            if "adblock_defaults" not in app.extensions:
                raise SystemExit("--seed-defaults needs ADBLOCK_ENABLED")
            seeded = ensure_defaults_seeded()
            app.logger.info("Seeded %d default rule(s)", seeded)

        tables = inspect(db.engine).get_table_names()
        app.logger.info("Tables in DB: %s", tables)
    return {"tables": tables, "seeded": seeded}


if __name__ == "__main__":
    main()
