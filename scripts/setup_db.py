"""
Database initialization script for the ICU dispatch backend.

Creates the schema and, with --seed, a small demo city: two hospitals,
a handful of ICU beds, patients, ambulance crews and hospital staff.
"""
import argparse
import sys
import logging
from pathlib import Path

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_HOSPITALS = [
    ("hosp_cairo", "Cairo General", "Tahrir Sq", (31.2357, 30.0444)),
    ("hosp_giza", "Giza Heart Institute", "Pyramids Rd", (31.2089, 30.0131)),
]

DEMO_BEDS = [
    ("hosp_cairo", "Cardiac ICU", "C-101"),
    ("hosp_cairo", "Cardiac ICU", "C-102"),
    ("hosp_cairo", "Medical ICU", "M-201"),
    ("hosp_cairo", "Trauma ICU", "T-301"),
    ("hosp_giza", "Cardiac ICU", "G-11"),
    ("hosp_giza", "Neonatal ICU", "G-21"),
]

DEMO_USERS = [
    ("pat_demo_1", "Omar Patient", "Patient", None, (31.24, 30.05)),
    ("pat_demo_2", "Mona Patient", "Patient", None, (31.19, 30.02)),
    ("amb_demo_1", "Ambulance 1", "Ambulance", None, (31.23, 30.04)),
    ("amb_demo_2", "Ambulance 2", "Ambulance", None, (31.21, 30.01)),
    ("staff_reception", "Front Desk", "Receptionist", "hosp_cairo", None),
    ("staff_manager", "ICU Manager", "Manager", "hosp_cairo", None),
    ("staff_admin", "Dispatch Admin", "Admin", None, None),
]


def seed_demo_data(session) -> int:
    """Insert the demo city. Skips when it is already there."""
    from icudispatch.db.store import EntityStore

    store = EntityStore(session)
    if store.get_hospital(DEMO_HOSPITALS[0][0]) is not None:
        print("ℹ️  Demo data already present, skipping seed")
        return 0

    for hospital_id, name, address, location in DEMO_HOSPITALS:
        store.add_hospital(name, address, location, hospital_id=hospital_id)
    for hospital_id, specialization, room in DEMO_BEDS:
        store.add_bed(hospital_id, specialization, room)
    for user_id, name, role, hospital_id, location in DEMO_USERS:
        store.add_user(
            name,
            role,
            email=f"{user_id}@demo.local",
            hospital_id=hospital_id,
            location=location,
            user_id=user_id
        )
    session.commit()
    return len(DEMO_HOSPITALS) + len(DEMO_BEDS) + len(DEMO_USERS)


def setup_database(seed: bool = False):
    """Initialize database with schema."""
    print("\n🗄️  Initializing ICU Dispatch Database...")
    print("="*60)

    try:
        from icudispatch.db.connection import init_db, get_db
        from icudispatch.core.config import Config

        db_url = Config.DATABASE_URL
        print(f"📍 Database URL: {db_url}")

        init_db(db_url)
        print("✅ Database schema created successfully!")

        db = get_db()
        try:
            print("✅ Database connection verified!")
            if seed:
                created = seed_demo_data(db)
                if created:
                    print(f"🌱 Seeded {created} demo records")
                    print("   Use X-User-Id: pat_demo_1 / amb_demo_1 / staff_reception to try the API")
        finally:
            db.close()

        # Show database info
        if db_url.startswith('sqlite'):
            db_file = db_url.replace('sqlite:///', '')
            db_path = Path(db_file).resolve()
            print(f"\n📊 SQLite Database: {db_path}")
            if db_path.exists():
                size = db_path.stat().st_size
                print(f"   Size: {size:,} bytes")

        print("\n✅ Database ready!")
        print("="*60)

        return True

    except Exception as e:
        logger.exception(f"Database initialization failed: {e}")
        print(f"\n❌ Database initialization failed!")
        return False


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the ICU dispatch schema")
    parser.add_argument("--seed", action="store_true", help="Insert demo hospitals, beds and users")
    args = parser.parse_args()

    success = setup_database(seed=args.seed)
    sys.exit(0 if success else 1)
