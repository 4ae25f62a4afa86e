"""
Initialize the database schema
Creates all tables defined in models and optionally seeds the service catalogue
"""
import sys
import os

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.database import Base, engine, SessionLocal
import models  # noqa: F401
from models.service import Service

DEFAULT_SERVICES = [
    {
        "id": "pack-kdp-default",
        "name": "Pack KDP autoédition",
        "description": "Maquette intérieure, couverture et correction pour une publication KDP",
        "price_cents": 35000,
    },
    {
        "id": "pack-integral-default",
        "name": "Pack Intégral",
        "description": "Correction complète, mise en page et conversion du manuscrit",
        "price_cents": 200,
    },
]


def init_database(seed: bool = False):
    """Create all tables in the database"""
    print("Creating tables...")

    try:
        Base.metadata.create_all(bind=engine)
        print("✓ Tables created successfully!")
        print("\nCreated tables:")
        for name in sorted(Base.metadata.tables):
            print(f"  - {name}")
    except Exception as e:
        print(f"✗ Error creating tables: {e}")
        sys.exit(1)

    if seed:
        db = SessionLocal()
        try:
            for data in DEFAULT_SERVICES:
                if not db.query(Service).filter(Service.id == data["id"]).first():
                    db.add(Service(**data))
                    print(f"  + service {data['id']}")
            db.commit()
        finally:
            db.close()


if __name__ == "__main__":
    init_database(seed="--seed" in sys.argv)
