"""
Initialize the gateway database: tables, default superadmin, starter rate
and QoS discipline. Safe to run repeatedly.
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from hotspot.database import SessionLocal, engine, Base
from hotspot.models import Admin, Rate, SystemConfig
from hotspot.utils.security import get_password_hash

DEFAULT_ADMIN_PASSWORD = "admin"

# 5 pesos buys two hours at 10/10 Mbit/s
DEFAULT_RATE = {"pesos": 5, "minutes": 120, "download_limit": 10, "upload_limit": 10}

DEFAULT_CONFIG = {
    "qos_discipline": ("cake", "Queue discipline on the LAN interface"),
}


def init_database(db=None):
    """Create tables and seed defaults; returns a summary of what was added"""
    added = {"admin": False, "rate": False, "config": []}

    print("=" * 60)
    print("Hotspot Gateway - Database Initialization")
    print("=" * 60)

    # Create all tables
    print("\n📦 Creating database tables...")
    Base.metadata.create_all(bind=engine if db is None else db.get_bind())
    print("✅ Database tables created successfully!")

    own_session = db is None
    db = db or SessionLocal()

    try:
        # Check if superadmin exists
        existing = db.query(Admin).filter(Admin.username == "superadmin").first()
        if not existing:
            password = os.environ.get("ADMIN_PASSWORD", DEFAULT_ADMIN_PASSWORD)
            print("\n👤 Creating superadmin user...")
            db.add(Admin(
                username="superadmin",
                password_hash=get_password_hash(password),
                role="superadmin",
                full_name="System Administrator",
                is_active=True
            ))
            added["admin"] = True
            print("✅ Superadmin user created (change the password after first login)")
        else:
            print("\n⚠️  Superadmin user already exists")

        if db.query(Rate).count() == 0:
            print("\n💰 Adding default rate...")
            db.add(Rate(**DEFAULT_RATE))
            added["rate"] = True

        for key, (value, description) in DEFAULT_CONFIG.items():
            if not db.query(SystemConfig).filter(SystemConfig.setting_key == key).first():
                db.add(SystemConfig(setting_key=key, setting_value=value, description=description))
                added["config"].append(key)

        db.commit()
        print("\n🚀 You can now start the gateway:")
        print("   uvicorn hotspot.main:app --host 0.0.0.0 --port 80\n")

    except Exception as e:
        print(f"\n❌ Error: {str(e)}")
        db.rollback()
        raise

    finally:
        if own_session:
            db.close()

    return added


if __name__ == "__main__":
    init_database()
