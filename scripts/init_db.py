"""
Database initialization script.
Creates every table registered on the model metadata.
"""
from sqlalchemy import inspect
from insider_trader.models import Base
from insider_trader.models.base import build_engine
from config.settings import get_settings

def init_database():
    """
    Steps:
    1. Create all tables from SQLAlchemy models
    2. Verify them
    """
    settings = get_settings()
    engine = build_engine(settings.DATABASE_URL)

    print("📈 Insider Trader - Database Initialization")
    print("=" * 50)

    print("\n1. Creating all tables...")
    try:
        Base.metadata.create_all(bind=engine)
        print("  ✓ All tables created")
    except Exception as e:
        print(f"  ✗ Error creating tables: {e}")
        return

    print("\n2. Verifying tables...")
    tables = sorted(inspect(engine).get_table_names())
    missing = set(Base.metadata.tables) - set(tables)
    print(f"  ✓ Found {len(tables)} tables:")
    for table in tables:
        print(f"    - {table}")
    if missing:
        print(f"  ✗ Missing tables: {', '.join(sorted(missing))}")
        return

    print("\n" + "=" * 50)
    print("✅ Database initialization complete!")
    print("\nNext steps:")
    print(f"1. Access API: http://{settings.API_HOST}:{settings.API_PORT}")
    print("2. Register the bot webhook: GET /telegram/setup")

if __name__ == "__main__":
    init_database()
