# backend/ruleguard/create_db.py
"""Creates all tables (if they do not exist) in the configured database, then exits."""
import sys


def main():
    print("--- Automated Database Initializer ---")
    try:
        from ruleguard.config import settings
        from ruleguard.database import create_db_and_tables

        print(f"Creating tables (if they do not exist) in {settings.DATABASE_URL} ...")
        create_db_and_tables()
        print("✅ Database schema creation/verification complete.")
    except ImportError as e:
        print(f"❌ ImportError: Failed to import a necessary module. Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"❌ An unexpected error occurred during database initialization: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
