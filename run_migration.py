#!/usr/bin/env python3
"""Apply a SQL migration from migrations/ to the job store database."""
import os
import sys

if len(sys.argv) < 2:
    print("Usage: python3 run_migration.py migrations/0001_dce_analyses.sql")
    sys.exit(1)

migration_file = sys.argv[1]
with open(migration_file, "r") as f:
    sql = f.read()

print(f"Migration file: {migration_file} ({len(sql)} bytes)")

try:
    import psycopg2
except ImportError:
    print("psycopg2 not installed. Install with: pip install -e '.[migrations]'")
    print("\nOr run this SQL manually in the Supabase SQL editor:\n")
    print("=" * 60)
    print(sql)
    print("=" * 60)
    sys.exit(1)

database_url = os.getenv("DATABASE_URL")
if not database_url:
    print("DATABASE_URL environment variable not set")
    sys.exit(1)

try:
    with psycopg2.connect(database_url) as conn:
        with conn.cursor() as cursor:
            cursor.execute(sql)
    print("Migration complete")
except Exception as e:
    print(f"Error running migration: {e}")
    sys.exit(1)
