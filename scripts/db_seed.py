"""Seed the Postgres database with demo products.

Idempotent: rows are upserted by id, so running it twice leaves the same
catalog. Tables must exist already (``alembic upgrade head`` or one start of
the API, which runs create_all).

Usage:
    python scripts/db_seed.py

The script reads DATABASE_URL from the environment (an asyncpg URL is accepted
and converted); the default matches docker-compose.
"""
import sys
from pathlib import Path

import psycopg2
from psycopg2.extras import execute_values

# Ensure project root is on sys.path so we can import the package
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from storefront.config import get_settings

DEMO_PRODUCTS = [
    # (id, name, description, price, stock)
    (1, "Amuleto de cuarzo rosa", "Colgante de cuarzo rosa con cadena de plata.", "24.90", 12),
    (2, "Pulsera de ojo turco", "Pulsera tejida a mano con dije de ojo turco.", "10.00", 5),
    (3, "Atrapasueños mediano", "Atrapasueños de 20 cm con plumas naturales.", "18.50", 8),
    (4, "Vela aromática de lavanda", "Vela de soja con aceite esencial de lavanda.", "7.99", 30),
    (5, "Set de piedras chakras", "Siete piedras pulidas en bolsa de terciopelo.", "32.00", 0),
]


def connect_db(dsn: str):
    try:
        conn = psycopg2.connect(dsn)
        conn.autocommit = True
        return conn
    except Exception as e:
        print(f"Failed to connect to database: {e}")
        raise


def seed_products(conn):
    cur = conn.cursor()
    sql = """
        INSERT INTO products (id, name, description, price, stock) VALUES %s
        ON CONFLICT (id) DO UPDATE SET
            name = EXCLUDED.name,
            description = EXCLUDED.description,
            price = EXCLUDED.price,
            stock = EXCLUDED.stock
    """
    try:
        execute_values(cur, sql, DEMO_PRODUCTS)
        # explicit ids were inserted, move the identity sequence past them
        cur.execute("SELECT setval(pg_get_serial_sequence('products', 'id'), (SELECT MAX(id) FROM products))")
        print(f"Seeded {len(DEMO_PRODUCTS)} demo products")

        cur.execute("SELECT id, name, price, stock FROM products ORDER BY id")
        for row in cur.fetchall():
            print(row)
    finally:
        cur.close()


def main():
    dsn = get_settings().sync_database_url
    print("DB seed starting, DATABASE_URL=", dsn)
    try:
        conn = connect_db(dsn)
    except Exception:
        sys.exit(1)

    seed_products(conn)
    conn.close()
    print("DB seed complete")


if __name__ == "__main__":
    main()
