# scripts/seed_products.py
"""
Seed the demo catalog. Safe to re-run: rows are keyed by fixed ids and
overwritten in place (stock is reset to the seed value).

    DATABASE_URL=postgresql+psycopg://... python scripts/seed_products.py
"""
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

# Load .env from project root
load_dotenv(ROOT / ".env")

from models.base import Base, init_engine_and_session  # noqa: E402
from models.products_store import upsert_products  # noqa: E402

PRODUCTS = [
    {
        "id": "desk-lamp",
        "name": "Minimalist Desk Lamp",
        "description": "A sleek, modern desk lamp with adjustable brightness, perfect for your workspace.",
        "type": "PHYSICAL", "price": "49.99", "currency": "USD", "stock": 15,
    },
    {
        "id": "react-ui-kit",
        "name": "React UI Kit - Digital Template",
        "description": "A comprehensive React UI kit with 100+ components to kickstart your next project.",
        "type": "DIGITAL", "price": "29.00", "currency": "USD", "stock": None,
    },
    {
        "id": "ergo-keyboard",
        "name": "Ergonomic Keyboard",
        "description": "Split ergonomic keyboard designed to reduce strain during long coding sessions.",
        "type": "PHYSICAL", "price": "129.50", "currency": "USD", "stock": 5,
    },
    {
        "id": "invoice-template",
        "name": "Freelancer Invoice Template",
        "description": "Professional, customizable invoice template for freelancers and consultants.",
        "type": "DIGITAL", "price": "9.99", "currency": "USD", "stock": None,
    },
]


def main():
    engine, _ = init_engine_and_session()
    Base.metadata.create_all(engine, checkfirst=True)
    ids = upsert_products(PRODUCTS)
    print(f"Seeded {len(ids)} products: {', '.join(ids)}")


if __name__ == "__main__":
    main()
