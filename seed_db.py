import os

from app import app, db
from models import User, Item
import accounts
import catalog

# This script populates your DB with a few demo sellers and listings
DEMO_PASSWORD = os.environ.get('SEED_PASSWORD', 'campus123')

with app.app_context():
    listings = [
        {
            "seller": "xueba_zhang",
            "id": "1",
            "title": "Graduate entrance English vocabulary book (like new)",
            "category": "books",
            "type": "sell",
            "price": 15,
            "description": "Just finished the exam, the book is in great shape. Only the first two chapters have a few notes.",
            "image_urls": ["https://picsum.photos/seed/book1/400/300"],
        },
        {
            "seller": "gadget_fan",
            "id": "2",
            "title": "iPad Air 5 64GB, purple",
            "category": "electronics",
            "type": "sell",
            "price": 2800,
            "description": "Upgraded to a Pro. No scratches, battery health 98%. Case and screen protector included.",
            "image_urls": ["https://picsum.photos/seed/ipad/400/300"],
        },
        {
            "seller": "art_student",
            "id": "3",
            "title": "Acoustic guitar, looking to trade for a skateboard",
            "category": "lifestyle",
            "type": "trade",
            "price": 0,
            "description": "Yamaha F310 with a warm tone. Want to learn skateboarding, longboards preferred.",
            "image_urls": ["https://picsum.photos/seed/guitar/400/300"],
        },
    ]

    for listing in listings:
        seller = User.query.filter_by(username=listing["seller"]).first()
        if not seller:
            seller = accounts.register(listing["seller"], DEMO_PASSWORD)
        if not db.session.get(Item, listing["id"]):
            catalog.create(listing, seller)

    print("✅ Demo listings seeded!")
