import json
import uuid
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from datetime import datetime

from constants import ITEM_ACTIVE, ITEM_DELETED, ITEM_TYPE_SELL, DEFAULT_CATEGORY, TX_PENDING

db = SQLAlchemy()


def generate_id():
    return uuid.uuid4().hex


def _load_json(raw, default):
    """Parse a JSON text column, falling back to ``default`` for empty/corrupt values."""
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def _iso(value):
    return value.isoformat() if value else None


class User(UserMixin, db.Model):
    id = db.Column(db.String(32), primary_key=True, default=generate_id)
    username = db.Column(db.String(50), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    avatar = db.Column(db.String(500), nullable=True)

    # Serialized JSON lists, parsed through the properties below
    cart_json = db.Column(db.Text, default='[]')
    likes_json = db.Column(db.Text, default='[]')
    purchase_history_json = db.Column(db.Text, default='[]')

    date_joined = db.Column(db.DateTime, default=datetime.utcnow)
    items = db.relationship('Item', backref='seller', lazy=True)

    @property
    def cart(self):
        return _load_json(self.cart_json, [])

    @cart.setter
    def cart(self, entries):
        self.cart_json = json.dumps(list(entries))

    @property
    def likes(self):
        return _load_json(self.likes_json, [])

    @likes.setter
    def likes(self, item_ids):
        self.likes_json = json.dumps(list(item_ids))

    @property
    def purchase_history(self):
        return _load_json(self.purchase_history_json, [])

    @purchase_history.setter
    def purchase_history(self, entries):
        self.purchase_history_json = json.dumps(list(entries))

    def to_dict(self, cart=None):
        """Public representation. ``cart`` overrides the stored cart (e.g. a synced projection)."""
        return {
            'id': self.id,
            'username': self.username,
            'avatar': self.avatar,
            'cart': self.cart if cart is None else cart,
            'likes': self.likes,
            'purchase_history': self.purchase_history,
            'date_joined': _iso(self.date_joined),
        }


class Item(db.Model):
    id = db.Column(db.String(32), primary_key=True, default=generate_id)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Float, default=0.0)
    type = db.Column(db.String(20), default=ITEM_TYPE_SELL)
    category = db.Column(db.String(20), default=DEFAULT_CATEGORY)
    image_urls_json = db.Column(db.Text, default='[]')

    seller_id = db.Column(db.String(32), db.ForeignKey('user.id'), nullable=False, index=True)
    seller_name = db.Column(db.String(50), nullable=True)  # Snapshot of seller's username at listing time

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    likes = db.Column(db.Integer, default=0)
    status = db.Column(db.String(20), default=ITEM_ACTIVE, index=True)

    @property
    def image_urls(self):
        return _load_json(self.image_urls_json, [])

    @image_urls.setter
    def image_urls(self, urls):
        self.image_urls_json = json.dumps(list(urls))

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'price': self.price,
            'type': self.type,
            'category': self.category,
            'image_urls': self.image_urls,
            'seller_id': self.seller_id,
            'seller_name': self.seller_name,
            'created_at': _iso(self.created_at),
            'likes': self.likes or 0,
            'status': self.status,
        }


class Transaction(db.Model):
    """One buyer's attempt to acquire one item from its seller"""
    id = db.Column(db.String(32), primary_key=True, default=generate_id)

    # Weak references: the item or either user may be gone later
    item_id = db.Column(db.String(32), nullable=False, index=True)
    seller_id = db.Column(db.String(32), nullable=False, index=True)
    buyer_id = db.Column(db.String(32), nullable=False, index=True)

    # Denormalized at request time so the record still renders after deletes
    buyer_name = db.Column(db.String(50), nullable=True)
    seller_name = db.Column(db.String(50), nullable=True)
    item_snapshot_json = db.Column(db.Text, default='{}')

    status = db.Column(db.String(20), default=TX_PENDING, index=True)
    transaction_code = db.Column(db.String(6), nullable=True)  # Set only when confirmed

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    confirmed_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    # Per-party visibility; the row itself is never removed
    buyer_deleted = db.Column(db.Boolean, default=False)
    seller_deleted = db.Column(db.Boolean, default=False)

    @property
    def item_snapshot(self):
        return _load_json(self.item_snapshot_json, {})

    @item_snapshot.setter
    def item_snapshot(self, snapshot):
        self.item_snapshot_json = json.dumps(dict(snapshot))

    def to_dict(self, item=None):
        """Render the record. ``item`` is the live item if it still exists."""
        snapshot = self.item_snapshot
        return {
            'id': self.id,
            'item_id': self.item_id,
            'seller_id': self.seller_id,
            'seller_name': self.seller_name,
            'buyer_id': self.buyer_id,
            'buyer_name': self.buyer_name,
            'item': item.to_dict() if item is not None else snapshot,
            'item_available': item is not None and item.status != ITEM_DELETED,
            'status': self.status,
            'transaction_code': self.transaction_code,
            'created_at': _iso(self.created_at),
            'confirmed_at': _iso(self.confirmed_at),
            'completed_at': _iso(self.completed_at),
            'cancelled_at': _iso(self.cancelled_at),
            'buyer_deleted': bool(self.buyer_deleted),
            'seller_deleted': bool(self.seller_deleted),
        }


class UserSession(db.Model):
    """Login session resolved from the token a client sends with each request"""
    id = db.Column(db.Integer, primary_key=True)
    token = db.Column(db.String(64), unique=True, nullable=False, index=True)
    user_id = db.Column(db.String(32), db.ForeignKey('user.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
