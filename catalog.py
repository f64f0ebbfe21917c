"""
Item catalog for Campus Idle.

Listing, creating and editing items, status transitions and like counters.
Every write clears the catalog response cache so GET /items never serves a
listing older than the last mutation.
"""
import logging
import math
from datetime import datetime

from flask_caching import Cache
from sqlalchemy import func, or_

from models import db, Item, generate_id
from errors import ValidationError, AuthorizationError, NotFoundError, ConflictError, StateError
from constants import (
    ITEM_TYPES, ITEM_TYPE_SELL, CATEGORIES, DEFAULT_CATEGORY,
    ITEM_ACTIVE, ITEM_SOLD, ITEM_DELETED, ITEM_STATUSES,
    ITEM_STATUS_TRANSITIONS, MARKET_VISIBLE_STATUSES,
    MIN_PRICE, MAX_PRICE, MAX_TITLE_LENGTH, MAX_DESCRIPTION_LENGTH,
    MAX_IMAGES_PER_ITEM, MAX_IMAGE_URL_LENGTH, MAX_LIKES,
)

logger = logging.getLogger(__name__)

cache = Cache()


def invalidate_catalog_cache():
    """Drop cached catalog responses. Best-effort: a cache failure never fails the write."""
    try:
        cache.clear()
    except Exception as e:
        logger.warning(f"Catalog cache invalidation failed: {e}")


# --- VALIDATION HELPERS ---

def validate_price(price):
    """Validate price is within acceptable range"""
    try:
        price_float = float(price)
        if not math.isfinite(price_float):
            return False, "Invalid price format"
        if price_float < MIN_PRICE or price_float > MAX_PRICE:
            return False, f"Price must be between {MIN_PRICE:.2f} and {MAX_PRICE:.2f}"
        return True, price_float
    except (ValueError, TypeError):
        return False, "Invalid price format"


def validate_image_urls(urls):
    """Validate the ordered list of image URLs (0-3 entries)"""
    if urls is None:
        return True, []
    if isinstance(urls, str):
        urls = [urls]
    if not isinstance(urls, (list, tuple)):
        return False, "image_urls must be a list"
    if len(urls) > MAX_IMAGES_PER_ITEM:
        return False, f"At most {MAX_IMAGES_PER_ITEM} images per item"
    cleaned = []
    for url in urls:
        if not isinstance(url, str) or not url.strip():
            return False, "Image URLs must be non-empty strings"
        if len(url) > MAX_IMAGE_URL_LENGTH:
            return False, f"Image URL is too long (max {MAX_IMAGE_URL_LENGTH} characters)"
        cleaned.append(url.strip())
    return True, cleaned


def parse_created_at(value):
    """Accept epoch milliseconds or an ISO 8601 string; None means now."""
    if value is None or value == '':
        return datetime.utcnow()
    if isinstance(value, bool):
        raise ValidationError("Invalid created_at")
    if isinstance(value, (int, float)):
        try:
            return datetime.utcfromtimestamp(value / 1000)
        except (OverflowError, OSError, ValueError):
            raise ValidationError("Invalid created_at timestamp")
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationError("created_at must be epoch milliseconds or an ISO 8601 date")


def clean_item_fields(data):
    """
    Validate the editable fields of an item payload.

    Returns a dict of cleaned values. Missing optional fields get their
    defaults; price is forced to 0 for trade and free listings.
    """
    if not isinstance(data, dict):
        raise ValidationError("Item payload must be an object")

    title = data.get('title') or ''
    if not isinstance(title, str):
        raise ValidationError("Title must be text.")
    title = title.strip()
    if not title:
        raise ValidationError("Title is required.")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title is too long (max {MAX_TITLE_LENGTH} characters).")

    description = data.get('description') or ''
    if not isinstance(description, str):
        raise ValidationError("Description must be text.")
    description = description.strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(f"Description is too long (max {MAX_DESCRIPTION_LENGTH} characters).")

    item_type = data.get('type') or ITEM_TYPE_SELL
    if item_type not in ITEM_TYPES:
        raise ValidationError(f"Type must be one of: {', '.join(ITEM_TYPES)}")

    category = data.get('category') or DEFAULT_CATEGORY
    if category not in CATEGORIES:
        raise ValidationError(f"Category must be one of: {', '.join(CATEGORIES)}")

    if item_type == ITEM_TYPE_SELL:
        if data.get('price') is None:
            raise ValidationError("Price is required for items for sale.")
        valid, price = validate_price(data.get('price'))
        if not valid:
            raise ValidationError(price)
    else:
        price = 0.0

    valid, image_urls = validate_image_urls(data.get('image_urls'))
    if not valid:
        raise ValidationError(image_urls)

    return {
        'title': title,
        'description': description,
        'type': item_type,
        'category': category,
        'price': price,
        'image_urls': image_urls,
    }


# --- QUERIES ---

def get_item(item_id, include_deleted=False):
    item = db.session.get(Item, item_id) if item_id else None
    if item is None or (item.status == ITEM_DELETED and not include_deleted):
        raise NotFoundError(f"Item {item_id} not found")
    return item


def list_active(category=None, item_type=None, search=None):
    """Market view: active and sold items, newest first, with optional filters."""
    query = Item.query.filter(Item.status.in_(MARKET_VISIBLE_STATUSES))

    if category:
        if category not in CATEGORIES:
            raise ValidationError(f"Unknown category: {category}")
        query = query.filter_by(category=category)

    if item_type:
        if item_type not in ITEM_TYPES:
            raise ValidationError(f"Unknown item type: {item_type}")
        query = query.filter_by(type=item_type)

    if search:
        search_pattern = f"%{search.strip()}%"
        query = query.filter(
            or_(
                Item.title.ilike(search_pattern),
                Item.description.ilike(search_pattern)
            )
        )

    return query.order_by(Item.created_at.desc()).all()


def list_by_seller(seller_id):
    """Everything a seller listed that is not deleted, newest first."""
    return (Item.query
            .filter(Item.seller_id == seller_id, Item.status != ITEM_DELETED)
            .order_by(Item.created_at.desc())
            .all())


def market_stats():
    """Per-category count and average price of active listings."""
    rows = (db.session.query(Item.category, func.count(Item.id), func.avg(Item.price))
            .filter(Item.status == ITEM_ACTIVE)
            .group_by(Item.category)
            .all())
    by_category = {category: (count, avg) for category, count, avg in rows}
    stats = []
    for category in CATEGORIES:
        count, avg = by_category.get(category, (0, None))
        stats.append({
            'category': category,
            'count': count,
            'avg_price': round(avg) if count and avg is not None else 0,
        })
    return stats


# --- WRITES ---

def create(data, seller):
    """
    List a new item for ``seller``.

    The server assigns id, created_at, likes and status when the payload
    leaves them out. A client-chosen id must not already exist.
    """
    fields = clean_item_fields(data)

    item_id = data.get('id') or generate_id()
    if not isinstance(item_id, str) or len(item_id) > 32:
        raise ValidationError("Item id must be a string of at most 32 characters")
    if db.session.get(Item, item_id) is not None:
        raise ConflictError(f"Item {item_id} already exists")

    item = Item(
        id=item_id,
        title=fields['title'],
        description=fields['description'],
        price=fields['price'],
        type=fields['type'],
        category=fields['category'],
        seller_id=seller.id,
        seller_name=seller.username,
        created_at=parse_created_at(data.get('created_at')),
        likes=0,
        status=ITEM_ACTIVE,
    )
    item.image_urls = fields['image_urls']
    db.session.add(item)
    db.session.commit()
    invalidate_catalog_cache()
    logger.info(f"Item {item.id} listed by {seller.username}")
    return item


def _check_owner(item, owner_id):
    if owner_id is not None and item.seller_id != owner_id:
        raise AuthorizationError("Only the seller can change this item.")


def _apply_status(item, new_status):
    """Validate a seller-driven transition. Returns False when nothing changes."""
    if new_status not in ITEM_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(ITEM_STATUSES)}")
    if new_status == item.status:
        return False
    if new_status == ITEM_SOLD:
        raise StateError("Items are marked sold by confirming a transaction.")
    if new_status not in ITEM_STATUS_TRANSITIONS[item.status]:
        raise StateError(f"Cannot change item from {item.status} to {new_status}.")
    item.status = new_status
    return True


def update(item_id, data, owner_id=None):
    """Replace every editable field of an item. Status, if present, must be a legal transition."""
    item = get_item(item_id, include_deleted=True)
    _check_owner(item, owner_id)
    if item.status == ITEM_DELETED:
        raise StateError("Deleted items cannot be edited.")

    fields = clean_item_fields(data)
    if data.get('status') is not None:
        _apply_status(item, data['status'])

    item.title = fields['title']
    item.description = fields['description']
    item.price = fields['price']
    item.type = fields['type']
    item.category = fields['category']
    item.image_urls = fields['image_urls']
    db.session.commit()
    invalidate_catalog_cache()
    logger.info(f"Item {item.id} updated")
    return item


def set_status(item_id, new_status, owner_id=None):
    item = get_item(item_id, include_deleted=True)
    _check_owner(item, owner_id)
    if _apply_status(item, new_status):
        db.session.commit()
        invalidate_catalog_cache()
        logger.info(f"Item {item.id} is now {new_status}")
    return item


def soft_delete(item_id, owner_id=None):
    return set_status(item_id, ITEM_DELETED, owner_id=owner_id)


def mark_sold(item):
    """
    Reserve an item for a confirmed transaction.

    Only the transaction flow calls this. The caller commits and then
    invalidates the cache. Deleted items stay deleted.
    """
    if item is None or item.status == ITEM_DELETED:
        return False
    if item.status != ITEM_SOLD:
        item.status = ITEM_SOLD
        logger.info(f"Item {item.id} marked sold")
    return True


def set_likes(item_id, likes):
    """Overwrite the like counter (clamped at 0). Repeating the call is harmless."""
    if isinstance(likes, bool):
        raise ValidationError("likes must be an integer")
    try:
        likes = int(likes)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("likes must be an integer")
    if likes > MAX_LIKES:
        raise ValidationError(f"likes cannot exceed {MAX_LIKES}")
    item = get_item(item_id, include_deleted=True)
    item.likes = max(0, likes)
    db.session.commit()
    invalidate_catalog_cache()
    return item


def increment_likes(item_id):
    item = get_item(item_id, include_deleted=True)
    return set_likes(item_id, (item.likes or 0) + 1)


def decrement_likes(item_id):
    item = get_item(item_id, include_deleted=True)
    return set_likes(item_id, (item.likes or 0) - 1)
