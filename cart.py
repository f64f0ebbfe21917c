"""
Per-user cart, likes and purchase history.

Cart and history entries are item snapshots with their own ``cart_id``; they
reference items by id only, so an entry may outlive the item it points to.
"""
import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

import catalog
from models import db, Item, generate_id
from errors import MarketError, ValidationError, NotFoundError
from constants import ITEM_ACTIVE, ITEM_SOLD, ITEM_DELETED

logger = logging.getLogger(__name__)

# Item fields refreshed from the catalog when projecting a cart
SYNCED_FIELDS = ('title', 'description', 'price', 'type', 'category',
                 'image_urls', 'likes', 'status', 'seller_name')


def make_entry(item):
    """Snapshot an item as a cart entry with a fresh cart_id."""
    entry = item.to_dict() if isinstance(item, Item) else dict(item)
    entry['cart_id'] = generate_id()
    return entry


def _check_purchasable(user, item):
    if item.seller_id == user.id:
        raise ValidationError("You cannot buy your own item.")
    if item.status == ITEM_SOLD:
        raise ValidationError("This item has already been sold.")
    if item.status != ITEM_ACTIVE:
        raise ValidationError("This item is not available.")


def add_to_cart(user, item):
    cart = user.cart
    if any(entry.get('id') == item.id for entry in cart):
        raise ValidationError("This item is already in your cart.")
    _check_purchasable(user, item)

    entry = make_entry(item)
    cart.append(entry)
    user.cart = cart
    db.session.commit()
    logger.info(f"{user.username} added item {item.id} to cart")
    return entry


def remove_from_cart(user, cart_id):
    """Remove a cart entry by cart_id. Returns False if there was nothing to remove."""
    cart = user.cart
    remaining = [entry for entry in cart if entry.get('cart_id') != cart_id]
    if len(remaining) == len(cart):
        return False
    user.cart = remaining
    db.session.commit()
    return True


def set_like(user, item_id, liked):
    """Make ``item_id`` present/absent in user.likes. Returns True if the list changed."""
    likes = user.likes
    if liked and item_id not in likes:
        likes.append(item_id)
    elif not liked and item_id in likes:
        likes.remove(item_id)
    else:
        return False
    user.likes = likes
    db.session.commit()
    return True


def toggle_like(user, item_id):
    """
    Like or unlike an item.

    Two separate writes: the user's like list first, then the item's counter
    as an overwrite of the value computed up front. Either write can be
    repeated safely; if the counter write fails it is logged and the user
    write stands.

    Returns ``(liked, item)``; ``item`` is None when unliking an item that no
    longer exists.
    """
    currently_liked = item_id in user.likes
    if currently_liked:
        try:
            item = catalog.get_item(item_id, include_deleted=True)
        except NotFoundError:
            item = None
    else:
        item = catalog.get_item(item_id)

    target_likes = None
    if item is not None:
        current = item.likes or 0
        target_likes = max(0, current - 1) if currently_liked else current + 1

    set_like(user, item_id, not currently_liked)

    if item is not None:
        try:
            catalog.set_likes(item.id, target_likes)
        except (MarketError, SQLAlchemyError) as e:
            db.session.rollback()
            logger.warning(f"Like count sync failed for item {item_id}: {e}")
    return not currently_liked, item


def replace_cart(user, entries):
    """
    Make the cart match a client-side copy of it.

    Only item ids matter: entries already in the cart keep their snapshot
    and cart_id, missing ones are dropped, and new ones must pass the same checks
    as ``add_to_cart``. Nothing is written unless every new item qualifies.
    """
    if not isinstance(entries, list):
        raise ValidationError("cart must be a list")
    wanted = []
    for entry in entries:
        item_id = entry.get('id') if isinstance(entry, dict) else None
        if not item_id or not isinstance(item_id, str):
            raise ValidationError("Every cart entry needs an item id.")
        if item_id in wanted:
            raise ValidationError("This item is already in your cart.")
        wanted.append(item_id)

    held = {entry.get('id') for entry in user.cart}
    new_items = [catalog.get_item(item_id) for item_id in wanted if item_id not in held]
    for item in new_items:
        _check_purchasable(user, item)

    kept = [entry for entry in user.cart if entry.get('id') in wanted]
    user.cart = kept + [make_entry(item) for item in new_items]
    db.session.commit()
    logger.info(f"{user.username} synced cart ({len(user.cart)} item(s))")
    return user.cart


def replace_likes(user, item_ids):
    """Make user.likes match ``item_ids``. Like counters are left to PUT /items/<id>/likes."""
    if not isinstance(item_ids, list) or not all(isinstance(i, str) and i for i in item_ids):
        raise ValidationError("likes must be a list of item ids")
    wanted = list(dict.fromkeys(item_ids))

    for item_id in user.likes:
        if item_id not in wanted:
            set_like(user, item_id, False)
    for item_id in wanted:
        if item_id not in user.likes:
            catalog.get_item(item_id)
            set_like(user, item_id, True)
    return user.likes


def sync_cart_with_catalog(user, items=None):
    """
    Project the user's cart onto the current catalog.

    Entries are refreshed by item id while cart_id is kept. Entries whose
    item is gone keep their snapshot and report status 'deleted'. Nothing is
    written.
    """
    cart = user.cart
    if items is None:
        ids = [entry.get('id') for entry in cart if entry.get('id')]
        items = Item.query.filter(Item.id.in_(ids)).all() if ids else []
    by_id = {item.id: item for item in items}

    projected = []
    for entry in cart:
        refreshed = dict(entry)
        item = by_id.get(entry.get('id'))
        if item is None:
            refreshed['status'] = ITEM_DELETED
        else:
            current = item.to_dict()
            for field in SYNCED_FIELDS:
                refreshed[field] = current[field]
        projected.append(refreshed)
    return projected


def record_purchase(user, snapshot):
    """
    Freeze an item snapshot into the buyer's purchase history.

    Called by the transaction flow on completion; the caller commits.
    """
    entry = make_entry(snapshot)
    entry['purchased_at'] = datetime.utcnow().isoformat()
    history = user.purchase_history
    history.append(entry)
    user.purchase_history = history
    return entry
