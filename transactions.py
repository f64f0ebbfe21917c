"""
Transaction handshake between a buyer and a seller.

    pending --confirm--> confirmed --complete--> completed
       \--cancel--> cancelled

Confirming issues a 6-digit hand-off code and marks the item sold, which
also cancels any other pending requests for the same item. Completing
records the purchase in the buyer's history. Either party can hide a
transaction from their own list without affecting the other.
"""
import logging
import secrets
from datetime import datetime

import cart
import catalog
from models import db, Item, User, Transaction
from errors import ValidationError, AuthorizationError, NotFoundError, StateError
from constants import (
    ITEM_ACTIVE,
    TX_PENDING, TX_CONFIRMED, TX_COMPLETED, TX_CANCELLED,
    TRANSACTION_CODE_LENGTH, TRANSACTION_CODE_ATTEMPTS,
)

logger = logging.getLogger(__name__)


def generate_transaction_code():
    """Uniformly random numeric code, zero-padded to TRANSACTION_CODE_LENGTH digits."""
    return f"{secrets.randbelow(10 ** TRANSACTION_CODE_LENGTH):0{TRANSACTION_CODE_LENGTH}d}"


def _unique_transaction_code():
    # Collisions are harmless but cheap to avoid among codes still in use
    code = generate_transaction_code()
    for _ in range(TRANSACTION_CODE_ATTEMPTS):
        in_use = Transaction.query.filter_by(status=TX_CONFIRMED, transaction_code=code).first()
        if in_use is None:
            break
        code = generate_transaction_code()
    return code


def get_transaction(transaction_id):
    tx = db.session.get(Transaction, transaction_id) if transaction_id else None
    if tx is None:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return tx


def render(tx):
    """JSON-ready view of a transaction, using its snapshot if the item is gone."""
    item = db.session.get(Item, tx.item_id)
    return tx.to_dict(item=item)


def _build(item, seller_id, buyer_id, buyer_name):
    if item.status != ITEM_ACTIVE:
        raise StateError(f"Item '{item.title}' is not available.")
    if seller_id != item.seller_id:
        raise ValidationError("Seller does not match the item.")
    if buyer_id == item.seller_id:
        raise ValidationError("You cannot buy your own item.")
    tx = Transaction(
        item_id=item.id,
        seller_id=item.seller_id,
        seller_name=item.seller_name,
        buyer_id=buyer_id,
        buyer_name=buyer_name,
        status=TX_PENDING,
    )
    tx.item_snapshot = item.to_dict()
    db.session.add(tx)
    return tx


def create(item_id, seller_id, buyer_id, buyer_name):
    """Open a pending request for an active item. The item itself is not reserved."""
    item = catalog.get_item(item_id)
    tx = _build(item, seller_id, buyer_id, buyer_name)
    db.session.commit()
    logger.info(f"Transaction {tx.id} requested by {buyer_name} for item {item.id}")
    return tx


def checkout(buyer, cart_ids=None):
    """
    Turn cart entries into pending transactions.

    All entries are checked out unless ``cart_ids`` selects some. Every
    selected item must still be available, otherwise nothing is created.
    Checked-out entries leave the cart.
    """
    entries = buyer.cart
    if cart_ids is not None:
        wanted = set(cart_ids)
        selected = [entry for entry in entries if entry.get('cart_id') in wanted]
        missing = wanted - {entry.get('cart_id') for entry in selected}
        if missing:
            raise NotFoundError(f"Cart entries not found: {', '.join(sorted(missing))}")
    else:
        selected = list(entries)
    if not selected:
        raise ValidationError("Your cart is empty.")

    created = []
    try:
        for entry in selected:
            item = catalog.get_item(entry.get('id'))
            created.append(_build(item, item.seller_id, buyer.id, buyer.username))
    except Exception:
        db.session.rollback()
        raise

    checked_out = {entry.get('cart_id') for entry in selected}
    buyer.cart = [entry for entry in entries if entry.get('cart_id') not in checked_out]
    db.session.commit()
    logger.info(f"{buyer.username} checked out {len(created)} item(s)")
    return created


def _check_actor(tx, actor_id, role):
    if actor_id is None:
        return
    expected = tx.seller_id if role == 'seller' else tx.buyer_id
    if actor_id != expected:
        raise AuthorizationError(f"Only the {role} can do that.")


def _require_status(tx, status, action):
    if tx.status != status:
        logger.warning(f"Rejected {action} on transaction {tx.id} in status {tx.status}")
        raise StateError(f"Cannot {action} a transaction that is {tx.status}.")


def confirm(transaction_id, actor_id=None):
    """Seller accepts a pending request: issue the code and reserve the item."""
    tx = get_transaction(transaction_id)
    _check_actor(tx, actor_id, 'seller')
    _require_status(tx, TX_PENDING, 'confirm')

    item = db.session.get(Item, tx.item_id)
    if item is None or item.status != ITEM_ACTIVE:
        raise StateError("This item is no longer available.")

    now = datetime.utcnow()
    tx.status = TX_CONFIRMED
    tx.transaction_code = _unique_transaction_code()
    tx.confirmed_at = now
    catalog.mark_sold(item)

    competing = Transaction.query.filter(
        Transaction.item_id == tx.item_id,
        Transaction.id != tx.id,
        Transaction.status == TX_PENDING,
    ).all()
    for other in competing:
        other.status = TX_CANCELLED
        other.cancelled_at = now

    db.session.commit()
    catalog.invalidate_catalog_cache()
    logger.info(f"Transaction {tx.id} confirmed; {len(competing)} competing request(s) cancelled")
    return tx


def cancel(transaction_id, actor_id=None):
    """Seller declines a pending request. The item was never reserved, so it stays as is."""
    tx = get_transaction(transaction_id)
    _check_actor(tx, actor_id, 'seller')
    _require_status(tx, TX_PENDING, 'cancel')
    tx.status = TX_CANCELLED
    tx.cancelled_at = datetime.utcnow()
    db.session.commit()
    logger.info(f"Transaction {tx.id} cancelled")
    return tx


def complete(transaction_id, actor_id=None):
    """Buyer confirms receipt: close the transaction and log the purchase."""
    tx = get_transaction(transaction_id)
    _check_actor(tx, actor_id, 'buyer')
    _require_status(tx, TX_CONFIRMED, 'complete')

    tx.status = TX_COMPLETED
    tx.completed_at = datetime.utcnow()

    item = db.session.get(Item, tx.item_id)
    catalog.mark_sold(item)

    buyer = db.session.get(User, tx.buyer_id)
    if buyer is None:
        logger.warning(f"Buyer {tx.buyer_id} of transaction {tx.id} no longer exists")
    else:
        snapshot = item.to_dict() if item is not None else tx.item_snapshot
        cart.record_purchase(buyer, snapshot)

    db.session.commit()
    catalog.invalidate_catalog_cache()
    logger.info(f"Transaction {tx.id} completed")
    return tx


def soft_delete(transaction_id, requester_id):
    """Hide a transaction from the requester's list. The row is kept."""
    tx = get_transaction(transaction_id)
    if requester_id == tx.buyer_id:
        tx.buyer_deleted = True
    elif requester_id == tx.seller_id:
        tx.seller_deleted = True
    else:
        raise AuthorizationError("Only the buyer or seller can delete this transaction.")
    db.session.commit()
    return tx


def list_for_seller(seller_id):
    return (Transaction.query
            .filter_by(seller_id=seller_id, seller_deleted=False)
            .order_by(Transaction.created_at.desc())
            .all())


def list_for_buyer(buyer_id):
    return (Transaction.query
            .filter_by(buyer_id=buyer_id, buyer_deleted=False)
            .order_by(Transaction.created_at.desc())
            .all())
