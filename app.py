import os
import logging
import click
from dotenv import load_dotenv
load_dotenv()  # Load .env for local dev

from datetime import datetime
from flask import Flask, request, jsonify
from flask_login import LoginManager, login_required, current_user
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Import Models
from models import db

# Import Services
import accounts
import cart
import catalog
import listing_assistant
import transactions
from catalog import cache
from errors import MarketError, ValidationError, AuthorizationError

# Import Constants
from constants import (
    CATALOG_CACHE_TIMEOUT,
    RATE_LIMIT_DEFAULT, RATE_LIMIT_LOGIN, RATE_LIMIT_REGISTER, RATE_LIMIT_ASSISTANT,
)

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# --- APP CONFIGURATION ---
app = Flask(__name__)

# SECURITY: set SECRET_KEY in the environment for any real deployment
app.secret_key = os.environ.get('SECRET_KEY', 'dev_key_for_local_use')

# 1. DATABASE CONFIGURATION
db_url = os.environ.get('DATABASE_URL')
if db_url:
    # SQLAlchemy needs 'postgresql://', some hosts hand out 'postgres://'
    if db_url.startswith("postgres://"):
        db_url = db_url.replace("postgres://", "postgresql://", 1)
    app.config['SQLALCHEMY_DATABASE_URI'] = db_url
else:
    # Local fallback
    app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///campus_idle.db'

app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

# 2. CACHE CONFIGURATION (catalog listings; cleared on every catalog write)
app.config['CACHE_TYPE'] = os.environ.get('CACHE_TYPE', 'SimpleCache')
app.config['CACHE_DEFAULT_TIMEOUT'] = int(os.environ.get('CACHE_DEFAULT_TIMEOUT', CATALOG_CACHE_TIMEOUT))

# 3. RATE LIMIT CONFIGURATION
app.config['RATELIMIT_ENABLED'] = os.environ.get('RATELIMIT_ENABLED', 'True').lower() == 'true'

# Initialize DB & Migrations
db.init_app(app)
migrate = Migrate(app, db)

cache.init_app(app)

# Rate Limiting
limiter = Limiter(
    key_func=get_remote_address,
    app=app,
    default_limits=RATE_LIMIT_DEFAULT,
    storage_uri=os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')
)
logger.info(f"Rate limiting {'enabled' if app.config['RATELIMIT_ENABLED'] else 'disabled'}")

# LOGIN MANAGER
login_manager = LoginManager()
login_manager.init_app(app)


def get_session_token(req=None):
    """Session token from 'Authorization: Bearer <token>' or the X-Session-Token header."""
    req = req or request
    auth_header = req.headers.get('Authorization', '')
    if auth_header.startswith('Bearer '):
        return auth_header[len('Bearer '):].strip() or None
    return req.headers.get('X-Session-Token') or None


@login_manager.request_loader
def load_user_from_request(req):
    return accounts.resolve_session(get_session_token(req))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'success': False, 'error': 'authentication_required',
                    'message': "Please log in first."}), 401


# --- REQUEST HELPERS ---

def get_payload():
    """JSON body as a dict (empty when absent)."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def require_self(user_id):
    """Users may only read or change their own cart, history and transaction lists."""
    if current_user.id != user_id:
        raise AuthorizationError("You can only access your own account.")


# --- ERROR HANDLERS ---

@app.errorhandler(MarketError)
def market_error(error):
    db.session.rollback()
    logger.warning(f"{error.kind} on {request.method} {request.path}: {error.message}")
    return jsonify(error.to_dict()), error.status_code


@app.errorhandler(404)
def not_found_error(error):
    logger.warning(f"404 error: {request.url}")
    return jsonify({'success': False, 'error': 'not_found', 'message': "Resource not found"}), 404


@app.errorhandler(405)
def method_not_allowed(error):
    return jsonify({'success': False, 'error': 'method_not_allowed',
                    'message': f"{request.method} is not allowed here"}), 405


@app.errorhandler(429)
def rate_limited(error):
    logger.warning(f"429 error: {request.remote_addr} on {request.path}")
    return jsonify({'success': False, 'error': 'rate_limited',
                    'message': "Too many requests. Please slow down."}), 429


@app.errorhandler(500)
def internal_error(error):
    logger.error(f"500 error: {error}", exc_info=True)
    db.session.rollback()
    return jsonify({'success': False, 'error': 'internal_error',
                    'message': "An internal error occurred. Please try again later."}), 500


# =========================================================
# SECTION 1: HEALTH
# =========================================================

@app.route('/health')
def health_check():
    """Health check endpoint for monitoring and load balancers"""
    try:
        db.session.execute(db.text('SELECT 1'))
        return jsonify({
            'status': 'healthy',
            'database': 'connected',
            'timestamp': datetime.utcnow().isoformat()
        }), 200
    except Exception as e:
        logger.error(f"Health check failed: {e}", exc_info=True)
        return jsonify({
            'status': 'unhealthy',
            'error': str(e),
            'timestamp': datetime.utcnow().isoformat()
        }), 503


# =========================================================
# SECTION 2: ITEM CATALOG
# =========================================================

@app.route('/items')
@cache.cached(query_string=True)
def list_items():
    """Market view: active and sold items, newest first"""
    search_query = request.args.get('search', '').strip()
    items = catalog.list_active(
        category=request.args.get('category') or None,
        item_type=request.args.get('type') or None,
        search=search_query or None,
    )
    return jsonify([item.to_dict() for item in items])


@app.route('/items/stats')
@cache.cached()
def item_stats():
    return jsonify(catalog.market_stats())


@app.route('/items/<item_id>')
def item_detail(item_id):
    return jsonify(catalog.get_item(item_id).to_dict())


@app.route('/items/seller/<seller_id>')
def seller_items(seller_id):
    return jsonify([item.to_dict() for item in catalog.list_by_seller(seller_id)])


@app.route('/items', methods=['POST'])
@login_required
def create_item():
    item = catalog.create(get_payload(), current_user)
    return jsonify(item.to_dict()), 201


@app.route('/items/describe', methods=['POST'])
@login_required
@limiter.limit(RATE_LIMIT_ASSISTANT)
def describe_item():
    """Suggested description and price for a listing that is being written"""
    data = get_payload()
    suggestion = listing_assistant.suggest_listing(
        data.get('title'), data.get('category'), data.get('type'))
    return jsonify(suggestion)


@app.route('/items/<item_id>', methods=['PUT'])
@login_required
def update_item(item_id):
    item = catalog.update(item_id, get_payload(), owner_id=current_user.id)
    return jsonify(item.to_dict())


@app.route('/items/<item_id>/status', methods=['PUT'])
@login_required
def update_item_status(item_id):
    status = get_payload().get('status')
    if not status:
        raise ValidationError("status is required")
    item = catalog.set_status(item_id, status, owner_id=current_user.id)
    return jsonify(item.to_dict())


@app.route('/items/<item_id>/likes', methods=['PUT'])
@login_required
def update_item_likes(item_id):
    item = catalog.set_likes(item_id, get_payload().get('likes'))
    return jsonify(item.to_dict())


@app.route('/items/<item_id>/like', methods=['POST'])
@login_required
def toggle_item_like(item_id):
    liked, item = cart.toggle_like(current_user, item_id)
    return jsonify({
        'liked': liked,
        'item_id': item_id,
        'likes': item.likes if item is not None else None,
        'user_likes': current_user.likes,
    })


@app.route('/items/<item_id>', methods=['DELETE'])
@login_required
def delete_item(item_id):
    catalog.soft_delete(item_id, owner_id=current_user.id)
    return jsonify({'success': True, 'message': "Item deleted."})


# =========================================================
# SECTION 3: AUTH
# =========================================================

@app.route('/auth/register', methods=['POST'])
@limiter.limit(RATE_LIMIT_REGISTER)
def register():
    data = get_payload()
    user = accounts.register(data.get('username'), data.get('password'))
    token = accounts.start_session(user)
    return jsonify({'user': user.to_dict(), 'token': token}), 201


@app.route('/auth/login', methods=['POST'])
@limiter.limit(RATE_LIMIT_LOGIN)
def login():
    data = get_payload()
    user, token = accounts.login(data.get('username'), data.get('password'))
    return jsonify({'user': user.to_dict(cart=cart.sync_cart_with_catalog(user)), 'token': token})


@app.route('/auth/logout', methods=['POST'])
@login_required
def logout():
    accounts.logout(get_session_token())
    return jsonify({'success': True, 'message': "Logged out."})


# =========================================================
# SECTION 4: USERS, CART & CHECKOUT
# =========================================================

@app.route('/users/<user_id>')
@login_required
def get_user(user_id):
    """Session resume: the user with their cart refreshed from the catalog"""
    require_self(user_id)
    return jsonify(current_user.to_dict(cart=cart.sync_cart_with_catalog(current_user)))


@app.route('/users/<user_id>', methods=['PUT'])
@login_required
def update_user(user_id):
    require_self(user_id)
    data = get_payload()
    synced_cart = data.pop('cart', None)
    synced_likes = data.pop('likes', None)
    user = accounts.update_profile(current_user, data)
    if synced_cart is not None:
        cart.replace_cart(user, synced_cart)
    if synced_likes is not None:
        cart.replace_likes(user, synced_likes)
    return jsonify(user.to_dict(cart=cart.sync_cart_with_catalog(user)))


@app.route('/users/<user_id>/cart', methods=['POST'])
@login_required
def add_cart_item(user_id):
    require_self(user_id)
    item_id = get_payload().get('item_id')
    if not item_id:
        raise ValidationError("item_id is required")
    entry = cart.add_to_cart(current_user, catalog.get_item(item_id))
    return jsonify({'entry': entry, 'cart': current_user.cart}), 201


@app.route('/users/<user_id>/cart/<cart_id>', methods=['DELETE'])
@login_required
def remove_cart_item(user_id, cart_id):
    require_self(user_id)
    removed = cart.remove_from_cart(current_user, cart_id)
    return jsonify({'removed': removed, 'cart': current_user.cart})


@app.route('/users/<user_id>/checkout', methods=['POST'])
@login_required
def checkout(user_id):
    require_self(user_id)
    cart_ids = get_payload().get('cart_ids')
    if cart_ids is not None and (not isinstance(cart_ids, list)
                                 or not all(isinstance(cart_id, str) for cart_id in cart_ids)):
        raise ValidationError("cart_ids must be a list of cart entry ids")
    created = transactions.checkout(current_user, cart_ids)
    return jsonify([transactions.render(tx) for tx in created]), 201


# =========================================================
# SECTION 5: TRANSACTIONS
# =========================================================

@app.route('/transactions', methods=['POST'])
@login_required
def create_transaction():
    data = get_payload()
    if data.get('buyer_id') and data['buyer_id'] != current_user.id:
        raise AuthorizationError("You can only request items for yourself.")
    if not data.get('item_id'):
        raise ValidationError("item_id is required")
    item = catalog.get_item(data['item_id'])
    tx = transactions.create(
        item.id,
        data.get('seller_id') or item.seller_id,
        current_user.id,
        current_user.username,
    )
    return jsonify(transactions.render(tx)), 201


@app.route('/transactions/seller/<seller_id>')
@login_required
def seller_transactions(seller_id):
    require_self(seller_id)
    return jsonify([transactions.render(tx) for tx in transactions.list_for_seller(seller_id)])


@app.route('/transactions/buyer/<buyer_id>')
@login_required
def buyer_transactions(buyer_id):
    require_self(buyer_id)
    return jsonify([transactions.render(tx) for tx in transactions.list_for_buyer(buyer_id)])


@app.route('/transactions/<transaction_id>/confirm', methods=['PUT'])
@login_required
def confirm_transaction(transaction_id):
    tx = transactions.confirm(transaction_id, actor_id=current_user.id)
    return jsonify(transactions.render(tx))


@app.route('/transactions/<transaction_id>/cancel', methods=['PUT'])
@login_required
def cancel_transaction(transaction_id):
    tx = transactions.cancel(transaction_id, actor_id=current_user.id)
    return jsonify(transactions.render(tx))


@app.route('/transactions/<transaction_id>/complete', methods=['PUT'])
@login_required
def complete_transaction(transaction_id):
    tx = transactions.complete(transaction_id, actor_id=current_user.id)
    return jsonify(transactions.render(tx))


@app.route('/transactions/<transaction_id>', methods=['DELETE'])
@login_required
def delete_transaction(transaction_id):
    requester_id = get_payload().get('user_id') or request.args.get('user_id') or current_user.id
    if requester_id != current_user.id:
        raise AuthorizationError("You can only delete transactions for yourself.")
    transactions.soft_delete(transaction_id, requester_id)
    return jsonify({'success': True, 'message': "Transaction removed from your list."})


# =========================================================
# SECTION 6: CLI
# =========================================================

@app.cli.command('reset-db')
def reset_db_command():
    """Drop every table and recreate the schema from the models (flask reset-db)."""
    db.drop_all()
    db.create_all()
    catalog.invalidate_catalog_cache()
    logger.warning("Database reset: all tables dropped and recreated")
    click.echo("✅ Database has been reset! Run seed_db.py for demo listings.")


if __name__ == '__main__':
    app.run(debug=os.environ.get('FLASK_DEBUG', 'False').lower() == 'true')
