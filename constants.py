"""
Application-wide constants for Campus Idle
"""

# Item types: 'sell' has a price, 'trade' and 'free' are always listed at 0
ITEM_TYPE_SELL = 'sell'
ITEM_TYPE_TRADE = 'trade'
ITEM_TYPE_FREE = 'free'
ITEM_TYPES = (ITEM_TYPE_SELL, ITEM_TYPE_TRADE, ITEM_TYPE_FREE)

CATEGORIES = ('books', 'electronics', 'lifestyle', 'clothing', 'other')
DEFAULT_CATEGORY = 'other'

# Item lifecycle
ITEM_ACTIVE = 'active'
ITEM_SOLD = 'sold'
ITEM_OFFLINE = 'offline'
ITEM_DELETED = 'deleted'
ITEM_STATUSES = (ITEM_ACTIVE, ITEM_SOLD, ITEM_OFFLINE, ITEM_DELETED)

# Statuses shown in the public market view (offline/deleted are hidden)
MARKET_VISIBLE_STATUSES = (ITEM_ACTIVE, ITEM_SOLD)

# Status edges a seller may take directly. 'sold' is only reachable through a
# confirmed transaction; 'deleted' is terminal.
ITEM_STATUS_TRANSITIONS = {
    ITEM_ACTIVE: {ITEM_OFFLINE, ITEM_DELETED},
    ITEM_OFFLINE: {ITEM_ACTIVE, ITEM_DELETED},
    ITEM_SOLD: {ITEM_DELETED},
    ITEM_DELETED: set(),
}

# Transaction lifecycle
TX_PENDING = 'pending'
TX_CONFIRMED = 'confirmed'
TX_COMPLETED = 'completed'
TX_CANCELLED = 'cancelled'
TX_STATUSES = (TX_PENDING, TX_CONFIRMED, TX_COMPLETED, TX_CANCELLED)

# Offline hand-off code issued when the seller confirms
TRANSACTION_CODE_LENGTH = 6
TRANSACTION_CODE_ATTEMPTS = 10

# Input Validation
MIN_PRICE = 0.00
MAX_PRICE = 100000.00
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 2000
MAX_IMAGES_PER_ITEM = 3
MAX_IMAGE_URL_LENGTH = 500
MIN_USERNAME_LENGTH = 2
MAX_USERNAME_LENGTH = 50
MIN_PASSWORD_LENGTH = 6
MAX_AVATAR_URL_LENGTH = 500
MAX_LIKES = 2147483647  # Fits a 32-bit INTEGER column

# Avatar generated at registration, seeded by username
AVATAR_URL_TEMPLATE = 'https://api.dicebear.com/7.x/avataaars/svg?seed={username}'

# Sessions
SESSION_TOKEN_BYTES = 32
SESSION_EXPIRY_DAYS = 30

# Listing assistant (Gemini)
ASSISTANT_MODEL = 'gemini-2.5-flash'
ASSISTANT_FALLBACK_DESCRIPTION = "A great find, come take a look! (AI suggestions are unavailable right now)"

# Catalog response cache (seconds)
CATALOG_CACHE_TIMEOUT = 60

# Rate Limiting (requests per time period)
RATE_LIMIT_DEFAULT = ["200 per day", "50 per hour"]
RATE_LIMIT_LOGIN = "5 per minute"
RATE_LIMIT_REGISTER = "3 per hour"
RATE_LIMIT_ASSISTANT = "10 per minute"
