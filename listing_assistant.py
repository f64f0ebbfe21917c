"""
Listing assistant: suggests a description and price for a new item.

Backed by Gemini through the ``google-genai`` client. The assistant is a
convenience for sellers, so any failure (no API key, network error,
malformed answer) returns a fixed fallback suggestion instead of an error.
"""
import os
import json
import math
import logging

from google import genai
from google.genai import types

from errors import ValidationError
from constants import (
    ITEM_TYPES, ITEM_TYPE_SELL, CATEGORIES, DEFAULT_CATEGORY,
    MIN_PRICE, MAX_PRICE, MAX_TITLE_LENGTH, MAX_DESCRIPTION_LENGTH,
    ASSISTANT_MODEL, ASSISTANT_FALLBACK_DESCRIPTION,
)

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = (
    "I'm a university student listing an item on the campus second-hand market.\n"
    "Item name: \"{title}\"\n"
    "Category: \"{category}\"\n"
    "Listing type: \"{item_type}\"\n\n"
    "Write a lively, appealing short description (at most 80 words) that highlights "
    "why it suits students. Also estimate a fair second-hand price as a number; "
    "if the listing type is 'trade' or 'free', the price must be 0.\n"
    "Answer in JSON."
)

RESPONSE_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        'description': types.Schema(type=types.Type.STRING),
        'suggested_price': types.Schema(type=types.Type.NUMBER),
    },
    required=['description', 'suggested_price'],
)

_client = None


def get_client():
    """Shared Gemini client, or None when no API key is configured."""
    global _client
    if _client is None:
        api_key = os.environ.get('GEMINI_API_KEY')
        if not api_key:
            return None
        _client = genai.Client(api_key=api_key)
    return _client


def fallback_suggestion():
    return {'description': ASSISTANT_FALLBACK_DESCRIPTION, 'suggested_price': 0.0, 'generated': False}


def _clean_price(value, item_type):
    if item_type != ITEM_TYPE_SELL:
        return 0.0
    price = float(value)
    if not math.isfinite(price):
        raise ValueError("suggested_price is not a number")
    return round(min(max(price, MIN_PRICE), MAX_PRICE), 2)


def suggest_listing(title, category=None, item_type=None, client=None):
    """
    Ask the model for a description and price for a listing.

    Returns ``{'description', 'suggested_price', 'generated'}``. Trade and
    free listings are always priced at 0. Bad input raises ValidationError;
    everything else degrades to ``fallback_suggestion()``.
    """
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title is required.")
    title = title.strip()[:MAX_TITLE_LENGTH]
    category = category or DEFAULT_CATEGORY
    if category not in CATEGORIES:
        raise ValidationError(f"Category must be one of: {', '.join(CATEGORIES)}")
    item_type = item_type or ITEM_TYPE_SELL
    if item_type not in ITEM_TYPES:
        raise ValidationError(f"Type must be one of: {', '.join(ITEM_TYPES)}")

    client = client or get_client()
    if client is None:
        logger.warning("Listing assistant unavailable: GEMINI_API_KEY is not set")
        return fallback_suggestion()

    try:
        response = client.models.generate_content(
            model=os.environ.get('GEMINI_MODEL', ASSISTANT_MODEL),
            contents=PROMPT_TEMPLATE.format(title=title, category=category, item_type=item_type),
            config=types.GenerateContentConfig(
                response_mime_type='application/json',
                response_schema=RESPONSE_SCHEMA,
            ),
        )
        if not response.text:
            raise ValueError("Empty response from model")
        answer = json.loads(response.text)
        description = str(answer['description']).strip()[:MAX_DESCRIPTION_LENGTH]
        if not description:
            raise ValueError("Empty description from model")
        price = _clean_price(answer['suggested_price'], item_type)
    except Exception as e:
        logger.warning(f"Listing assistant failed for {title!r}: {e}")
        return fallback_suggestion()

    return {'description': description, 'suggested_price': price, 'generated': True}
