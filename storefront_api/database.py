import asyncio
import itertools
from typing import Dict, Any, List

# This file holds all the in-memory data stores and concurrency locks.

PRODUCTS: Dict[str, Dict[str, Any]] = {}
OPTIONS: Dict[str, Dict[str, Dict[str, Any]]] = {}     # product_id -> option_id -> option
MEDIA: Dict[str, Dict[str, Dict[str, Any]]] = {}       # product_id -> media_id -> media
ADDRESSES: Dict[str, Dict[str, Dict[str, Any]]] = {}   # user_email -> address_id -> address
CARTS: Dict[str, List[Dict[str, Any]]] = {}
_LOCKS: Dict[str, asyncio.Lock] = {}

# insertion sequence, used to break sort ties the way created_at would
_SEQ = itertools.count(1)

def _next_seq() -> int:
    return next(_SEQ)

def _get_lock(key: str) -> asyncio.Lock:
    if key not in _LOCKS:
        _LOCKS[key] = asyncio.Lock()
    return _LOCKS[key]

def reset_all():
    PRODUCTS.clear()
    OPTIONS.clear()
    MEDIA.clear()
    ADDRESSES.clear()
    CARTS.clear()
    _LOCKS.clear()
