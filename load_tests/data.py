"""
Test data and request payloads for the load-test journey
"""

import random
import string
import time
from typing import Any, Dict, List, Optional

USERS = [
    {"username": "testuser1", "email": "test1@example.com"},
    {"username": "testuser2", "email": "test2@example.com"},
    {"username": "testuser3", "email": "test3@example.com"},
]

SEARCH_TERMS = ["electronics", "books", "clothing"]

STATIC_ASSETS = ["/css/main.css", "/js/app.js", "/images/logo.png"]


def random_suffix(length: int = 9) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def registration_payload() -> Dict[str, str]:
    """Registration body with a username unique to this call"""
    user = random.choice(USERS)
    return {
        "username": f"{user['username']}_{int(time.time() * 1000)}_{random_suffix()}",
        "email": user["email"],
        "password": "testpassword123",
    }


def order_payload(product: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "productId": product.get("id"),
        "quantity": random.randint(1, 5),
        "customerEmail": f"test{random_suffix()}@example.com",
    }


def json_body(response) -> Optional[Any]:
    """Decoded JSON body, or None when the body is not JSON"""
    try:
        return response.json()
    except ValueError:
        return None


def first_product(body: Any) -> Optional[Dict[str, Any]]:
    if isinstance(body, list) and body and isinstance(body[0], dict):
        return body[0]
    return None


def has_key(body: Any, key: str) -> bool:
    return isinstance(body, dict) and body.get(key) is not None


def is_json(response) -> bool:
    return "application/json" in response.headers.get("Content-Type", "")


def search_path(terms: List[str] = SEARCH_TERMS) -> str:
    return f"/api/products/search?q={random.choice(terms)}"
