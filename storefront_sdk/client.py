# storefront_sdk/client.py
import logging
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar, Union

import httpx
import requests

from . import config
from .errors import RemoteError
from .models import Address, CollectionItem, Media, Option, Product
from .staging import CollectionRemote

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=CollectionItem)


def _error_message(r) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.text or f"HTTP {r.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body)
    return str(body)


def _money(value: Union[Decimal, int, str]) -> str:
    return str(Decimal(str(value)))


class StoreClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        session=None,
    ):
        self.base_url = (base_url or config.STORE_BASE_URL).rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout if timeout is not None else config.STORE_TIMEOUT
        api_key = api_key or config.STORE_API_KEY
        if api_key:
            self.session.headers.update({"Authorization": f"Bearer {api_key}"})

    def _check(self, r):
        if r.status_code >= 400:
            raise RemoteError(_error_message(r), r.status_code)
        return r

    def reset(self):
        return self._check(self.session.post(f"{self.base_url}/reset", timeout=self.timeout)).json()

    # Seller: register product
    def register_product(
        self,
        name: str,
        base_price: Union[Decimal, int, str],
        quantity: int,
        category: str = "general",
        options: Optional[List[Dict[str, Any]]] = None,
    ) -> Product:
        r = self.session.post(f"{self.base_url}/seller/products", json={
            "name": name,
            "base_price": _money(base_price),
            "quantity": quantity,
            "category": category,
            "options": options or [],
        }, timeout=self.timeout)
        self._check(r)
        return Product.model_validate(r.json()["product"])

    def list_products(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        available_only: bool = False,
        page: int = 1,
        page_size: int = 20,
    ) -> List[Product]:
        params: Dict[str, Any] = {"page": page, "page_size": page_size}
        if category:
            params["category"] = category
        if search:
            params["search"] = search
        if available_only:
            params["available_only"] = "true"
        r = self._check(self.session.get(f"{self.base_url}/products", params=params, timeout=self.timeout))
        return [Product.model_validate(p) for p in r.json()["products"]]

    def search_products(self, name: str) -> List[Product]:
        r = self._check(self.session.get(f"{self.base_url}/products/search", params={"name": name}, timeout=self.timeout))
        return [Product.model_validate(p) for p in r.json()]

    def get_product(self, product_id: str) -> Product:
        r = self._check(self.session.get(f"{self.base_url}/products/{product_id}", timeout=self.timeout))
        return Product.model_validate(r.json())

    # Cart
    def add_to_cart(self, user_email: str, product_id: str, quantity: int = 1, selected_options: Optional[Dict[str, str]] = None):
        r = self.session.post(f"{self.base_url}/cart/add", json={
            "user_email": user_email,
            "product_id": product_id,
            "quantity": quantity,
            "selected_options": selected_options or {},
        }, timeout=self.timeout)
        return self._check(r).json()

    def remove_from_cart(self, user_email: str, product_id: str, quantity: Optional[int] = None):
        payload: Dict[str, Any] = {"user_email": user_email, "product_id": product_id}
        if quantity is not None:
            payload["quantity"] = int(quantity)
        r = self.session.post(f"{self.base_url}/cart/remove", json=payload, timeout=self.timeout)
        return self._check(r).json()

    def view_cart(self, user_email: str):
        r = self._check(self.session.get(f"{self.base_url}/cart/{user_email}", timeout=self.timeout))
        return r.json()


# ---------------------------
# Async collections (used by the staged editors)
# ---------------------------
async def _send(http: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
    try:
        r = await http.request(method, url, **kwargs)
    except httpx.HTTPError as e:
        raise RemoteError(f"{method} {url}: {e}") from e
    if r.status_code >= 400:
        raise RemoteError(_error_message(r), r.status_code)
    return r


class AsyncCollectionClient(CollectionRemote[T], Generic[T]):
    def __init__(self, http: httpx.AsyncClient, path: str, model: Type[T]):
        self.http = http
        self.path = path.rstrip("/")
        self.model = model

    async def list(self) -> List[T]:
        r = await _send(self.http, "GET", self.path)
        return [self.model.model_validate(d) for d in r.json()]

    async def create(self, payload: Dict[str, Any]) -> T:
        r = await _send(self.http, "POST", self.path, json=payload)
        logger.debug("created %s", self.path)
        return self.model.model_validate(r.json())

    async def update(self, item_id: str, payload: Dict[str, Any]) -> T:
        r = await _send(self.http, "PUT", f"{self.path}/{item_id}", json=payload)
        return self.model.model_validate(r.json())

    async def delete(self, item_id: str) -> None:
        await _send(self.http, "DELETE", f"{self.path}/{item_id}")

    async def reorder(self, entries: List[Dict[str, Any]]) -> List[T]:
        r = await _send(self.http, "PUT", f"{self.path}/reorder", json=entries)
        return [self.model.model_validate(d) for d in r.json()]


class AsyncStoreClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {}
        api_key = api_key or config.STORE_API_KEY
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.http = httpx.AsyncClient(
            base_url=(base_url or config.STORE_BASE_URL).rstrip("/"),
            timeout=timeout if timeout is not None else config.STORE_TIMEOUT,
            headers=headers,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self.http.aclose()

    async def list_products(
        self,
        category: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"page": page, "page_size": page_size}
        if category:
            params["category"] = category
        if search:
            params["search"] = search
        r = await _send(self.http, "GET", "/products", params=params)
        body = r.json()
        body["products"] = [Product.model_validate(p) for p in body["products"]]
        return body

    async def get_product(self, product_id: str) -> Product:
        r = await _send(self.http, "GET", f"/products/{product_id}")
        return Product.model_validate(r.json())

    def addresses(self, user_email: str) -> AsyncCollectionClient[Address]:
        return AsyncCollectionClient(self.http, f"/users/{user_email}/addresses", Address)

    def options(self, product_id: str) -> AsyncCollectionClient[Option]:
        return AsyncCollectionClient(self.http, f"/products/{product_id}/options", Option)

    def media(self, product_id: str) -> AsyncCollectionClient[Media]:
        return AsyncCollectionClient(self.http, f"/products/{product_id}/media", Media)
