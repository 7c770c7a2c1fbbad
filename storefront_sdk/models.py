# storefront_sdk/models.py
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Dict, FrozenSet, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, field_serializer, field_validator


# ---------------------------
# Identities
# ---------------------------
@dataclass(frozen=True)
class TempId:
    """Placeholder identity for an item that has not reached the server yet."""
    seq: int

    def __str__(self) -> str:
        return f"temp-{self.seq}"


@dataclass(frozen=True)
class ServerId:
    value: str

    def __str__(self) -> str:
        return self.value


ItemId = Union[TempId, ServerId]


def as_item_id(value: Any) -> ItemId:
    if isinstance(value, (TempId, ServerId)):
        return value
    if value is None or isinstance(value, bool) or not isinstance(value, (str, int)):
        raise TypeError(f"not an item id: {value!r}")
    return ServerId(str(value))


# ---------------------------
# Collection items
# ---------------------------
class CollectionItem(BaseModel):
    """An entry of a remote collection that can be staged locally."""

    # fields the server owns and never accepts back in a request body
    server_fields: ClassVar[FrozenSet[str]] = frozenset({"id"})

    id: Optional[ItemId] = None

    @field_validator("id", mode="before")
    @classmethod
    def _wrap_id(cls, v):
        if v is None:
            return None
        return as_item_id(v)

    @field_serializer("id", when_used="json")
    def _id_to_str(self, v: Optional[ItemId]):
        return None if v is None else str(v)

    @property
    def is_persisted(self) -> bool:
        return isinstance(self.id, ServerId)

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude=set(self.server_fields))


class Address(CollectionItem):
    server_fields: ClassVar[FrozenSet[str]] = frozenset({"id", "created_at", "updated_at"})

    name: str
    line1: str
    line2: Optional[str] = ""
    city: str
    region: str
    postal_code: str
    country: str = "US"
    is_default: bool = False
    sort_order: int = 0
    type: Literal["shipping", "billing"] = "shipping"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Media(CollectionItem):
    url: str
    thumbnail_url: Optional[str] = None
    alt: str = ""
    sort: int = 0


class OptionValue(BaseModel):
    id: Optional[str] = None
    name: str
    price_adjustment: Decimal = Decimal("0")
    is_default: bool = False
    is_sold_out: bool = False
    sort_order: int = 0


class Option(CollectionItem):
    name: str
    display_name: str = ""
    sort_order: int = 0
    values: List[OptionValue] = []


def address_natural_key(address: Address):
    """Content match used to spot the same address stored twice."""
    return (address.line1, address.city, address.region, address.postal_code)


# ---------------------------
# Catalogue and cart
# ---------------------------
class Product(BaseModel):
    id: str
    name: str
    base_price: Decimal
    quantity: int = 0
    category: Optional[str] = "general"
    options: List[Option] = []


class CartLine(BaseModel):
    product_id: str
    quantity: int
    selected_options: Dict[str, str] = {}
    product: Optional[Product] = None


# ---------------------------
# Option selections
# ---------------------------
@dataclass(frozen=True)
class ByName:
    """Selection keyed by option name -> value name (what the cart stores)."""
    values: Mapping[str, str] = field(default_factory=dict)

    def lookup(self, option: Option) -> Optional[OptionValue]:
        chosen = self.values.get(option.name)
        if chosen is None:
            return None
        return next((v for v in option.values if v.name == chosen), None)


@dataclass(frozen=True)
class ById:
    """Selection keyed by option id -> value id (what the product page stores)."""
    values: Mapping[str, str] = field(default_factory=dict)

    def lookup(self, option: Option) -> Optional[OptionValue]:
        if option.id is None:
            return None
        chosen = self.values.get(str(option.id))
        if chosen is None:
            return None
        return next((v for v in option.values if v.id == chosen), None)


OptionSelection = Union[ByName, ById]
