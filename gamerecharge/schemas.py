"""
Request bodies for the JSON API.

Localized text is an object with both ``en`` and ``zh``; prices are integer
cents keyed by lowercase currency code, ``usd`` required.
"""
from typing import Annotated, Any, Dict, Literal, Optional

from pydantic import (
    AfterValidator, BaseModel, BeforeValidator, Field, field_validator,
    model_validator,
)

from .helpers import is_valid_email


class LocalizedText(BaseModel):
    en: str = Field(..., min_length=1)
    zh: str = Field(..., min_length=1)

    @field_validator("en", "zh")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


def _check_email(v: str) -> str:
    v = (v or "").strip().lower()
    if not is_valid_email(v):
        raise ValueError("Invalid email address")
    return v


def _check_prices(v: Any) -> Any:
    if v is None:
        return v
    if not isinstance(v, dict):
        raise ValueError("prices must be an object of currency -> cents")
    out = {}
    for cur, cents in v.items():
        if isinstance(cents, bool) or not isinstance(cents, int):
            raise ValueError(f"{cur} price must be an integer in cents")
        if cents < 1:
            raise ValueError(f"{cur} price must be at least 1 cent")
        out[str(cur).lower()] = cents
    if "usd" not in out:
        raise ValueError("USD price is required")
    return out


def _check_url(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not (v.startswith("http://") or v.startswith("https://")
            or v.startswith("/")):
        raise ValueError("Invalid URL")
    return v


Email = Annotated[str, AfterValidator(_check_email)]
Url = Annotated[Optional[str], Field(max_length=500),
                AfterValidator(_check_url)]
Prices = Annotated[Dict[str, int], BeforeValidator(_check_prices)]


# ----------------------------
# Auth
# ----------------------------
class LoginRequest(BaseModel):
    email: Email
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    email: Email
    password: str = Field(..., min_length=8)
    confirm_password: str = Field(..., alias="confirmPassword")
    role: Literal["USER", "MERCHANT"] = "USER"
    merchant_name: Optional[str] = Field(None, alias="merchantName")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _check(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        if self.role == "MERCHANT" and not (self.merchant_name or "").strip():
            raise ValueError("Merchant name is required for merchants")
        return self


class EnsureProfileRequest(BaseModel):
    user_id: str = Field(..., alias="userId", min_length=1)
    email: Email

    model_config = {"populate_by_name": True}


# ----------------------------
# Catalog
# ----------------------------
class GameCreate(BaseModel):
    name: LocalizedText
    description: Optional[LocalizedText] = None
    banner_url: Url = Field(None, alias="bannerUrl")

    model_config = {"populate_by_name": True}


class GameUpdate(BaseModel):
    name: Optional[LocalizedText] = None
    description: Optional[LocalizedText] = None
    banner_url: Url = Field(None, alias="bannerUrl")

    model_config = {"populate_by_name": True}


class SkuCreate(BaseModel):
    name: LocalizedText
    description: Optional[LocalizedText] = None
    prices: Prices
    image_url: Url = Field(None, alias="imageUrl")

    model_config = {"populate_by_name": True}


class SkuUpdate(BaseModel):
    name: Optional[LocalizedText] = None
    description: Optional[LocalizedText] = None
    prices: Optional[Prices] = None
    image_url: Url = Field(None, alias="imageUrl")

    model_config = {"populate_by_name": True}


# ----------------------------
# Checkout
# ----------------------------
class CheckoutRequest(BaseModel):
    sku_id: str = Field(..., alias="skuId", min_length=1)
    locale: Literal["en", "zh"] = "en"

    model_config = {"populate_by_name": True}


# ----------------------------
# Admin
# ----------------------------
class RoleUpdate(BaseModel):
    role: Literal["USER", "MERCHANT", "ADMIN"]
    merchant_name: Optional[str] = Field(None, alias="merchantName")

    model_config = {"populate_by_name": True}


class MerchantCreate(BaseModel):
    email: Email
    merchant_name: str = Field(..., alias="merchantName", min_length=1)
    password: str = Field(..., min_length=8)

    model_config = {"populate_by_name": True}


class GameStatusUpdate(BaseModel):
    status: Literal["active", "inactive", "suspended"]


class OrderStatusUpdate(BaseModel):
    status: Literal["pending", "completed", "failed", "refunded"]
    refund_amount: Optional[int] = Field(None, alias="refundAmount", ge=0)

    model_config = {"populate_by_name": True}
