"""
Pydantic schemas for API requests
"""

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, Field


# Amounts arrive as strings or numbers and are converted to Decimal by the core
Amount = Union[str, int, float]


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., max_length=128)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)


class BusinessRegisterRequest(RegisterRequest):
    business_name: str = Field(..., min_length=1, max_length=200)
    business_type: Optional[str] = Field(None, max_length=100)


class LoginRequest(BaseModel):
    email: str
    password: str


class CardSettingsRequest(BaseModel):
    is_active: Optional[bool] = None
    daily_limit: Optional[Amount] = None


# Wallet transactions
class TransferRequest(BaseModel):
    recipient_id: Optional[str] = None
    recipient_email: Optional[str] = None
    amount: Amount
    description: Optional[str] = Field(None, max_length=500)


class WalletMovementRequest(BaseModel):
    amount: Amount
    description: Optional[str] = Field(None, max_length=500)


class FundReserveRequest(BaseModel):
    amount: Amount


# API keys
class CreateAPIKeyRequest(BaseModel):
    name: str
    permissions: Optional[List[str]] = None
    environment: str = Field("live", description="live or test")
    allowed_origins: List[str] = Field(default_factory=list)
    ip_whitelist: List[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None
    requests_per_minute: Optional[int] = None
    requests_per_day: Optional[int] = None
    max_amount_per_transaction: Optional[Amount] = None
    daily_transaction_limit: Optional[Amount] = None


class AllowedOriginsRequest(BaseModel):
    allowed_origins: List[str]


class IPWhitelistRequest(BaseModel):
    ip_whitelist: List[str]


# Public merchant API
class ChargeRequest(BaseModel):
    card_number: str = Field(..., max_length=32)
    cvv: str = Field(..., max_length=8)
    amount: Amount
    description: Optional[str] = Field(None, max_length=500)
    external_reference: Optional[str] = Field(None, max_length=100)


class RefundRequest(BaseModel):
    transaction_id: str
    amount: Optional[Amount] = None
    reason: Optional[str] = Field(None, max_length=500)


class VerifyCardRequest(BaseModel):
    card_number: str = Field(..., max_length=32)
    cvv: str = Field(..., max_length=8)
