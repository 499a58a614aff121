"""
Business account and API key management endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .dependencies import (
    PaymentSystem, get_payment_system, get_current_business, require_role
)
from .schemas import (
    BusinessRegisterRequest, CreateAPIKeyRequest, AllowedOriginsRequest, IPWhitelistRequest
)
from ..accounts import Account, Role
from ..api_keys import KeyEnvironment
from ..errors import ErrorCode, PaymentError


router = APIRouter()


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_business(
    request: BusinessRegisterRequest,
    system: PaymentSystem = Depends(get_payment_system)
):
    """Register a business account; it stays unverified until an admin verifies it"""
    account = system.account_manager.register_business(
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name,
        business_name=request.business_name,
        business_type=request.business_type or ""
    ).unwrap().account

    return {
        "success": True,
        "message": "Business registered. Verification is required before API keys can be created.",
        "data": {
            "token": system.create_access_token(account),
            "business": system.account_manager.profile_view(account)
        }
    }


@router.get("/profile")
async def get_business_profile(
    business: Account = Depends(get_current_business),
    system: PaymentSystem = Depends(get_payment_system)
):
    profile = system.account_manager.profile_view(business)
    profile["active_api_keys"] = len([k for k in system.key_registry.list_keys(business.id) if k.is_active])
    return {"success": True, "data": profile}


@router.post("/api-keys", status_code=status.HTTP_201_CREATED)
async def create_api_key(
    request: CreateAPIKeyRequest,
    business: Account = Depends(get_current_business),
    system: PaymentSystem = Depends(get_payment_system)
):
    """Create an API key; the plaintext key appears in this response only"""
    try:
        environment = KeyEnvironment(request.environment)
    except ValueError:
        raise PaymentError(ErrorCode.VALIDATION_ERROR, "environment must be 'live' or 'test'.")

    created = system.key_registry.create_key(
        business.id,
        request.name,
        permissions=request.permissions,
        environment=environment,
        allowed_origins=request.allowed_origins,
        ip_whitelist=request.ip_whitelist,
        expires_at=request.expires_at,
        requests_per_minute=request.requests_per_minute,
        requests_per_day=request.requests_per_day,
        max_amount_per_transaction=request.max_amount_per_transaction,
        daily_transaction_limit=request.daily_transaction_limit
    ).unwrap()

    data = created.api_key.public_view()
    data["key"] = created.plain_key
    return {
        "success": True,
        "message": "API key generated successfully. Save this key securely - it won't be shown again.",
        "data": data
    }


@router.get("/api-keys")
async def list_api_keys(
    business: Account = Depends(get_current_business),
    system: PaymentSystem = Depends(get_payment_system)
):
    keys = system.key_registry.list_keys(business.id)
    return {"success": True, "count": len(keys), "data": [k.public_view() for k in keys]}


@router.delete("/api-keys/{key_id}")
async def revoke_api_key(
    key_id: str,
    reason: Optional[str] = None,
    business: Account = Depends(get_current_business),
    system: PaymentSystem = Depends(get_payment_system)
):
    api_key = system.key_registry.revoke_key(business.id, key_id, reason).unwrap()
    return {
        "success": True,
        "message": "API key revoked successfully",
        "data": {
            "key_prefix": api_key.key_prefix,
            "name": api_key.name,
            "revoked_at": api_key.revoked_at.isoformat()
        }
    }


@router.put("/api-keys/{key_id}/origins")
async def update_allowed_origins(
    key_id: str,
    request: AllowedOriginsRequest,
    business: Account = Depends(get_current_business),
    system: PaymentSystem = Depends(get_payment_system)
):
    api_key = system.key_registry.update_allowed_origins(business.id, key_id, request.allowed_origins).unwrap()
    return {"success": True, "data": api_key.public_view()}


@router.put("/api-keys/{key_id}/ip-whitelist")
async def update_ip_whitelist(
    key_id: str,
    request: IPWhitelistRequest,
    business: Account = Depends(get_current_business),
    system: PaymentSystem = Depends(get_payment_system)
):
    api_key = system.key_registry.update_ip_whitelist(business.id, key_id, request.ip_whitelist).unwrap()
    return {"success": True, "data": api_key.public_view()}


@router.get("/pending")
async def list_pending_businesses(
    admin: Account = Depends(require_role(Role.ADMIN)),
    system: PaymentSystem = Depends(get_payment_system)
):
    businesses = system.account_manager.list_pending_businesses()
    return {
        "success": True,
        "count": len(businesses),
        "data": [system.account_manager.profile_view(b) for b in businesses]
    }


@router.get("/verified")
async def list_verified_businesses(
    admin: Account = Depends(require_role(Role.ADMIN)),
    system: PaymentSystem = Depends(get_payment_system)
):
    businesses = system.account_manager.list_verified_businesses()
    return {
        "success": True,
        "count": len(businesses),
        "data": [system.account_manager.profile_view(b) for b in businesses]
    }


@router.put("/{business_id}/verify")
async def verify_business(
    business_id: str,
    admin: Account = Depends(require_role(Role.ADMIN)),
    system: PaymentSystem = Depends(get_payment_system)
):
    business = system.account_manager.verify_business(business_id, admin).unwrap()
    return {
        "success": True,
        "message": "Business verified successfully",
        "data": system.account_manager.profile_view(business)
    }
