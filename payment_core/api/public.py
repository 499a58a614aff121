"""
Public merchant API (X-API-Key authenticated)
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .dependencies import (
    PaymentSystem, get_payment_system, get_api_context, require_api_permission,
    limit_card_verification
)
from .schemas import ChargeRequest, RefundRequest, VerifyCardRequest
from ..api_keys import Permission
from ..gateway import AuthContext
from ..transactions import MAX_PAGE_SIZE, DEFAULT_PAGE_SIZE


router = APIRouter()


@router.get("/verify")
async def verify_api_key(context: AuthContext = Depends(get_api_context)):
    """Confirm a key works and show what it may do"""
    return {
        "success": True,
        "message": "API key is valid",
        "data": {
            "business_name": context.business.business.business_name,
            "key_prefix": context.api_key.key_prefix,
            "environment": context.api_key.environment.value,
            "permissions": [p.value for p in context.api_key.permissions]
        }
    }


@router.post("/transactions/charge", status_code=status.HTTP_201_CREATED)
async def charge_card(
    request: ChargeRequest,
    context: AuthContext = Depends(require_api_permission(Permission.CHARGE)),
    system: PaymentSystem = Depends(get_payment_system)
):
    """Charge a customer's virtual card"""
    system.gateway.check_transaction_limit(context, request.amount).unwrap()
    result = system.ledger.charge(
        context.business_id,
        request.card_number,
        request.cvv,
        request.amount,
        description=request.description or "",
        external_reference=request.external_reference,
        api_key_id=context.api_key_id
    ).unwrap()
    return {"success": True, "message": "Payment successful", "data": result.to_dict()}


@router.post("/transactions/refund")
async def refund_transaction(
    request: RefundRequest,
    context: AuthContext = Depends(require_api_permission(Permission.REFUND)),
    system: PaymentSystem = Depends(get_payment_system)
):
    result = system.ledger.refund(
        context.business_id,
        request.transaction_id,
        amount=request.amount,
        reason=request.reason,
        api_key_id=context.api_key_id
    ).unwrap()
    return {"success": True, "message": "Refund processed successfully", "data": result.to_dict()}


@router.get("/transactions")
async def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    transaction_type: Optional[str] = Query(None, alias="type"),
    status_filter: Optional[str] = Query(None, alias="status"),
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    context: AuthContext = Depends(require_api_permission(Permission.TRANSACTIONS)),
    system: PaymentSystem = Depends(get_payment_system)
):
    page_result = system.ledger.list_business_transactions(
        context.business_id,
        page=page,
        limit=limit,
        transaction_type=transaction_type,
        status=status_filter,
        start_date=start_date,
        end_date=end_date
    )
    return {
        "success": True,
        "data": {
            "transactions": [t.merchant_view() for t in page_result.items],
            "pagination": page_result.pagination()
        }
    }


@router.get("/transactions/{reference}")
async def get_transaction(
    reference: str,
    context: AuthContext = Depends(require_api_permission(Permission.TRANSACTIONS)),
    system: PaymentSystem = Depends(get_payment_system)
):
    transaction = system.ledger.get_business_transaction(context.business_id, reference).unwrap()
    return {"success": True, "data": transaction.merchant_view()}


@router.get("/balance")
async def get_balance(
    context: AuthContext = Depends(require_api_permission(Permission.BALANCE)),
    system: PaymentSystem = Depends(get_payment_system)
):
    balance = system.ledger.get_balance(context.business_id).unwrap()
    return {
        "success": True,
        "data": {
            "balance": str(balance.amount),
            "currency": balance.currency.code,
            "business_name": context.business.business.business_name
        }
    }


@router.post("/cards/verify")
async def verify_card(
    request: VerifyCardRequest,
    throttled: AuthContext = Depends(limit_card_verification),
    context: AuthContext = Depends(require_api_permission(Permission.CHARGE)),
    system: PaymentSystem = Depends(get_payment_system)
):
    """Check a card without charging it"""
    result = system.ledger.verify_card(request.card_number, request.cvv).unwrap()
    return {"success": True, "data": result.to_dict()}
