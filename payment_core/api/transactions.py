"""
Wallet transaction endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import PaymentSystem, get_payment_system, get_current_account, require_role
from .schemas import TransferRequest, WalletMovementRequest, FundReserveRequest
from ..accounts import Account, Role
from ..errors import ErrorCode, PaymentError


router = APIRouter()


def _posted(transaction, account: Account):
    return {"success": True, "data": transaction.account_view(account.id)}


@router.post("/transfer", status_code=status.HTTP_201_CREATED)
async def transfer(
    request: TransferRequest,
    account: Account = Depends(get_current_account),
    system: PaymentSystem = Depends(get_payment_system)
):
    """Transfer funds to another wallet by id or email"""
    recipient_id = request.recipient_id
    if not recipient_id and request.recipient_email:
        recipient = system.account_manager.get_account_by_email(request.recipient_email)
        if recipient is None:
            raise PaymentError(ErrorCode.ACCOUNT_NOT_FOUND, "Recipient not found.")
        recipient_id = recipient.id
    if not recipient_id:
        raise PaymentError(ErrorCode.VALIDATION_ERROR, "recipient_id or recipient_email is required.")

    transaction = system.ledger.transfer(
        account.id, recipient_id, request.amount, request.description or ""
    ).unwrap()
    return _posted(transaction, account)


@router.post("/deposit", status_code=status.HTTP_201_CREATED)
async def deposit(
    request: WalletMovementRequest,
    account: Account = Depends(get_current_account),
    system: PaymentSystem = Depends(get_payment_system)
):
    transaction = system.ledger.deposit(account.id, request.amount, request.description or "").unwrap()
    return _posted(transaction, account)


@router.post("/withdraw", status_code=status.HTTP_201_CREATED)
async def withdraw(
    request: WalletMovementRequest,
    account: Account = Depends(get_current_account),
    system: PaymentSystem = Depends(get_payment_system)
):
    transaction = system.ledger.withdraw(account.id, request.amount, request.description or "").unwrap()
    return _posted(transaction, account)


@router.get("")
async def list_transactions(
    account: Account = Depends(get_current_account),
    system: PaymentSystem = Depends(get_payment_system)
):
    """Transaction history of the caller, newest first"""
    transactions = system.ledger.list_account_transactions(account.id)
    return {
        "success": True,
        "count": len(transactions),
        "data": [t.account_view(account.id) for t in transactions]
    }


@router.get("/bank/status")
async def bank_status(
    staff: Account = Depends(require_role(Role.ADMIN, Role.STAFF)),
    system: PaymentSystem = Depends(get_payment_system)
):
    """Bank reserve position"""
    reserve = system.reserve_manager.get_or_create()
    return {"success": True, "data": reserve.to_dict()}


@router.post("/bank/fund")
async def fund_bank(
    request: FundReserveRequest,
    admin: Account = Depends(require_role(Role.ADMIN)),
    system: PaymentSystem = Depends(get_payment_system)
):
    """Add bank capital to the reserve (admin)"""
    reserve = system.reserve_manager.fund_reserve(request.amount, actor_id=admin.id).unwrap()
    return {"success": True, "data": reserve.to_dict()}
