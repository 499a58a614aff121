"""
Account holder endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import PaymentSystem, get_payment_system, get_current_account, require_role
from .schemas import RegisterRequest, LoginRequest, CardSettingsRequest
from ..accounts import Account, Role
from ..logging_config import get_logger, log_action


logger = get_logger("payment_core.api.users")

router = APIRouter()


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    system: PaymentSystem = Depends(get_payment_system)
):
    """Register a personal account; card secrets are returned only here"""
    registration = system.account_manager.register_personal(
        email=request.email,
        password=request.password,
        first_name=request.first_name,
        last_name=request.last_name
    ).unwrap()

    account, card = registration.account, registration.card
    return {
        "success": True,
        "message": "Registration successful. Save your card details - CVV and PIN will not be shown again.",
        "data": {
            "token": system.create_access_token(account),
            "user": system.account_manager.profile_view(account),
            "card": {
                "card_number": card.card_number,
                "cvv": card.cvv,
                "pin": card.pin,
                "expiry_date": card.expiry_date.isoformat()
            }
        }
    }


@router.post("/login")
async def login(
    request: LoginRequest,
    system: PaymentSystem = Depends(get_payment_system)
):
    """Authenticate and return a JWT token"""
    outcome = system.account_manager.authenticate(request.email, request.password)
    if not outcome.is_ok:
        log_action(logger, "warning", "Login failed", action="login_failed", resource="auth")
    account = outcome.unwrap()

    log_action(logger, "info", "User authenticated successfully",
               user_id=account.id, action="login", resource="auth")
    return {
        "success": True,
        "data": {
            "token": system.create_access_token(account),
            "token_type": "bearer",
            "user": system.account_manager.profile_view(account)
        }
    }


@router.get("/profile")
async def get_profile(
    account: Account = Depends(get_current_account),
    system: PaymentSystem = Depends(get_payment_system)
):
    return {"success": True, "data": system.account_manager.get_profile(account.id).unwrap()}


@router.patch("/card")
async def update_card(
    request: CardSettingsRequest,
    account: Account = Depends(get_current_account),
    system: PaymentSystem = Depends(get_payment_system)
):
    """Freeze/unfreeze the caller's card or change its daily limit"""
    if request.is_active is not None:
        account = system.account_manager.set_card_active(account.id, request.is_active).unwrap()
    if request.daily_limit is not None:
        account = system.account_manager.set_card_daily_limit(account.id, request.daily_limit).unwrap()
    return {"success": True, "data": system.account_manager.profile_view(account)}


@router.get("")
async def list_users(
    admin: Account = Depends(require_role(Role.ADMIN)),
    system: PaymentSystem = Depends(get_payment_system)
):
    """List every account (admin)"""
    accounts = system.account_manager.list_accounts()
    return {
        "success": True,
        "count": len(accounts),
        "data": [system.account_manager.profile_view(a) for a in accounts]
    }
