"""FastAPI frontend for the ChainRise investment platform.

The application exposes JSON endpoints for members (deposits, withdrawals,
locked investments, referrals), an admin back office and the cron hooks that
drive daily accrual.  Business rules live in the service modules; the routes
here only handle sessions, form parsing and response shaping.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import FastAPI, Form, Query, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from starlette.middleware.sessions import SessionMiddleware

from ..exceptions import AlreadyProcessedError, ChainRiseError, InvalidReferralCodeError
from ..models import CryptoAddressType
from ..security import bearer_token_matches
from . import config as _config
from .accounts import (
    confirm_password_reset,
    delete_crypto_address,
    ensure_admin,
    get_crypto_addresses,
    get_profile,
    list_user_transactions,
    profile_payload,
    request_password_reset,
    sign_in,
    sign_up,
    total_active_investments,
    total_completed_deposits,
    total_completed_withdrawals,
    total_pending_withdrawals,
    update_crypto_address,
    update_multiple_crypto_addresses,
    update_profile,
)
from .accrual import (
    calculate_daily_profits,
    calculate_user_profit,
    get_investment_stats,
    get_user_investment_plan,
    get_user_investments,
    investment_payload,
    open_investment,
    process_investment_maturity,
)
from .analytics import check_deposit_anomalies, export_deposit_analytics, get_deposit_analytics
from .config import ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_USERNAME, APP_NAME, SESSION_SECRET
from .deposits import (
    approve_deposit,
    deposit_payload,
    get_plan,
    initiate_deposit,
    list_all_deposits,
    list_investment_plans,
    list_user_deposits,
    plan_payload,
    reject_deposit,
)
from .persistence import InvestmentPlan, Profile, engine, init_db
from .referrals import (
    apply_referral_code,
    generate_referral_code,
    get_referral_earnings,
    get_referral_leaderboard,
    get_referral_stats,
    validate_referral_code,
)
from .runtime import event_log, health
from .users import (
    admin_fund_user,
    admin_update_user_profile,
    ban_user,
    delete_user,
    get_all_users,
    get_banned_users,
    get_earnings_analytics,
    get_platform_stats,
    get_user_metrics,
    send_admin_email,
    unban_user,
)
from .wallets import (
    create_wallet_address,
    delete_wallet_address,
    get_active_wallet_addresses,
    get_all_wallet_addresses,
    get_wallet_by_id,
    toggle_wallet_address_status,
    update_wallet_address,
    wallet_payload,
)
from .withdrawals import (
    approve_withdrawal,
    initiate_withdrawal,
    list_all_withdrawals,
    list_user_withdrawals,
    reject_withdrawal,
    withdrawal_payload,
)


# ---------------------------------------------------------------------------
# FastAPI application setup
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    if ADMIN_USERNAME and ADMIN_PASSWORD:
        with Session(engine) as session:
            ensure_admin(session, ADMIN_USERNAME, ADMIN_PASSWORD, email=ADMIN_EMAIL)
    yield


app = FastAPI(title=APP_NAME, lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    same_site="lax",
    max_age=None,
)


@app.exception_handler(ChainRiseError)
async def chainrise_error_handler(_: Request, exc: ChainRiseError) -> JSONResponse:
    body: Dict[str, Any] = {"error": str(exc)}
    if isinstance(exc, AlreadyProcessedError) and exc.current_status:
        body["current_status"] = exc.current_status
    return JSONResponse(body, status_code=exc.status_code)


def _flag(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "on", "yes"}


def _page(rows, total: int, serialize) -> Dict[str, Any]:
    return {"items": [serialize(row) for row in rows], "total": total}


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------
def current_profile(request: Request) -> Optional[Profile]:
    """Return the signed-in profile, dropping the session if it went stale."""

    user_id = request.session.get("user_id")
    if not user_id:
        return None
    with Session(engine) as session:
        profile = session.get(Profile, user_id)
    if (
        profile is None
        or profile.is_deleted
        or profile.session_version != request.session.get("session_version")
    ):
        request.session.clear()
        return None
    return profile


def require_user(request: Request) -> Optional[JSONResponse]:
    if current_profile(request) is None:
        return JSONResponse({"error": "Authentication required"}, status_code=401)
    return None


def require_admin(request: Request) -> Optional[JSONResponse]:
    profile = current_profile(request)
    if profile is None:
        return JSONResponse({"error": "Authentication required"}, status_code=401)
    if not profile.is_admin:
        return JSONResponse({"error": "Admin privileges required"}, status_code=403)
    return None


def _remember(request: Request, profile: Profile) -> None:
    request.session["user_id"] = profile.id
    request.session["session_version"] = profile.session_version


def require_cron(request: Request) -> Optional[JSONResponse]:
    secret = _config.CRON_SECRET
    if not secret:
        event_log.error("cron_secret_missing", path=request.url.path)
        return JSONResponse({"error": "Cron secret not configured"}, status_code=500)
    if not bearer_token_matches(request.headers.get("authorization"), secret):
        event_log.log("cron_unauthorized", path=request.url.path)
        return JSONResponse({"error": "Unauthorized"}, status_code=401)
    return None


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------
@app.get("/health")
def health_check() -> JSONResponse:
    try:
        with Session(engine) as session:
            session.exec(select(InvestmentPlan).limit(1)).first()
        health.database_online = True
    except SQLAlchemyError as exc:
        health.database_online = False
        event_log.error("health_database_down", error=str(exc))
    payload = {"status": "ok" if health.database_online else "degraded", **health.status()}
    return JSONResponse(payload, status_code=200 if health.database_online else 503)


@app.get("/plans")
def plans() -> JSONResponse:
    with Session(engine) as session:
        rows = list_investment_plans(session)
        return JSONResponse({"plans": [plan_payload(plan) for plan in rows]})


@app.get("/wallets")
def wallets() -> JSONResponse:
    with Session(engine) as session:
        rows = get_active_wallet_addresses(session)
        return JSONResponse({"wallets": [wallet_payload(wallet) for wallet in rows]})


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------
@app.post("/signup")
def signup(
    request: Request,
    name: str = Form(...),
    email: str = Form(...),
    username: str = Form(...),
    password: str = Form(...),
    confirm_password: str = Form(...),
    phone_number: Optional[str] = Form(None),
    referral_code: Optional[str] = Form(None),
    btc_address: Optional[str] = Form(None),
    bnb_address: Optional[str] = Form(None),
    dodge_address: Optional[str] = Form(None),
    eth_address: Optional[str] = Form(None),
    solana_address: Optional[str] = Form(None),
    usdttrc20_address: Optional[str] = Form(None),
) -> JSONResponse:
    addresses = {
        CryptoAddressType.BTC.value: btc_address,
        CryptoAddressType.BNB.value: bnb_address,
        CryptoAddressType.DOGE.value: dodge_address,
        CryptoAddressType.ETH.value: eth_address,
        CryptoAddressType.SOLANA.value: solana_address,
        CryptoAddressType.USDT_TRC20.value: usdttrc20_address,
    }
    with Session(engine) as session:
        profile = sign_up(
            session,
            name=name,
            email=email,
            username=username,
            phone_number=phone_number,
            password=password,
            confirm_password=confirm_password,
            referral_code=referral_code,
            addresses=addresses,
        )
        _remember(request, profile)
        return JSONResponse({"user": profile_payload(profile), "redirect": "/user/dashboard"}, status_code=201)


@app.post("/signin")
def signin(
    request: Request,
    email_or_username: str = Form(...),
    password: str = Form(...),
) -> JSONResponse:
    with Session(engine) as session:
        profile, redirect = sign_in(session, email_or_username, password)
        _remember(request, profile)
        return JSONResponse({"user": profile_payload(profile), "redirect": redirect})


@app.post("/signout")
def signout(request: Request) -> JSONResponse:
    user_id = request.session.get("user_id")
    request.session.clear()
    if user_id:
        event_log.log("sign_out", user_id=user_id)
    return JSONResponse({"success": True})


@app.post("/password/reset")
def password_reset(email: str = Form(...)) -> JSONResponse:
    with Session(engine) as session:
        request_password_reset(session, email)
    return JSONResponse({"success": True, "message": "Password reset email sent"})


@app.post("/password/confirm")
def password_confirm(
    token: str = Form(...),
    password: str = Form(...),
    confirm_password: str = Form(...),
) -> JSONResponse:
    with Session(engine) as session:
        confirm_password_reset(session, token, password, confirm_password)
    return JSONResponse({"success": True, "message": "Password updated"})


@app.get("/referral/validate")
def referral_validate(request: Request, code: str = Query("")) -> JSONResponse:
    user_id = request.session.get("user_id")
    with Session(engine) as session:
        try:
            referrer = validate_referral_code(session, code, user_id=user_id)
        except InvalidReferralCodeError as exc:
            return JSONResponse({"valid": False, "error": str(exc)}, status_code=400)
        return JSONResponse(
            {"valid": True, "referrer": {"name": referrer.name, "username": referrer.username}}
        )


# ---------------------------------------------------------------------------
# Member area
# ---------------------------------------------------------------------------
@app.get("/user/dashboard")
def user_dashboard(request: Request) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    user_id = request.session["user_id"]
    with Session(engine) as session:
        profile = get_profile(session, user_id)
        stats = get_investment_stats(session, user_id)
        return JSONResponse(
            {
                "user": profile_payload(profile),
                "investments": asdict(stats),
                "totals": {
                    "completed_deposits_cents": total_completed_deposits(session, user_id),
                    "active_investments_cents": total_active_investments(session, user_id),
                    "completed_withdrawals_cents": total_completed_withdrawals(session, user_id),
                    "pending_withdrawals_cents": total_pending_withdrawals(session, user_id),
                },
            }
        )


@app.get("/user/profile")
def user_profile(request: Request) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        profile = get_profile(session, request.session["user_id"])
        return JSONResponse({"user": profile_payload(profile)})


@app.post("/user/profile")
def user_profile_update(
    request: Request,
    name: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    phone_number: Optional[str] = Form(None),
    current_password: Optional[str] = Form(None),
) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        profile = update_profile(
            session,
            request.session["user_id"],
            name=name,
            username=username,
            email=email,
            phone_number=phone_number,
            current_password=current_password,
        )
        return JSONResponse({"user": profile_payload(profile)})


@app.get("/user/crypto-addresses")
def user_crypto_addresses(request: Request) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse({"addresses": get_crypto_addresses(session, request.session["user_id"])})


@app.post("/user/crypto-addresses")
def user_crypto_addresses_update(
    request: Request,
    btc_address: Optional[str] = Form(None),
    bnb_address: Optional[str] = Form(None),
    dodge_address: Optional[str] = Form(None),
    eth_address: Optional[str] = Form(None),
    solana_address: Optional[str] = Form(None),
    usdttrc20_address: Optional[str] = Form(None),
) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    submitted = {
        CryptoAddressType.BTC.value: btc_address,
        CryptoAddressType.BNB.value: bnb_address,
        CryptoAddressType.DOGE.value: dodge_address,
        CryptoAddressType.ETH.value: eth_address,
        CryptoAddressType.SOLANA.value: solana_address,
        CryptoAddressType.USDT_TRC20.value: usdttrc20_address,
    }
    with Session(engine) as session:
        addresses = update_multiple_crypto_addresses(session, request.session["user_id"], submitted)
        return JSONResponse({"addresses": addresses})


@app.post("/user/crypto-addresses/{address_type}")
def user_crypto_address_set(request: Request, address_type: str, address: str = Form(...)) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    user_id = request.session["user_id"]
    with Session(engine) as session:
        update_crypto_address(session, user_id, address_type, address)
        return JSONResponse({"addresses": get_crypto_addresses(session, user_id)})


@app.post("/user/crypto-addresses/{address_type}/delete")
def user_crypto_address_delete(request: Request, address_type: str) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    user_id = request.session["user_id"]
    with Session(engine) as session:
        delete_crypto_address(session, user_id, address_type)
        return JSONResponse({"addresses": get_crypto_addresses(session, user_id)})


@app.get("/user/deposits")
def user_deposits(
    request: Request,
    status: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        rows, total = list_user_deposits(
            session, request.session["user_id"], status=status, limit=limit, offset=offset
        )
        return JSONResponse(_page(rows, total, deposit_payload))


@app.post("/user/deposits")
def user_deposit_create(
    request: Request,
    plan_id: int = Form(...),
    amount: str = Form(...),
    crypto_type: str = Form(...),
    transaction_hash: Optional[str] = Form(None),
) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        deposit = initiate_deposit(
            session,
            request.session["user_id"],
            plan_id=plan_id,
            amount=amount,
            crypto_type=crypto_type,
            transaction_hash=transaction_hash,
        )
        plan = get_plan(session, plan_id)
        return JSONResponse({"deposit": deposit_payload(deposit, plan=plan)}, status_code=201)


@app.get("/user/withdrawals")
def user_withdrawals(
    request: Request,
    status: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        rows, total = list_user_withdrawals(
            session, request.session["user_id"], status=status, limit=limit, offset=offset
        )
        return JSONResponse(_page(rows, total, withdrawal_payload))


@app.post("/user/withdrawals")
def user_withdrawal_create(
    request: Request,
    amount: str = Form(...),
    crypto_type: str = Form(...),
    wallet_address: Optional[str] = Form(None),
) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        withdrawal = initiate_withdrawal(
            session,
            request.session["user_id"],
            amount=amount,
            crypto_type=crypto_type,
            wallet_address=wallet_address,
        )
        return JSONResponse({"withdrawal": withdrawal_payload(withdrawal)}, status_code=201)


@app.get("/user/transactions")
def user_transactions(
    request: Request,
    kind: str = Query("deposits"),
    status: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        rows, total = list_user_transactions(
            session, request.session["user_id"], kind, status=status, limit=limit, offset=offset
        )
        serialize = withdrawal_payload if kind == "withdrawals" else deposit_payload
        return JSONResponse(_page(rows, total, serialize))


@app.get("/user/investments")
def user_investments(request: Request) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        rows, totals = get_user_investments(session, request.session["user_id"])
        return JSONResponse(
            {"investments": [investment_payload(row) for row in rows], "totals": asdict(totals)}
        )


@app.post("/user/investments")
def user_investment_create(
    request: Request,
    plan_code: str = Form(...),
    amount: str = Form(...),
) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        investment = open_investment(session, request.session["user_id"], plan_code, amount)
        return JSONResponse({"investment": investment_payload(investment)}, status_code=201)


@app.get("/user/investments/stats")
def user_investment_stats(request: Request) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    user_id = request.session["user_id"]
    with Session(engine) as session:
        stats = asdict(get_investment_stats(session, user_id))
        tier = get_user_investment_plan(session, user_id)
    stats["plan"] = {"code": tier.code, "title": tier.title} if tier else None
    return JSONResponse(stats)


@app.get("/user/referrals")
def user_referrals(request: Request) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse(get_referral_stats(session, request.session["user_id"]))


@app.get("/user/referrals/earnings")
def user_referral_earnings(request: Request) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse(get_referral_earnings(session, request.session["user_id"]))


@app.get("/user/referrals/leaderboard")
def user_referral_leaderboard(request: Request) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse({"leaderboard": get_referral_leaderboard(session)})


@app.post("/user/referrals/code")
def user_referral_code(request: Request) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse({"referral_code": generate_referral_code(session, request.session["user_id"])})


@app.post("/user/referrals/apply")
def user_referral_apply(request: Request, code: str = Form(...)) -> JSONResponse:
    if (redirect := require_user(request)) is not None:
        return redirect
    with Session(engine) as session:
        profile = apply_referral_code(session, request.session["user_id"], code)
        return JSONResponse({"success": True, "referred_by": profile.referred_by})


# ---------------------------------------------------------------------------
# Admin: deposits and withdrawals
# ---------------------------------------------------------------------------
@app.get("/admin/deposits")
def admin_deposits(
    request: Request,
    status: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        rows, total = list_all_deposits(session, status=status, user_id=user_id, limit=limit, offset=offset)
        return JSONResponse(
            _page(rows, total, lambda row: deposit_payload(row, user=session.get(Profile, row.user_id)))
        )


@app.post("/admin/deposits/{deposit_id}/approve")
def admin_deposit_approve(request: Request, deposit_id: int) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        deposit = approve_deposit(session, deposit_id)
        return JSONResponse({"success": True, "deposit": deposit_payload(deposit)})


@app.post("/admin/deposits/{deposit_id}/reject")
def admin_deposit_reject(request: Request, deposit_id: int, admin_notes: str = Form("")) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        deposit = reject_deposit(session, deposit_id, admin_notes)
        return JSONResponse({"success": True, "deposit": deposit_payload(deposit)})


@app.get("/admin/withdrawals")
def admin_withdrawals(
    request: Request,
    status: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: int = Query(0),
) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        rows, total = list_all_withdrawals(session, status=status, user_id=user_id, limit=limit, offset=offset)
        return JSONResponse(
            _page(rows, total, lambda row: withdrawal_payload(row, user=session.get(Profile, row.user_id)))
        )


@app.post("/admin/withdrawals/{withdrawal_id}/approve")
def admin_withdrawal_approve(request: Request, withdrawal_id: int) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        withdrawal = approve_withdrawal(session, withdrawal_id)
        return JSONResponse({"success": True, "withdrawal": withdrawal_payload(withdrawal)})


@app.post("/admin/withdrawals/{withdrawal_id}/reject")
def admin_withdrawal_reject(request: Request, withdrawal_id: int, admin_notes: str = Form("")) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        withdrawal = reject_withdrawal(session, withdrawal_id, admin_notes)
        return JSONResponse({"success": True, "withdrawal": withdrawal_payload(withdrawal)})


# ---------------------------------------------------------------------------
# Admin: users
# ---------------------------------------------------------------------------
@app.get("/admin/users")
def admin_users(request: Request, include_deleted: Optional[str] = Query(None)) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        rows = get_all_users(session, request.session["user_id"], include_deleted=_flag(include_deleted))
        return JSONResponse({"users": [profile_payload(row) for row in rows]})


@app.get("/admin/users/banned")
def admin_banned_users(request: Request) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse({"bans": get_banned_users(session, request.session["user_id"])})


@app.post("/admin/users/{user_id}/ban")
def admin_user_ban(
    request: Request,
    user_id: str,
    reason: str = Form("Violation of terms of service"),
    duration_hours: Optional[int] = Form(None),
) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        result = ban_user(
            session, request.session["user_id"], user_id, reason=reason, duration_hours=duration_hours
        )
        return JSONResponse(asdict(result))


@app.post("/admin/users/{user_id}/unban")
def admin_user_unban(request: Request, user_id: str) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse(asdict(unban_user(session, request.session["user_id"], user_id)))


@app.post("/admin/users/{user_id}/delete")
def admin_user_delete(request: Request, user_id: str, confirm: Optional[str] = Form(None)) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        result = delete_user(session, request.session["user_id"], user_id, confirm=_flag(confirm))
        return JSONResponse(asdict(result))


@app.post("/admin/users/{user_id}/fund")
def admin_user_fund(
    request: Request,
    user_id: str,
    amount: str = Form(...),
    transaction_type: str = Form(...),
    plan: str = Form("not_a_deposit"),
    description: str = Form(""),
    notify_email: Optional[str] = Form(None),
    crypto_type: Optional[str] = Form(None),
) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        result = admin_fund_user(
            session,
            request.session["user_id"],
            user_id,
            amount,
            transaction_type,
            plan=plan,
            description=description,
            notify_email=notify_email,
            crypto_type=crypto_type,
        )
        return JSONResponse(asdict(result))


@app.get("/admin/users/{user_id}/metrics")
def admin_user_metrics(request: Request, user_id: str) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse(get_user_metrics(session, user_id))


@app.post("/admin/users/{user_id}/profile")
async def admin_user_profile(request: Request, user_id: str) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    form = await request.form()
    updates: Dict[str, Any] = {key: value for key, value in form.items() if isinstance(value, str)}
    if "is_active" in updates:
        updates["is_active"] = _flag(updates["is_active"])
    with Session(engine) as session:
        profile = admin_update_user_profile(session, request.session["user_id"], user_id, updates)
        return JSONResponse({"user": profile_payload(profile)})


@app.post("/admin/users/{user_id}/profit")
def admin_user_profit(request: Request, user_id: str) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse({"success": True, **calculate_user_profit(session, user_id)})


@app.post("/admin/email")
def admin_email(
    request: Request,
    recipient_email: str = Form(...),
    subject: str = Form(...),
    message: str = Form(...),
) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        log = send_admin_email(session, request.session["user_id"], recipient_email, subject, message)
        return JSONResponse({"success": log.delivered, "email_log_id": log.id})


# ---------------------------------------------------------------------------
# Admin: wallets
# ---------------------------------------------------------------------------
@app.get("/admin/wallets")
def admin_wallets(request: Request) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse({"wallets": [wallet_payload(row) for row in get_all_wallet_addresses(session)]})


@app.post("/admin/wallets")
def admin_wallet_create(
    request: Request,
    symbol: str = Form(...),
    wallet_address: str = Form(...),
    name: str = Form(""),
    network: Optional[str] = Form(None),
    min_deposit: str = Form("0"),
    max_deposit: Optional[str] = Form(None),
    qr_code_url: Optional[str] = Form(None),
) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        wallet = create_wallet_address(
            session,
            symbol=symbol,
            wallet_address=wallet_address,
            name=name,
            network=network,
            min_deposit=min_deposit,
            max_deposit=max_deposit,
            qr_code_url=qr_code_url,
        )
        return JSONResponse({"wallet": wallet_payload(wallet)}, status_code=201)


@app.get("/admin/wallets/{wallet_id}")
def admin_wallet_detail(request: Request, wallet_id: int) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse({"wallet": wallet_payload(get_wallet_by_id(session, wallet_id))})


@app.post("/admin/wallets/{wallet_id}")
async def admin_wallet_update(request: Request, wallet_id: int) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    form = await request.form()
    updates: Dict[str, Any] = {key: value for key, value in form.items() if isinstance(value, str)}
    if "is_active" in updates:
        updates["is_active"] = _flag(updates["is_active"])
    with Session(engine) as session:
        wallet = update_wallet_address(session, wallet_id, updates)
        return JSONResponse({"wallet": wallet_payload(wallet)})


@app.post("/admin/wallets/{wallet_id}/toggle")
def admin_wallet_toggle(request: Request, wallet_id: int, is_active: str = Form(...)) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        wallet = toggle_wallet_address_status(session, wallet_id, _flag(is_active))
        return JSONResponse({"wallet": wallet_payload(wallet)})


@app.post("/admin/wallets/{wallet_id}/delete")
def admin_wallet_delete(request: Request, wallet_id: int) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        delete_wallet_address(session, wallet_id)
    return JSONResponse({"success": True})


# ---------------------------------------------------------------------------
# Admin: analytics
# ---------------------------------------------------------------------------
@app.get("/admin/stats")
def admin_stats(request: Request) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse(get_platform_stats(session))


@app.get("/admin/analytics/earnings")
def admin_earnings_analytics(request: Request) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse(get_earnings_analytics(session))


@app.get("/admin/analytics/deposits")
def admin_deposit_analytics(
    request: Request,
    timeframe: str = Query("30d"),
    user_id: Optional[str] = Query(None),
) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        return JSONResponse(get_deposit_analytics(session, timeframe, user_id))


@app.get("/admin/analytics/deposits/export")
def admin_deposit_analytics_export(
    request: Request,
    timeframe: str = Query("30d"),
    format: str = Query("csv"),
):
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        content = export_deposit_analytics(session, timeframe, format)
    filename = f"deposit-analytics-{timeframe}.{format}"
    headers = {"Content-Disposition": f"attachment; filename={filename}"}
    if format == "json":
        return Response(content, media_type="application/json", headers=headers)
    return StreamingResponse(iter([content]), media_type="text/csv", headers=headers)


@app.get("/admin/analytics/anomalies")
def admin_deposit_anomalies(request: Request) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    with Session(engine) as session:
        anomalies = check_deposit_anomalies(session)
    return JSONResponse({"anomalies": anomalies, "has_anomalies": bool(anomalies)})


@app.get("/admin/events")
def admin_events(request: Request, limit: int = Query(50), event: Optional[str] = Query(None)) -> JSONResponse:
    if (redirect := require_admin(request)) is not None:
        return redirect
    return JSONResponse({"events": list(event_log.tail(limit, event=event))})


# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------
def _run_daily_profits() -> Dict[str, Any]:
    with Session(engine) as session:
        summary = calculate_daily_profits(session)
    return {"success": True, **summary.as_dict()}


@app.get("/api/cron/daily-profits")
@app.post("/api/cron/daily-profits")
def cron_daily_profits(request: Request) -> JSONResponse:
    if (denied := require_cron(request)) is not None:
        return denied
    return JSONResponse(_run_daily_profits())


@app.post("/api/cron/investment-maturity")
def cron_investment_maturity(request: Request) -> JSONResponse:
    if (denied := require_cron(request)) is not None:
        return denied
    with Session(engine) as session:
        result = process_investment_maturity(session)
    return JSONResponse(result.as_dict(), status_code=200 if result.success else 500)


@app.get("/api/cron")
@app.post("/api/cron")
def cron_all(request: Request) -> JSONResponse:
    if (denied := require_cron(request)) is not None:
        return denied
    return JSONResponse(_run_daily_profits())


__all__ = ["app", "current_profile", "require_admin", "require_cron", "require_user"]
