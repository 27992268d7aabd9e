"""Deposit analytics, CSV/JSON export and anomaly checks for the admin dashboard."""
from __future__ import annotations

import csv
import io
import json
from collections import OrderedDict, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlmodel import Session, desc, select

from ..exceptions import ValidationError
from ..models import DepositStatus
from .config import LARGE_DEPOSIT_CENTS, RAPID_DEPOSIT_COUNT, RAPID_DEPOSIT_WINDOW
from .deposits import deposit_payload
from .persistence import Deposit, utcnow

TIMEFRAMES: Dict[str, Optional[timedelta]] = {
    "24h": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
    "all": None,
}
DEFAULT_TIMEFRAME = "30d"
ALL_TIME_START = datetime(2020, 1, 1)
RECENT_LIMIT = 10


def date_range(timeframe: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Return ``(start, end)`` for ``timeframe``; unknown values fall back to 30 days."""

    end = now or utcnow()
    if timeframe not in TIMEFRAMES:
        timeframe = DEFAULT_TIMEFRAME
    span = TIMEFRAMES[timeframe]
    start = ALL_TIME_START if span is None else end - span
    return start, end


def _deposits_between(
    session: Session, start: datetime, end: datetime, user_id: Optional[str]
) -> List[Deposit]:
    statement = select(Deposit).where(Deposit.created_at >= start, Deposit.created_at <= end)
    if user_id:
        statement = statement.where(Deposit.user_id == user_id)
    return list(session.exec(statement).all())


def _percent(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _overview(deposits: Sequence[Deposit], previous: Sequence[Deposit]) -> Dict[str, Any]:
    total_amount = sum(deposit.amount_cents for deposit in deposits)
    previous_amount = sum(deposit.amount_cents for deposit in previous)
    growth = (total_amount - previous_amount) / previous_amount * 100 if previous_amount else 0.0
    return {
        "total_deposits": len(deposits),
        "total_amount_cents": total_amount,
        "pending_deposits": sum(1 for d in deposits if d.status == DepositStatus.PENDING.value),
        "completed_deposits": sum(1 for d in deposits if d.status == DepositStatus.COMPLETED.value),
        "average_deposit_cents": round(total_amount / len(deposits)) if deposits else 0,
        "growth_rate": round(growth, 2),
    }


def _timeline(deposits: Sequence[Deposit]) -> List[Dict[str, Any]]:
    days: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for deposit in sorted(deposits, key=lambda d: d.created_at):
        key = deposit.created_at.date().isoformat()
        bucket = days.setdefault(key, {"date": key, "count": 0, "amount_cents": 0, "completed": 0})
        bucket["count"] += 1
        bucket["amount_cents"] += deposit.amount_cents
        if deposit.status == DepositStatus.COMPLETED.value:
            bucket["completed"] += 1
    return list(days.values())


def _wallet_analytics(deposits: Sequence[Deposit]) -> List[Dict[str, Any]]:
    totals: Dict[str, Dict[str, Any]] = {}
    for deposit in deposits:
        row = totals.setdefault(
            deposit.crypto_type,
            {"crypto_type": deposit.crypto_type, "count": 0, "amount_cents": 0, "completed_amount_cents": 0},
        )
        row["count"] += 1
        row["amount_cents"] += deposit.amount_cents
        if deposit.status == DepositStatus.COMPLETED.value:
            row["completed_amount_cents"] += deposit.amount_cents
    grand_total = sum(row["amount_cents"] for row in totals.values())
    rows = sorted(totals.values(), key=lambda row: row["amount_cents"], reverse=True)
    for row in rows:
        row["share_percent"] = _percent(row["amount_cents"], grand_total)
    return rows


def _status_distribution(deposits: Sequence[Deposit]) -> Dict[str, int]:
    distribution = {status.value: 0 for status in DepositStatus}
    for deposit in deposits:
        distribution[deposit.status] = distribution.get(deposit.status, 0) + 1
    return distribution


def _performance(deposits: Sequence[Deposit]) -> Dict[str, Any]:
    completed = [d for d in deposits if d.status == DepositStatus.COMPLETED.value]
    decided = [d for d in deposits if d.status in {DepositStatus.COMPLETED.value, DepositStatus.REJECTED.value}]
    durations = [
        (d.processed_at - d.created_at).total_seconds() / 3600 for d in decided if d.processed_at is not None
    ]
    return {
        "approval_rate": _percent(len(completed), len(decided)),
        "average_processing_hours": round(sum(durations) / len(durations), 2) if durations else 0.0,
        "completion_rate": _percent(len(completed), len(deposits)),
        "total_users": len({d.user_id for d in deposits}),
        "active_users": len({d.user_id for d in completed}),
    }


def get_deposit_analytics(
    session: Session,
    timeframe: str = DEFAULT_TIMEFRAME,
    user_id: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    start, end = date_range(timeframe, now)
    deposits = _deposits_between(session, start, end, user_id)
    # The comparison window has the same length and ends just before ``start``.
    previous_end = start - timedelta(microseconds=1)
    previous = _deposits_between(session, previous_end - (end - start), previous_end, user_id)
    recent_statement = select(Deposit).order_by(desc(Deposit.created_at), desc(Deposit.id)).limit(RECENT_LIMIT)
    if user_id:
        recent_statement = recent_statement.where(Deposit.user_id == user_id)
    recent = session.exec(recent_statement).all()
    return {
        "timeframe": timeframe if timeframe in TIMEFRAMES else DEFAULT_TIMEFRAME,
        "range": {"start": start.isoformat(), "end": end.isoformat()},
        "overview": _overview(deposits, previous),
        "timeline": _timeline(deposits),
        "wallet_analytics": _wallet_analytics(deposits),
        "status_distribution": _status_distribution(deposits),
        "performance_metrics": _performance(deposits),
        "recent_activity": [deposit_payload(deposit) for deposit in recent],
    }


def export_deposit_analytics(
    session: Session,
    timeframe: str = DEFAULT_TIMEFRAME,
    fmt: str = "csv",
    *,
    now: Optional[datetime] = None,
) -> str:
    analytics = get_deposit_analytics(session, timeframe, now=now)
    if fmt == "json":
        return json.dumps(analytics, indent=2, default=str)
    if fmt != "csv":
        raise ValidationError("Export format must be 'csv' or 'json'")
    overview = analytics["overview"]
    performance = analytics["performance_metrics"]
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(["Metric", "Value"])
    writer.writerow(["Total Deposits", overview["total_deposits"]])
    writer.writerow(["Total Amount", f"{overview['total_amount_cents'] / 100:.2f}"])
    writer.writerow(["Pending Deposits", overview["pending_deposits"]])
    writer.writerow(["Average Deposit", f"{overview['average_deposit_cents'] / 100:.2f}"])
    writer.writerow(["Growth Rate", overview["growth_rate"]])
    writer.writerow(["Approval Rate", performance["approval_rate"]])
    writer.writerow(["Completion Rate", performance["completion_rate"]])
    return output.getvalue()


def check_deposit_anomalies(session: Session, *, now: Optional[datetime] = None) -> List[str]:
    """Flag large deposits in the last day and bursts of deposits by one user."""

    moment = now or utcnow()
    since = moment - timedelta(days=1)
    recent = _deposits_between(session, since, moment, None)
    anomalies: List[str] = []

    large = [deposit for deposit in recent if deposit.amount_cents >= LARGE_DEPOSIT_CENTS]
    if large:
        anomalies.append(
            f"Large deposits detected: {len(large)} deposits over "
            f"${LARGE_DEPOSIT_CENTS // 100:,} in last 24h"
        )

    by_user: Dict[str, List[datetime]] = defaultdict(list)
    for deposit in recent:
        by_user[deposit.user_id].append(deposit.created_at)
    rapid_users = 0
    for moments in by_user.values():
        moments.sort()
        for index in range(len(moments) - RAPID_DEPOSIT_COUNT + 1):
            if moments[index + RAPID_DEPOSIT_COUNT - 1] - moments[index] <= RAPID_DEPOSIT_WINDOW:
                rapid_users += 1
                break
    if rapid_users:
        anomalies.append(f"Rapid deposit activity detected for {rapid_users} users")
    return anomalies


__all__ = [
    "TIMEFRAMES",
    "check_deposit_anomalies",
    "date_range",
    "export_deposit_analytics",
    "get_deposit_analytics",
]
