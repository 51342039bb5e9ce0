"""Store access split by privilege level.

``UserScopedRepo`` reads run under the restricted database role with the
caller's JWT claims installed, so row-level security policies apply.
``SystemRepo`` uses the service connection and is the only path for writes
(tier changes, webhook effects, trial expiry, usage resets).
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Protocol

import sqlalchemy as sa
from sqlalchemy.orm import Session

from memberbase.core.config import settings


class UserScopedRepo(Protocol):
    def list_tiers(self) -> list[dict]:
        ...

    def list_tier_features(self, tier_id: str) -> list[dict]:
        ...

    def get_membership(self, user_id: str) -> dict | None:
        ...

    def list_usage(self, user_id: str) -> list[dict]:
        ...

    def list_payments(self, user_id: str, limit: int = 50) -> list[dict]:
        ...


class SystemRepo(Protocol):
    def atomic(self):
        ...

    # tiers and features
    def list_tiers(self, include_inactive: bool = False) -> list[dict]:
        ...

    def get_tier(self, tier_id: str) -> dict | None:
        ...

    def get_tier_by_name(self, name: str) -> dict | None:
        ...

    def get_default_tier(self) -> dict | None:
        ...

    def create_tier(self, values: dict) -> dict:
        ...

    def update_tier(self, tier_id: str, values: dict) -> dict | None:
        ...

    def list_tier_features(self, tier_id: str) -> list[dict]:
        ...

    def list_features(self, include_inactive: bool = False) -> list[dict]:
        ...

    def get_feature(self, feature_id: str) -> dict | None:
        ...

    def create_feature(self, values: dict) -> dict:
        ...

    def update_feature(self, feature_id: str, values: dict) -> dict | None:
        ...

    def upsert_tier_feature(self, tier_id: str, feature_id: str, value, period_type: str) -> dict:
        ...

    def delete_tier_feature(self, tier_id: str, feature_id: str) -> bool:
        ...

    # profiles and memberships
    def ensure_profile(self, user_id: str, email: str) -> None:
        ...

    def get_profile(self, user_id: str) -> dict | None:
        ...

    def update_profile(self, user_id: str, values: dict) -> dict | None:
        ...

    def delete_profile(self, user_id: str) -> bool:
        ...

    def set_stripe_customer_id(self, user_id: str, customer_id: str) -> bool:
        ...

    def get_membership(self, user_id: str) -> dict | None:
        ...

    def create_membership(self, user_id: str, tier_id: str) -> dict | None:
        ...

    def update_membership(self, user_id: str, values: dict) -> dict | None:
        ...

    def begin_trial(self, user_id: str, trial_tier_id: str, starts_at: datetime, ends_at: datetime) -> dict | None:
        ...

    def end_trial(self, user_id: str, free_tier_id: str, now: datetime, *, only_if_elapsed: bool) -> dict | None:
        ...

    def list_elapsed_trials(self, now: datetime) -> list[str]:
        ...

    def get_tier_with_features(self, user_id: str) -> dict | None:
        ...

    def get_feature_limit(self, user_id: str, feature_key: str) -> int:
        ...

    def insert_membership_audit(self, values: dict) -> None:
        ...

    # usage counters
    def get_usage(self, user_id: str, feature_key: str) -> dict | None:
        ...

    def list_usage(self, user_id: str) -> list[dict]:
        ...

    def save_usage(self, row: dict) -> dict:
        ...

    def set_usage_limit(self, user_id: str, feature_key: str, usage_limit: int) -> bool:
        ...

    def add_usage(self, user_id: str, feature_key: str, amount: int, used_at: datetime) -> dict | None:
        ...

    def list_due_usage(self, now: datetime) -> list[dict]:
        ...

    # payments and webhook log
    def insert_payment(self, values: dict) -> dict:
        ...

    def list_payments(self, user_id: str, limit: int = 50) -> list[dict]:
        ...

    def log_webhook_event(self, event_id: str, event_type: str, payload: dict) -> bool:
        ...

    def get_webhook_event(self, event_id: str) -> dict | None:
        ...

    def bump_webhook_retry(self, event_id: str) -> None:
        ...

    def finish_webhook_event(self, event_id: str, error: str | None = None) -> None:
        ...

    # admins
    def is_admin(self, user_id: str) -> bool:
        ...

    def get_admin(self, user_id: str) -> dict | None:
        ...

    def list_admins(self) -> list[dict]:
        ...

    def add_admin(self, user_id: str, role: str, created_by: str | None) -> dict | None:
        ...

    def remove_admin(self, user_id: str) -> bool:
        ...

    # contact form
    def create_contact_submission(self, values: dict) -> dict:
        ...


_TIER_COLUMNS = """
    id::text AS id,
    name,
    display_name,
    description,
    price_monthly,
    price_yearly,
    stripe_price_id_monthly,
    stripe_price_id_yearly,
    stripe_product_id,
    trial_days,
    is_active,
    is_default,
    sort_order,
    created_at,
    updated_at
"""

_FEATURE_COLUMNS = """
    id::text AS id,
    key,
    name,
    description,
    feature_type,
    default_value,
    is_active,
    created_at
"""

_TIER_FEATURES_SQL = """
    SELECT
        tf.tier_id::text AS tier_id,
        f.id::text AS feature_id,
        f.key,
        f.name,
        f.description,
        f.feature_type,
        tf.value,
        tf.period_type
    FROM tier_features tf
    JOIN features f ON f.id = tf.feature_id
    WHERE tf.tier_id=:tier_id
    ORDER BY f.name
"""

_MEMBERSHIP_COLUMNS = """
    m.id::text AS id,
    m.user_id::text AS user_id,
    m.tier_id::text AS tier_id,
    t.name AS tier_name,
    t.display_name AS tier_display_name,
    m.status,
    m.billing_cycle,
    m.started_at,
    m.expires_at,
    m.cancelled_at,
    m.cancel_at_period_end,
    m.trial_starts_at,
    m.trial_ends_at,
    m.has_used_trial,
    m.current_period_start,
    m.current_period_end,
    m.stripe_subscription_id,
    m.stripe_price_id,
    m.stripe_latest_invoice_id,
    m.stripe_latest_invoice_status,
    m.last_payment_at,
    m.last_payment_amount,
    m.last_payment_currency,
    m.created_at,
    m.updated_at
"""

_USAGE_COLUMNS = """
    id::text AS id,
    user_id::text AS user_id,
    feature_key,
    current_usage,
    usage_limit,
    period_type,
    period_start,
    period_end,
    last_used_at
"""

_PAYMENT_COLUMNS = """
    id::text AS id,
    user_id::text AS user_id,
    membership_id::text AS membership_id,
    stripe_payment_intent_id,
    stripe_invoice_id,
    stripe_charge_id,
    stripe_subscription_id,
    amount,
    currency,
    status,
    invoice_url,
    invoice_pdf,
    description,
    failure_reason,
    paid_at,
    created_at
"""

_TIER_WRITABLE = {
    "name",
    "display_name",
    "description",
    "price_monthly",
    "price_yearly",
    "stripe_price_id_monthly",
    "stripe_price_id_yearly",
    "stripe_product_id",
    "trial_days",
    "is_active",
    "is_default",
    "sort_order",
}
_FEATURE_WRITABLE = {"key", "name", "description", "feature_type", "default_value", "is_active"}
_FEATURE_JSON = {"default_value"}
_MEMBERSHIP_WRITABLE = {
    "tier_id",
    "status",
    "billing_cycle",
    "started_at",
    "expires_at",
    "cancelled_at",
    "cancel_at_period_end",
    "trial_starts_at",
    "trial_ends_at",
    "current_period_start",
    "current_period_end",
    "stripe_subscription_id",
    "stripe_price_id",
    "stripe_latest_invoice_id",
    "stripe_latest_invoice_status",
    "last_payment_at",
    "last_payment_amount",
    "last_payment_currency",
}
_PAYMENT_WRITABLE = {
    "user_id",
    "membership_id",
    "stripe_payment_intent_id",
    "stripe_invoice_id",
    "stripe_charge_id",
    "stripe_subscription_id",
    "amount",
    "currency",
    "status",
    "invoice_url",
    "invoice_pdf",
    "description",
    "failure_reason",
    "paid_at",
}

_PROFILE_WRITABLE = {"first_name", "last_name"}

_CONTACT_WRITABLE = {"first_name", "last_name", "email", "subject", "message", "ip_address", "user_agent"}

_PROFILE_COLUMNS = """
    id::text AS id,
    email,
    first_name,
    last_name,
    stripe_customer_id,
    created_at,
    updated_at
"""


def _assignments(values: dict, allowed: set[str], json_columns: set[str] = frozenset()) -> tuple[str, dict]:
    unknown = set(values) - allowed
    if unknown:
        raise ValueError(f"unknown columns: {sorted(unknown)}")
    parts = []
    params = {}
    for col, value in values.items():
        if col in json_columns:
            parts.append(f"{col}=CAST(:v_{col} AS jsonb)")
            params[f"v_{col}"] = json.dumps(value)
        else:
            parts.append(f"{col}=:v_{col}")
            params[f"v_{col}"] = value
    return ", ".join(parts), params


def _insert_parts(values: dict, allowed: set[str], json_columns: set[str] = frozenset()) -> tuple[str, str, dict]:
    unknown = set(values) - allowed
    if unknown:
        raise ValueError(f"unknown columns: {sorted(unknown)}")
    cols = []
    binds = []
    params = {}
    for col, value in values.items():
        cols.append(col)
        if col in json_columns:
            binds.append(f"CAST(:v_{col} AS jsonb)")
            params[f"v_{col}"] = json.dumps(value)
        else:
            binds.append(f":v_{col}")
            params[f"v_{col}"] = value
    return ", ".join(cols), ", ".join(binds), params


def _rows(result) -> list[dict]:
    return [dict(r) for r in result.mappings().all()]


def _row(result) -> dict | None:
    r = result.mappings().first()
    return dict(r) if r else None


class SqlSystemRepo:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self.db.begin_nested():
            yield

    def list_tiers(self, include_inactive: bool = False) -> list[dict]:
        where = "" if include_inactive else "WHERE is_active=true"
        return _rows(self.db.execute(sa.text(f"SELECT {_TIER_COLUMNS} FROM membership_tiers {where} ORDER BY sort_order, name")))

    def get_tier(self, tier_id: str) -> dict | None:
        return _row(self.db.execute(sa.text(f"SELECT {_TIER_COLUMNS} FROM membership_tiers WHERE id=:id"), {"id": tier_id}))

    def get_tier_by_name(self, name: str) -> dict | None:
        return _row(self.db.execute(sa.text(f"SELECT {_TIER_COLUMNS} FROM membership_tiers WHERE name=:n"), {"n": name}))

    def get_default_tier(self) -> dict | None:
        return _row(
            self.db.execute(
                sa.text(
                    f"""
                    SELECT {_TIER_COLUMNS}
                    FROM membership_tiers
                    WHERE is_default=true AND is_active=true
                    ORDER BY sort_order
                    LIMIT 1
                    """
                )
            )
        )

    def create_tier(self, values: dict) -> dict:
        cols, binds, params = _insert_parts(values, _TIER_WRITABLE)
        return _row(
            self.db.execute(
                sa.text(f"INSERT INTO membership_tiers ({cols}) VALUES ({binds}) RETURNING {_TIER_COLUMNS}"),
                params,
            )
        )

    def update_tier(self, tier_id: str, values: dict) -> dict | None:
        if not values:
            return self.get_tier(tier_id)
        assignments, params = _assignments(values, _TIER_WRITABLE)
        params["id"] = tier_id
        return _row(
            self.db.execute(
                sa.text(
                    f"""
                    UPDATE membership_tiers
                    SET {assignments}, updated_at=now()
                    WHERE id=:id
                    RETURNING {_TIER_COLUMNS}
                    """
                ),
                params,
            )
        )

    def list_tier_features(self, tier_id: str) -> list[dict]:
        return _rows(self.db.execute(sa.text(_TIER_FEATURES_SQL), {"tier_id": tier_id}))

    def list_features(self, include_inactive: bool = False) -> list[dict]:
        where = "" if include_inactive else "WHERE is_active=true"
        return _rows(self.db.execute(sa.text(f"SELECT {_FEATURE_COLUMNS} FROM features {where} ORDER BY name")))

    def get_feature(self, feature_id: str) -> dict | None:
        return _row(self.db.execute(sa.text(f"SELECT {_FEATURE_COLUMNS} FROM features WHERE id=:id"), {"id": feature_id}))

    def create_feature(self, values: dict) -> dict:
        cols, binds, params = _insert_parts(values, _FEATURE_WRITABLE, _FEATURE_JSON)
        return _row(
            self.db.execute(
                sa.text(f"INSERT INTO features ({cols}) VALUES ({binds}) RETURNING {_FEATURE_COLUMNS}"),
                params,
            )
        )

    def update_feature(self, feature_id: str, values: dict) -> dict | None:
        if not values:
            return self.get_feature(feature_id)
        assignments, params = _assignments(values, _FEATURE_WRITABLE, _FEATURE_JSON)
        params["id"] = feature_id
        return _row(
            self.db.execute(
                sa.text(f"UPDATE features SET {assignments} WHERE id=:id RETURNING {_FEATURE_COLUMNS}"),
                params,
            )
        )

    def upsert_tier_feature(self, tier_id: str, feature_id: str, value, period_type: str) -> dict:
        self.db.execute(
            sa.text(
                """
                INSERT INTO tier_features (tier_id, feature_id, value, period_type)
                VALUES (:tier_id, :feature_id, CAST(:value AS jsonb), :period_type)
                ON CONFLICT (tier_id, feature_id) DO UPDATE
                SET value=EXCLUDED.value,
                    period_type=EXCLUDED.period_type
                """
            ),
            {"tier_id": tier_id, "feature_id": feature_id, "value": json.dumps(value), "period_type": period_type},
        )
        rows = self.list_tier_features(tier_id)
        return next(r for r in rows if r["feature_id"] == feature_id)

    def delete_tier_feature(self, tier_id: str, feature_id: str) -> bool:
        res = self.db.execute(
            sa.text("DELETE FROM tier_features WHERE tier_id=:tier_id AND feature_id=:feature_id"),
            {"tier_id": tier_id, "feature_id": feature_id},
        )
        return res.rowcount > 0

    def ensure_profile(self, user_id: str, email: str) -> None:
        self.db.execute(
            sa.text(
                """
                INSERT INTO user_profiles (id, email)
                VALUES (:u, :email)
                ON CONFLICT (id) DO NOTHING
                """
            ),
            {"u": user_id, "email": email or ""},
        )

    def get_profile(self, user_id: str) -> dict | None:
        return _row(
            self.db.execute(
                sa.text(
                    f"""
                    SELECT {_PROFILE_COLUMNS}
                    FROM user_profiles
                    WHERE id=:u
                    """
                ),
                {"u": user_id},
            )
        )

    def update_profile(self, user_id: str, values: dict) -> dict | None:
        if not values:
            return self.get_profile(user_id)
        assignments, params = _assignments(values, _PROFILE_WRITABLE)
        params["u"] = user_id
        return _row(
            self.db.execute(
                sa.text(
                    f"""
                    UPDATE user_profiles
                    SET {assignments}, updated_at=now()
                    WHERE id=:u
                    RETURNING {_PROFILE_COLUMNS}
                    """
                ),
                params,
            )
        )

    def delete_profile(self, user_id: str) -> bool:
        # memberships, usage, payments, audit rows and admin grants cascade
        res = self.db.execute(sa.text("DELETE FROM user_profiles WHERE id=:u"), {"u": user_id})
        return res.rowcount > 0

    def set_stripe_customer_id(self, user_id: str, customer_id: str) -> bool:
        res = self.db.execute(
            sa.text(
                """
                UPDATE user_profiles
                SET stripe_customer_id=:c, updated_at=now()
                WHERE id=:u AND stripe_customer_id IS NULL
                """
            ),
            {"u": user_id, "c": customer_id},
        )
        return res.rowcount > 0

    def get_membership(self, user_id: str) -> dict | None:
        return _row(
            self.db.execute(
                sa.text(
                    f"""
                    SELECT {_MEMBERSHIP_COLUMNS}
                    FROM memberships m
                    JOIN membership_tiers t ON t.id = m.tier_id
                    WHERE m.user_id=:u
                    """
                ),
                {"u": user_id},
            )
        )

    def create_membership(self, user_id: str, tier_id: str) -> dict | None:
        self.db.execute(
            sa.text(
                """
                INSERT INTO memberships (user_id, tier_id, status)
                VALUES (:u, :tier_id, 'active')
                ON CONFLICT (user_id) DO NOTHING
                """
            ),
            {"u": user_id, "tier_id": tier_id},
        )
        return self.get_membership(user_id)

    def _update_membership_where(self, assignments: str, where: str, params: dict) -> dict | None:
        return _row(
            self.db.execute(
                sa.text(
                    f"""
                    WITH m AS (
                        UPDATE memberships
                        SET {assignments}, updated_at=now()
                        WHERE {where}
                        RETURNING *
                    )
                    SELECT {_MEMBERSHIP_COLUMNS}
                    FROM m
                    JOIN membership_tiers t ON t.id = m.tier_id
                    """
                ),
                params,
            )
        )

    def update_membership(self, user_id: str, values: dict) -> dict | None:
        if not values:
            return self.get_membership(user_id)
        assignments, params = _assignments(values, _MEMBERSHIP_WRITABLE)
        params["u"] = user_id
        return self._update_membership_where(assignments, "user_id=:u", params)

    def begin_trial(self, user_id: str, trial_tier_id: str, starts_at: datetime, ends_at: datetime) -> dict | None:
        return self._update_membership_where(
            """
            tier_id=:tier_id,
            status='trial',
            trial_starts_at=:starts_at,
            trial_ends_at=:ends_at,
            started_at=:starts_at,
            has_used_trial=true
            """,
            "user_id=:u AND has_used_trial=false AND status<>'trial'",
            {"u": user_id, "tier_id": trial_tier_id, "starts_at": starts_at, "ends_at": ends_at},
        )

    def end_trial(self, user_id: str, free_tier_id: str, now: datetime, *, only_if_elapsed: bool) -> dict | None:
        where = "user_id=:u AND status='trial'"
        if only_if_elapsed:
            where += " AND trial_ends_at < :now"
        return self._update_membership_where(
            "tier_id=:tier_id, status='active'",
            where,
            {"u": user_id, "tier_id": free_tier_id, "now": now},
        )

    def list_elapsed_trials(self, now: datetime) -> list[str]:
        rows = self.db.execute(
            sa.text(
                """
                SELECT user_id::text AS user_id
                FROM memberships
                WHERE status='trial' AND trial_ends_at < :now
                ORDER BY trial_ends_at
                """
            ),
            {"now": now},
        ).mappings().all()
        return [r["user_id"] for r in rows]

    def get_tier_with_features(self, user_id: str) -> dict | None:
        return _row(
            self.db.execute(
                sa.text(
                    """
                    SELECT
                        tier_id::text AS tier_id,
                        tier_name,
                        tier_display_name,
                        membership_status::text AS membership_status,
                        trial_ends_at,
                        features
                    FROM get_user_tier_with_features(:u)
                    """
                ),
                {"u": user_id},
            )
        )

    def get_feature_limit(self, user_id: str, feature_key: str) -> int:
        value = self.db.execute(
            sa.text("SELECT get_feature_limit(:u, :k)"),
            {"u": user_id, "k": feature_key},
        ).scalar()
        return int(value or 0)

    def insert_membership_audit(self, values: dict) -> None:
        self.db.execute(
            sa.text(
                """
                INSERT INTO membership_audit_log (
                    membership_id, user_id, action,
                    old_tier_id, new_tier_id,
                    old_status, new_status,
                    data
                )
                VALUES (
                    :membership_id, :user_id, :action,
                    :old_tier_id, :new_tier_id,
                    :old_status, :new_status,
                    CAST(:data AS jsonb)
                )
                """
            ),
            {**values, "data": json.dumps(values.get("data") or {})},
        )

    def get_usage(self, user_id: str, feature_key: str) -> dict | None:
        return _row(
            self.db.execute(
                sa.text(f"SELECT {_USAGE_COLUMNS} FROM usage_tracking WHERE user_id=:u AND feature_key=:k"),
                {"u": user_id, "k": feature_key},
            )
        )

    def list_usage(self, user_id: str) -> list[dict]:
        return _rows(
            self.db.execute(
                sa.text(f"SELECT {_USAGE_COLUMNS} FROM usage_tracking WHERE user_id=:u ORDER BY feature_key"),
                {"u": user_id},
            )
        )

    def save_usage(self, row: dict) -> dict:
        return _row(
            self.db.execute(
                sa.text(
                    f"""
                    INSERT INTO usage_tracking (
                        user_id, feature_key, current_usage, usage_limit,
                        period_type, period_start, period_end
                    )
                    VALUES (:user_id, :feature_key, :current_usage, :usage_limit, :period_type, :period_start, :period_end)
                    ON CONFLICT (user_id, feature_key) DO UPDATE
                    SET current_usage=EXCLUDED.current_usage,
                        usage_limit=EXCLUDED.usage_limit,
                        period_type=EXCLUDED.period_type,
                        period_start=EXCLUDED.period_start,
                        period_end=EXCLUDED.period_end,
                        updated_at=now()
                    RETURNING {_USAGE_COLUMNS}
                    """
                ),
                {
                    "user_id": row["user_id"],
                    "feature_key": row["feature_key"],
                    "current_usage": row["current_usage"],
                    "usage_limit": row["usage_limit"],
                    "period_type": row["period_type"],
                    "period_start": row.get("period_start"),
                    "period_end": row.get("period_end"),
                },
            )
        )

    def set_usage_limit(self, user_id: str, feature_key: str, usage_limit: int) -> bool:
        res = self.db.execute(
            sa.text(
                """
                UPDATE usage_tracking
                SET usage_limit=:limit, updated_at=now()
                WHERE user_id=:u AND feature_key=:k
                """
            ),
            {"u": user_id, "k": feature_key, "limit": usage_limit},
        )
        return res.rowcount > 0

    def add_usage(self, user_id: str, feature_key: str, amount: int, used_at: datetime) -> dict | None:
        return _row(
            self.db.execute(
                sa.text(
                    f"""
                    UPDATE usage_tracking
                    SET current_usage=current_usage + :n,
                        last_used_at=:at,
                        updated_at=now()
                    WHERE user_id=:u AND feature_key=:k
                    RETURNING {_USAGE_COLUMNS}
                    """
                ),
                {"u": user_id, "k": feature_key, "n": amount, "at": used_at},
            )
        )

    def list_due_usage(self, now: datetime) -> list[dict]:
        return _rows(
            self.db.execute(
                sa.text(
                    f"""
                    SELECT {_USAGE_COLUMNS}
                    FROM usage_tracking
                    WHERE period_type IN ('daily','monthly')
                      AND period_end IS NOT NULL
                      AND period_end < :now
                    """
                ),
                {"now": now},
            )
        )

    def insert_payment(self, values: dict) -> dict:
        cols, binds, params = _insert_parts(values, _PAYMENT_WRITABLE)
        return _row(
            self.db.execute(
                sa.text(f"INSERT INTO payment_history ({cols}) VALUES ({binds}) RETURNING {_PAYMENT_COLUMNS}"),
                params,
            )
        )

    def list_payments(self, user_id: str, limit: int = 50) -> list[dict]:
        return _rows(
            self.db.execute(
                sa.text(
                    f"""
                    SELECT {_PAYMENT_COLUMNS}
                    FROM payment_history
                    WHERE user_id=:u
                    ORDER BY created_at DESC
                    LIMIT :limit
                    """
                ),
                {"u": user_id, "limit": limit},
            )
        )

    def log_webhook_event(self, event_id: str, event_type: str, payload: dict) -> bool:
        res = self.db.execute(
            sa.text(
                """
                INSERT INTO billing_webhook_events (stripe_event_id, event_type, payload, processed)
                VALUES (:event_id, :event_type, CAST(:payload AS jsonb), false)
                ON CONFLICT (stripe_event_id) DO NOTHING
                """
            ),
            {"event_id": event_id, "event_type": event_type, "payload": json.dumps(payload)},
        )
        return res.rowcount > 0

    def get_webhook_event(self, event_id: str) -> dict | None:
        return _row(
            self.db.execute(
                sa.text(
                    """
                    SELECT
                        stripe_event_id,
                        event_type,
                        processed,
                        processed_at,
                        error_message,
                        retry_count
                    FROM billing_webhook_events
                    WHERE stripe_event_id=:event_id
                    """
                ),
                {"event_id": event_id},
            )
        )

    def bump_webhook_retry(self, event_id: str) -> None:
        self.db.execute(
            sa.text("UPDATE billing_webhook_events SET retry_count=retry_count + 1 WHERE stripe_event_id=:event_id"),
            {"event_id": event_id},
        )

    def finish_webhook_event(self, event_id: str, error: str | None = None) -> None:
        if error is None:
            sql = """
                UPDATE billing_webhook_events
                SET processed=true, processed_at=now(), error_message=NULL
                WHERE stripe_event_id=:event_id
            """
        else:
            sql = """
                UPDATE billing_webhook_events
                SET processed=false, error_message=:error
                WHERE stripe_event_id=:event_id
            """
        self.db.execute(sa.text(sql), {"event_id": event_id, "error": error})

    def is_admin(self, user_id: str) -> bool:
        found = self.db.execute(sa.text("SELECT 1 FROM admin_users WHERE user_id=:u"), {"u": user_id}).first()
        return found is not None

    def list_admins(self) -> list[dict]:
        return _rows(
            self.db.execute(
                sa.text(
                    """
                    SELECT
                        a.user_id::text AS user_id,
                        p.email,
                        a.role,
                        a.created_at
                    FROM admin_users a
                    JOIN user_profiles p ON p.id = a.user_id
                    ORDER BY a.created_at
                    """
                )
            )
        )

    def get_admin(self, user_id: str) -> dict | None:
        return _row(
            self.db.execute(
                sa.text(
                    """
                    SELECT
                        a.user_id::text AS user_id,
                        p.email,
                        a.role,
                        a.created_at
                    FROM admin_users a
                    JOIN user_profiles p ON p.id = a.user_id
                    WHERE a.user_id=:u
                    """
                ),
                {"u": user_id},
            )
        )

    def add_admin(self, user_id: str, role: str, created_by: str | None) -> dict | None:
        inserted = self.db.execute(
            sa.text(
                """
                INSERT INTO admin_users (user_id, role, created_by)
                VALUES (:u, :role, :by)
                ON CONFLICT (user_id) DO NOTHING
                RETURNING user_id
                """
            ),
            {"u": user_id, "role": role, "by": created_by},
        ).first()
        return self.get_admin(user_id) if inserted else None

    def remove_admin(self, user_id: str) -> bool:
        res = self.db.execute(sa.text("DELETE FROM admin_users WHERE user_id=:u"), {"u": user_id})
        return res.rowcount > 0

    def create_contact_submission(self, values: dict) -> dict:
        cols, binds, params = _insert_parts(values, _CONTACT_WRITABLE)
        return _row(
            self.db.execute(
                sa.text(
                    f"""
                    INSERT INTO contact_submissions ({cols})
                    VALUES ({binds})
                    RETURNING id::text AS id, first_name, last_name, email, subject, status, created_at
                    """
                ),
                params,
            )
        )


class SqlUserScopedRepo:
    """Reads on a dedicated connection under the restricted role.

    The claims and role are transaction-local, so they vanish when the read
    transaction ends and never leak into the service session.
    """

    def __init__(self, engine: sa.Engine, claims: dict):
        self.engine = engine
        self.claims = claims

    def _read(self, sql: str, params: dict | None = None) -> list[dict]:
        with self.engine.connect() as conn:
            with conn.begin():
                conn.execute(
                    sa.text("SELECT set_config('request.jwt.claims', :claims, true), set_config('role', :role, true)"),
                    {"claims": json.dumps(self.claims), "role": settings.DB_USER_ROLE},
                )
                return _rows(conn.execute(sa.text(sql), params or {}))

    def list_tiers(self) -> list[dict]:
        return self._read(f"SELECT {_TIER_COLUMNS} FROM membership_tiers WHERE is_active=true ORDER BY sort_order, name")

    def list_tier_features(self, tier_id: str) -> list[dict]:
        return self._read(_TIER_FEATURES_SQL, {"tier_id": tier_id})

    def get_membership(self, user_id: str) -> dict | None:
        rows = self._read(
            f"""
            SELECT {_MEMBERSHIP_COLUMNS}
            FROM memberships m
            JOIN membership_tiers t ON t.id = m.tier_id
            WHERE m.user_id=:u
            """,
            {"u": user_id},
        )
        return rows[0] if rows else None

    def list_usage(self, user_id: str) -> list[dict]:
        return self._read(f"SELECT {_USAGE_COLUMNS} FROM usage_tracking WHERE user_id=:u ORDER BY feature_key", {"u": user_id})

    def list_payments(self, user_id: str, limit: int = 50) -> list[dict]:
        return self._read(
            f"""
            SELECT {_PAYMENT_COLUMNS}
            FROM payment_history
            WHERE user_id=:u
            ORDER BY created_at DESC
            LIMIT :limit
            """,
            {"u": user_id, "limit": limit},
        )
