from __future__ import annotations

import uuid

import structlog

from ..db import Database
from ..security.cipher import SecretCipher, decrypt_credential_set, encrypt_credential_set
from ..utils import now_ms

log = structlog.get_logger()

_COLS = (
    "id, user_id, exchange_type, exchange_name, api_key_encrypted, api_secret_encrypted, "
    "api_passphrase_encrypted, is_active, last_sync_at_ms, created_at_ms, updated_at_ms"
)


def _row_to_dict(row) -> dict:
    return {
        "id": row[0],
        "user_id": row[1],
        "exchange_type": row[2],
        "exchange_name": row[3],
        "api_key_encrypted": row[4],
        "api_secret_encrypted": row[5],
        "api_passphrase_encrypted": row[6],
        "is_active": bool(row[7]),
        "last_sync_at_ms": row[8],
        "created_at_ms": row[9],
        "updated_at_ms": row[10],
    }


def add_exchange(
    db: Database,
    user_id: str,
    exchange_type: str,
    exchange_name: str,
    api_key: str,
    api_secret: str,
    passphrase: str | None = None,
    is_active: bool = True,
    cipher: SecretCipher | None = None,
) -> dict:
    enc = encrypt_credential_set(api_key, api_secret, passphrase, user_id, cipher)
    now = now_ms()
    exchange_id = str(uuid.uuid4())
    with db.transaction() as conn:
        conn.execute(
            f"INSERT INTO user_exchanges({_COLS}) VALUES(?,?,?,?,?,?,?,?,?,?,?)",
            (
                exchange_id,
                user_id,
                exchange_type.lower(),
                exchange_name,
                enc["api_key_encrypted"],
                enc["api_secret_encrypted"],
                enc.get("api_passphrase_encrypted"),
                1 if is_active else 0,
                None,
                now,
                now,
            ),
        )
    log.info("exchange_added", user_id=user_id, exchange_id=exchange_id, exchange_type=exchange_type)
    return get_exchange(db, exchange_id)


def get_exchange(db: Database, exchange_id: str) -> dict | None:
    row = db.conn.execute(f"SELECT {_COLS} FROM user_exchanges WHERE id=?", (exchange_id,)).fetchone()
    return _row_to_dict(row) if row else None


def list_active_exchanges(db: Database, user_id: str) -> list[dict]:
    rows = db.conn.execute(
        f"SELECT {_COLS} FROM user_exchanges WHERE user_id=? AND is_active=1 ORDER BY created_at_ms ASC",
        (user_id,),
    ).fetchall()
    return [_row_to_dict(r) for r in rows]


def set_exchange_active(db: Database, exchange_id: str, active: bool) -> bool:
    with db.transaction() as conn:
        cur = conn.execute(
            "UPDATE user_exchanges SET is_active=?, updated_at_ms=? WHERE id=?",
            (1 if active else 0, now_ms(), exchange_id),
        )
        return cur.rowcount > 0


def touch_last_sync(db: Database, user_id: str, at_ms: int | None = None):
    with db.transaction() as conn:
        conn.execute(
            "UPDATE user_exchanges SET last_sync_at_ms=? WHERE user_id=? AND is_active=1",
            (at_ms if at_ms is not None else now_ms(), user_id),
        )


def decrypt_for_request(exchanges: list[dict], user_id: str, cipher: SecretCipher | None = None) -> list[dict]:
    """Build the aggregation request entries. Exchanges whose secrets fail to decrypt are skipped."""
    out = []
    for ex in exchanges:
        try:
            creds = decrypt_credential_set(
                ex["api_key_encrypted"],
                ex["api_secret_encrypted"],
                ex.get("api_passphrase_encrypted"),
                user_id,
                cipher,
            )
        except Exception as e:
            log.error("exchange_decrypt_failed", exchange_id=ex.get("id"), exchange_name=ex.get("exchange_name"), err=str(e))
            continue
        entry = {
            "exchange_id": ex["id"],
            "ccxt_id": ex["exchange_type"],
            "name": ex["exchange_name"],
            "api_key": creds["api_key"],
            "api_secret": creds["api_secret"],
        }
        if creds.get("passphrase"):
            entry["passphrase"] = creds["passphrase"]
        out.append(entry)
    return out
