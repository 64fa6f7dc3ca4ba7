"""Database triggers that protect the bonus ledger below the ORM.

The session guards in :mod:`wayfarer.domains.rewards.guards` only see writes
that go through the unit of work or ``Session.execute``. Raw SQL, Core
connections and the legacy ``bulk_*_mappings`` helpers skip them, so the
same rules are repeated here as triggers:

* ``user.credits`` / ``user.bonus_claimed`` change only while the current
  transaction holds a row in ``ledger_write_grant``.
* ``bonus_claim_record`` rows are inserted only under a grant and are never
  updated or deleted.

A grant row is inserted and deleted inside the claim transaction, so it is
never committed and no other transaction can see it.
"""

from __future__ import annotations

import logging
from typing import Dict, List

logger = logging.getLogger(__name__)

GRANT_TABLE = "ledger_write_grant"
LEDGER_DENIED_MESSAGE = "ledger fields are written only by the claim service"
CLAIM_INSERT_DENIED_MESSAGE = "claim records are written only by the claim service"
CLAIM_IMMUTABLE_MESSAGE = "claim records are immutable"

_SQLITE = [
    f"""
    CREATE TRIGGER IF NOT EXISTS trg_user_ledger_insert
    BEFORE INSERT ON "user"
    WHEN (COALESCE(NEW.credits, 0) <> 0 OR COALESCE(NEW.bonus_claimed, 0) <> 0)
        AND NOT EXISTS (SELECT 1 FROM {GRANT_TABLE})
    BEGIN
        SELECT RAISE(ABORT, '{LEDGER_DENIED_MESSAGE}');
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS trg_user_ledger_update
    BEFORE UPDATE OF credits, bonus_claimed ON "user"
    WHEN (NEW.credits IS NOT OLD.credits OR NEW.bonus_claimed IS NOT OLD.bonus_claimed)
        AND NOT EXISTS (SELECT 1 FROM {GRANT_TABLE})
    BEGIN
        SELECT RAISE(ABORT, '{LEDGER_DENIED_MESSAGE}');
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS trg_bonus_claim_record_insert
    BEFORE INSERT ON bonus_claim_record
    WHEN NOT EXISTS (SELECT 1 FROM {GRANT_TABLE})
    BEGIN
        SELECT RAISE(ABORT, '{CLAIM_INSERT_DENIED_MESSAGE}');
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS trg_bonus_claim_record_update
    BEFORE UPDATE ON bonus_claim_record
    BEGIN
        SELECT RAISE(ABORT, '{CLAIM_IMMUTABLE_MESSAGE}');
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS trg_bonus_claim_record_delete
    BEFORE DELETE ON bonus_claim_record
    BEGIN
        SELECT RAISE(ABORT, '{CLAIM_IMMUTABLE_MESSAGE}');
    END
    """,
]

_POSTGRES = [
    f"""
    CREATE OR REPLACE FUNCTION wayfarer_guard_user_ledger() RETURNS trigger AS $$
    BEGIN
        IF EXISTS (SELECT 1 FROM {GRANT_TABLE}) THEN
            RETURN NEW;
        END IF;
        IF TG_OP = 'INSERT' THEN
            IF COALESCE(NEW.credits, 0) <> 0 OR COALESCE(NEW.bonus_claimed, false) THEN
                RAISE EXCEPTION '{LEDGER_DENIED_MESSAGE}' USING ERRCODE = 'insufficient_privilege';
            END IF;
        ELSIF NEW.credits IS DISTINCT FROM OLD.credits
            OR NEW.bonus_claimed IS DISTINCT FROM OLD.bonus_claimed THEN
            RAISE EXCEPTION '{LEDGER_DENIED_MESSAGE}' USING ERRCODE = 'insufficient_privilege';
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    'DROP TRIGGER IF EXISTS trg_user_ledger ON "user"',
    """
    CREATE TRIGGER trg_user_ledger BEFORE INSERT OR UPDATE ON "user"
    FOR EACH ROW EXECUTE FUNCTION wayfarer_guard_user_ledger()
    """,
    f"""
    CREATE OR REPLACE FUNCTION wayfarer_guard_claim_record() RETURNS trigger AS $$
    BEGIN
        IF TG_OP <> 'INSERT' THEN
            RAISE EXCEPTION '{CLAIM_IMMUTABLE_MESSAGE}' USING ERRCODE = 'insufficient_privilege';
        END IF;
        IF NOT EXISTS (SELECT 1 FROM {GRANT_TABLE}) THEN
            RAISE EXCEPTION '{CLAIM_INSERT_DENIED_MESSAGE}' USING ERRCODE = 'insufficient_privilege';
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    "DROP TRIGGER IF EXISTS trg_bonus_claim_record ON bonus_claim_record",
    """
    CREATE TRIGGER trg_bonus_claim_record BEFORE INSERT OR UPDATE OR DELETE ON bonus_claim_record
    FOR EACH ROW EXECUTE FUNCTION wayfarer_guard_claim_record()
    """,
]

LEDGER_TRIGGERS: Dict[str, List[str]] = {"sqlite": _SQLITE, "postgresql": _POSTGRES}

LEDGER_TRIGGER_DROPS: Dict[str, List[str]] = {
    "sqlite": [
        "DROP TRIGGER IF EXISTS trg_user_ledger_insert",
        "DROP TRIGGER IF EXISTS trg_user_ledger_update",
        "DROP TRIGGER IF EXISTS trg_bonus_claim_record_insert",
        "DROP TRIGGER IF EXISTS trg_bonus_claim_record_update",
        "DROP TRIGGER IF EXISTS trg_bonus_claim_record_delete",
    ],
    "postgresql": [
        'DROP TRIGGER IF EXISTS trg_user_ledger ON "user"',
        "DROP TRIGGER IF EXISTS trg_bonus_claim_record ON bonus_claim_record",
        "DROP FUNCTION IF EXISTS wayfarer_guard_user_ledger()",
        "DROP FUNCTION IF EXISTS wayfarer_guard_claim_record()",
    ],
}


def install_ledger_triggers(connection) -> bool:
    """Create the ledger triggers for the connection's dialect; False if unsupported."""
    statements = LEDGER_TRIGGERS.get(connection.dialect.name)
    if statements is None:
        logger.warning("No ledger triggers for dialect %s; only session guards apply", connection.dialect.name)
        return False
    for statement in statements:
        connection.exec_driver_sql(statement)
    return True


def drop_ledger_triggers(connection) -> None:
    for statement in LEDGER_TRIGGER_DROPS.get(connection.dialect.name, []):
        connection.exec_driver_sql(statement)


def on_metadata_create(target, connection, **kw) -> None:
    install_ledger_triggers(connection)


__all__ = [
    "GRANT_TABLE",
    "LEDGER_DENIED_MESSAGE",
    "CLAIM_INSERT_DENIED_MESSAGE",
    "CLAIM_IMMUTABLE_MESSAGE",
    "LEDGER_TRIGGERS",
    "LEDGER_TRIGGER_DROPS",
    "install_ledger_triggers",
    "drop_ledger_triggers",
    "on_metadata_create",
]
