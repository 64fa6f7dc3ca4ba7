"""Ledger write grants and the triggers that require them.

Revision ID: 20261020_ledger_storage_rules
Revises: 20261019_initial_schema
Create Date: 2026-10-20
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

from wayfarer.domains.rewards.storage_rules import GRANT_TABLE, drop_ledger_triggers, install_ledger_triggers

# revision identifiers, used by Alembic.
revision = "20261020_ledger_storage_rules"
down_revision = "20261019_initial_schema"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        GRANT_TABLE,
        sa.Column("token", sa.String(length=32), primary_key=True),
    )
    install_ledger_triggers(op.get_bind())


def downgrade():
    drop_ledger_triggers(op.get_bind())
    op.drop_table(GRANT_TABLE)
