"""create patient batch, prompt and call history tables

Revision ID: 20250601_0001
Revises:
Create Date: 2025-06-01 00:00:00.000000

"""

from alembic import op

from carecall.models.tables import CallHistoryRow, PatientBatchRow, PatientPromptRow


# revision identifiers, used by Alembic.
revision = "20250601_0001"
down_revision = None
branch_labels = None
depends_on = None

TABLES = (PatientBatchRow, PatientPromptRow, CallHistoryRow)


def upgrade() -> None:
    bind = op.get_bind()
    for model in TABLES:
        model.__table__.create(bind=bind, checkfirst=True)


def downgrade() -> None:
    bind = op.get_bind()
    for model in reversed(TABLES):
        model.__table__.drop(bind=bind, checkfirst=True)
