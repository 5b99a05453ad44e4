"""create app settings table

Revision ID: 20250615_0002
Revises: 20250601_0001
Create Date: 2025-06-15 00:00:00.000000

"""

from alembic import op

from carecall.models.tables import AppSettingRow


# revision identifiers, used by Alembic.
revision = "20250615_0002"
down_revision = "20250601_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    AppSettingRow.__table__.create(bind=op.get_bind(), checkfirst=True)


def downgrade() -> None:
    AppSettingRow.__table__.drop(bind=op.get_bind(), checkfirst=True)
