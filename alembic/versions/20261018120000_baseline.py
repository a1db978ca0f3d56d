"""baseline

Revision ID: 20261018120000
Revises:
Create Date: 2026-10-18T12:00:00.000000Z
"""

from alembic import op
import sqlalchemy as sa  # noqa: F401

# revision identifiers, used by Alembic.
revision = "20261018120000"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # formdesk.db.models.__init__ imports every model file.
    from formdesk.db.base import Base
    import formdesk.db.models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)


def downgrade() -> None:
    # Downgrading the baseline is a no-op; destructive rollbacks need explicit migrations.
    pass
