"""001_initial_schema

Revision ID: 001
Revises: 
Create Date: 2026-10-19 09:00:00.000000

Complete consolidated database schema:
- Job configuration: jobs, leagues, agegroups, teams
- Registrations with fee columns and the optimistic-lock version column
- discount_codes, settings
"""
from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables from scratch."""
    from leaguereg.database.db import Base
    from leaguereg.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind, checkfirst=True)


def downgrade() -> None:
    """Drop all tables."""
    from leaguereg.database.db import Base
    from leaguereg.database import models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.drop_all(bind=bind, checkfirst=True)
