"""add final video and thumbnail url columns to projects

Revision ID: 20261017_000002
Revises: 20261017_000001
Create Date: 2026-10-17 00:00:02.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_000002"
down_revision: Union[str, None] = "20261017_000001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("projects", sa.Column("final_video_url", sa.Text(), nullable=True))
    op.add_column("projects", sa.Column("thumbnail_url", sa.Text(), nullable=True))


def downgrade() -> None:
    op.drop_column("projects", "thumbnail_url")
    op.drop_column("projects", "final_video_url")
