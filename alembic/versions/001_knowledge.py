"""Knowledge records table.

Revision ID: 001_knowledge
Revises:
Create Date: 2026-10-17

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_knowledge"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "knowledge",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("project_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("mime_type", sa.String(100), nullable=True),
        sa.Column("size", sa.BigInteger(), nullable=True),
        sa.Column("source", sa.String(2000), nullable=False),
        sa.Column("processing_status", sa.String(20), nullable=False, server_default="PROCESSING"),
        sa.Column("error_details", sa.String(1000), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("type IN ('IMAGE', 'DOCUMENT', 'WEB')", name="ck_knowledge_type"),
        sa.CheckConstraint(
            "processing_status IN ('PROCESSING', 'SUCCESS', 'FAILED')",
            name="ck_knowledge_processing_status",
        ),
    )
    op.create_index("ix_knowledge_project_active", "knowledge", ["project_id", "is_active"])
    op.create_index("ix_knowledge_processing_status", "knowledge", ["processing_status"])


def downgrade() -> None:
    op.drop_index("ix_knowledge_processing_status", table_name="knowledge")
    op.drop_index("ix_knowledge_project_active", table_name="knowledge")
    op.drop_table("knowledge")
