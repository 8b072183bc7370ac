"""per-owner yearly numbering for invoices and estimates"""

from alembic import op
import sqlalchemy as sa

revision = "0004_document_sequences"
down_revision = "0003_create_estimates"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("kind", sa.String(length=10), nullable=False),
        sa.Column("year_full", sa.Integer(), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("owner_id", "kind", "year_full"),
    )
    op.create_index("ix_document_sequences_id", "document_sequences", ["id"])


def downgrade():
    op.drop_index("ix_document_sequences_id", table_name="document_sequences")
    op.drop_table("document_sequences")
