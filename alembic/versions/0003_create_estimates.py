"""create estimates and estimate_lines tables"""

from alembic import op
import sqlalchemy as sa

revision = "0003_create_estimates"
down_revision = "0002_create_invoices"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "estimates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("estimate_number", sa.String(length=30), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("valid_until", sa.Date(), nullable=True),
        sa.Column("discount_pct", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("subtotal", sa.Numeric(20, 8), nullable=False, server_default="0"),
        sa.Column("discount_amount", sa.Numeric(20, 8), nullable=False, server_default="0"),
        sa.Column("total_tax", sa.Numeric(20, 8), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(20, 8), nullable=False, server_default="0"),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id"), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("owner_id", "estimate_number"),
    )
    op.create_index("ix_estimates_id", "estimates", ["id"])
    op.create_index("ix_estimates_owner_id", "estimates", ["owner_id"])

    op.create_table(
        "estimate_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "estimate_id",
            sa.Integer(),
            sa.ForeignKey("estimates.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 4), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(20, 8), nullable=False, server_default="0"),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_estimate_lines_id", "estimate_lines", ["id"])


def downgrade():
    op.drop_index("ix_estimate_lines_id", table_name="estimate_lines")
    op.drop_table("estimate_lines")
    op.drop_index("ix_estimates_owner_id", table_name="estimates")
    op.drop_index("ix_estimates_id", table_name="estimates")
    op.drop_table("estimates")
