from alembic import op
import sqlalchemy as sa

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "security_audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource_type", sa.String(), nullable=False),
        sa.Column("resource_id", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_security_audit_log_user_id", "security_audit_log", ["user_id"], unique=False)
    op.create_index("ix_security_audit_log_created_at", "security_audit_log", ["created_at"], unique=False)


def downgrade():
    op.drop_index("ix_security_audit_log_created_at", table_name="security_audit_log")
    op.drop_index("ix_security_audit_log_user_id", table_name="security_audit_log")
    op.drop_table("security_audit_log")
