from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "auth_users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("password", sa.String(), nullable=False),
        sa.Column("roles", sa.JSON(), nullable=False),
        sa.Column("two_factor_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    op.create_table(
        "email_otp_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("auth_users.id"), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("code", sa.String(6), nullable=False),
        sa.Column("purpose", sa.String(), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_email_otp_codes_user_id", "email_otp_codes", ["user_id"], unique=False)
    op.create_index("ix_email_otp_codes_email", "email_otp_codes", ["email"], unique=False)
    op.create_index("ix_email_otp_codes_created_at", "email_otp_codes", ["created_at"], unique=False)


def downgrade():
    op.drop_index("ix_email_otp_codes_created_at", table_name="email_otp_codes")
    op.drop_index("ix_email_otp_codes_email", table_name="email_otp_codes")
    op.drop_index("ix_email_otp_codes_user_id", table_name="email_otp_codes")
    op.drop_table("email_otp_codes")
    op.drop_table("auth_users")
