from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("provider_id", sa.String(), nullable=False),
        sa.Column("service_date", sa.Date(), nullable=False),
        sa.Column("service_time", sa.String(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("special_requirements", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_confirmed_by_provider", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completion_confirmed_by_customer", sa.Boolean(), nullable=True),
        sa.Column("completion_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_complete_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_status", sa.String(), nullable=True),
        sa.Column("provider_payment_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_bookings_booking_id", "bookings", ["booking_id"], unique=True)
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"], unique=False)
    op.create_index("ix_bookings_provider_id", "bookings", ["provider_id"], unique=False)
    op.create_index("ix_bookings_service_date", "bookings", ["service_date"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_auto_complete_at", "bookings", ["auto_complete_at"], unique=False)

    op.create_table(
        "booking_completion_details",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.String(), sa.ForeignKey("bookings.booking_id"), nullable=False, unique=True),
        sa.Column("service_description", sa.Text(), nullable=False),
        sa.Column("amount_charged", sa.Numeric(12, 2), nullable=False),
        sa.Column("completion_days", sa.Integer(), nullable=False),
        sa.Column("additional_notes", sa.Text(), nullable=True),
        sa.Column("customer_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount_charged > 0", name="ck_completion_amount_positive"),
        sa.CheckConstraint("completion_days >= 1", name="ck_completion_days_min"),
    )

    op.create_table(
        "provider_availability_blocks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider_id", sa.String(), nullable=False),
        sa.Column("specific_date", sa.Date(), nullable=True),
        sa.Column("day_of_week", sa.Integer(), nullable=True),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("(specific_date IS NULL) <> (day_of_week IS NULL)", name="ck_block_date_xor_weekday"),
        sa.UniqueConstraint("provider_id", "specific_date", name="uq_block_provider_date"),
        sa.UniqueConstraint("provider_id", "day_of_week", name="uq_block_provider_weekday"),
    )
    op.create_index(
        "ix_provider_availability_blocks_provider_id",
        "provider_availability_blocks",
        ["provider_id"],
        unique=False,
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payment_id", sa.String(), nullable=False),
        sa.Column("booking_id", sa.String(), sa.ForeignKey("bookings.booking_id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(), nullable=False, server_default="INR"),
        sa.Column("payment_type", sa.String(), nullable=False, server_default="advance"),
        sa.Column("is_provider_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_description", sa.String(), nullable=True),
        sa.Column("gateway_order_id", sa.String(), nullable=True),
        sa.Column("gateway_payment_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_payments_payment_id", "payments", ["payment_id"], unique=True)
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"], unique=False)
    op.create_index("ix_payments_gateway_order_id", "payments", ["gateway_order_id"], unique=False)
    op.create_index("ix_payments_status", "payments", ["status"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)

    op.create_table(
        "reviews",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.String(), sa.ForeignKey("bookings.booking_id"), nullable=False, unique=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("provider_id", sa.String(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("review_text", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_review_rating_range"),
    )
    op.create_index("ix_reviews_user_id", "reviews", ["user_id"], unique=False)
    op.create_index("ix_reviews_provider_id", "reviews", ["provider_id"], unique=False)


def downgrade():
    op.drop_index("ix_reviews_provider_id", table_name="reviews")
    op.drop_index("ix_reviews_user_id", table_name="reviews")
    op.drop_table("reviews")

    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_gateway_order_id", table_name="payments")
    op.drop_index("ix_payments_booking_id", table_name="payments")
    op.drop_index("ix_payments_payment_id", table_name="payments")
    op.drop_table("payments")

    op.drop_index("ix_provider_availability_blocks_provider_id", table_name="provider_availability_blocks")
    op.drop_table("provider_availability_blocks")

    op.drop_table("booking_completion_details")

    op.drop_index("ix_bookings_auto_complete_at", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_service_date", table_name="bookings")
    op.drop_index("ix_bookings_provider_id", table_name="bookings")
    op.drop_index("ix_bookings_user_id", table_name="bookings")
    op.drop_index("ix_bookings_booking_id", table_name="bookings")
    op.drop_table("bookings")
