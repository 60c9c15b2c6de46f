"""create accounts, usage, conversion and payment event tables"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column(
            "subscription_tier",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'free'"),
        ),
        sa.Column(
            "subscription_status",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'active'"),
        ),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True),
        sa.Column("billing_event_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_accounts_email", "accounts", ["email"], unique=True)
    op.create_index(
        "ix_accounts_stripe_customer_id", "accounts", ["stripe_customer_id"], unique=True
    )

    op.create_table(
        "daily_usage",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("principal_kind", sa.String(length=16), nullable=False),
        sa.Column("principal_id", sa.String(length=128), nullable=False),
        sa.Column("usage_date", sa.Date(), nullable=False),
        sa.Column(
            "conversion_count",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.UniqueConstraint(
            "principal_kind",
            "principal_id",
            "usage_date",
            name="uq_daily_usage_principal_date",
        ),
        sa.CheckConstraint(
            "conversion_count >= 0", name="ck_daily_usage_count_non_negative"
        ),
    )

    op.create_table(
        "conversions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("principal_kind", sa.String(length=16), nullable=False),
        sa.Column("principal_id", sa.String(length=128), nullable=False),
        sa.Column("conversion_type", sa.String(length=64), nullable=False),
        sa.Column(
            "file_size_mb",
            sa.Float(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_conversions_principal_created",
        "conversions",
        ["principal_kind", "principal_id", "created_at"],
    )

    op.create_table(
        "processed_payment_events",
        sa.Column("event_id", sa.String(length=255), primary_key=True, nullable=False),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id"),
            nullable=True,
        ),
        sa.Column(
            "applied",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("subscription_id", sa.String(length=255), nullable=True),
        sa.Column(
            "ends_subscription",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column(
            "processed_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_processed_payment_events_account_id",
        "processed_payment_events",
        ["account_id"],
    )
    op.create_index(
        "ix_processed_payment_events_subscription_id",
        "processed_payment_events",
        ["subscription_id"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_processed_payment_events_subscription_id", table_name="processed_payment_events"
    )
    op.drop_index(
        "ix_processed_payment_events_account_id", table_name="processed_payment_events"
    )
    op.drop_table("processed_payment_events")
    op.drop_index("ix_conversions_principal_created", table_name="conversions")
    op.drop_table("conversions")
    op.drop_table("daily_usage")
    op.drop_index("ix_accounts_stripe_customer_id", table_name="accounts")
    op.drop_index("ix_accounts_email", table_name="accounts")
    op.drop_table("accounts")
