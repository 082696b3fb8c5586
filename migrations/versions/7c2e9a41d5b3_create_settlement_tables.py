"""Create settlement tables

Revision ID: 7c2e9a41d5b3
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c2e9a41d5b3'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('artists',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('payout_account_id', sa.String(length=255), nullable=True),
        sa.Column('customer_id', sa.String(length=255), nullable=True),
        sa.Column('subscription_id', sa.String(length=255), nullable=True),
        sa.Column('subscription_tier', sa.String(length=50), nullable=False),
        sa.Column('subscription_status', sa.String(length=50), nullable=False),
        sa.Column('platform_fee_bps', sa.Integer(), nullable=True),
        sa.Column('charges_enabled', sa.Boolean(), nullable=False),
        sa.Column('payouts_enabled', sa.Boolean(), nullable=False),
        sa.Column('details_submitted', sa.Boolean(), nullable=False),
        sa.Column('onboarding_status', sa.String(length=50), nullable=False),
        sa.Column('connect_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_artists_payout_account_id', 'artists', ['payout_account_id'])

    op.create_table('venues',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('payout_account_id', sa.String(length=255), nullable=True),
        sa.Column('default_fee_bps', sa.Integer(), nullable=False),
        sa.Column('charges_enabled', sa.Boolean(), nullable=False),
        sa.Column('payouts_enabled', sa.Boolean(), nullable=False),
        sa.Column('details_submitted', sa.Boolean(), nullable=False),
        sa.Column('onboarding_status', sa.String(length=50), nullable=False),
        sa.Column('connect_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_venues_payout_account_id', 'venues', ['payout_account_id'])

    op.create_table('artworks',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('artist_id', sa.String(length=64), nullable=False),
        sa.Column('venue_id', sa.String(length=64), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('image_url', sa.String(length=1000), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['artist_id'], ['artists.id']),
        sa.ForeignKeyConstraint(['venue_id'], ['venues.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_artworks_artist_id', 'artworks', ['artist_id'])

    op.create_table('orders',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('checkout_session_id', sa.String(length=255), nullable=True),
        sa.Column('artwork_id', sa.String(length=64), nullable=False),
        sa.Column('artist_id', sa.String(length=64), nullable=False),
        sa.Column('venue_id', sa.String(length=64), nullable=True),
        sa.Column('buyer_identity', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('plan_id_at_purchase', sa.String(length=50), nullable=False),
        sa.Column('artist_take_home_pct', sa.Numeric(precision=5, scale=4), nullable=False),
        sa.Column('list_price_cents', sa.Integer(), nullable=False),
        sa.Column('buyer_fee_cents', sa.Integer(), nullable=False),
        sa.Column('buyer_total_cents', sa.Integer(), nullable=False),
        sa.Column('venue_amount_cents', sa.Integer(), nullable=False),
        sa.Column('artist_amount_cents', sa.Integer(), nullable=False),
        sa.Column('platform_net_cents', sa.Integer(), nullable=False),
        sa.Column('payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('charge_id', sa.String(length=255), nullable=True),
        sa.Column('artist_transfer_id', sa.String(length=255), nullable=True),
        sa.Column('venue_transfer_id', sa.String(length=255), nullable=True),
        sa.Column('payout_status', sa.String(length=50), nullable=False),
        sa.Column('payout_error', sa.Text(), nullable=True),
        sa.Column('payout_attempt', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['artwork_id'], ['artworks.id']),
        sa.ForeignKeyConstraint(['artist_id'], ['artists.id']),
        sa.ForeignKeyConstraint(['venue_id'], ['venues.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('checkout_session_id')
    )
    # Reconciliation scans paid orders by payout_status
    op.create_index('ix_orders_status_payout_status', 'orders', ['status', 'payout_status'])

    op.create_table('webhook_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=255), nullable=True),
        sa.Column('note', sa.String(length=500), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id')
    )

    op.create_table('audit_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('order_id', sa.String(length=36), nullable=True),
        sa.Column('action', sa.String(length=255), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_events_order_id', 'audit_events', ['order_id'])


def downgrade():
    op.drop_index('ix_audit_events_order_id', table_name='audit_events')
    op.drop_table('audit_events')
    op.drop_table('webhook_events')
    op.drop_index('ix_orders_status_payout_status', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_artworks_artist_id', table_name='artworks')
    op.drop_table('artworks')
    op.drop_index('ix_venues_payout_account_id', table_name='venues')
    op.drop_table('venues')
    op.drop_index('ix_artists_payout_account_id', table_name='artists')
    op.drop_table('artists')
