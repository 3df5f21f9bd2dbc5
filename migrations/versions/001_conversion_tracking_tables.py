"""Create booking, conversion tracking log and monitoring alert tables

Revision ID: 001_conversion_tracking_tables
Revises: 
Create Date: 2026-10-16

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_conversion_tracking_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('bookings',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=30), nullable=True),
        sa.Column('customer_first_name', sa.String(length=100), nullable=True),
        sa.Column('customer_last_name', sa.String(length=100), nullable=True),
        sa.Column('tour_id', sa.String(length=64), nullable=True),
        sa.Column('tour_name', sa.String(length=255), nullable=True),
        sa.Column('booking_date', sa.Date(), nullable=True),
        sa.Column('guests', sa.Integer(), nullable=True),
        sa.Column('gclid', sa.String(length=255), nullable=True),
        sa.Column('wbraid', sa.String(length=255), nullable=True),
        sa.Column('gbraid', sa.String(length=255), nullable=True),
        sa.Column('utm_source', sa.String(length=100), nullable=True),
        sa.Column('utm_medium', sa.String(length=100), nullable=True),
        sa.Column('utm_campaign', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_bookings_status', 'bookings', ['status'])
    op.create_index('ix_bookings_created_at', 'bookings', ['created_at'])

    op.create_table('conversion_tracking_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('booking_id', sa.String(length=64), nullable=False),
        sa.Column('conversion_type', sa.String(length=10), nullable=False),
        sa.Column('action', sa.String(length=30), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_type', sa.String(length=40), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_conversion_tracking_log_booking_id', 'conversion_tracking_log', ['booking_id'])
    op.create_index('ix_conversion_tracking_log_conversion_type', 'conversion_tracking_log', ['conversion_type'])
    op.create_index('ix_conversion_tracking_log_success', 'conversion_tracking_log', ['success'])
    op.create_index('ix_conversion_tracking_log_created_at', 'conversion_tracking_log', ['created_at'])
    op.create_index('ix_tracking_log_booking_type', 'conversion_tracking_log', ['booking_id', 'conversion_type'])

    op.create_table('monitoring_alert',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('alert_type', sa.String(length=60), nullable=False),
        sa.Column('severity', sa.String(length=10), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_monitoring_alert_alert_type', 'monitoring_alert', ['alert_type'])
    op.create_index('ix_monitoring_alert_severity', 'monitoring_alert', ['severity'])
    op.create_index('ix_monitoring_alert_created_at', 'monitoring_alert', ['created_at'])


def downgrade():
    op.drop_table('monitoring_alert')
    op.drop_table('conversion_tracking_log')
    op.drop_table('bookings')
