# booking_database.py

from extensions import db
from utils.datetime_utils import utc_now


# Statuses the backup path and reconciliation treat as a completed purchase
ELIGIBLE_BOOKING_STATUSES = ('confirmed', 'paid')


class Booking(db.Model):
    """Tour booking, the system of record for purchase conversions.

    Bookings are written by the storefront; this service only reads them.
    """
    __tablename__ = 'bookings'

    id = db.Column(db.String(64), primary_key=True)
    status = db.Column(db.String(20), nullable=False, default='pending', index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=True)

    # Customer
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(30), nullable=True)
    customer_first_name = db.Column(db.String(100), nullable=True)
    customer_last_name = db.Column(db.String(100), nullable=True)

    # Tour
    tour_id = db.Column(db.String(64), nullable=True)
    tour_name = db.Column(db.String(255), nullable=True)
    booking_date = db.Column(db.Date, nullable=True)
    guests = db.Column(db.Integer, nullable=True, default=1)

    # Attribution captured from the landing visit
    gclid = db.Column(db.String(255), nullable=True)
    wbraid = db.Column(db.String(255), nullable=True)
    gbraid = db.Column(db.String(255), nullable=True)
    utm_source = db.Column(db.String(100), nullable=True)
    utm_medium = db.Column(db.String(100), nullable=True)
    utm_campaign = db.Column(db.String(100), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=utc_now)

    def __repr__(self):
        return f'<Booking {self.id} ({self.status})>'

    @property
    def is_eligible_for_conversion(self) -> bool:
        return self.status in ELIGIBLE_BOOKING_STATUSES


class ConversionAttempt(db.Model):
    """One row per delivery attempt, client or server. Append-only."""
    __tablename__ = 'conversion_tracking_log'

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.String(64), nullable=False, index=True)
    conversion_type = db.Column(db.String(10), nullable=False, index=True)  # client | server
    action = db.Column(db.String(30), nullable=True)
    success = db.Column(db.Boolean, nullable=False, default=False, index=True)
    error_type = db.Column(db.String(40), nullable=True)
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)

    __table_args__ = (
        db.Index('ix_tracking_log_booking_type', 'booking_id', 'conversion_type'),
    )

    def __repr__(self):
        outcome = 'ok' if self.success else 'failed'
        return f'<ConversionAttempt {self.id}: {self.booking_id} {self.conversion_type} {outcome}>'

    def to_dict(self):
        return {
            'id': self.id,
            'booking_id': self.booking_id,
            'conversion_type': self.conversion_type,
            'action': self.action,
            'success': self.success,
            'error_type': self.error_type,
            'details': self.details,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class MonitoringAlert(db.Model):
    """Persisted alert history so alerts survive a process restart"""
    __tablename__ = 'monitoring_alert'

    id = db.Column(db.String(64), primary_key=True)
    alert_type = db.Column(db.String(60), nullable=False, index=True)
    severity = db.Column(db.String(10), nullable=False, index=True)
    message = db.Column(db.Text, nullable=False)
    data = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now, index=True)

    def __repr__(self):
        return f'<MonitoringAlert {self.id}: {self.alert_type} [{self.severity}]>'
