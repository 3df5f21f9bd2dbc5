"""
AlertRepository - persisted alert history
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from repositories.base_repository import BaseRepository
from booking_database import MonitoringAlert


class AlertRepository(BaseRepository):
    """Repository for monitoring_alert rows"""

    def __init__(self, session):
        super().__init__(session, MonitoringAlert)

    def save(self, alert_id: str, alert_type: str, severity: str, message: str,
             created_at: datetime, data: Optional[Dict[str, Any]] = None) -> MonitoringAlert:
        alert = self.create(
            id=alert_id,
            alert_type=alert_type,
            severity=severity,
            message=message,
            data=data or {},
            created_at=created_at,
        )
        self.commit()
        return alert

    def find_since(self, since: datetime) -> List[MonitoringAlert]:
        return self.session.query(self.model_class)\
            .filter(self.model_class.created_at >= since)\
            .order_by(self.model_class.created_at)\
            .all()

    def delete_older_than(self, cutoff: datetime) -> int:
        return self.delete_created_before(cutoff)
