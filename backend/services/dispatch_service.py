"""
Automatic dispatch of citizen reports to the nearest active operation.

A report is covered by an operation when it lies within the operation's
disaster radius. The nearest covering operation's organization receives the
report; uncovered reports are flagged to super admins instead.
"""
from dataclasses import asdict, dataclass
from firebase_admin import db
from typing import Dict, List, Optional
import logging

from utils.distance import haversine_km
from utils.geo import is_valid_coordinates
from utils.records import now_iso, snapshot_to_list
from utils.secure_logging import redact_coordinates

logger = logging.getLogger(__name__)

REPORT_PATHS = {
    'emergency_report': 'emergency_reports',
    'contribution': 'contributions',
}


@dataclass
class DispatchResult:
    dispatched: bool
    message: str
    operation_id: Optional[str] = None
    organization_id: Optional[str] = None
    distance_km: Optional[float] = None

    def to_dict(self) -> Dict:
        return asdict(self)


class DispatchService:
    """Route new reports to the organization running the covering operation"""

    def __init__(self, notification_service, default_radius_km: float = 10.0):
        self.notifications = notification_service
        self.default_radius_km = default_radius_km

    def find_operations_within_radius(self, lat: float, lng: float) -> List[Dict]:
        """Active operations whose disaster radius covers the point, nearest first"""
        covering = []
        for operation in snapshot_to_list(db.reference('operations').get()):
            if operation.get('status') != 'active':
                continue
            if not is_valid_coordinates(operation.get('disaster_lat'), operation.get('disaster_lng')):
                continue

            distance = haversine_km(float(lat), float(lng),
                                    float(operation['disaster_lat']), float(operation['disaster_lng']))
            radius = operation.get('disaster_radius_km') or self.default_radius_km
            if distance <= radius:
                covering.append({
                    'operation_id': operation['id'],
                    'organization_id': operation.get('organization_id'),
                    'name': operation.get('name'),
                    'distance_km': distance,
                })

        return sorted(covering, key=lambda o: o['distance_km'])

    def dispatch_report(self, report_id: str, lat: float, lng: float,
                        report_type: str = 'emergency_report') -> DispatchResult:
        """
        Dispatch a report to the nearest covering operation.

        Failures are reported in the result; this never raises so that a
        citizen submission is not lost because dispatch went wrong.
        """
        try:
            if report_type not in REPORT_PATHS:
                return DispatchResult(False, f'Unknown report type: {report_type}')
            if not is_valid_coordinates(lat, lng):
                return DispatchResult(False, 'Invalid coordinates')

            operations = self.find_operations_within_radius(lat, lng)
            if not operations:
                return DispatchResult(False, 'No active response operations cover this location')

            nearest = operations[0]
            db.reference(f'{REPORT_PATHS[report_type]}/{report_id}').update({
                'dispatched_to': nearest['organization_id'],
                'dispatched_operation_id': nearest['operation_id'],
                'dispatched_at': now_iso(),
                'dispatch_status': 'dispatched',
            })

            admins = [p['id'] for p in snapshot_to_list(db.reference('profiles').get())
                      if p.get('organization_id') == nearest['organization_id']
                      and p.get('role') == 'org_admin']
            self.notifications.notify_many(
                admins, 'new_report_dispatched', 'Laporan Baru',
                'Laporan warga baru telah di-dispatch ke organisasi Anda',
                report_type, report_id
            )

            logger.info(f"{report_type} {report_id} dispatched to operation {nearest['operation_id']} "
                        f"({nearest['distance_km']:.1f} km)")
            return DispatchResult(
                True, 'Report dispatched successfully',
                operation_id=nearest['operation_id'],
                organization_id=nearest['organization_id'],
                distance_km=round(nearest['distance_km'], 3),
            )
        except Exception as e:
            logger.error(f"Dispatch failed for {report_type} {report_id}: {e}")
            return DispatchResult(False, f'Dispatch failed: {e}')

    def notify_super_admin_unassigned(self, report_id: str, report_type: str) -> int:
        admins = [p['id'] for p in snapshot_to_list(db.reference('profiles').get())
                  if p.get('role') == 'admin']
        return self.notifications.notify_many(
            admins, 'report_unassigned', 'Laporan Tidak Ter-assign',
            'Ada laporan warga yang tidak ter-cover oleh operasi respon aktif',
            report_type, report_id
        )

    def process_new_report_dispatch(self, report_id: str, lat: float, lng: float,
                                    report_type: str = 'emergency_report') -> DispatchResult:
        result = self.dispatch_report(report_id, lat, lng, report_type)

        if not result.dispatched:
            lat_str, lng_str = redact_coordinates(lat, lng) if is_valid_coordinates(lat, lng) else ('?', '?')
            logger.warning(f"{report_type} {report_id} near {lat_str}, {lng_str} not dispatched: {result.message}")
            try:
                self.notify_super_admin_unassigned(report_id, report_type)
            except Exception as e:
                logger.error(f"Failed to notify super admins about {report_id}: {e}")

        return result
