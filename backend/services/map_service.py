"""
Map and dashboard aggregates.

The public map only ever receives redacted markers: emergency reports never
carry contact data, contributions carry it only when the contributor opted in.
"""
from datetime import datetime, timedelta, timezone
from firebase_admin import db
from typing import Dict, List, Optional
import logging

from utils.geo import is_valid_coordinates
from utils.records import count_by, display_name, parse_iso, snapshot_to_list, sort_newest

logger = logging.getLogger(__name__)

SUPER_ADMIN_REPORT_LIMIT = 100
ONLINE_RESPONDER_STATUSES = ('active', 'on_duty')


def _located(records: List[Dict], lat_key: str = 'latitude', lng_key: str = 'longitude') -> List[Dict]:
    return [r for r in records if is_valid_coordinates(r.get(lat_key), r.get(lng_key))]


class MapService:
    """Marker feeds for the public map and the super admin dashboard"""

    def __init__(self, auth_service, default_radius_km: float = 10.0):
        self.auth_service = auth_service
        self.default_radius_km = default_radius_km

    def get_public_map_data(self, filter_type: Optional[str] = None,
                            max_age_hours: Optional[float] = None) -> Dict:
        """
        Public markers.

        Args:
            filter_type: assistance_type to keep for emergency markers ('all' or None keeps all)
            max_age_hours: drop reports and contributions older than this
        """
        cutoff = None
        if max_age_hours is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(hours=float(max_age_hours))

        def recent(record: Dict) -> bool:
            if cutoff is None:
                return True
            created = parse_iso(record.get('created_at'))
            return created is not None and created >= cutoff

        reports = [r for r in _located(snapshot_to_list(db.reference('emergency_reports').get())) if recent(r)]
        if filter_type and filter_type != 'all':
            reports = [r for r in reports if r.get('assistance_type') == filter_type]

        emergency_markers = [{
            'id': r['id'],
            'type': 'emergency',
            'latitude': r['latitude'],
            'longitude': r['longitude'],
            'assistance_type': r.get('assistance_type'),
            'description': r.get('description'),
            'address': r.get('address'),
            'status': r.get('status'),
            'photo_url': r.get('photo_url'),
            'created_at': r.get('created_at'),
        } for r in sort_newest(reports) if r.get('status') != 'resolved']

        contribution_markers = []
        for c in sort_newest(_located(snapshot_to_list(db.reference('contributions').get()))):
            if not recent(c) or c.get('status') == 'rejected':
                continue
            marker = {
                'id': c['id'],
                'type': 'contribution',
                'latitude': c['latitude'],
                'longitude': c['longitude'],
                'contribution_type': c.get('contribution_type'),
                'description': c.get('description'),
                'address': c.get('address'),
                'capacity': c.get('capacity'),
                'facilities': c.get('facilities'),
                'quantity': c.get('quantity'),
                'unit': c.get('unit'),
                'status': c.get('status'),
                'photo_url': c.get('photo_url'),
                'created_at': c.get('created_at'),
            }
            if c.get('show_contact_info'):
                marker.update({
                    'full_name': c.get('full_name'),
                    'phone_number': c.get('phone_number'),
                    'email': c.get('email'),
                })
            contribution_markers.append(marker)

        operations = [{
            'id': o['id'],
            'name': o.get('name'),
            'disaster_type': o.get('disaster_type'),
            'latitude': o['disaster_lat'],
            'longitude': o['disaster_lng'],
            'radius_km': o.get('disaster_radius_km') or self.default_radius_km,
            'posko_name': o.get('posko_name'),
            'posko_lat': o.get('posko_lat'),
            'posko_lng': o.get('posko_lng'),
        } for o in _located(snapshot_to_list(db.reference('operations').get()), 'disaster_lat', 'disaster_lng')
            if o.get('status') == 'active']

        return {
            'emergency_reports': emergency_markers,
            'contributions': contribution_markers,
            'operations': operations,
            'counts': {
                'emergency_reports': len(emergency_markers),
                'contributions': len(contribution_markers),
                'operations': len(operations),
            },
        }

    def get_super_admin_map_data(self) -> Dict:
        reports = sort_newest(_located(snapshot_to_list(db.reference('emergency_reports').get())))
        report_markers = [{
            'id': r['id'],
            'type': 'report',
            'name': r.get('description'),
            'latitude': r['latitude'],
            'longitude': r['longitude'],
            'status': r.get('status'),
            'dispatch_status': r.get('dispatch_status'),
        } for r in reports[:SUPER_ADMIN_REPORT_LIMIT]]

        operation_markers = [{
            'id': o['id'],
            'type': 'operation',
            'name': o.get('name'),
            'latitude': o['disaster_lat'],
            'longitude': o['disaster_lng'],
            'status': o.get('status'),
        } for o in _located(snapshot_to_list(db.reference('operations').get()), 'disaster_lat', 'disaster_lng')
            if o.get('status') == 'active']

        responder_markers = [{
            'id': p['id'],
            'type': 'responder',
            'name': display_name(p),
            'latitude': p['latitude'],
            'longitude': p['longitude'],
            'status': p.get('status'),
            'organization_id': p.get('organization_id'),
        } for p in _located(snapshot_to_list(db.reference('profiles').get()))
            if p.get('role') == 'org_responder' and p.get('status') in ONLINE_RESPONDER_STATUSES]

        return {
            'markers': report_markers + operation_markers + responder_markers,
            'stats': {
                'reports': len(report_markers),
                'operations': len(operation_markers),
                'responders': len(responder_markers),
            },
        }

    def get_global_stats(self) -> Dict:
        organizations = snapshot_to_list(db.reference('organizations').get())
        operations = snapshot_to_list(db.reference('operations').get())
        reports = snapshot_to_list(db.reference('emergency_reports').get())
        contributions = snapshot_to_list(db.reference('contributions').get())
        assignments = snapshot_to_list(db.reference('assignments').get())
        users = self.auth_service.list_users()

        day_ago = datetime.now(timezone.utc) - timedelta(hours=24)
        reports_last_24h = sum(1 for r in reports
                               if (parse_iso(r.get('created_at')) or datetime.min.replace(tzinfo=timezone.utc)) >= day_ago)

        return {
            'organizations': {'total': len(organizations), 'by_status': count_by(organizations, 'status')},
            'operations': {
                'total': len(operations),
                'by_status': count_by(operations, 'status'),
                'by_disaster_type': count_by(operations, 'disaster_type'),
            },
            'emergency_reports': {
                'total': len(reports),
                'last_24h': reports_last_24h,
                'by_dispatch_status': count_by(reports, 'dispatch_status'),
            },
            'contributions': {'total': len(contributions), 'by_status': count_by(contributions, 'status')},
            'assignments': {'total': len(assignments), 'by_status': count_by(assignments, 'status')},
            'users': {'total': len(users), 'by_role': count_by(users, 'role')},
        }
