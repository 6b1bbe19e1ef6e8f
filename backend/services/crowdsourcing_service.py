"""
Crowdsourced disaster documentation.

Super admins open a project for a disaster area; citizens submit photos or
videos with a caption, location and answers to the project's own form
fields. Admins and invited project moderators verify submissions and export
the approved ones.
"""
import csv
import io
from datetime import datetime, timezone
from firebase_admin import db
from typing import Dict, List, Optional, Tuple
import logging

from services.errors import NotFoundError, PermissionDeniedError, ValidationError
from utils.geo import is_valid_coordinates, is_within_geofence, is_within_zones
from utils.rbac import is_admin
from utils.records import as_bool, count_by, now_iso, parse_iso, snapshot_to_list, sort_newest, with_id
from utils.secure_logging import hash_user_id, redact_pii
from utils.validators import DISASTER_TYPES, sanitize_text

logger = logging.getLogger(__name__)

PROJECT_STATUSES = ['draft', 'active', 'closed']
SUBMISSION_STATUSES = ['pending', 'approved', 'rejected', 'flagged']

# Moderator permission needed to move a submission into each status
STATUS_PERMISSIONS = {
    'approved': 'can_approve',
    'pending': 'can_approve',
    'rejected': 'can_reject',
    'flagged': 'can_flag',
}
MEDIA_TYPES = ['photo', 'video']
LOCATION_LEVELS = ['exact', 'street', 'village', 'district', 'city']

CAPTION_MIN_LENGTH = 20
UNCERTAIN_CAPTION_MIN_LENGTH = 50
DEFAULT_MAX_FILE_SIZE_MB = 10

PROJECT_DEFAULTS = {
    'description': None,
    'disaster_type': None,
    'status': 'draft',
    'location_name': None,
    'latitude': None,
    'longitude': None,
    'geofence_radius_km': 5,
    'geofence_polygon': None,
    'allow_photo': True,
    'allow_video': True,
    'max_file_size_mb': DEFAULT_MAX_FILE_SIZE_MB,
    'require_location': True,
    'auto_approve': False,
    'start_date': None,
    'end_date': None,
}

CSV_HEADERS = [
    'ID', 'Nama', 'Email', 'WhatsApp', 'Tipe Media', 'URL Media',
    'Caption', 'Latitude', 'Longitude', 'Alamat', 'Detail Alamat',
    'Status', 'Tanggal Submit', 'Tanggal Verifikasi'
]


class CrowdsourcingService:
    """Projects, submissions, verification and export"""

    def __init__(self, upload_service, moderator_service, setup_service):
        self.uploads = upload_service
        self.moderators = moderator_service
        self.setup = setup_service

    # ----- projects -----

    @staticmethod
    def _require_admin(user: Optional[Dict]):
        if not is_admin(user):
            raise PermissionDeniedError('Forbidden')

    @staticmethod
    def _clean_polygon(polygon) -> Optional[List[Dict]]:
        if polygon in (None, []):
            return None
        if not isinstance(polygon, list) or len(polygon) < 3:
            raise ValidationError('geofence_polygon needs at least 3 points')

        cleaned = []
        for vertex in polygon:
            if not isinstance(vertex, dict) or not is_valid_coordinates(vertex.get('lat'), vertex.get('lng')):
                raise ValidationError('geofence_polygon contains an invalid point')
            cleaned.append({'lat': float(vertex['lat']), 'lng': float(vertex['lng'])})
        return cleaned

    def _clean_project_fields(self, data: Dict) -> Dict:
        cleaned = {}
        for field, value in data.items():
            if field not in PROJECT_DEFAULTS and field != 'title':
                continue
            if field in ('title', 'location_name'):
                cleaned[field] = sanitize_text(value, 200) or None
            elif field == 'description':
                cleaned[field] = sanitize_text(value, 5000) or None
            elif field == 'status':
                if value not in PROJECT_STATUSES:
                    raise ValidationError(f"Invalid status. Must be one of: {', '.join(PROJECT_STATUSES)}")
                cleaned[field] = value
            elif field == 'disaster_type':
                if value and value not in DISASTER_TYPES:
                    raise ValidationError(f"Invalid disaster_type. Must be one of: {', '.join(DISASTER_TYPES)}")
                cleaned[field] = value or None
            elif field == 'geofence_polygon':
                cleaned[field] = self._clean_polygon(value)
            elif field in ('latitude', 'longitude', 'geofence_radius_km', 'max_file_size_mb'):
                cleaned[field] = float(value) if value not in (None, '') else None
            elif field in ('allow_photo', 'allow_video', 'require_location', 'auto_approve'):
                cleaned[field] = as_bool(value)
            else:
                cleaned[field] = value

        if cleaned.get('latitude') is not None or cleaned.get('longitude') is not None:
            if not is_valid_coordinates(cleaned.get('latitude'), cleaned.get('longitude')):
                raise ValidationError('Invalid project coordinates')
        if cleaned.get('geofence_radius_km') is not None and cleaned['geofence_radius_km'] <= 0:
            raise ValidationError('geofence_radius_km must be greater than 0')
        if cleaned.get('max_file_size_mb') is not None and cleaned['max_file_size_mb'] <= 0:
            raise ValidationError('max_file_size_mb must be greater than 0')
        return cleaned

    def list_projects(self, status: Optional[str] = 'active', limit: int = 50) -> List[Dict]:
        """Projects newest first; status 'all' lists every project"""
        projects = snapshot_to_list(db.reference('crowdsource_projects').get())
        if status and status != 'all':
            projects = [p for p in projects if p.get('status') == status]
        return sort_newest(projects)[:max(1, int(limit))]

    def get_project(self, project_id: str) -> Dict:
        project = db.reference(f'crowdsource_projects/{project_id}').get()
        if not project:
            raise NotFoundError('Project not found')
        return with_id(project_id, project)

    def create_project(self, user: Dict, data: Dict) -> Dict:
        self._require_admin(user)

        record = dict(PROJECT_DEFAULTS)
        record.update(self._clean_project_fields(data or {}))
        if not record.get('title'):
            raise ValidationError('Title is required')

        timestamp = now_iso()
        record.update({'created_by': user['id'], 'created_at': timestamp, 'updated_at': timestamp})

        ref = db.reference('crowdsource_projects').push(record)
        logger.info(f"Crowdsourcing project {ref.key} created ({record['status']})")
        return {'id': ref.key, **record}

    def update_project(self, user: Dict, project_id: str, updates: Dict) -> Dict:
        self._require_admin(user)
        self.get_project(project_id)

        cleaned = self._clean_project_fields(updates or {})
        if 'title' in cleaned and not cleaned['title']:
            raise ValidationError('Title cannot be empty')
        if not cleaned:
            raise ValidationError('No valid fields to update')

        cleaned['updated_at'] = now_iso()
        db.reference(f'crowdsource_projects/{project_id}').update(cleaned)
        return self.get_project(project_id)

    def delete_project(self, user: Dict, project_id: str):
        self._require_admin(user)
        self.get_project(project_id)
        db.reference().update({
            f'crowdsource_projects/{project_id}': None,
            f'crowdsource_submissions/{project_id}': None,
            f'crowdsource_form_fields/{project_id}': None,
            f'crowdsource_zones/{project_id}': None,
            f'crowdsource_moderators/{project_id}': None,
        })
        logger.info(f"Crowdsourcing project {project_id} deleted")

    # ----- submissions -----

    def _check_geofence(self, project: Dict, lat: float, lng: float) -> Tuple[bool, Optional[str]]:
        """Multi-zone projects check their zones; others their single geofence"""
        if project.get('use_multi_zone'):
            zones = self.setup.list_zones(project['id'])
            if zones:
                return is_within_zones(lat, lng, zones)
        return is_within_geofence(lat, lng, project)

    def validate_location(self, project_id: str, lat, lng) -> Tuple[bool, Optional[str]]:
        if not is_valid_coordinates(lat, lng):
            return False, 'Invalid coordinates'
        project = self.get_project(project_id)
        return self._check_geofence(project, float(lat), float(lng))

    def submit(self, project_id: str, form: Dict, media, client_ip: Optional[str] = None,
               user_agent: Optional[str] = None) -> Dict:
        """
        Accept a citizen submission for an active project.

        Args:
            form: submitted form fields (strings)
            media: werkzeug FileStorage with the photo or video
        """
        project = self.get_project(project_id)
        if project.get('status') != 'active':
            raise NotFoundError('Project not found or not active')

        media_type = form.get('media_type')
        caption = (form.get('caption') or '').strip()
        address = form.get('address')
        try:
            latitude = float(form.get('latitude'))
            longitude = float(form.get('longitude'))
        except (TypeError, ValueError):
            latitude = longitude = None

        if media is None or not getattr(media, 'filename', None) or not media_type \
                or not caption or latitude is None or longitude is None or not address:
            raise ValidationError('Missing required fields')

        if not is_valid_coordinates(latitude, longitude):
            raise ValidationError('Invalid coordinates')

        submitter_email = (form.get('submitter_email') or '').strip()
        if submitter_email and '@' not in submitter_email:
            raise ValidationError('Invalid email format')

        location_uncertain = as_bool(form.get('location_uncertain'))
        location_level = form.get('location_level') or 'exact'
        if location_level not in LOCATION_LEVELS:
            raise ValidationError(f"Invalid location_level. Must be one of: {', '.join(LOCATION_LEVELS)}")

        min_caption = UNCERTAIN_CAPTION_MIN_LENGTH if location_uncertain else CAPTION_MIN_LENGTH
        if len(caption) < min_caption:
            raise ValidationError(f'Caption must be at least {min_caption} characters')
        if location_uncertain and location_level == 'exact':
            raise ValidationError('Choose the known location level when the location is uncertain')

        if media_type not in MEDIA_TYPES:
            raise ValidationError('Invalid media type')
        if media_type == 'photo' and not project.get('allow_photo', True):
            raise ValidationError('Photo not allowed for this project')
        if media_type == 'video' and not project.get('allow_video', True):
            raise ValidationError('Video not allowed for this project')
        if self.uploads.media_type_for(media.filename, media.mimetype) != media_type:
            raise ValidationError(f'Uploaded file is not a {media_type}')

        if project.get('require_location'):
            valid, message = self._check_geofence(project, latitude, longitude)
            if not valid:
                raise ValidationError(message)

        custom_data = self.setup.collect_answers(project_id, form)

        max_size = project.get('max_file_size_mb') or DEFAULT_MAX_FILE_SIZE_MB
        stored = self.uploads.upload(
            media, 'crowdsource', f'{project_id}/{self.uploads.generate_name(media.filename)}',
            max_size_mb=max_size
        )

        status = 'approved' if project.get('auto_approve') else 'pending'
        record = {
            'submitter_name': sanitize_text(form.get('submitter_name'), 100) or None,
            'submitter_email': submitter_email or None,
            'submitter_whatsapp': sanitize_text(form.get('submitter_whatsapp'), 30) or None,
            'media_type': media_type,
            'media_url': stored['url'],
            'caption': sanitize_text(caption, 2000),
            'latitude': latitude,
            'longitude': longitude,
            'address': sanitize_text(address, 500),
            'address_detail': sanitize_text(form.get('address_detail'), 500) or None,
            'location_uncertain': location_uncertain,
            'location_level': location_level,
            'location_verified': False,
            'consent_publish_name': as_bool(form.get('consent_publish_name')),
            'custom_data': custom_data or None,
            'status': status,
            'device_info': {'user_agent': user_agent, 'ip': client_ip},
            'verified_by': None,
            'verified_at': None,
            'created_at': now_iso(),
        }
        ref = db.reference(f'crowdsource_submissions/{project_id}').push(record)
        logger.info(redact_pii(f"Submission {ref.key} to project {project_id} ({status}) from {client_ip}"))

        message = ('Dokumentasi berhasil dikirim dan dipublikasikan' if status == 'approved'
                   else 'Dokumentasi berhasil dikirim dan menunggu verifikasi')
        return {'submission': {'id': ref.key, 'project_id': project_id, **record}, 'message': message}

    def list_submissions(self, user: Optional[Dict], project_id: str, status: Optional[str] = None) -> List[Dict]:
        """
        Admins and the project's moderators see every submission with contact
        data; everyone else sees approved submissions, with the name only when
        the submitter consented.
        """
        self.get_project(project_id)
        submissions = snapshot_to_list(db.reference(f'crowdsource_submissions/{project_id}').get())

        if is_admin(user) or self.moderators.permissions_for(user, project_id):
            if status:
                submissions = [s for s in submissions if s.get('status') == status]
        else:
            public = []
            for s in submissions:
                if s.get('status') != 'approved':
                    continue
                public.append({
                    'id': s['id'],
                    'submitter_name': s.get('submitter_name') if s.get('consent_publish_name') else None,
                    'media_type': s.get('media_type'),
                    'media_url': s.get('media_url'),
                    'caption': s.get('caption'),
                    'latitude': s.get('latitude'),
                    'longitude': s.get('longitude'),
                    'address': s.get('address'),
                    'location_level': s.get('location_level'),
                    'location_verified': s.get('location_verified'),
                    'created_at': s.get('created_at'),
                })
            submissions = public

        return sort_newest(submissions)

    def verify_submission(self, user: Dict, project_id: str, submission_id: str,
                          status: Optional[str] = None, location_verified=None,
                          rejection_reason: Optional[str] = None, moderator_notes: Optional[str] = None) -> Dict:
        """
        Review a submission. Moderators need the permission matching the new
        status (can_approve also covers location checks).
        """
        ref = db.reference(f'crowdsource_submissions/{project_id}/{submission_id}')
        submission = ref.get()
        if not submission:
            raise NotFoundError('Submission not found')

        updates = {}
        if status is not None:
            if status not in SUBMISSION_STATUSES:
                raise ValidationError(f"Invalid status. Must be one of: {', '.join(SUBMISSION_STATUSES)}")
            required = STATUS_PERMISSIONS[status]
            updates['status'] = status
            updates['rejection_reason'] = None
            if status == 'rejected':
                updates['rejection_reason'] = sanitize_text(rejection_reason, 500) or None
        else:
            required = 'can_approve'
        if location_verified is not None:
            updates['location_verified'] = as_bool(location_verified)
        if moderator_notes is not None:
            updates['moderator_notes'] = sanitize_text(moderator_notes, 2000) or None
        if not updates:
            raise ValidationError('No fields to update')

        if not self.moderators.can(user, project_id, required):
            raise PermissionDeniedError('Forbidden')

        updates['verified_by'] = user['id']
        updates['verified_at'] = now_iso()
        ref.update(updates)
        logger.info(f"Submission {submission_id} reviewed by {hash_user_id(user['id'])}")
        return {'id': submission_id, **submission, **updates}

    # ----- analytics and export -----

    def project_analytics(self, user: Dict, project_id: str) -> Dict:
        self._require_admin(user)
        self.get_project(project_id)
        submissions = snapshot_to_list(db.reference(f'crowdsource_submissions/{project_id}').get())

        daily: Dict[str, int] = {}
        hourly: Dict[int, int] = {}
        cutoff = datetime.now(timezone.utc).timestamp() - 30 * 86400
        for submission in submissions:
            created = parse_iso(submission.get('created_at'))
            if not created:
                continue
            hourly[created.hour] = hourly.get(created.hour, 0) + 1
            if created.timestamp() >= cutoff:
                day = created.date().isoformat()
                daily[day] = daily.get(day, 0) + 1

        heatmap: Dict[Tuple[float, float], int] = {}
        for submission in submissions:
            if submission.get('status') == 'approved' and submission.get('latitude') is not None:
                point = (submission['latitude'], submission['longitude'])
                heatmap[point] = heatmap.get(point, 0) + 1

        submitters = count_by([s for s in submissions if s.get('submitter_name')], 'submitter_name')
        verified = sum(1 for s in submissions if s.get('location_verified'))

        return {
            'total': len(submissions),
            'status_counts': count_by(submissions, 'status'),
            'media_types': count_by(submissions, 'media_type'),
            'location_verified_ratio': round(verified / len(submissions), 3) if submissions else 0.0,
            'daily_stats': [{'date': d, 'count': c} for d, c in sorted(daily.items())],
            'hourly_stats': [{'hour': h, 'count': c} for h, c in sorted(hourly.items())],
            'heatmap_data': [{'lat': lat, 'lng': lng, 'weight': w} for (lat, lng), w in heatmap.items()],
            'top_submitters': [{'name': n, 'count': c} for n, c in
                               sorted(submitters.items(), key=lambda item: item[1], reverse=True)[:10]],
        }

    def export_submissions_csv(self, user: Dict, project_id: str, status: Optional[str] = 'approved') -> Tuple[str, str]:
        """
        Returns:
            (csv text, download filename)
        """
        if not self.moderators.can(user, project_id, 'can_export'):
            raise PermissionDeniedError('Forbidden')
        project = self.get_project(project_id)

        submissions = snapshot_to_list(db.reference(f'crowdsource_submissions/{project_id}').get())
        if status:
            submissions = [s for s in submissions if s.get('status') == status]

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_HEADERS)
        for s in sort_newest(submissions):
            writer.writerow([
                s['id'], s.get('submitter_name') or '', s.get('submitter_email') or '',
                s.get('submitter_whatsapp') or '', s.get('media_type'), s.get('media_url'),
                s.get('caption') or '', s.get('latitude'), s.get('longitude'),
                s.get('address') or '', s.get('address_detail') or '', s.get('status'),
                s.get('created_at') or '', s.get('verified_at') or '',
            ])

        title = '_'.join((project.get('title') or 'project').split())
        filename = f"crowdsource_{title}_{datetime.now(timezone.utc).date().isoformat()}.csv"
        return buffer.getvalue(), filename
