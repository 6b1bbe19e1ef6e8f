from flask import Flask, g, jsonify, redirect, request, Response
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from firebase_admin import db
from werkzeug.exceptions import HTTPException
from functools import wraps
from datetime import datetime, timezone
import os
import time
import logging

from config import config, get_cors_origins
from firebase_setup import initialize_firebase
from services.errors import ServiceError, ValidationError
from services.auth_service import AuthService
from services.notification_service import NotificationService
from services.organization_service import OrganizationService
from services.operation_service import OperationService
from services.team_service import TeamService
from services.assignment_service import AssignmentService
from services.field_report_service import FieldReportService
from services.dispatch_service import DispatchService
from services.geocoding_service import GeocodingService
from services.report_service import ReportService
from services.upload_service import UploadService
from services.moderator_service import ModeratorService
from services.project_setup_service import ProjectSetupService
from services.crowdsourcing_service import CrowdsourcingService
from services.export_service import ExportService
from services.map_service import MapService
from utils.rbac import get_user_role, is_admin, user_org_id
from utils.secure_logging import hash_user_id

config_name = os.getenv('FLASK_ENV', 'development')
settings = config.get(config_name, config['default'])

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
)

app = Flask(__name__)
app.config.from_object(settings)
logger = logging.getLogger(__name__)

# CORS Configuration - Environment-aware origin restriction
CORS(app, origins=get_cors_origins(config_name, settings), supports_credentials=True)


# Security Headers Middleware
@app.after_request
def set_security_headers(response):
    """
    Add security headers to all responses.

    - HSTS: Forces HTTPS for 1 year (only in production)
    - X-Frame-Options / frame-ancestors: Prevents clickjacking
    - CSP: map tiles and report photos may come from any HTTPS source
    - Permissions-Policy: geolocation stays available to the app itself
    """
    if config_name == 'production':
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains; preload'

    response.headers['X-Frame-Options'] = 'DENY'
    response.headers['X-Content-Type-Options'] = 'nosniff'

    csp_directives = [
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline' 'unsafe-eval'",
        "style-src 'self' 'unsafe-inline'",  # Leaflet requires inline styles
        "img-src 'self' data: blob: https:",
        "media-src 'self' blob: https:",
        "connect-src 'self' https://nominatim.openstreetmap.org https://*.firebaseio.com https://firebasestorage.googleapis.com https://storage.googleapis.com",
        "font-src 'self' data:",
        "frame-ancestors 'none'"
    ]
    response.headers['Content-Security-Policy'] = "; ".join(csp_directives)
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    response.headers['Permissions-Policy'] = 'geolocation=(self), camera=(self), microphone=(), payment=()'

    return response


# Rate Limiting Configuration
# Set REDIS_URL to share limits across workers: redis://your-redis-host:6379
limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    default_limits=["500 per day", "100 per hour"],
    storage_uri=app.config['RATELIMIT_STORAGE_URI'],
    enabled=app.config['RATELIMIT_ENABLED']
)

# Initialize Firebase
# Supports FIREBASE_CREDENTIALS_BASE64 (PaaS) or FIREBASE_CREDENTIALS_PATH (local, VPS)
try:
    initialize_firebase(app.config)
except ValueError as e:
    logger.error(f"Firebase initialization failed: {e}")
    logger.error("Set either FIREBASE_CREDENTIALS_BASE64 or FIREBASE_CREDENTIALS_PATH in environment")
    raise

# Initialize services
default_radius_km = app.config['DEFAULT_OPERATION_RADIUS_KM']
auth_service = AuthService()
notification_service = NotificationService()
organization_service = OrganizationService(auth_service)
operation_service = OperationService(default_radius_km=default_radius_km)
team_service = TeamService(operation_service, notification_service)
assignment_service = AssignmentService(operation_service, notification_service)
field_report_service = FieldReportService(operation_service, notification_service)
dispatch_service = DispatchService(notification_service, default_radius_km=default_radius_km)
geocoding_service = GeocodingService(app.config['NOMINATIM_URL'], enabled=app.config['GEOCODING_ENABLED'])
report_service = ReportService(dispatch_service, geocoding_service)
upload_service = UploadService(max_upload_mb=app.config['MAX_UPLOAD_MB'])
moderator_service = ModeratorService()
project_setup_service = ProjectSetupService()
crowdsourcing_service = CrowdsourcingService(upload_service, moderator_service, project_setup_service)
export_service = ExportService()
map_service = MapService(auth_service, default_radius_km=default_radius_km)

ORG_ROLES = ('org_admin', 'org_responder')
ORG_STAFF_ROLES = ('org_admin', 'admin')


# ===== MIDDLEWARE & DECORATORS =====

def _bearer_token():
    auth_header = request.headers.get('Authorization')
    if not auth_header or not auth_header.startswith('Bearer '):
        return None
    return auth_header.split('Bearer ', 1)[1].strip() or None


def _optional_user():
    """Session user for endpoints that work with or without a login"""
    token = _bearer_token()
    if not token:
        return None
    try:
        return auth_service.verify_id_token(token)
    except ValueError:
        return None


def require_auth(f):
    """
    Decorator requiring a Firebase ID token in the Authorization header.
    The verified session user {id, email, role, profile} is stored in g.user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        id_token = _bearer_token()
        if not id_token:
            return jsonify({'error': 'Authentication required'}), 401

        try:
            g.user = auth_service.verify_id_token(id_token)
        except ValueError as e:
            return jsonify({'error': f'Authentication failed: {str(e)}'}), 401

        return f(*args, **kwargs)

    return decorated_function


def require_roles(*roles):
    """Decorator requiring authentication and one of the given roles"""
    def decorator(f):
        @wraps(f)
        def checked(*args, **kwargs):
            if get_user_role(g.user) not in roles:
                logger.warning(f"User {hash_user_id(g.user['id'])} denied access to {request.path}")
                return jsonify({'error': 'Forbidden'}), 403
            return f(*args, **kwargs)

        return require_auth(checked)

    return decorator


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body is required')
    return data


def _require_org_id(user):
    org_id = user_org_id(user)
    if not org_id:
        raise ValidationError('You do not belong to an organization')
    return org_id


def _query_flag(name):
    return request.args.get(name, '').lower() == 'true'


# ===== AUTHENTICATION ENDPOINTS =====

@app.route('/api/auth/register', methods=['POST'])
@limiter.limit("3 per hour")  # Prevent mass account creation
@limiter.limit("10 per day")
def register_user():
    """Register a public user or an organization admin with email/password"""
    data = _json_body()

    email = data.get('email')
    password = data.get('password')
    if not email or not password:
        return jsonify({'error': 'Email and password are required'}), 400

    user = auth_service.create_user(email, password, data.get('name'), data.get('role') or 'public')
    return jsonify({'user': user}), 201


@app.route('/api/auth/login', methods=['POST'])
@limiter.limit("5 per 15 minutes")
@limiter.limit("20 per day")
def login_user():
    """Verify a Firebase ID token and return the session user"""
    data = _json_body()

    id_token = data.get('id_token')
    if not id_token:
        return jsonify({'error': 'id_token is required'}), 400

    try:
        user = auth_service.verify_id_token(id_token)
    except ValueError as e:
        return jsonify({'error': str(e)}), 401

    return jsonify({'user': user})


@app.route('/api/auth/logout', methods=['POST'])
def logout_user():
    """
    Revoke the user's refresh tokens when an id_token is supplied.

    Logout always succeeds; the client clears its own state.
    """
    data = request.get_json(silent=True) or {}
    id_token = data.get('id_token') or _bearer_token()

    if not id_token:
        return jsonify({'status': 'logged_out', 'message': 'Client-side logout successful'}), 200

    try:
        user = auth_service.verify_id_token(id_token)
        auth_service.revoke_refresh_tokens(user['id'])
    except ValueError:
        return jsonify({
            'status': 'logged_out',
            'message': 'Client-side logout successful (token was invalid)'
        }), 200
    except Exception as e:
        logger.error(f"Error in logout_user: {e}")
        return jsonify({'status': 'logged_out', 'message': 'Client-side logout successful'}), 200

    return jsonify({'status': 'logged_out', 'message': 'Server-side tokens revoked'}), 200


@app.route('/api/auth/session', methods=['GET'])
def get_session():
    return jsonify({'user': _optional_user()})


@app.route('/api/settings/profile', methods=['PATCH'])
@require_auth
def update_profile():
    profile = auth_service.update_user_profile(g.user['id'], _json_body())
    return jsonify({'profile': profile})


@app.route('/api/settings/password', methods=['POST'])
@limiter.limit("5 per hour")
@require_auth
def change_password():
    data = _json_body()
    new_password = data.get('new_password')
    if not new_password:
        return jsonify({'error': 'new_password is required'}), 400

    auth_service.change_password(g.user['id'], new_password)
    return jsonify({'message': 'Password updated'})


# ===== ORGANIZATION ENDPOINTS =====

@app.route('/api/organizations', methods=['POST'])
@require_auth
def create_organization():
    organization = organization_service.create_organization(g.user, _json_body())
    return jsonify({'organization': organization}), 201


@app.route('/api/organizations/<slug>', methods=['GET'])
def get_public_organization(slug):
    """Public profile of an approved organization"""
    organization = organization_service.get_organization_by_slug(slug)
    if organization.get('status') != 'active' and not is_admin(_optional_user()):
        return jsonify({'error': 'Organization not found'}), 404

    public_fields = ('id', 'name', 'slug', 'description', 'contact_email', 'phone', 'address',
                     'latitude', 'longitude', 'status')
    return jsonify({'organization': {k: organization.get(k) for k in public_fields}})


@app.route('/api/organization', methods=['GET'])
@require_auth
def get_my_organization():
    return jsonify({'organization': organization_service.get_user_organization(g.user)})


@app.route('/api/organization/settings', methods=['PATCH'])
@require_roles('org_admin')
def update_organization_settings():
    organization = organization_service.update_organization(_require_org_id(g.user), _json_body())
    return jsonify({'organization': organization})


@app.route('/api/organization/members', methods=['GET'])
@require_roles(*ORG_ROLES)
def list_organization_members():
    members = organization_service.list_members(_require_org_id(g.user))
    return jsonify({'members': members, 'count': len(members)})


@app.route('/api/organization/members', methods=['POST'])
@limiter.limit("30 per hour")
@require_roles('org_admin')
def add_organization_member():
    data = _json_body()
    member = organization_service.add_member(
        _require_org_id(g.user),
        data.get('email'),
        data.get('name'),
        data.get('phone'),
        data.get('role') or 'org_responder'
    )
    return jsonify({'member': member}), 201


@app.route('/api/organization/members/<uid>', methods=['GET'])
@require_roles('org_admin')
def get_organization_member(uid):
    return jsonify({'member': organization_service.get_member(_require_org_id(g.user), uid)})


@app.route('/api/organization/members/<uid>', methods=['PATCH'])
@require_roles('org_admin')
def update_organization_member(uid):
    member = organization_service.update_member(_require_org_id(g.user), uid, _json_body())
    return jsonify({'member': member})


@app.route('/api/organization/members/<uid>', methods=['DELETE'])
@require_roles('org_admin')
def remove_organization_member(uid):
    organization_service.remove_member(_require_org_id(g.user), uid)
    return jsonify({'message': 'Member removed'})


@app.route('/api/org/stats', methods=['GET'])
@require_roles(*ORG_STAFF_ROLES)
def get_organization_stats():
    return jsonify({'stats': organization_service.get_organization_stats(_require_org_id(g.user))})


def _export_response(filters, org_scoped, default_format):
    body, mimetype, filename = export_service.render(
        g.user, filters, org_scoped=org_scoped, default_format=default_format)
    if mimetype is None:
        return jsonify(body)
    return Response(
        body,
        mimetype=mimetype,
        headers={'Content-Disposition': f'attachment; filename="{filename}"'}
    )


@app.route('/api/org/export', methods=['GET'])
@limiter.limit("10 per hour")
@require_roles(*ORG_STAFF_ROLES)
def export_organization_incidents():
    """
    Incidents dispatched to the caller's organization.

    Query Parameters:
        - format (optional): csv (default), geojson or json
        - status, source_type, disaster_type, start_date, end_date (optional)
        - anonymize (optional): 'false' to include contact details
        - limit (optional): default 1000, max 5000
    """
    return _export_response(request.args.to_dict(), org_scoped=True, default_format='csv')


@app.route('/api/responder/status', methods=['GET'])
@require_roles(*ORG_ROLES)
def get_responder_status():
    return jsonify(organization_service.get_responder_status(g.user['id']))


@app.route('/api/responder/status', methods=['PATCH'])
@require_roles(*ORG_ROLES)
def update_responder_status():
    data = _json_body()
    return jsonify(organization_service.update_responder_status(g.user['id'], data.get('status')))


@app.route('/api/responder/location', methods=['POST'])
@limiter.limit("120 per hour")
@require_roles(*ORG_ROLES)
def update_responder_location():
    data = _json_body()
    location = organization_service.update_responder_location(
        g.user['id'], data.get('latitude'), data.get('longitude'))
    return jsonify({'location': location})


@app.route('/api/admin/organizations', methods=['GET'])
@require_roles('admin')
def admin_list_organizations():
    organizations = organization_service.list_organizations(request.args.get('status'))
    return jsonify({'organizations': organizations, 'count': len(organizations)})


@app.route('/api/admin/organizations/<org_id>', methods=['PATCH'])
@require_roles('admin')
def admin_update_organization(org_id):
    data = _json_body()
    updates = {k: v for k, v in data.items() if k != 'status'}

    if updates:
        organization_service.update_organization(org_id, updates)
    if 'status' in data:
        organization_service.set_organization_status(org_id, data['status'])
    if not updates and 'status' not in data:
        return jsonify({'error': 'No fields to update'}), 400

    return jsonify({'organization': organization_service.get_organization(org_id)})


# ===== RESPONSE OPERATION ENDPOINTS =====

@app.route('/api/operations', methods=['GET'])
@require_auth
def list_operations():
    operations = operation_service.list_operations(
        g.user, request.args.get('status'), request.args.get('organization_id'))
    return jsonify({'operations': operations, 'count': len(operations)})


@app.route('/api/operations', methods=['POST'])
@require_roles(*ORG_STAFF_ROLES)
def create_operation():
    operation = operation_service.create_operation(g.user, _json_body())
    return jsonify({'operation': operation}), 201


@app.route('/api/operations/<op_id>', methods=['GET'])
@require_auth
def get_operation(op_id):
    return jsonify({'operation': operation_service.get_operation(g.user, op_id)})


@app.route('/api/operations/<op_id>', methods=['PATCH'])
@require_roles(*ORG_STAFF_ROLES)
def update_operation(op_id):
    return jsonify({'operation': operation_service.update_operation(g.user, op_id, _json_body())})


@app.route('/api/operations/<op_id>', methods=['DELETE'])
@require_roles('admin')
def delete_operation(op_id):
    operation_service.delete_operation(g.user, op_id)
    return jsonify({'message': 'Operation deleted'})


@app.route('/api/operations/<op_id>/nearby-reports', methods=['GET'])
@require_auth
def get_nearby_reports(op_id):
    """
    Query Parameters:
        - lat, lng (optional): center, defaults to the disaster location
        - radius (optional): km, defaults to the operation radius
    """
    reports = operation_service.nearby_reports(
        g.user, op_id,
        request.args.get('lat', type=float),
        request.args.get('lng', type=float),
        request.args.get('radius', type=float)
    )
    return jsonify({'reports': reports, 'count': len(reports)})


# ===== TEAM ENDPOINTS =====

@app.route('/api/operations/<op_id>/members', methods=['GET'])
@require_auth
def list_team_members(op_id):
    members = team_service.list_members(g.user, op_id)
    return jsonify({'members': members, 'count': len(members)})


@app.route('/api/operations/<op_id>/members', methods=['POST'])
@require_roles(*ORG_STAFF_ROLES)
def invite_team_member(op_id):
    data = _json_body()
    if not data.get('user_id'):
        return jsonify({'error': 'user_id is required'}), 400

    member = team_service.invite_member(g.user, op_id, data['user_id'], data.get('role'))
    return jsonify({'member': member}), 201


@app.route('/api/operations/<op_id>/members/<uid>', methods=['PATCH'])
@require_auth
def update_team_member(op_id, uid):
    data = _json_body()
    member = team_service.update_member(g.user, op_id, uid, data.get('status'), data.get('role'))
    return jsonify({'member': member})


@app.route('/api/operations/<op_id>/members/<uid>', methods=['DELETE'])
@require_auth
def remove_team_member(op_id, uid):
    team_service.remove_member(g.user, op_id, uid)
    return jsonify({'message': 'Member removed'})


@app.route('/api/my-operations', methods=['GET'])
@require_auth
def list_my_operations():
    operations = team_service.list_my_operations(g.user)
    return jsonify({'operations': operations, 'count': len(operations)})


@app.route('/api/my-operations/<op_id>/respond', methods=['POST'])
@require_auth
def respond_to_invitation(op_id):
    data = _json_body()
    action = data.get('action')
    if action not in ('accept', 'decline'):
        return jsonify({'error': "action must be 'accept' or 'decline'"}), 400

    member = team_service.respond_to_invitation(g.user, op_id, action == 'accept')
    return jsonify({'member': member})


# ===== ASSIGNMENT ENDPOINTS =====

@app.route('/api/operations/<op_id>/assignments', methods=['GET'])
@require_auth
def list_operation_assignments(op_id):
    assignments = assignment_service.list_operation_assignments(g.user, op_id, request.args.get('status'))
    return jsonify({'assignments': assignments, 'count': len(assignments)})


@app.route('/api/operations/<op_id>/assignments', methods=['POST'])
@require_roles(*ORG_STAFF_ROLES)
def create_assignment(op_id):
    assignment = assignment_service.create_assignment(g.user, op_id, _json_body())
    return jsonify({'assignment': assignment}), 201


@app.route('/api/assignments/<assignment_id>', methods=['GET'])
@require_auth
def get_assignment(assignment_id):
    return jsonify({'assignment': assignment_service.get_assignment(g.user, assignment_id)})


@app.route('/api/assignments/<assignment_id>', methods=['PATCH'])
@require_roles(*ORG_STAFF_ROLES)
def update_assignment(assignment_id):
    assignment = assignment_service.update_assignment(g.user, assignment_id, _json_body())
    return jsonify({'assignment': assignment})


@app.route('/api/assignments/<assignment_id>', methods=['DELETE'])
@require_roles(*ORG_STAFF_ROLES)
def delete_assignment(assignment_id):
    assignment_service.delete_assignment(g.user, assignment_id)
    return jsonify({'message': 'Assignment deleted'})


@app.route('/api/my-assignments', methods=['GET'])
@require_auth
def list_my_assignments():
    assignments = assignment_service.list_my_assignments(
        g.user, request.args.get('operation_id'), request.args.get('status'))
    return jsonify({'assignments': assignments, 'count': len(assignments)})


@app.route('/api/my-assignments/<assignment_id>', methods=['GET'])
@require_auth
def get_my_assignment(assignment_id):
    return jsonify({'assignment': assignment_service.get_my_assignment(g.user, assignment_id)})


@app.route('/api/my-assignments/<assignment_id>', methods=['PATCH'])
@require_auth
def update_my_assignment(assignment_id):
    data = _json_body()
    assignment = assignment_service.update_my_assignment(
        g.user, assignment_id, data.get('status'), data.get('response_notes'))
    return jsonify({'assignment': assignment})


# ===== FIELD REPORT ENDPOINTS =====

@app.route('/api/operations/<op_id>/field-reports', methods=['GET'])
@require_auth
def list_field_reports(op_id):
    reports = field_report_service.list_field_reports(g.user, op_id, request.args.get('category'))
    return jsonify({'field_reports': reports, 'count': len(reports)})


@app.route('/api/operations/<op_id>/field-reports', methods=['POST'])
@limiter.limit("60 per hour")
@require_auth
def create_field_report(op_id):
    report = field_report_service.create_field_report(g.user, op_id, _json_body())
    return jsonify({'field_report': report}), 201


@app.route('/api/field-report-options', methods=['GET'])
def get_field_report_options():
    return jsonify({'options': field_report_service.get_field_report_options(request.args.get('disaster_type'))})


# ===== CITIZEN REPORT ENDPOINTS =====

@app.route('/api/emergency-reports', methods=['POST'])
@limiter.limit("20 per hour")  # Allow burst reporting during emergencies
@limiter.limit("100 per day")
def create_emergency_report():
    """Public emergency report; dispatched automatically to the covering operation"""
    report, dispatch = report_service.submit_emergency_report(_json_body(), get_remote_address())
    return jsonify({'report': report, 'dispatch': dispatch}), 201


@app.route('/api/contributions', methods=['POST'])
@limiter.limit("20 per hour")
@limiter.limit("100 per day")
def create_contribution():
    contribution, dispatch = report_service.submit_contribution(_json_body(), get_remote_address())
    return jsonify({'contribution': contribution, 'dispatch': dispatch}), 201


@app.route('/api/admin/emergency-reports', methods=['GET'])
@require_roles(*ORG_STAFF_ROLES)
def admin_list_emergency_reports():
    reports = report_service.list_reports_for_org(
        g.user, request.args.get('dispatch_status'), request.args.get('status'))
    return jsonify({'reports': reports, 'count': len(reports)})


@app.route('/api/admin/emergency-reports', methods=['PATCH'])
@require_roles(*ORG_STAFF_ROLES)
def admin_update_emergency_report():
    data = _json_body()
    report = report_service.update_emergency_report(
        g.user, data.get('id'), data.get('status'), data.get('dispatch_status'))
    return jsonify({'report': report})


@app.route('/api/admin/contributions', methods=['GET'])
@require_roles(*ORG_STAFF_ROLES)
def admin_list_contributions():
    contributions = report_service.list_contributions_for_org(
        g.user, request.args.get('status'), request.args.get('type'))
    return jsonify({'contributions': contributions, 'count': len(contributions)})


@app.route('/api/admin/contributions', methods=['PATCH'])
@require_roles(*ORG_STAFF_ROLES)
def admin_update_contribution():
    data = _json_body()
    contribution = report_service.update_contribution_status(g.user, data.get('id'), data.get('status'))
    return jsonify({'contribution': contribution})


@app.route('/api/dispatch', methods=['POST'])
@require_roles(*ORG_STAFF_ROLES)
def dispatch_report():
    """Re-run dispatch for a stored report"""
    data = _json_body()
    report_id = data.get('report_id')
    latitude = data.get('latitude')
    longitude = data.get('longitude')
    if not report_id or latitude is None or longitude is None:
        return jsonify({'error': 'report_id, latitude, and longitude are required'}), 400

    result = dispatch_service.process_new_report_dispatch(
        report_id, latitude, longitude, data.get('report_type') or 'emergency_report')
    return jsonify({'data': result.to_dict()})


# ===== NOTIFICATION ENDPOINTS =====

@app.route('/api/notifications', methods=['GET'])
@require_auth
def list_notifications():
    """
    Query Parameters:
        - unread (optional): 'true' for unread only
        - limit (optional): default 50, max 200
    """
    notifications, unread_count = notification_service.list_notifications(
        g.user['id'], _query_flag('unread'), request.args.get('limit'))
    return jsonify({'notifications': notifications, 'unread_count': unread_count})


@app.route('/api/notifications', methods=['PATCH'])
@app.route('/api/notifications/mark-all-read', methods=['POST'])
@require_auth
def mark_all_notifications_read():
    count = notification_service.mark_all_read(g.user['id'])
    return jsonify({'message': 'All notifications marked as read', 'count': count})


@app.route('/api/notifications/<notification_id>', methods=['PATCH'])
@require_auth
def mark_notification_read(notification_id):
    return jsonify({'notification': notification_service.mark_read(g.user['id'], notification_id)})


@app.route('/api/notifications/<notification_id>', methods=['DELETE'])
@require_auth
def delete_notification(notification_id):
    notification_service.delete_notification(g.user['id'], notification_id)
    return jsonify({'message': 'Notification deleted'})


# ===== CROWDSOURCING ENDPOINTS =====

@app.route('/api/crowdsourcing/projects', methods=['GET'])
def list_crowdsourcing_projects():
    """Active projects for everyone; admins may pass ?status=all|draft|closed"""
    status = request.args.get('status', 'active')
    if not is_admin(_optional_user()):
        status = 'active'

    projects = crowdsourcing_service.list_projects(status, request.args.get('limit', 50, type=int))
    return jsonify({'projects': projects, 'count': len(projects)})


@app.route('/api/crowdsourcing/projects', methods=['POST'])
@require_roles('admin')
def create_crowdsourcing_project():
    project = crowdsourcing_service.create_project(g.user, _json_body())
    return jsonify({'project': project}), 201


@app.route('/api/crowdsourcing/projects/<project_id>', methods=['GET'])
def get_crowdsourcing_project(project_id):
    project = crowdsourcing_service.get_project(project_id)
    if project.get('status') != 'active' and not is_admin(_optional_user()):
        return jsonify({'error': 'Project not found'}), 404
    return jsonify({'project': project})


@app.route('/api/crowdsourcing/projects/<project_id>', methods=['PATCH'])
@require_roles('admin')
def update_crowdsourcing_project(project_id):
    project = crowdsourcing_service.update_project(g.user, project_id, _json_body())
    return jsonify({'project': project})


@app.route('/api/crowdsourcing/projects/<project_id>', methods=['DELETE'])
@require_roles('admin')
def delete_crowdsourcing_project(project_id):
    crowdsourcing_service.delete_project(g.user, project_id)
    return jsonify({'message': 'Project deleted'})


@app.route('/api/crowdsourcing/projects/<project_id>/submit', methods=['POST'])
@limiter.limit("10 per hour")
def submit_crowdsourcing_media(project_id):
    """Multipart submission: media file plus form fields"""
    result = crowdsourcing_service.submit(
        project_id, request.form, request.files.get('media'),
        client_ip=get_remote_address(),
        user_agent=request.headers.get('User-Agent')
    )
    return jsonify(result), 201


@app.route('/api/crowdsourcing/validate-location', methods=['POST'])
@limiter.limit("60 per hour")
def validate_crowdsourcing_location():
    data = _json_body()
    if not data.get('project_id'):
        return jsonify({'error': 'project_id is required'}), 400

    valid, message = crowdsourcing_service.validate_location(
        data['project_id'], data.get('latitude'), data.get('longitude'))
    return jsonify({'valid': valid, 'message': message})


@app.route('/api/crowdsourcing/projects/<project_id>/submissions', methods=['GET'])
def list_crowdsourcing_submissions(project_id):
    submissions = crowdsourcing_service.list_submissions(
        _optional_user(), project_id, request.args.get('status'))
    return jsonify({'submissions': submissions, 'count': len(submissions)})


@app.route('/api/crowdsourcing/projects/<project_id>/submissions/<submission_id>', methods=['PATCH'])
@require_auth
def verify_crowdsourcing_submission(project_id, submission_id):
    """Admins and project moderators (per permission flag)"""
    data = _json_body()
    submission = crowdsourcing_service.verify_submission(
        g.user, project_id, submission_id, data.get('status'), data.get('location_verified'),
        rejection_reason=data.get('rejection_reason'), moderator_notes=data.get('moderator_notes'))
    return jsonify({'submission': submission})


@app.route('/api/crowdsourcing/projects/<project_id>/moderators', methods=['GET'])
@require_roles('admin')
def list_project_moderators(project_id):
    return jsonify(moderator_service.list_moderators(g.user, project_id))


@app.route('/api/crowdsourcing/projects/<project_id>/moderators/invite', methods=['POST'])
@require_roles('admin')
def invite_project_moderator(project_id):
    data = _json_body()
    result = moderator_service.invite(g.user, project_id, data.get('email'), data.get('permissions'))
    return jsonify(result), 201


@app.route('/api/crowdsourcing/projects/<project_id>/moderators/<uid>', methods=['PATCH'])
@require_roles('admin')
def update_project_moderator(project_id, uid):
    moderator = moderator_service.update_moderator(g.user, project_id, uid, _json_body())
    return jsonify({'moderator': moderator})


@app.route('/api/crowdsourcing/projects/<project_id>/moderators/<uid>', methods=['DELETE'])
@require_roles('admin')
def revoke_project_moderator(project_id, uid):
    moderator_service.revoke(g.user, project_id, uid)
    return jsonify({'message': 'Moderator revoked'})


@app.route('/api/crowdsourcing/invites/<token>/accept', methods=['POST'])
@require_auth
def accept_moderator_invite(token):
    return jsonify(moderator_service.accept_invite(g.user, token))


@app.route('/api/crowdsourcing/my-projects', methods=['GET'])
@require_auth
def list_moderated_projects():
    projects = moderator_service.my_projects(g.user)
    return jsonify({'projects': projects, 'count': len(projects)})


@app.route('/api/crowdsourcing/projects/<project_id>/fields', methods=['GET'])
def list_project_fields(project_id):
    """Active form fields; admins may pass ?include_inactive=true"""
    include_inactive = _query_flag('include_inactive') and is_admin(_optional_user())
    fields = project_setup_service.list_fields(project_id, include_inactive)
    return jsonify({'fields': fields, 'count': len(fields)})


@app.route('/api/crowdsourcing/projects/<project_id>/fields', methods=['POST'])
@require_roles('admin')
def create_project_field(project_id):
    field = project_setup_service.create_field(g.user, project_id, _json_body())
    return jsonify({'field': field}), 201


@app.route('/api/crowdsourcing/projects/<project_id>/fields', methods=['PATCH'])
@require_roles('admin')
def reorder_project_fields(project_id):
    """Body: {"fields": [{"id": ..., "display_order": n}, ...]}"""
    fields = project_setup_service.reorder_fields(g.user, project_id, _json_body().get('fields'))
    return jsonify({'fields': fields})


@app.route('/api/crowdsourcing/projects/<project_id>/fields/<field_id>', methods=['PATCH'])
@require_roles('admin')
def update_project_field(project_id, field_id):
    field = project_setup_service.update_field(g.user, project_id, field_id, _json_body())
    return jsonify({'field': field})


@app.route('/api/crowdsourcing/projects/<project_id>/fields/<field_id>', methods=['DELETE'])
@require_roles('admin')
def delete_project_field(project_id, field_id):
    project_setup_service.delete_field(g.user, project_id, field_id)
    return jsonify({'message': 'Field deleted'})


@app.route('/api/crowdsourcing/projects/<project_id>/zones', methods=['GET'])
def list_project_zones(project_id):
    include_inactive = _query_flag('include_inactive') and is_admin(_optional_user())
    zones = project_setup_service.list_zones(project_id, include_inactive)
    return jsonify({'zones': zones, 'count': len(zones)})


@app.route('/api/crowdsourcing/projects/<project_id>/zones', methods=['POST'])
@require_roles('admin')
def create_project_zone(project_id):
    zone = project_setup_service.create_zone(g.user, project_id, _json_body())
    return jsonify({'zone': zone}), 201


@app.route('/api/crowdsourcing/projects/<project_id>/zones', methods=['DELETE'])
@require_roles('admin')
def clear_project_zones(project_id):
    project_setup_service.clear_zones(g.user, project_id)
    return jsonify({'message': 'All zones deleted'})


@app.route('/api/crowdsourcing/projects/<project_id>/zones/<zone_id>', methods=['PATCH'])
@require_roles('admin')
def update_project_zone(project_id, zone_id):
    zone = project_setup_service.update_zone(g.user, project_id, zone_id, _json_body())
    return jsonify({'zone': zone})


@app.route('/api/crowdsourcing/projects/<project_id>/zones/<zone_id>', methods=['DELETE'])
@require_roles('admin')
def delete_project_zone(project_id, zone_id):
    project_setup_service.delete_zone(g.user, project_id, zone_id)
    return jsonify({'message': 'Zone deleted'})


@app.route('/api/crowdsourcing/analytics/<project_id>', methods=['GET'])
@require_roles('admin')
def get_crowdsourcing_analytics(project_id):
    return jsonify({'analytics': crowdsourcing_service.project_analytics(g.user, project_id)})


@app.route('/api/crowdsourcing/export/<project_id>', methods=['GET'])
@limiter.limit("10 per hour")
@require_auth
def export_crowdsourcing_submissions(project_id):
    """Admins and moderators holding can_export"""
    status = request.args.get('status', 'approved')
    csv_text, filename = crowdsourcing_service.export_submissions_csv(
        g.user, project_id, None if status == 'all' else status)
    return Response(
        csv_text,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'}
    )


# ===== MAP & DASHBOARD ENDPOINTS =====

@app.route('/api/map-data', methods=['GET'])
def get_map_data():
    """
    Query Parameters:
        - type (optional): assistance_type filter for emergency markers
        - max_age_hours (optional): 0..8760
    """
    max_age_hours = request.args.get('max_age_hours', type=float)
    if max_age_hours is not None:
        if max_age_hours < 0:
            return jsonify({'error': 'max_age_hours must be non-negative'}), 400
        if max_age_hours > 8760:  # 1 year in hours
            return jsonify({'error': 'max_age_hours cannot exceed 8760 (1 year)'}), 400

    return jsonify(map_service.get_public_map_data(request.args.get('type'), max_age_hours))


@app.route('/api/super-admin/map-data', methods=['GET'])
@require_roles('admin')
def get_super_admin_map_data():
    return jsonify(map_service.get_super_admin_map_data())


@app.route('/api/super-admin/stats', methods=['GET'])
@require_roles('admin')
def get_global_stats():
    return jsonify({'stats': map_service.get_global_stats()})


@app.route('/api/admin/users', methods=['GET'])
@require_roles('admin')
def admin_list_users():
    users = auth_service.list_users(request.args.get('role'))
    return jsonify({'users': users, 'count': len(users)})


@app.route('/api/admin/export/incidents', methods=['GET'])
@limiter.limit("10 per hour")
@require_roles('admin')
def admin_export_incidents():
    """Platform-wide incident export; also accepts organization_id. Default format json, max limit 10000."""
    return _export_response(request.args.to_dict(), org_scoped=False, default_format='json')


# ===== UPLOAD ENDPOINTS =====

@app.route('/api/uploads', methods=['POST'])
@limiter.limit("30 per hour")
def upload_media():
    """Multipart upload: bucket, optional path, file"""
    media = request.files.get('file')
    bucket = request.form.get('bucket')
    if media is None or not bucket:
        return jsonify({'error': 'bucket, path, and file are required.'}), 400

    path = request.form.get('path') or upload_service.generate_name(media.filename)
    stored = upload_service.upload(media, bucket, path)
    return jsonify(stored), 201


@app.route('/uploads/<path:object_path>', methods=['GET'])
def serve_upload(object_path):
    return redirect(upload_service.signed_url(object_path), code=302)


# ===== HEALTH =====

@app.route('/api/health', methods=['GET'])
def health_check():
    """Database check with latency; 503 when the database is unreachable"""
    start = time.time()
    checks = {}
    stats = {}

    try:
        db_start = time.time()
        organizations = db.reference('organizations').get() or {}
        checks['database'] = {'status': 'ok', 'latency': round((time.time() - db_start) * 1000)}
        stats['organizations'] = sum(1 for o in organizations.values()
                                     if isinstance(o, dict) and o.get('status') == 'active')
    except Exception as e:
        logger.error(f"Health check database query failed: {e}")
        checks['database'] = {'status': 'error', 'message': str(e)}

    healthy = all(check['status'] == 'ok' for check in checks.values())
    return jsonify({
        'status': 'healthy' if healthy else 'degraded',
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'latency_ms': round((time.time() - start) * 1000),
        'checks': checks,
        'stats': stats,
        'version': app.config['APP_VERSION'],
        'environment': config_name,
    }), 200 if healthy else 503


# ===== ERROR HANDLERS =====

@app.errorhandler(ServiceError)
def handle_service_error(error):
    return jsonify({'error': str(error)}), error.status_code


@app.errorhandler(ValueError)
def handle_value_error(error):
    return jsonify({'error': str(error)}), 400


@app.errorhandler(413)
def request_entity_too_large(error):
    """
    Handle requests that exceed MAX_CONTENT_LENGTH.

    Returns:
        413: Payload too large error
    """
    return jsonify({
        'error': 'Request payload too large',
        'max_size': f"{app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)} MB",
        'message': 'Please reduce the size of your request. Photos and videos should be compressed.'
    }), 413


@app.errorhandler(400)
def bad_request(error):
    return jsonify({'error': 'Bad request', 'message': str(error)}), 400


@app.errorhandler(404)
def not_found(error):
    return jsonify({'error': 'Not found'}), 404


@app.errorhandler(405)
def method_not_allowed(error):
    return jsonify({'error': 'Method not allowed'}), 405


@app.errorhandler(429)
def rate_limit_exceeded(error):
    return jsonify({'error': 'Too many requests', 'message': str(error.description)}), 429


@app.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return error
    logger.error(f"Unhandled error on {request.method} {request.path}: {error}")
    return jsonify({'error': 'Internal server error'}), 500


if __name__ == '__main__':
    # Use environment variable to control debug mode (defaults to False for production)
    debug_mode = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    app.run(debug=debug_mode, host='0.0.0.0', port=5001)
