"""
Campus Events - Main Application

This module serves as the main entry point for the Campus Events backend.
It builds the Flask application, wires the managers together and exposes
them as a JSON API.

Features:
- Sign-up, sign-in and profile editing
- Event browsing, creation, editing and deletion
- Registration with per-attendee QR codes
- QR scan attendance confirmation
- Attendee roster export (CSV/JSON/Excel)
- Expired event archive with background sweep
- Event recommendations
"""

import atexit
import base64
import io
import logging
import os
from datetime import datetime
from functools import wraps
from types import SimpleNamespace

from flask import Blueprint, Flask, current_app, g, jsonify, request, send_file, session
from werkzeug.exceptions import HTTPException

from campus_events.modules.attendance_verifier import AttendanceVerifier
from campus_events.modules.database_manager import DatabaseManager
from campus_events.modules.event_manager import EventManager
from campus_events.modules.event_store import EventStore
from campus_events.modules.exceptions import AttendeeNotFound, CampusEventsError, ValidationError
from campus_events.modules.expiration_sweeper import ExpirationSweeper
from campus_events.modules.export_formatter import ExportFormatter, MIMETYPES
from campus_events.modules.identity_manager import AuthPrincipal, IdentityManager
from campus_events.modules.local_cache import LocalCache
from campus_events.modules.models import Event, User
from campus_events.modules.permissions import Action, require_permission
from campus_events.modules.qr_generator import QRGenerator
from campus_events.modules.recommendation_engine import RecommendationEngine
from campus_events.modules.registration_engine import RegistrationEngine
from config import init_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
)
logger = logging.getLogger(__name__)

api = Blueprint('api', __name__, url_prefix='/api')

PROFILE_FIELDS = {
    'name': 'name',
    'avatarUrl': 'avatar_url',
    'studentId': 'student_id',
    'organizationName': 'organization_name',
    'role': 'role'
}


def create_app(config_name=None, overrides=None, clock=None):
    """
    Application factory.

    Args:
        config_name (str): ``development``, ``testing`` or ``production``
        overrides (dict): Settings applied on top of the config class
        clock (callable): Source of the current time for every manager

    Returns:
        Flask: Configured application
    """
    app = Flask(__name__)
    init_config(app, config_name, overrides)
    logging.getLogger('campus_events').setLevel(app.config['LOG_LEVEL'])

    clock = clock or datetime.now

    db_manager = DatabaseManager(app.config['DATABASE_PATH'])
    event_store = EventStore(
        db_manager,
        LocalCache(app.config.get('LOCAL_CACHE_PATH')),
        poll_interval=app.config['SUBSCRIPTION_POLL_INTERVAL']
    )

    demo_accounts = app.config['DEMO_ACCOUNTS'] if app.config['DEMO_MODE'] else None

    app.extensions['campus_events'] = SimpleNamespace(
        db_manager=db_manager,
        event_store=event_store,
        identity=IdentityManager(db_manager, app.config['PASSWORD_MIN_LENGTH'], demo_accounts),
        events=EventManager(
            event_store,
            edit_policy=app.config['EVENT_EDIT_POLICY'],
            categories=app.config['EVENT_CATEGORIES'],
            max_tags=app.config['MAX_TAGS'],
            clock=clock
        ),
        registration=RegistrationEngine(event_store, clock=clock),
        verifier=AttendanceVerifier(event_store, clock=clock),
        qr_generator=QRGenerator({
            'box_size': app.config['QR_CODE_SIZE'],
            'border': app.config['QR_CODE_BORDER'],
            'fill_color': app.config['QR_CODE_FILL_COLOR'],
            'back_color': app.config['QR_CODE_BACK_COLOR']
        }),
        sweeper=ExpirationSweeper(
            event_store,
            interval_seconds=app.config['SWEEP_INTERVAL_SECONDS'],
            default_end_time=app.config['DEFAULT_END_TIME'],
            retention_days=app.config['ARCHIVE_RETENTION_DAYS'],
            clock=clock
        ),
        exporter=ExportFormatter(clock=clock),
        recommendations=RecommendationEngine(limit=app.config['RECOMMENDATION_LIMIT'], clock=clock)
    )

    app.register_blueprint(api)
    app.register_error_handler(CampusEventsError, handle_domain_error)
    app.register_error_handler(Exception, handle_unexpected_error)

    if app.config['SWEEP_ENABLED']:
        sweeper = app.extensions['campus_events'].sweeper
        sweeper.start()
        atexit.register(sweeper.stop, 5)

    logger.info(f"Campus Events application created ({config_name or os.environ.get('FLASK_ENV', 'default')})")
    return app


def services():
    return current_app.extensions['campus_events']


def handle_domain_error(e):
    return jsonify(e.to_dict()), e.status_code


def handle_unexpected_error(e):
    if isinstance(e, HTTPException):
        return jsonify({'success': False, 'message': e.description, 'error_type': e.name}), e.code

    logger.error(f"Unhandled error on {request.path}: {str(e)}")
    return jsonify({
        'success': False,
        'message': 'An unexpected error occurred',
        'error_type': 'internal_error'
    }), 500


def current_user():
    """Resolve the signed-in user from the session principal."""
    principal = session.get('principal')
    if not principal:
        return None
    return services().identity.resolve(AuthPrincipal.from_dict(principal))


def login_required(f):
    """Decorator to require login for protected routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = current_user()
        if user is None:
            return jsonify({
                'success': False,
                'message': 'Please sign in to continue',
                'error_type': 'authentication_required'
            }), 401
        g.user = user
        return f(*args, **kwargs)
    return decorated_function


def organizer_required(f):
    """Decorator to require organizer role for protected routes"""
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not g.user.is_organizer:
            return jsonify({
                'success': False,
                'message': 'Organizer privileges required',
                'error_type': 'permission_denied'
            }), 403
        return f(*args, **kwargs)
    return decorated_function


def request_data():
    return request.get_json(silent=True) or {}


def serialize_event(event: Event, user: User = None):
    """Event as JSON; attendee QR codes are only visible to organizers and their owner."""
    data = event.to_dict()
    data['availableSpots'] = event.available_spots
    if user is None or not user.is_organizer:
        for attendee in data['attendees']:
            if user is None or attendee['userId'] != user.id:
                attendee['qrCode'] = None
    return data


def download(content, filename, mimetype):
    if isinstance(content, str):
        content = content.encode('utf-8')
    return send_file(io.BytesIO(content), mimetype=mimetype, as_attachment=True, download_name=filename)


def export_format():
    return request.args.get('format', 'csv').lower()


def _start_session(user: User):
    principal = services().identity.principal_for(user.email)
    session.clear()
    session['principal'] = principal.to_dict()
    session.permanent = True


# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------

@api.route('/auth/signup', methods=['POST'])
def signup():
    """Create an account and sign in"""
    data = request_data()
    user = services().identity.create_account(
        email=data.get('email', ''),
        password=data.get('password', ''),
        name=data.get('name', ''),
        role=data.get('role', 'student'),
        student_id=data.get('studentId', ''),
        organization_name=data.get('organizationName', '')
    )
    _start_session(user)
    return jsonify({'success': True, 'user': user.to_dict()}), 201


@api.route('/auth/login', methods=['POST'])
def login():
    """User login"""
    data = request_data()
    email = data.get('email', '').strip()
    password = data.get('password', '')

    if not email or not password:
        raise ValidationError('Please provide both email and password')

    user = services().identity.authenticate(email, password)
    _start_session(user)
    return jsonify({'success': True, 'message': f'Welcome back, {user.name}!', 'user': user.to_dict()})


@api.route('/auth/logout', methods=['POST'])
@login_required
def logout():
    """User logout"""
    session.clear()
    logger.info(f"User {g.user.email} logged out")
    return jsonify({'success': True, 'message': 'You have been logged out successfully'})


@api.route('/auth/me')
@login_required
def me():
    return jsonify({'success': True, 'user': g.user.to_dict()})


@api.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    """Edit the signed-in user's profile"""
    data = request_data()
    unknown = set(data) - set(PROFILE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

    changes = {PROFILE_FIELDS[key]: value for key, value in data.items()}
    user = services().identity.update_profile(g.user, changes)
    # principal carries the display name
    session['principal'] = services().identity.principal_for(user.email).to_dict()
    return jsonify({'success': True, 'user': user.to_dict()})


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------

@api.route('/events', methods=['GET'])
def list_events():
    user = current_user()
    events = services().events.list_events()
    return jsonify({'success': True, 'events': [serialize_event(e, user) for e in events]})


@api.route('/events', methods=['POST'])
@organizer_required
def create_event():
    event = services().events.create_event(g.user, request_data())
    return jsonify({'success': True, 'event': serialize_event(event, g.user)}), 201


@api.route('/events/<event_id>', methods=['GET'])
def get_event(event_id):
    event = services().events.get_event(event_id)
    return jsonify({'success': True, 'event': serialize_event(event, current_user())})


@api.route('/events/<event_id>', methods=['PUT'])
@organizer_required
def update_event(event_id):
    data = request_data()
    if 'attendees' in data:
        raise ValidationError('Attendees cannot be edited directly')

    event = services().events.update_event(event_id, g.user, data)
    return jsonify({'success': True, 'event': serialize_event(event, g.user)})


@api.route('/events/<event_id>', methods=['DELETE'])
@organizer_required
def delete_event(event_id):
    services().events.delete_event(event_id, g.user)
    return jsonify({'success': True, 'message': 'Event deleted'})


# ----------------------------------------------------------------------
# Registration and QR codes
# ----------------------------------------------------------------------

@api.route('/events/<event_id>/registration', methods=['POST'])
@login_required
def register(event_id):
    event = services().events.get_event(event_id)
    attendee, event = services().registration.register(event, g.user)
    return jsonify({
        'success': True,
        'message': f'Registered for {event.title}',
        'attendee': attendee.to_dict(),
        'availableSpots': event.available_spots
    }), 201


@api.route('/events/<event_id>/registration', methods=['DELETE'])
@login_required
def unregister(event_id):
    event = services().events.get_event(event_id)
    event = services().registration.unregister(event, g.user)
    return jsonify({
        'success': True,
        'message': f'Unregistered from {event.title}',
        'availableSpots': event.available_spots
    })


@api.route('/events/<event_id>/qr', methods=['GET'])
@login_required
def attendee_qr_code(event_id):
    """QR code of the signed-in attendee, as JSON or as a PNG download"""
    event = services().events.get_event(event_id)
    attendee = event.find_attendee(g.user.id)
    if attendee is None:
        raise AttendeeNotFound('You are not registered for this event')

    qr_generator = services().qr_generator
    caption = [event.title, attendee.user_name, f"{event.date} {event.start_time}".strip()]
    image = qr_generator.generate_qr_image(attendee.qr_code, caption_lines=caption)
    filename = qr_generator.qr_image_filename(event.title, attendee.user_name)

    if request.args.get('format') == 'png':
        return download(base64.b64decode(image['image_base64']), filename, 'image/png')

    return jsonify({
        'success': True,
        'qrCode': attendee.qr_code,
        'attended': attendee.attended,
        'image': image['image_base64'],
        'filename': filename
    })


@api.route('/events/<event_id>/qr/regenerate', methods=['POST'])
@login_required
def regenerate_qr_code(event_id):
    event = services().events.get_event(event_id)
    attendee = services().registration.regenerate_qr_code(event, g.user)
    return jsonify({'success': True, 'qrCode': attendee.qr_code})


@api.route('/scan', methods=['POST'])
@organizer_required
def process_scan():
    """Process QR code scan and confirm attendance"""
    data = request_data()
    token = (data.get('qr_code') or data.get('token') or '').strip()
    if not token:
        raise ValidationError('No QR code data provided')

    attendee, event = services().verifier.mark_attendance(token, scanned_by=g.user)
    return jsonify({
        'success': True,
        'message': f'Attendance confirmed for {attendee.user_name}',
        'attendee': attendee.to_dict(),
        'event': {'id': event.id, 'title': event.title}
    })


@api.route('/events/<event_id>/export', methods=['GET'])
@organizer_required
def export_event(event_id):
    require_permission(g.user, Action.EXPORT_ATTENDEES)
    event = services().events.get_event(event_id)
    export = services().exporter.export_file(event, export_format())
    return download(export.content, export.filename, export.mimetype)


# ----------------------------------------------------------------------
# Archive
# ----------------------------------------------------------------------

@api.route('/archived', methods=['GET'])
@organizer_required
def archived_events():
    archived = services().sweeper.get_archived_events(g.user)
    return jsonify({'success': True, 'events': [item.to_dict() for item in archived]})


@api.route('/archived/sweep', methods=['POST'])
@organizer_required
def sweep_expired_events():
    require_permission(g.user, Action.MANAGE_ARCHIVE)
    result = services().sweeper.sweep()
    return jsonify({'success': not result.errors, **result.to_dict()})


@api.route('/archived/cleanup', methods=['POST'])
@organizer_required
def cleanup_archived_events():
    require_permission(g.user, Action.MANAGE_ARCHIVE)
    days = request_data().get('daysToKeep')
    try:
        days = int(days) if days is not None else None
    except (TypeError, ValueError):
        raise ValidationError('daysToKeep must be a number')

    result = services().sweeper.cleanup_old_archived_events(days)
    return jsonify({'success': True, **result})


@api.route('/archived/export', methods=['GET'])
@organizer_required
def export_archived_events():
    format = export_format()
    exporter = services().exporter
    archived = services().sweeper.get_archived_events(g.user)
    content = exporter.export_archived_events(archived, format)
    return download(content, exporter.archive_filename(format), MIMETYPES[format])


@api.route('/archived/<archive_id>/export', methods=['GET'])
@organizer_required
def export_archived_event(archive_id):
    archived = services().sweeper.get_archived_event(archive_id, g.user)
    export = services().exporter.export_file(archived, export_format())
    return download(export.content, export.filename, export.mimetype)


@api.route('/archived/<archive_id>', methods=['DELETE'])
@organizer_required
def delete_archived_event(archive_id):
    services().sweeper.delete_archived_event(archive_id, g.user)
    return jsonify({'success': True, 'message': 'Archived event deleted'})


# ----------------------------------------------------------------------
# Recommendations
# ----------------------------------------------------------------------

@api.route('/recommendations', methods=['GET'])
@login_required
def recommendations():
    events = services().events.list_events()
    recommended = services().recommendations.recommend(events, g.user)
    return jsonify({'success': True, 'recommendations': [r.to_dict() for r in recommended]})


if __name__ == '__main__':
    app = create_app()

    # Run the application
    app.run(debug=app.config['DEBUG'], host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
