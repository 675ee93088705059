# Campus Events - Modules Package
"""
Core business logic modules for Campus Events.
"""

__version__ = "1.0.0"

# Module descriptions
MODULES = {
    'models': 'Users, events, attendees, archived events and schema normalization',
    'exceptions': 'Domain error taxonomy',
    'permissions': 'Role and ownership checks',
    'database_manager': 'SQLite document store with realtime subscriptions',
    'local_cache': 'Local fallback copy of the document store',
    'event_store': 'Event persistence with cache fallback',
    'identity_manager': 'Authentication, identity resolution and profiles',
    'event_manager': 'Event creation, editing and deletion',
    'registration_engine': 'Registration and QR token issuance',
    'attendance_verifier': 'QR scan verification and attendance marking',
    'qr_generator': 'QR token minting, parsing and image rendering',
    'expiration_sweeper': 'Expired event archival and retention',
    'export_formatter': 'Attendee roster export',
    'recommendation_engine': 'Event recommendations'
}

def get_module_info():
    """Get information about available modules"""
    return MODULES
