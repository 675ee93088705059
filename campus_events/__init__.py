# Campus Events - App Package
"""
Main package for the Campus Events backend.
Event management, registration, QR attendance, archival and export.
"""

__version__ = "1.0.0"
__description__ = "Campus event management backend with QR code attendance"

from .modules.database_manager import DatabaseManager
from .modules.local_cache import LocalCache
from .modules.event_store import EventStore
from .modules.identity_manager import IdentityManager
from .modules.event_manager import EventManager
from .modules.registration_engine import RegistrationEngine
from .modules.attendance_verifier import AttendanceVerifier, ScanSession
from .modules.qr_generator import QRGenerator
from .modules.expiration_sweeper import ExpirationSweeper
from .modules.export_formatter import ExportFormatter
from .modules.recommendation_engine import RecommendationEngine

__all__ = [
    'DatabaseManager',
    'LocalCache',
    'EventStore',
    'IdentityManager',
    'EventManager',
    'RegistrationEngine',
    'AttendanceVerifier',
    'ScanSession',
    'QRGenerator',
    'ExpirationSweeper',
    'ExportFormatter',
    'RecommendationEngine'
]
