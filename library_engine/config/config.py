import os
from decimal import Decimal
from typing import Dict


class Config:
    # Secret key for session management and security
    SECRET_KEY: str = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'

    # Database configuration
    DATABASE_PATH: str = os.environ.get('LIBRARY_DATABASE_PATH') or os.path.join(
        os.path.dirname(os.path.dirname(__file__)), 'data', 'library.db'
    )
    DATABASE_BUSY_TIMEOUT: float = float(os.environ.get('LIBRARY_DATABASE_BUSY_TIMEOUT', '5.0'))  # seconds
    SEED_REFERENCE_DATA: bool = os.environ.get('SEED_REFERENCE_DATA', 'True').lower() in ('true', '1', 'yes')

    LOG_LEVEL: str = os.environ.get('LOG_LEVEL', 'INFO')

    # Background tasks
    SCHEDULER_ENABLED: bool = os.environ.get('SCHEDULER_ENABLED', 'True').lower() in ('true', '1', 'yes')
    OVERDUE_SWEEP_INTERVAL_SECONDS: int = int(os.environ.get('OVERDUE_SWEEP_INTERVAL_SECONDS', '3600'))

    # Library system business rules
    LOAN_PERIOD_DAYS: Dict[str, int] = {
        'Student': 14,
        'Faculty': 28,
        'Public': 21,
    }
    DEFAULT_MAX_BOOKS_ALLOWED: int = 5
    LATE_FEE_PER_DAY: Decimal = Decimal('0.50')
    FINE_BLOCK_THRESHOLD: Decimal = Decimal('10.00')  # Balance above this blocks borrowing
    LOST_REPLACEMENT_FEE: Decimal = Decimal('25.00')  # Used when the book has no price
    DEFAULT_RESERVATION_PRIORITY: int = 1


class TestingConfig(Config):
    TESTING: bool = True
    SCHEDULER_ENABLED: bool = False
    SEED_REFERENCE_DATA: bool = False
    DATABASE_BUSY_TIMEOUT: float = 10.0
