import json
import logging
from decimal import Decimal
from typing import Any, Dict

from library_engine.config.config import Config
from library_engine.models.database import get_db, transaction
from library_engine.utils.money import to_money

logger = logging.getLogger(__name__)


class SystemConfig:
    """System configuration settings manager.

    Manages dynamic configuration stored in the database.
    Falls back to Config constants if DB values are missing.
    """

    DEFAULT_CONFIG: Dict[str, Any] = {
        'loan_period_student': Config.LOAN_PERIOD_DAYS['Student'],
        'loan_period_faculty': Config.LOAN_PERIOD_DAYS['Faculty'],
        'loan_period_public': Config.LOAN_PERIOD_DAYS['Public'],
        'late_fee_per_day': str(Config.LATE_FEE_PER_DAY),
        'fine_block_threshold': str(Config.FINE_BLOCK_THRESHOLD),
        'lost_replacement_fee': str(Config.LOST_REPLACEMENT_FEE),
        'default_reservation_priority': Config.DEFAULT_RESERVATION_PRIORITY,
    }

    @staticmethod
    def get() -> Dict[str, Any]:
        """Get current system configuration from DB."""
        db = get_db()
        result = db.execute('SELECT config_data FROM system_config WHERE id = 1').fetchone()

        config = SystemConfig.DEFAULT_CONFIG.copy()
        if result:
            try:
                config.update(json.loads(result['config_data']))
            except json.JSONDecodeError:
                logger.warning("Stored system config is not valid JSON; using defaults")
        return config

    @staticmethod
    def get_value(key: str, default: Any = None, type_cast: type = str) -> Any:
        """Helper: Get specific config value from DB, fallback to provided default."""
        current_config = SystemConfig.get()

        if key in current_config:
            val = current_config[key]
            try:
                if type_cast == bool and isinstance(val, str):
                    return val.lower() in ('true', '1', 'yes', 'on')
                return type_cast(val)
            except (ValueError, TypeError, ArithmeticError):
                return default

        return default

    @staticmethod
    def get_int(key: str, default: int = 0) -> int:
        """Get integer config value."""
        return SystemConfig.get_value(key, default, int)

    @staticmethod
    def get_decimal(key: str, default: Decimal = Decimal('0')) -> Decimal:
        """Get money config value, rounded to cents."""
        value = SystemConfig.get_value(key, default, Decimal)
        return to_money(value)

    @staticmethod
    def update(config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``config_data`` into the stored configuration and return it."""
        with transaction() as db:
            current_config = SystemConfig.get()
            current_config.update(config_data)
            config_json = json.dumps(current_config, default=str)

            db.execute('''
                INSERT INTO system_config (id, config_data) VALUES (1, ?)
                ON CONFLICT(id) DO UPDATE SET config_data = excluded.config_data
            ''', (config_json,))

        logger.info("System configuration updated: %s", sorted(config_data))
        return current_config
