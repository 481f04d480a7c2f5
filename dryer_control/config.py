import logging
import logging.handlers
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

import serial
from dotenv import load_dotenv

from dryer_control.errors import ConfigError

# Stores serial parameters for each supported power meter.
METER_PARAMETERS = {
    "PZEM004Tv3": {
        "baudrate": 9600,
        "bytesize": serial.EIGHTBITS,
        "parity": serial.PARITY_NONE,
        "stopbits": serial.STOPBITS_ONE,
        "timeout": 2.0,
        "write_timeout": 2.0,
        "address": 0x01,
    },
}

# Control lines a relay board can be wired to on a USB-serial adapter.
RELAY_LINES = ["DTR", "RTS"]

DEFAULT_METER_TYPE = "PZEM004Tv3"
REQUEST_QUEUE_SIZE = 50
OUTBOX_QUEUE_SIZE = 50


@dataclass(frozen=True)
class BillingSettings:
    """
    Tariff and cutoff constants used by the billing session.

    Attributes:
        price_per_kwh: Price charged per kWh, in reais.
        idle_power_threshold_w: Power at or below which the dryer counts as idle.
        idle_timeout_s: Idle time after which the dryer is switched off.
        min_billable_reais: Smallest charge flushed to the ledger at once.
        min_balance_to_start: A user needs strictly more than this to turn on.
        out_of_money_threshold: Balance at or below which the session ends.
        meter_outage_timeout_s: Longest run of failed meter reads before the session is aborted.
    """
    price_per_kwh: Decimal = Decimal("1.10")
    idle_power_threshold_w: float = 1.0
    idle_timeout_s: float = 300.0
    min_billable_reais: Decimal = Decimal("0.01")
    min_balance_to_start: Decimal = Decimal("1.0")
    out_of_money_threshold: Decimal = Decimal("0.001")
    meter_outage_timeout_s: float = 60.0


@dataclass(frozen=True)
class AppConfig:
    """
    Explicit configuration structure injected into the collaborators at startup.
    """
    api_token: Optional[str] = None
    ledger_path: str = "dryer_ledger.sqlite3"
    meter_port: str = "/dev/ttyUSB0"
    meter_type: str = DEFAULT_METER_TYPE
    meter_address: int = 0x01
    relay_port: Optional[str] = None
    relay_line: str = "DTR"
    relay_active_low: bool = False
    serial_timeout_s: float = 2.0
    tick_interval_s: float = 5.0
    operator_contact: str = "o operador"
    log_file: Optional[str] = None
    billing: BillingSettings = field(default_factory=BillingSettings)


def _get_decimal(env: Mapping[str, str], key: str, default: Decimal) -> Decimal:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ConfigError(f"{key} must be a decimal number, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {raw!r}")
    return value


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")
    if value < 0:
        raise ConfigError(f"{key} must not be negative, got {raw!r}")
    return value


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """
    Builds an AppConfig from environment variables.

    Args:
        env: Mapping to read from. Defaults to os.environ after loading a .env file.

    Returns:
        The validated AppConfig.

    Raises:
        ConfigError: If a value is malformed or the timings are inconsistent.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    meter_type = env.get("METER_TYPE", DEFAULT_METER_TYPE)
    if meter_type not in METER_PARAMETERS:
        raise ConfigError(f"Unknown meter type: {meter_type}")

    try:
        meter_address = int(env.get("METER_ADDRESS", "1"), 0)
    except ValueError:
        raise ConfigError(f"METER_ADDRESS must be an integer, got {env.get('METER_ADDRESS')!r}")
    if not 0x01 <= meter_address <= 0xF7:
        raise ConfigError(f"METER_ADDRESS out of range (0x01-0xF7): {meter_address}")

    relay_line = env.get("RELAY_LINE", "DTR").upper()
    if relay_line not in RELAY_LINES:
        raise ConfigError(f"RELAY_LINE must be one of {RELAY_LINES}, got {relay_line!r}")

    defaults = BillingSettings()
    billing = BillingSettings(
        price_per_kwh=_get_decimal(env, "PRICE_PER_KWH", defaults.price_per_kwh),
        idle_power_threshold_w=_get_float(env, "IDLE_POWER_THRESHOLD_W", defaults.idle_power_threshold_w),
        idle_timeout_s=_get_float(env, "IDLE_TIMEOUT_S", defaults.idle_timeout_s),
        min_billable_reais=_get_decimal(env, "MIN_BILLABLE_REAIS", defaults.min_billable_reais),
        min_balance_to_start=_get_decimal(env, "MIN_BALANCE_TO_START", defaults.min_balance_to_start),
        meter_outage_timeout_s=_get_float(env, "METER_OUTAGE_TIMEOUT_S", defaults.meter_outage_timeout_s),
    )

    serial_timeout_s = _get_float(env, "SERIAL_TIMEOUT_S", METER_PARAMETERS[meter_type]["timeout"])
    tick_interval_s = _get_float(env, "TICK_INTERVAL_S", 5.0)
    if serial_timeout_s >= tick_interval_s:
        raise ConfigError(
            f"SERIAL_TIMEOUT_S ({serial_timeout_s}) must be lower than TICK_INTERVAL_S ({tick_interval_s})"
        )

    return AppConfig(
        api_token=env.get("API_TOKEN") or None,
        ledger_path=env.get("LEDGER_PATH", "dryer_ledger.sqlite3"),
        meter_port=env.get("METER_PORT", "/dev/ttyUSB0"),
        meter_type=meter_type,
        meter_address=meter_address,
        relay_port=env.get("RELAY_PORT") or None,
        relay_line=relay_line,
        relay_active_low=_get_bool(env, "RELAY_ACTIVE_LOW", False),
        serial_timeout_s=serial_timeout_s,
        tick_interval_s=tick_interval_s,
        operator_contact=env.get("OPERATOR_CONTACT", "o operador"),
        log_file=env.get("LOG_FILE") or None,
        billing=billing,
    )


def setup_logging(name: str, log_file: Optional[str] = None, level: int = logging.INFO) -> logging.Logger:
    """
    Configures logging for the application.
    Console output always; a size-rotated file as well when log_file is given.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    # Removes old handlers if any
    if logger.hasHandlers():
        logger.handlers.clear()
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=10_000_000, backupCount=7
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
