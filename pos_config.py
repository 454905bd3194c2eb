"""
Runtime settings for the POS server, the admin CLI and the receipt agent.

Everything is read from the environment (a local .env file is loaded first).
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

AGENT_HOST = '127.0.0.1'
AGENT_PORT = 5001


def _env_string(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return trimmed string-valued env vars, normalizing empty strings to the default."""
    raw = os.getenv(name, default)
    if raw is None:
        return default
    if isinstance(raw, str):
        clean = raw.strip()
        return clean if clean else default
    return raw


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env_string(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(_env_string(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    raw = _env_string(name)
    if raw is None:
        return default
    return raw.lower() in ('1', 'true', 'yes', 'on')


def _receipt_agent_url(auto_start: bool) -> Optional[str]:
    """Explicit RECEIPT_AGENT_URL, else host:port; an auto-started agent falls back to its defaults."""
    url = _env_string('RECEIPT_AGENT_URL')
    if url:
        return url
    host = _env_string('RECEIPT_AGENT_HOST')
    port = _env_string('RECEIPT_AGENT_PORT')
    if not (host and port) and not auto_start:
        return None
    host = host or AGENT_HOST
    port = port or str(AGENT_PORT)
    scheme = 'https' if _env_flag('RECEIPT_AGENT_USE_HTTPS') else 'http'
    path = _env_string('RECEIPT_AGENT_PATH', '/print')
    if not path.startswith('/'):
        path = f'/{path}'
    return f"{scheme}://{host}:{port}{path}"


@dataclass
class PosConfig:
    inventory_file: str = os.path.join('data', 'inventory.json')
    sales_file: str = os.path.join('data', 'sales.json')
    receipts_dir: str = 'receipts'
    static_dir: Optional[str] = 'public'
    api_prefix: str = ''
    shop_name: str = 'POINT OF SALE'
    tax_percentage: float = 0.0
    default_payment: str = 'Cash'
    receipt_width: int = 40
    recent_limit: int = 3
    log_level: str = 'INFO'
    printer: str = 'serial'
    serial_port: Optional[str] = None
    serial_baud: int = 9600
    printer_timeout: float = 5.0
    printer_columns: int = 32
    receipt_agent_url: Optional[str] = None
    receipt_agent_auto_start: bool = False
    receipt_agent_host: str = AGENT_HOST
    receipt_agent_port: int = AGENT_PORT

    @classmethod
    def from_env(cls) -> 'PosConfig':
        data_dir = _env_string('POS_DATA_DIR', 'data')
        prefix = _env_string('POS_API_PREFIX', '') or ''
        auto_start = _env_flag('RECEIPT_AGENT_AUTO_START')
        if prefix and not prefix.startswith('/'):
            prefix = f'/{prefix}'
        return cls(
            inventory_file=_env_string('POS_INVENTORY_FILE', os.path.join(data_dir, 'inventory.json')),
            sales_file=_env_string('POS_SALES_FILE', os.path.join(data_dir, 'sales.json')),
            receipts_dir=_env_string('POS_RECEIPTS_DIR', 'receipts'),
            static_dir=_env_string('POS_STATIC_DIR', 'public'),
            api_prefix=prefix.rstrip('/'),
            shop_name=_env_string('POS_SHOP_NAME', 'POINT OF SALE'),
            tax_percentage=_env_float('POS_TAX_PERCENTAGE', 0.0),
            default_payment=_env_string('POS_DEFAULT_PAYMENT', 'Cash'),
            receipt_width=_env_int('POS_RECEIPT_WIDTH', 40),
            recent_limit=_env_int('POS_RECENT_LIMIT', 3),
            log_level=(_env_string('POS_LOG_LEVEL', 'INFO') or 'INFO').upper(),
            printer=(_env_string('POS_PRINTER', 'serial') or 'serial').lower(),
            serial_port=_env_string('RECEIPT_SERIAL_PORT'),
            serial_baud=_env_int('RECEIPT_SERIAL_BAUD', 9600),
            printer_timeout=_env_float('RECEIPT_PRINTER_TIMEOUT', 5.0),
            printer_columns=_env_int('RECEIPT_PRINTER_COLUMNS', 32),
            receipt_agent_url=_receipt_agent_url(auto_start),
            receipt_agent_auto_start=auto_start,
            receipt_agent_host=_env_string('RECEIPT_AGENT_HOST', AGENT_HOST),
            receipt_agent_port=_env_int('RECEIPT_AGENT_PORT', AGENT_PORT),
        )
