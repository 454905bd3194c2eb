"""
Thermal printer capabilities.

Every printer exposes send(commands) and raises DeviceUnavailable when the
ticket cannot reach paper. Callers treat that as non-fatal.
"""
import logging
from typing import List, Optional

import requests
from serial import Serial, SerialException
from serial.tools import list_ports

from pos_errors import DeviceUnavailable
from receipts import Command, encode_escpos

log = logging.getLogger(__name__)

_PRINTER_HINTS = ('printer', 'thermal', 'receipt', 'pos', 'usb')


def detect_serial_port() -> Optional[str]:
    """First serial port whose description looks like a receipt printer."""
    try:
        ports = list(list_ports.comports())
    except OSError as exc:
        log.warning("Could not enumerate serial ports: %s", exc)
        return None
    for port in ports:
        label = f"{port.description or ''} {port.hwid or ''}".lower()
        if any(hint in label for hint in _PRINTER_HINTS):
            return port.device
    return None


class NullPrinter:
    def send(self, commands: List[Command]) -> None:
        raise DeviceUnavailable('No printer configured')


class SerialPrinter:
    """Writes ESC/POS bytes straight to a serial/USB-serial printer."""

    def __init__(
        self,
        port: Optional[str] = None,
        baud: int = 9600,
        timeout: float = 5.0,
        columns: int = 32,
        serial_factory=Serial,
    ):
        self.port = port
        self.baud = baud
        self.timeout = timeout
        self.columns = columns
        self.serial_factory = serial_factory

    def send(self, commands: List[Command]) -> None:
        payload = encode_escpos(commands, self.columns)
        port = self.port or detect_serial_port()
        if not port:
            raise DeviceUnavailable('No serial printer detected')
        try:
            with self.serial_factory(port, self.baud, timeout=self.timeout, write_timeout=self.timeout) as ser:
                ser.write(payload)
                ser.flush()
        except SerialException as exc:
            raise DeviceUnavailable(f"Serial printer {port} unavailable: {exc}") from exc
        log.info("Sent %d bytes to printer on %s", len(payload), port)


class AgentPrinter:
    """Forwards primitives to a receipt agent over HTTP (see receipt_agent.py)."""

    def __init__(self, url: str, timeout: float = 5.0, session=None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, commands: List[Command]) -> None:
        try:
            resp = self.session.post(self.url, json={'commands': commands}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise DeviceUnavailable(f"Receipt agent unreachable at {self.url}: {exc}") from exc
        if resp.status_code >= 300:
            raise DeviceUnavailable(f"Receipt agent answered {resp.status_code}: {(resp.text or '')[:200]}")
        log.info("Receipt agent accepted %d commands", len(commands))


def printer_from_config(config):
    kind = (config.printer or '').lower()
    if kind == 'agent':
        if not config.receipt_agent_url:
            log.warning("POS_PRINTER=agent but no receipt agent URL is configured")
            return NullPrinter()
        return AgentPrinter(config.receipt_agent_url, timeout=config.printer_timeout)
    if kind == 'serial':
        return SerialPrinter(
            config.serial_port,
            config.serial_baud,
            timeout=config.printer_timeout,
            columns=config.printer_columns,
        )
    return NullPrinter()
