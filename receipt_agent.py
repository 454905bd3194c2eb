"""
Flask-based ESC/POS print agent that owns the serial/USB receipt printer.

Install with: pip install flask pyserial

Usage:
  RECEIPT_SERIAL_PORT=COM3 \
  RECEIPT_SERIAL_BAUD=9600 \
  python receipt_agent.py

The POS server (POS_PRINTER=agent) POSTs {"commands": [...]} to /print.
Plain {"text": "..."} tickets and extra raw {"hex": ["1b 40", ...]} chunks are
accepted too.
"""

import logging
import os

from flask import Flask, jsonify, request

from pos_config import PosConfig
from pos_errors import DeviceUnavailable
from receipt_printer import SerialPrinter
from receipts import text_commands

HOST = os.environ.get("RECEIPT_AGENT_HOST", "127.0.0.1")
PORT = int(os.environ.get("RECEIPT_AGENT_PORT", "5001"))
LINE_FEEDS = int(os.environ.get("RECEIPT_LINE_FEEDS", "2"))


def _payload_commands(payload) -> list:
    commands = payload.get("commands")
    if commands is None:
        text = payload.get("text", "")
        if not isinstance(text, str) or not text.strip():
            raise ValueError("Either commands or text is required")
        commands = text_commands(text, cut=bool(payload.get("cut", True)))
    if not isinstance(commands, list) or not commands:
        raise ValueError("commands must be a non-empty list")
    raw_feeds = payload.get("line_feeds")
    feeds = LINE_FEEDS if raw_feeds is None else int(raw_feeds)
    if feeds > 0:
        commands = _insert_feed(commands, feeds)
    return commands


def _insert_feed(commands: list, lines: int) -> list:
    out = list(commands)
    for idx, cmd in enumerate(out):
        if isinstance(cmd, dict) and cmd.get("op") in ("cut", "close"):
            out.insert(idx, {"op": "feed", "lines": lines})
            return out
    out.append({"op": "feed", "lines": lines})
    return out


def create_agent(printer=None) -> Flask:
    agent = Flask(__name__)
    if printer is None:
        config = PosConfig.from_env()
        printer = SerialPrinter(
            config.serial_port,
            config.serial_baud,
            timeout=config.printer_timeout,
            columns=config.printer_columns,
        )

    @agent.after_request
    def allow_cors(response):
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        return response

    @agent.route("/print", methods=["POST", "OPTIONS"])
    def print_receipt():
        if request.method == "OPTIONS":
            return jsonify(ok=True)

        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return jsonify(ok=False, error="Invalid JSON payload"), 400
        try:
            commands = _payload_commands(payload)
            hex_commands = payload.get("hex") or []
            if isinstance(hex_commands, str):
                hex_commands = [hex_commands]
            if hex_commands:
                commands = [{"op": "raw", "hex": hex_commands}] + commands
            printer.send(commands)
        except (TypeError, ValueError) as exc:
            logging.warning("Bad print payload: %s", exc)
            return jsonify(ok=False, error=str(exc)), 400
        except DeviceUnavailable as exc:
            logging.error("Printer unavailable: %s", exc)
            return jsonify(ok=False, error=str(exc)), 503

        logging.info("Printed receipt; commands=%d", len(commands))
        return jsonify(ok=True)

    @agent.get("/health")
    def health():
        return "ok", 200

    return agent


def run():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    logging.info("Starting receipt agent on http://%s:%d", HOST, PORT)
    # Avoid Flask reloader to keep serial port exclusive
    create_agent().run(host=HOST, port=PORT, debug=False, use_reloader=False)


if __name__ == "__main__":
    run()
