import logging
import os
import subprocess
import sys
from typing import Optional

from pos_config import PosConfig
from pos_server import create_app

log = logging.getLogger(__name__)

AGENT_SCRIPT = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'receipt_agent.py')


def start_receipt_agent(config: PosConfig, popen=subprocess.Popen):
    """Spawn receipt_agent.py on the host/port the server's AgentPrinter posts to."""
    if not config.receipt_agent_auto_start:
        return None
    # The Flask reloader child must not spawn a second agent on the same port.
    if os.environ.get('WERKZEUG_RUN_MAIN') == 'true':
        return None
    if not os.path.exists(AGENT_SCRIPT):
        log.warning("Receipt agent auto-start requested but %s is missing", AGENT_SCRIPT)
        return None
    env = os.environ.copy()
    env['RECEIPT_AGENT_HOST'] = config.receipt_agent_host
    env['RECEIPT_AGENT_PORT'] = str(config.receipt_agent_port)
    log.info("Starting receipt agent on %s:%s", config.receipt_agent_host, config.receipt_agent_port)
    return popen([sys.executable, AGENT_SCRIPT], env=env)


def run(config: Optional[PosConfig] = None):
    config = config or PosConfig.from_env()
    debug = os.getenv('FLASK_DEBUG', '0') == '1'
    port = int(os.getenv('PORT', '5000'))
    host = os.getenv('HOST', '0.0.0.0')
    agent_proc = start_receipt_agent(config)
    app = create_app(config)
    try:
        app.run(host=host, port=port, debug=debug)
    finally:
        if agent_proc:
            agent_proc.terminate()


if __name__ == '__main__':
    run()
