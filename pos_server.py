from flask import Blueprint, Flask, current_app, jsonify, request
import logging
import os
from typing import Optional

from pos_config import PosConfig
from pos_errors import InsufficientStock, PosError
from pos_service import SaleService, build_service

api = Blueprint('api', __name__)


def _service() -> SaleService:
    return current_app.extensions['pos_service']


def _json_body():
    """Parsed JSON body, or None when the request carries no usable JSON."""
    return request.get_json(silent=True)


@api.route('/inventory')
def get_inventory():
    return jsonify(_service().list_inventory())


@api.route('/sales')
def get_sales():
    return jsonify(_service().list_sales())


@api.route('/sales/recent')
def get_recent_sales():
    limit = request.args.get('limit', type=int)
    if limit is None:
        limit = current_app.config['POS_RECENT_LIMIT']
    return jsonify(_service().recent_sales(limit))


@api.route('/daily-total')
def get_daily_total():
    return jsonify(_service().daily_total())


@api.route('/sales', methods=['POST'])
def create_sale():
    """Record a sale: validate stock, decrement inventory, append to the sales ledger."""
    sale = _service().record_sale(_json_body())
    return jsonify({'message': 'Sale recorded', 'sale': sale})


@api.route('/products', methods=['POST'])
def create_product():
    product = _service().add_product(_json_body())
    return jsonify({'message': 'Product saved', 'product': product})


@api.route('/print/<sale_id>', methods=['POST'])
def print_sale(sale_id: str):
    """Manual thermal print of a stored sale. A missing printer is not an error."""
    printed = _service().print_sale(sale_id)
    return jsonify({'success': True, 'printed': printed})


@api.route('/health')
def health():
    status = _service().health()
    healthy = all(value == 'ok' for value in status.values())
    body = dict(status, status='ok' if healthy else 'degraded')
    return jsonify(body), 200 if healthy else 503


def _handle_pos_error(exc: PosError):
    body = {'error': str(exc)}
    if isinstance(exc, InsufficientStock) and exc.shortages:
        body['shortages'] = exc.shortages
    if exc.status >= 500:
        current_app.logger.warning('%s: %s', type(exc).__name__, exc)
    return jsonify(body), exc.status


def create_app(config: Optional[PosConfig] = None, service: Optional[SaleService] = None) -> Flask:
    config = config or PosConfig.from_env()
    static_dir = os.path.abspath(config.static_dir) if config.static_dir else None
    app = Flask(__name__, static_folder=static_dir, static_url_path='/static' if static_dir else None)
    app.config['SEND_FILE_MAX_AGE_DEFAULT'] = 0
    app.config['POS_RECENT_LIMIT'] = config.recent_limit

    level = getattr(logging, config.log_level, logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger('werkzeug').setLevel(level)

    app.extensions['pos_service'] = service or build_service(config)
    app.register_blueprint(api, url_prefix=config.api_prefix or None)
    app.register_error_handler(PosError, _handle_pos_error)

    @app.route('/')
    def index():
        if not static_dir or not os.path.exists(os.path.join(static_dir, 'index.html')):
            return jsonify({'error': 'No front-end installed'}), 404
        return app.send_static_file('index.html')

    @app.after_request
    def allow_cors(response):
        response.headers['Access-Control-Allow-Origin'] = '*'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS'
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
        return response

    return app


app = create_app()


if __name__ == '__main__':
    debug = os.getenv('FLASK_DEBUG', '0') == '1'
    port = int(os.getenv('PORT', '5000'))
    host = os.getenv('HOST', '0.0.0.0')
    app.run(host=host, port=port, debug=debug)
