import logging
import os
from datetime import date

from flask import Blueprint, Flask, current_app, jsonify, request, session

from clock import system_clock
from config import Config, basedir
from engine import MaintenanceEngine
from errors import InsufficientStockError, MaintenanceError, NotFoundError, StoreError, ValidationError
from kpis import as_json, period_bounds
from models import db, parse_datetime
from scoping import visible_scope
from service_requests import display_status
from store import SqlStore

log = logging.getLogger(__name__)

bp = Blueprint('cmms', __name__)

ORDER_ACTIONS = ('start', 'pause', 'resume', 'complete', 'cancel')


def create_app(config_object=Config, clock=system_clock):
    app = Flask(__name__)
    app.config.from_object(config_object)
    logging.basicConfig(level=app.config['LOG_LEVEL'],
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    db.init_app(app)
    app.register_blueprint(bp)
    _register_error_handlers(app)

    # Ensure DB + default admin user exist
    with app.app_context():
        os.makedirs(os.path.join(basedir, "instance"), exist_ok=True)
        db.create_all()
        engine = MaintenanceEngine(
            SqlStore(),
            clock=clock,
            hours_per_month=app.config['HOURS_PER_MONTH'],
            default_daily_hours=app.config['DEFAULT_DAILY_UPTIME_HOURS'],
        )
        engine.accounts.ensure_admin(app.config['ADMIN_USERNAME'], app.config['ADMIN_PASSWORD'],
                                     salary=app.config['ADMIN_SALARY'])
    app.extensions['cmms'] = engine
    return app


def _register_error_handlers(app):

    def error_response(error, status):
        return jsonify({'error': str(error)}), status

    app.register_error_handler(ValidationError, lambda e: error_response(e, 400))
    app.register_error_handler(NotFoundError, lambda e: error_response(e, 404))
    app.register_error_handler(StoreError, lambda e: error_response(e, 503))

    @app.errorhandler(InsufficientStockError)
    def insufficient_stock(e):
        return jsonify({'error': str(e), 'part_id': e.part_id, 'shortfall': e.shortfall}), 409

    @app.errorhandler(MaintenanceError)
    def maintenance_error(e):
        log.error("Unhandled engine error: %s", e)
        return error_response(e, 500)


def get_engine():
    return current_app.extensions['cmms']


def _current_user():
    username = session.get('username')
    if not username:
        return None
    return get_engine().repository.technician(username)


def _unauthorized():
    return jsonify({'error': 'Unauthorized'}), 401


def _period_from_args():
    period = request.args.get('period', 'month')
    day = request.args.get('date')
    try:
        reference = date.fromisoformat(day) if day else get_engine().clock.now().date()
        return period_bounds(period, reference)
    except ValueError as e:
        raise ValidationError(str(e)) from e


def _order_json(order):
    data = order.to_dict()
    data['machine_name'] = get_engine().repository.machine_name(order.machine_id)
    return data


# ========== SESSION ==========

@bp.route('/login', methods=['POST'])
def login():
    payload = request.get_json(silent=True) or request.form
    user = get_engine().accounts.authenticate(payload.get('username', ''), payload.get('password', ''))
    if user is None:
        return jsonify({'error': 'Invalid credentials'}), 401
    session['username'] = user.username
    session['role'] = user.role
    return jsonify(user.to_dict(include_password=False))


@bp.route('/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'ok': True})


# ========== WORK ORDERS ==========

@bp.route('/work-orders')
def list_work_orders():
    user = _current_user()
    if user is None:
        return _unauthorized()
    scope = visible_scope(user)
    orders = scope.filter('work_order', get_engine().repository.work_orders())
    orders.sort(key=lambda o: o.id, reverse=True)
    return jsonify([_order_json(o) for o in orders])


@bp.route('/work-orders/next-id')
def next_work_order_id():
    if _current_user() is None:
        return _unauthorized()
    year = request.args.get('year', type=int)
    return jsonify({'id': get_engine().work_orders.next_id(year)})


@bp.route('/work-orders', methods=['POST'])
def create_work_order():
    if _current_user() is None:
        return _unauthorized()
    form = request.get_json(force=True)
    order = get_engine().work_orders.save(form, is_new=True,
                                          source_request_id=form.pop('source_request_id', None))
    return jsonify(_order_json(order)), 201


@bp.route('/work-orders/<order_id>', methods=['GET'])
def get_work_order(order_id):
    if _current_user() is None:
        return _unauthorized()
    return jsonify(_order_json(get_engine().work_orders.get(order_id)))


@bp.route('/work-orders/<order_id>', methods=['PUT'])
def update_work_order(order_id):
    if _current_user() is None:
        return _unauthorized()
    form = request.get_json(force=True)
    form['id'] = order_id
    return jsonify(_order_json(get_engine().work_orders.save(form)))


@bp.route('/work-orders/<order_id>/<action>', methods=['POST'])
def work_order_action(order_id, action):
    if _current_user() is None:
        return _unauthorized()
    if action not in ORDER_ACTIONS:
        return jsonify({'error': f"Unknown action '{action}'"}), 404

    service = get_engine().work_orders
    if action == 'start':
        payload = request.get_json(silent=True) or {}
        order = service.start(order_id, manual_start=parse_datetime(payload.get('manual_start')))
    else:
        order = getattr(service, action)(order_id)
    return jsonify(_order_json(order))


@bp.route('/work-orders/<order_id>/parts', methods=['PUT'])
def update_work_order_parts(order_id):
    if _current_user() is None:
        return _unauthorized()
    payload = request.get_json(force=True)
    order = get_engine().work_orders.update_parts(order_id, payload.get('parts_used', []))
    return jsonify(_order_json(order))


@bp.route('/work-orders/<order_id>/cost')
def work_order_cost(order_id):
    if _current_user() is None:
        return _unauthorized()
    engine = get_engine()
    return jsonify(engine.order_cost(engine.work_orders.get(order_id)).to_dict())


@bp.route('/work-orders/<order_id>/elapsed')
def work_order_elapsed(order_id):
    if _current_user() is None:
        return _unauthorized()
    engine = get_engine()
    elapsed = engine.elapsed(engine.work_orders.get(order_id))
    return jsonify({'id': order_id, 'seconds': int(elapsed.total_seconds())})


# ========== REQUESTS ==========

@bp.route('/requests')
def list_requests():
    user = _current_user()
    if user is None:
        return _unauthorized()
    repo = get_engine().repository
    orders_by_id = {o.id: o for o in repo.work_orders()}
    requests = visible_scope(user).filter('request', repo.requests())
    requests.sort(key=lambda r: r.created_at.isoformat() if r.created_at else '', reverse=True)
    return jsonify([
        {**r.to_dict(), 'display_status': display_status(r, orders_by_id),
         'machine_name': repo.machine_name(r.machine_id)}
        for r in requests
    ])


@bp.route('/requests', methods=['POST'])
def submit_request():
    user = _current_user()
    if user is None:
        return _unauthorized()
    payload = request.get_json(force=True)
    service_request = get_engine().requests.submit(user.username, payload.get('machine_id'),
                                                   payload.get('description'))
    return jsonify(service_request.to_dict()), 201


@bp.route('/requests/<request_id>/convert', methods=['POST'])
def convert_request(request_id):
    if _current_user() is None:
        return _unauthorized()
    order = get_engine().requests.convert(request_id, request.get_json(silent=True) or {})
    return jsonify(_order_json(order)), 201


@bp.route('/requests/<request_id>/<action>', methods=['POST'])
def close_request(request_id, action):
    if _current_user() is None:
        return _unauthorized()
    if action not in ('reject', 'cancel'):
        return jsonify({'error': f"Unknown action '{action}'"}), 404
    service_request = getattr(get_engine().requests, action)(request_id)
    return jsonify(service_request.to_dict())


# ========== ANALYTICS ==========

@bp.route('/kpis')
def kpis():
    user = _current_user()
    if user is None:
        return _unauthorized()
    start, end = _period_from_args()
    machine_id = request.args.get('machine', 'all')
    report = get_engine().kpis(start, end, machine_id=None if machine_id == 'all' else machine_id,
                               scope=visible_scope(user))
    return jsonify({
        'start': start.isoformat(),
        'end': end.isoformat(),
        **{name: as_json(value) for name, value in report._asdict().items()},
    })


@bp.route('/dashboard')
def dashboard():
    user = _current_user()
    if user is None:
        return _unauthorized()
    start, end = _period_from_args()
    stats = get_engine().dashboard(start, end, scope=visible_scope(user))
    stats['executed_cost'] = round(stats['executed_cost'], 2)
    stats['planned_cost'] = round(stats['planned_cost'], 2)
    return jsonify({'start': start.isoformat(), 'end': end.isoformat(), **stats})


@bp.route('/parts/low-stock')
def low_stock_parts():
    user = _current_user()
    if user is None:
        return _unauthorized()
    parts = get_engine().low_stock_parts(scope=visible_scope(user))
    return jsonify([p.to_dict() for p in parts])


if __name__ == '__main__':
    create_app().run(debug=True)
