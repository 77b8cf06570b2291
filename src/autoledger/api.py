"""
autoledger - Flask REST API

Thin HTTP adapter over LedgerEngine. Authentication happens upstream: the
gateway sets an `X-User-Id` header and every route acts as that user.

Endpoints (all under /api):

Accounts:
- GET/POST /accounts, GET /accounts/<id>, POST /transfers

Ledger entries:
- GET/POST /transactions, PUT/DELETE /transactions/<id>
- GET/POST /repayments, DELETE /repayments/<id>
- GET /transactions/<id>/refunds, POST /refunds, PUT/DELETE /refunds/<id>
- GET /credit/summary, GET /credit/reminders

Investments:
- GET/POST /investments, GET /investments/<id>
- POST /investments/<id>/buy, POST /investments/<id>/sell
- PUT /investments/<id>/net-value, PUT /investments/net-values
- GET /investments/<id>/valuations

Plans and executions:
- GET/POST /plans, GET/PUT/DELETE /plans/<id>
- POST /plans/<id>/pause | resume | trigger, GET /plans/<id>/records
- POST /one-time-buy, GET /execution-records
- GET /reminders, GET /reminders/unread-count
- POST /reminders/<id>/read, POST /reminders/read-all

Reconciliation:
- POST /balance/preview, POST /balance/reconcile, GET /balance/adjustments

Failures are returned as {"success": false, "code": ..., "message": ...}
with the status code carried by the LedgerError.
"""

import datetime
from decimal import Decimal
from enum import Enum

from flask import Blueprint, Flask, current_app, g, jsonify, request
from flask.json.provider import DefaultJSONProvider
from flask_cors import CORS

from autoledger.errors import LedgerError
from autoledger.log import get_logger

logger = get_logger(__name__)

api = Blueprint('api', __name__, url_prefix='/api')


class CustomJSONProvider(DefaultJSONProvider):
    """
    JSON provider for engine values.

    Converts:
    - Decimal to string, so money keeps its exact digits
    - datetime and date to ISO 8601
    - Enum members to their value
    """
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime.datetime, datetime.date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, 'to_dict'):
            return obj.to_dict()
        return super().default(obj)


# =============================================================================
# HELPERS
# =============================================================================

def _engine():
    return current_app.config['LEDGER_ENGINE']


def user_required(func):
    """Reject requests without a numeric X-User-Id header; sets g.user_id."""
    def wrapper(*args, **kwargs):
        raw = request.headers.get('X-User-Id', '')
        if not raw.isdigit():
            return jsonify({"success": False, "code": "UNAUTHENTICATED",
                            "message": "X-User-Id header is required."}), 401
        g.user_id = int(raw)
        return func(*args, **kwargs)
    wrapper.__name__ = func.__name__
    return wrapper


def _body(*required):
    data = request.get_json(silent=True) or {}
    missing = [field for field in required if data.get(field) in (None, '')]
    if missing:
        raise LedgerError(f"Missing required fields: {', '.join(missing)}.", missing=missing)
    return data


def _ok(payload=None, status=200):
    return jsonify({"success": True, "data": payload}), status


def _paging():
    return {
        'page': request.args.get('page', 1, type=int),
        'page_size': request.args.get('page_size', 20, type=int),
    }


# =============================================================================
# ACCOUNTS AND TRANSFERS
# =============================================================================

@api.route('/accounts', methods=['GET'])
@user_required
def list_accounts():
    return _ok(_engine().list_accounts(g.user_id, request.args.get('type')))


@api.route('/accounts', methods=['POST'])
@user_required
def create_account():
    data = _body('name', 'type')
    account = _engine().create_account(
        g.user_id, data['name'], data['type'],
        balance=data.get('balance', 0),
        credit_limit=data.get('credit_limit'),
        billing_day=data.get('billing_day'),
        due_day=data.get('due_day'),
    )
    return _ok(account, 201)


@api.route('/accounts/<int:account_id>', methods=['GET'])
@user_required
def get_account(account_id):
    return _ok(_engine().get_account(g.user_id, account_id))


@api.route('/transfers', methods=['POST'])
@user_required
def transfer():
    data = _body('source_account_id', 'target_account_id', 'amount')
    result = _engine().transfer(g.user_id, data['source_account_id'], data['target_account_id'],
                                data['amount'], on_date=data.get('date'))
    return _ok(result.__dict__)


# =============================================================================
# LEDGER ENTRIES, REPAYMENTS, REFUNDS, CREDIT
# =============================================================================

@api.route('/transactions', methods=['GET'])
@user_required
def list_transactions():
    result = _engine().transactions.list_transactions(
        g.user_id,
        account_id=request.args.get('account_id', type=int),
        category_id=request.args.get('category_id', type=int),
        transaction_type=request.args.get('type'),
        start_date=request.args.get('start_date'),
        end_date=request.args.get('end_date'),
        **_paging(),
    )
    return _ok(result)


@api.route('/transactions', methods=['POST'])
@user_required
def create_transaction():
    data = _body('account_id', 'type', 'amount')
    entry = _engine().transactions.create_transaction(
        g.user_id, data['account_id'], data['type'], data['amount'],
        on_date=data.get('date'), category_id=data.get('category_id'), note=data.get('note'),
    )
    return _ok(entry, 201)


@api.route('/transactions/<int:transaction_id>', methods=['PUT', 'DELETE'])
@user_required
def manage_transaction(transaction_id):
    service = _engine().transactions
    if request.method == 'DELETE':
        service.delete_transaction(g.user_id, transaction_id)
        return _ok()

    data = _body()
    fields = {'account_id', 'category_id', 'type', 'amount', 'date', 'note'}
    return _ok(service.update_transaction(g.user_id, transaction_id,
                                          **{k: v for k, v in data.items() if k in fields}))


@api.route('/repayments', methods=['GET'])
@user_required
def repayment_history():
    result = _engine().transactions.repayment_history(
        g.user_id,
        account_id=request.args.get('account_id', type=int),
        limit=request.args.get('limit', 20, type=int),
        offset=request.args.get('offset', 0, type=int),
    )
    return _ok(result)


@api.route('/repayments', methods=['POST'])
@user_required
def repay():
    data = _body('credit_account_id', 'source_account_id', 'amount')
    result = _engine().transactions.repay(
        g.user_id, data['credit_account_id'], data['source_account_id'], data['amount'],
        on_date=data.get('date'), note=data.get('note'), category_id=data.get('category_id'),
    )
    return _ok(result, 201)


@api.route('/repayments/<int:transaction_id>', methods=['DELETE'])
@user_required
def delete_repayment(transaction_id):
    _engine().transactions.delete_repayment(g.user_id, transaction_id)
    return _ok()


@api.route('/transactions/<int:transaction_id>/refunds', methods=['GET'])
@user_required
def refund_info(transaction_id):
    return _ok(_engine().transactions.refund_info(g.user_id, transaction_id))


@api.route('/refunds', methods=['POST'])
@user_required
def create_refund():
    data = _body('original_transaction_id', 'amount')
    result = _engine().transactions.create_refund(
        g.user_id, data['original_transaction_id'], data['amount'],
        on_date=data.get('date'), note=data.get('note'),
    )
    return _ok(result, 201)


@api.route('/refunds/<int:refund_id>', methods=['PUT', 'DELETE'])
@user_required
def manage_refund(refund_id):
    service = _engine().transactions
    if request.method == 'DELETE':
        service.delete_refund(g.user_id, refund_id)
        return _ok()

    data = _body()
    return _ok(service.update_refund(g.user_id, refund_id, amount=data.get('amount'),
                                     on_date=data.get('date'), note=data.get('note')))


@api.route('/credit/summary', methods=['GET'])
@user_required
def credit_summary():
    return _ok(_engine().credit.summary(g.user_id))


@api.route('/credit/reminders', methods=['GET'])
@user_required
def credit_reminders():
    engine = _engine()
    threshold = request.args.get('days', engine.settings.due_reminder_days, type=int)
    return _ok(engine.credit.due_reminders(g.user_id, threshold))


# =============================================================================
# INVESTMENTS
# =============================================================================

@api.route('/investments', methods=['GET'])
@user_required
def investment_summary():
    return _ok(_engine().investments.investment_summary(g.user_id))


@api.route('/investments', methods=['POST'])
@user_required
def create_investment_account():
    data = _body('name', 'net_value')
    account = _engine().investments.create_investment_account(
        g.user_id, data['name'], data['net_value'],
        shares=data.get('shares', 0), cost_price=data.get('cost_price', 0), on_date=data.get('date'),
    )
    return _ok(account, 201)


@api.route('/investments/<int:account_id>', methods=['GET'])
@user_required
def get_investment_account(account_id):
    return _ok(_engine().investments.get_investment_account(g.user_id, account_id))


@api.route('/investments/<int:account_id>/buy', methods=['POST'])
@user_required
def buy_shares(account_id):
    data = _body('shares', 'price')
    result = _engine().investments.buy_shares(
        g.user_id, account_id, data['shares'], data['price'],
        on_date=data.get('date'), source_account_id=data.get('source_account_id'),
    )
    return _ok(result)


@api.route('/investments/<int:account_id>/sell', methods=['POST'])
@user_required
def sell_shares(account_id):
    data = _body('shares', 'price')
    result = _engine().investments.sell_shares(
        g.user_id, account_id, data['shares'], data['price'],
        on_date=data.get('date'), target_account_id=data.get('target_account_id'),
    )
    return _ok(result)


@api.route('/investments/<int:account_id>/net-value', methods=['PUT'])
@user_required
def update_net_value(account_id):
    data = _body('net_value')
    return _ok(_engine().investments.update_net_value(g.user_id, account_id, data['net_value'],
                                                      on_date=data.get('date')))


@api.route('/investments/net-values', methods=['PUT'])
@user_required
def update_net_values():
    data = _body('updates')
    return _ok(_engine().investments.update_net_values(g.user_id, data['updates'], on_date=data.get('date')))


@api.route('/investments/<int:account_id>/valuations', methods=['GET'])
@user_required
def valuation_history(account_id):
    return _ok(_engine().investments.valuation_history(
        g.user_id, account_id, request.args.get('start_date'), request.args.get('end_date'),
    ))


# =============================================================================
# PLANS, EXECUTIONS, REMINDERS
# =============================================================================

@api.route('/plans', methods=['GET'])
@user_required
def list_plans():
    return _ok(_engine().plans.list_plans(g.user_id, request.args.get('status')))


@api.route('/plans', methods=['POST'])
@user_required
def create_plan():
    data = _body('name', 'source_account_id', 'target_account_id', 'amount', 'frequency')
    plan = _engine().plans.create(
        g.user_id, data['name'], data['source_account_id'], data['target_account_id'],
        data['amount'], data['frequency'],
        execution_day=data.get('execution_day'), execution_time=data.get('execution_time'),
    )
    return _ok(plan, 201)


@api.route('/plans/<int:plan_id>', methods=['GET', 'PUT', 'DELETE'])
@user_required
def manage_plan(plan_id):
    plans = _engine().plans
    if request.method == 'GET':
        return _ok(plans.get_plan(g.user_id, plan_id))
    if request.method == 'DELETE':
        plans.delete(g.user_id, plan_id)
        return _ok()

    data = _body()
    fields = {'name', 'source_account_id', 'target_account_id', 'amount',
              'frequency', 'execution_day', 'execution_time'}
    return _ok(plans.update(g.user_id, plan_id, **{k: v for k, v in data.items() if k in fields}))


@api.route('/plans/<int:plan_id>/pause', methods=['POST'])
@user_required
def pause_plan(plan_id):
    return _ok(_engine().plans.pause(g.user_id, plan_id))


@api.route('/plans/<int:plan_id>/resume', methods=['POST'])
@user_required
def resume_plan(plan_id):
    return _ok(_engine().plans.resume(g.user_id, plan_id))


@api.route('/plans/<int:plan_id>/trigger', methods=['POST'])
@user_required
def trigger_plan(plan_id):
    return _ok(_engine().execution.trigger_plan(g.user_id, plan_id))


@api.route('/plans/<int:plan_id>/records', methods=['GET'])
@user_required
def plan_records(plan_id):
    engine = _engine()
    engine.plans.get_plan(g.user_id, plan_id)
    return _ok(engine.execution.records_for_plan(g.user_id, plan_id))


@api.route('/one-time-buy', methods=['POST'])
@user_required
def one_time_buy():
    data = _body('source_account_id', 'target_account_id', 'paid_amount', 'invested_amount')
    result = _engine().execution.execute_one_time_buy(
        g.user_id, data['source_account_id'], data['target_account_id'],
        data['paid_amount'], data['invested_amount'], executed_at=data.get('date'),
    )
    return _ok(result, 201)


@api.route('/execution-records', methods=['GET'])
@user_required
def execution_records():
    result = _engine().execution.list_execution_records(
        g.user_id,
        plan_id=request.args.get('plan_id', type=int),
        status=request.args.get('status'),
        start_date=request.args.get('start_date'),
        end_date=request.args.get('end_date'),
        **_paging(),
    )
    return _ok(result)


@api.route('/reminders', methods=['GET'])
@user_required
def list_reminders():
    unread_only = request.args.get('unread', 'false').lower() == 'true'
    limit = request.args.get('limit', 50, type=int)
    return _ok(_engine().reminders.list_reminders(g.user_id, unread_only=unread_only, limit=limit))


@api.route('/reminders/unread-count', methods=['GET'])
@user_required
def unread_count():
    return _ok({'count': _engine().reminders.unread_count(g.user_id)})


@api.route('/reminders/<int:reminder_id>/read', methods=['POST'])
@user_required
def mark_read(reminder_id):
    _engine().reminders.mark_read(g.user_id, reminder_id)
    return _ok()


@api.route('/reminders/read-all', methods=['POST'])
@user_required
def mark_all_read():
    return _ok({'updated': _engine().reminders.mark_all_read(g.user_id)})


# =============================================================================
# RECONCILIATION
# =============================================================================

@api.route('/balance/preview', methods=['POST'])
@user_required
def preview_balance():
    data = _body('account_id', 'actual_balance')
    return _ok(_engine().reconciliation.preview(g.user_id, data['account_id'], data['actual_balance']))


@api.route('/balance/reconcile', methods=['POST'])
@user_required
def reconcile_balance():
    data = _body('account_id', 'actual_balance')
    adjustment = _engine().reconciliation.reconcile(
        g.user_id, data['account_id'], data['actual_balance'], note=data.get('note'),
    )
    return _ok(adjustment, 201)


@api.route('/balance/adjustments', methods=['GET'])
@user_required
def list_adjustments():
    result = _engine().reconciliation.list_adjustments(
        g.user_id,
        account_id=request.args.get('account_id', type=int),
        start_date=request.args.get('start_date'),
        end_date=request.args.get('end_date'),
        **_paging(),
    )
    return _ok(result)


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def handle_ledger_error(error):
    logger.info("request_rejected", code=error.code, message=error.message, path=request.path)
    return jsonify(error.to_dict()), error.status_code


def create_app(engine, scheduler=None):
    """
    Build the Flask application around an engine.

    Args:
        engine (LedgerEngine): Shared engine instance.
        scheduler (Scheduler): Optional; exposes /api/scheduler/status.
    """
    app = Flask(__name__)
    app.json = CustomJSONProvider(app)
    app.config['SECRET_KEY'] = engine.settings.secret_key
    app.config['LEDGER_ENGINE'] = engine

    # Enable CORS for web interface (allows requests from different origins)
    CORS(app)

    app.register_blueprint(api)
    app.register_error_handler(LedgerError, handle_ledger_error)

    @app.route('/api/scheduler/status', methods=['GET'])
    def scheduler_status():
        if scheduler is None:
            return jsonify({"success": True, "data": {"running": False}})
        return jsonify({"success": True, "data": scheduler.status()})

    return app
