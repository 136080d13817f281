from flask import Flask, request, jsonify
from flask_cors import CORS
import traceback

from config import Config
from database import Database
from errors import ConflictError, LedgerError, NotFoundError, StorageError, ValidationError
from ledger import Ledger
from report import build_report
from utils import parse_allocations, validate_expense_data, validate_member_data

ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    StorageError: 500,
}

def create_app(db: Database) -> Flask:
    """Build the Flask application around an already opened Database"""
    app = Flask(__name__)
    app.config.from_object(Config)
    CORS(app)

    ledger = Ledger(db)

    def check_members(group_id, payers, splits):
        """Payers and splits may only reference members of the group"""
        member_ids = db.get_member_ids(group_id)
        for allocation in list(payers) + list(splits):
            if allocation.user_id not in member_ids:
                return f"User {allocation.user_id} is not a member of group {group_id}"
        return ''

    @app.route('/health', methods=['GET'])
    def health():
        """Check that the database answers"""
        try:
            db.ping()
        except StorageError:
            return jsonify({'error': 'Database is down'}), 500
        return jsonify({'status': 'ok'}), 200

    # ---------- Users & groups ----------

    @app.route('/api/users', methods=['POST'])
    def create_user():
        """Register a user by name and email"""
        data = request.get_json(silent=True) or {}
        user = ledger.create_user(data.get('name'), data.get('email'))
        return jsonify({'success': True, 'user': user.to_dict()}), 201

    @app.route('/api/users/<int:user_id>/groups', methods=['GET'])
    def get_groups(user_id):
        """Get the groups a user belongs to"""
        groups = ledger.list_groups(user_id)
        return jsonify({'success': True, 'groups': [g.to_dict() for g in groups]}), 200

    @app.route('/api/groups', methods=['POST'])
    def create_group():
        """Create a group; the creator becomes its first member"""
        data = request.get_json(silent=True) or {}
        created_by = data.get('created_by')
        if isinstance(created_by, bool) or not isinstance(created_by, int):
            return jsonify({'error': 'created_by must be a user id'}), 400

        group = ledger.create_group(data.get('name'), created_by)
        return jsonify({
            'success': True,
            'message': 'Group created successfully',
            'group': group.to_dict()
        }), 201

    @app.route('/api/groups/<int:group_id>', methods=['GET'])
    def get_group(group_id):
        group = ledger.get_group(group_id)
        return jsonify({'success': True, 'group': group.to_dict()}), 200

    @app.route('/api/groups/<int:group_id>', methods=['DELETE'])
    def delete_group(group_id):
        """Delete a group with its members and expenses"""
        ledger.delete_group(group_id)
        return jsonify({'success': True, 'message': 'Group deleted successfully'}), 200

    @app.route('/api/groups/<int:group_id>/members', methods=['GET'])
    def get_members(group_id):
        members = ledger.list_members(group_id)
        return jsonify({'success': True, 'members': [m.to_dict() for m in members]}), 200

    @app.route('/api/groups/<int:group_id>/members', methods=['POST'])
    def add_member(group_id):
        """Add a member by email, creating a ghost user when unknown"""
        data = request.get_json(silent=True)

        is_valid, error_message = validate_member_data(data)
        if not is_valid:
            return jsonify({'error': error_message}), 400

        user, created = ledger.add_member(group_id, data.get('email'), data.get('name'))
        return jsonify({
            'success': True,
            'message': 'Member added successfully',
            'user': user.to_dict(),
            'created_ghost': created
        }), 200

    # ---------- Expenses ----------

    @app.route('/api/groups/<int:group_id>/expenses', methods=['POST'])
    def create_expense(group_id):
        """Create a new expense"""
        data = request.get_json(silent=True)

        is_valid, error_message = validate_expense_data(data)
        if not is_valid:
            return jsonify({'error': error_message}), 400

        ledger.get_group(group_id)
        payers, splits = parse_allocations(data)
        error_message = check_members(group_id, payers, splits)
        if error_message:
            return jsonify({'error': error_message}), 400

        expense = ledger.create_expense(
            group_id,
            data['title'],
            data.get('description'),
            data['amount'],
            data.get('category'),
            payers,
            splits
        )
        return jsonify({
            'success': True,
            'message': 'Expense added successfully',
            'expense_id': expense.id
        }), 201

    @app.route('/api/groups/<int:group_id>/expenses', methods=['GET'])
    def get_expenses(group_id):
        """Get all expenses of a group or filter by month"""
        year = request.args.get('year', type=int)
        month = request.args.get('month', type=int)

        expenses = ledger.list_expenses(group_id, year, month)
        return jsonify({'success': True, 'expenses': [e.to_dict() for e in expenses]}), 200

    @app.route('/api/expenses/<int:expense_id>', methods=['GET'])
    def get_expense(expense_id):
        """Get a specific expense with its payers and splits"""
        expense = ledger.get_expense(expense_id)
        return jsonify({'success': True, 'expense': expense.to_dict()}), 200

    @app.route('/api/expenses/<int:expense_id>', methods=['PUT'])
    def update_expense(expense_id):
        """Replace an expense and all of its allocations"""
        data = request.get_json(silent=True)

        is_valid, error_message = validate_expense_data(data)
        if not is_valid:
            return jsonify({'error': error_message}), 400

        current = ledger.get_expense(expense_id)
        payers, splits = parse_allocations(data)
        error_message = check_members(current.group_id, payers, splits)
        if error_message:
            return jsonify({'error': error_message}), 400

        ledger.update_expense(
            expense_id,
            data['title'],
            data.get('description'),
            data['amount'],
            data.get('category'),
            payers,
            splits
        )
        return jsonify({'success': True, 'message': 'Expense updated'}), 200

    @app.route('/api/expenses/<int:expense_id>', methods=['DELETE'])
    def delete_expense(expense_id):
        """Delete an expense"""
        ledger.delete_expense(expense_id)
        return jsonify({'success': True, 'message': 'Expense deleted successfully'}), 200

    # ---------- Balances ----------

    @app.route('/api/groups/<int:group_id>/balance', methods=['GET'])
    def get_balance(group_id):
        """Net balances and the suggested settlements"""
        balances, transactions = ledger.settle(group_id)
        return jsonify({
            'balances': {uid: float(amount) for uid, amount in balances.items()},
            'transactions': [t.to_dict() for t in transactions]
        }), 200

    @app.route('/api/groups/<int:group_id>/report', methods=['GET'])
    def get_report(group_id):
        """Everything needed to render a settlement report"""
        report = build_report(ledger, group_id)
        return jsonify({'success': True, 'report': report.to_dict()}), 200

    @app.errorhandler(LedgerError)
    def ledger_error(error):
        return jsonify({'error': error.message}), ERROR_STATUS.get(type(error), 500)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Endpoint not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        original = getattr(error, 'original_exception', None)
        if original is not None:
            print(f"Error handling {request.method} {request.path}: {str(original)}")
            traceback.print_exception(type(original), original, original.__traceback__)
        return jsonify({'error': 'Internal server error'}), 500

    return app

if __name__ == '__main__':
    db = Database()
    app = create_app(db)

    print("Starting Group Expense Ledger...")
    print(f"Database: {Config.DATABASE_PATH}")
    print(f"Debug: {Config.DEBUG}")
    try:
        app.run(host=Config.HOST, port=Config.PORT, debug=Config.DEBUG)
    finally:
        db.close()
