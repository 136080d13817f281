from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, List, Tuple
from models import PayerAllocation, SplitAllocation
from config import Config

CENT = Decimal('0.01')

# Comparisons between amounts are made within one cent throughout
TOLERANCE = Decimal('0.01')

def to_decimal(value) -> Decimal:
    """Convert a number or numeric string to Decimal without binary float drift"""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"Invalid amount: {value!r}")
    else:
        # str() of a float is its shortest round-tripping repr, so 0.1 stays 0.1
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Invalid amount: {value!r}")

    if not result.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return result

def round_money(value) -> Decimal:
    """Round to 2 decimal places, halves away from zero"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)

def to_cents(value) -> int:
    """Convert an amount to integer cents for storage"""
    return int(round_money(value).scaleb(2))

def from_cents(cents: int) -> Decimal:
    """Convert stored integer cents back to a 2-decimal amount"""
    return Decimal(int(cents)).scaleb(-2)

def amounts_match(total, parts: Iterable) -> bool:
    """Check that parts add up to total within the tolerance"""
    summed = sum((to_decimal(p) for p in parts), Decimal('0'))
    return abs(summed - to_decimal(total)) <= TOLERANCE

def parse_allocations(data: dict) -> Tuple[List[PayerAllocation], List[SplitAllocation]]:
    """
    Build payer and split allocations from a validated expense payload.
    Payers carry 'paid_amount', splits carry 'amount'.
    """
    payers = [
        PayerAllocation(user_id=int(p['user_id']), paid_amount=to_decimal(p['paid_amount']))
        for p in data.get('payers', [])
    ]
    splits = [
        SplitAllocation(user_id=int(s['user_id']), amount_owed=to_decimal(s['amount']))
        for s in data.get('splits', [])
    ]
    return payers, splits

def _validate_entries(entries, amount_key: str, label: str) -> Tuple[bool, str]:
    if not isinstance(entries, list):
        return False, f"{label} must be a list"

    for entry in entries:
        if not isinstance(entry, dict):
            return False, f"Each entry in {label} must be an object"

        user_id = entry.get('user_id')
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            return False, f"Each entry in {label} needs an integer user_id"

        if amount_key not in entry:
            return False, f"Missing {amount_key} for user {user_id} in {label}"
        try:
            value = to_decimal(entry[amount_key])
        except ValueError:
            return False, f"Invalid {amount_key} for user {user_id} in {label}"
        if value < 0:
            return False, f"{amount_key} for user {user_id} in {label} cannot be negative"
        if value > Config.MAX_AMOUNT:
            return False, f"{amount_key} for user {user_id} in {label} cannot exceed {Config.MAX_AMOUNT}"

    return True, ""

def validate_expense_data(data) -> Tuple[bool, str]:
    """
    Validate the shape of an expense payload
    Returns (is_valid, error_message)

    The split total is checked by the ledger on create, not here.
    """
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"

    title = data.get('title')
    if not isinstance(title, str) or not title.strip():
        return False, "Title is required"
    if len(title.strip()) > Config.MAX_TITLE_LENGTH:
        return False, f"Title cannot exceed {Config.MAX_TITLE_LENGTH} characters"

    description = data.get('description') or ''
    if not isinstance(description, str):
        return False, "Description must be text"
    if len(description) > Config.MAX_DESCRIPTION_LENGTH:
        return False, f"Description cannot exceed {Config.MAX_DESCRIPTION_LENGTH} characters"

    category = data.get('category') or ''
    if not isinstance(category, str):
        return False, "Category must be text"
    if len(category) > Config.MAX_CATEGORY_LENGTH:
        return False, f"Category cannot exceed {Config.MAX_CATEGORY_LENGTH} characters"

    if 'amount' not in data:
        return False, "Amount is required"
    try:
        amount = to_decimal(data['amount'])
    except ValueError:
        return False, "Invalid amount"
    if amount < CENT:
        return False, f"Amount must be at least {CENT}"
    if amount > Config.MAX_AMOUNT:
        return False, f"Amount cannot exceed {Config.MAX_AMOUNT}"

    is_valid, error_message = _validate_entries(data.get('payers', []), 'paid_amount', 'payers')
    if not is_valid:
        return False, error_message

    return _validate_entries(data.get('splits', []), 'amount', 'splits')

def validate_member_data(data) -> Tuple[bool, str]:
    """Validate an add-member payload: an email, a name, or both"""
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"

    email = data.get('email') or ''
    name = data.get('name') or ''
    if not isinstance(email, str) or not isinstance(name, str):
        return False, "Name and email must be text"
    if not email.strip() and not name.strip():
        return False, "An email or a name is required"
    if len(name.strip()) > Config.MAX_NAME_LENGTH:
        return False, f"Name cannot exceed {Config.MAX_NAME_LENGTH} characters"

    return True, ""
