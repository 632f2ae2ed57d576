from flask import request
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
import logging

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')


def json_body():
    """The request's JSON object; anything else reads as empty."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        if data is not None:
            logger.info("Ignoring non-object JSON body on %s", request.path)
        return {}
    return data


def text_value(value) -> str:
    return str(value or '').strip()


def money(value) -> Decimal:
    if value is None:
        return Decimal('0.00')
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if not value.is_finite():
        raise InvalidOperation(f'Not a finite amount: {value}')
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def money_json(value):
    return float(money(value)) if value is not None else None


def isoformat(value):
    return value.isoformat() if value else None


def parse_datetime(value):
    """Parse an ISO 8601 string; ``None`` or '' returns ``None``."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        logger.info("Unparseable datetime value %r", value)
        return None
    # Stored as naive UTC
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def paginate_query(query, page=1, per_page=20):
    pagination = query.paginate(
        page=page,
        per_page=per_page,
        error_out=False
    )
    return {
        'items': pagination.items,
        'page': pagination.page,
        'pages': pagination.pages,
        'per_page': pagination.per_page,
        'total': pagination.total,
        'has_next': pagination.has_next,
        'has_prev': pagination.has_prev
    }
