from zellow.extensions import db
from zellow.models import Order, OrderStatus
from zellow.errors import ValidationError, NotFoundError
from zellow.utils import money_json, isoformat, text_value
import logging

logger = logging.getLogger(__name__)

NOT_TRACKABLE = 'Gift not found or tracking is not enabled by the sender'


def gift_tracking_view(token):
    """Reduced, read-only view of a gift order for its recipient.

    Unknown tokens, non-gift orders and gifts the sender chose not to share
    all answer with the same not-found error.
    """
    token = text_value(token)
    if not token:
        raise ValidationError(
            'No tracking token provided. Please check the link.')

    order = db.session.get(Order, token)
    gift = order.gift if order is not None else None
    if (order is None or not order.is_gift or gift is None
            or not gift.recipient_can_view_and_track):
        logger.info("Gift tracking refused for token %s", token[:8])
        raise NotFoundError(NOT_TRACKABLE)

    latest = order.delivery_history[-1] if order.delivery_history else None
    if order.status == OrderStatus.DELIVERED and order.actual_delivery_time:
        delivery = {'delivered_at': isoformat(order.actual_delivery_time)}
    else:
        delivery = {
            'estimated_delivery_time': isoformat(
                order.estimated_delivery_time)}

    items = []
    for item in order.items:
        row = {
            'name': item.name,
            'quantity': item.quantity,
            'image_url': item.image_url,
        }
        if gift.show_prices_to_recipient:
            row['price'] = money_json(item.price)
        items.append(row)

    view = {
        'status': order.status.value,
        'last_updated': isoformat(latest.timestamp if latest else None),
        'recipient_name': gift.recipient_name or 'Valued Recipient',
        'gift_message': gift.gift_message or 'Enjoy your gift!',
        'history': [
            {'status': entry.status.value,
             'timestamp': isoformat(entry.timestamp)}
            for entry in order.delivery_history
        ],
        'items': items,
    }
    view.update(delivery)
    if gift.show_prices_to_recipient:
        view['total_amount'] = money_json(order.total_amount)
    return view
