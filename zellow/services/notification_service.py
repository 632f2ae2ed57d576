"""Outbound email and push notifications.

Every send returns a ``NotificationResult``. Transport failures are logged
and reported in the result; they never undo the order change that
triggered the notification.
"""
from zellow.extensions import db, mail
from zellow.models import OrderStatus, PaymentStatus, PushSubscription
from zellow.services.receipt_service import (
    build_receipt_pdf,
    receipt_filename,
    format_price,
)
from flask import current_app
from flask_mail import Message
from pywebpush import webpush, WebPushException
from dataclasses import dataclass, asdict
from html import escape
import logging
import smtplib
import json

logger = logging.getLogger(__name__)

# Push endpoints answering with these codes are gone for good
STALE_SUBSCRIPTION_CODES = (404, 410)

EMAIL_WRAPPER = (
    '<div style="font-family: Arial, sans-serif; line-height: 1.6; '
    'color: #333;"><div style="max-width: 600px; margin: 20px auto; '
    'padding: 20px; border: 1px solid #ddd; border-radius: 8px;">'
    '<h2 style="color: #4CAF50; text-align: center;">{heading}</h2>'
    '<p>Hello {name},</p>{body}'
    '<p style="margin-top: 25px;">Thank you for choosing Zellow '
    'Enterprises,<br/>The Zellow Team</p></div></div>'
)


@dataclass
class NotificationResult:
    success: bool
    message: str
    tracking_link: str = None

    def to_dict(self):
        data = asdict(self)
        if data['tracking_link'] is None:
            del data['tracking_link']
        return data


def short_id(order_id):
    return str(order_id)[:8]


def tracking_link(order_id):
    base = current_app.config.get('SITE_URL', '').rstrip('/')
    return f'{base}/track/gift?token={order_id}'


def _render(heading, name, body):
    return EMAIL_WRAPPER.format(
        heading=escape(heading), name=escape(name or 'there'), body=body)


def _send_mail(recipients, subject, html, attachment=None):
    """Send one message per recipient ``(name, email)`` pair."""
    with mail.connect() as conn:
        for name, email in recipients:
            msg = Message(
                subject=subject,
                recipients=[email],
                html=html(name, email) if callable(html) else html,
            )
            if attachment is not None:
                filename, data = attachment
                msg.attach(filename, 'application/pdf', data)
            conn.send(msg)


def send_gift_notification(order_id, recipient_name, contact_method,
                           contact_value, gift_message, sender_name,
                           can_view_and_track, show_prices,
                           notify_recipient=True, order=None):
    if not notify_recipient:
        logger.info("Gift notification for order %s not requested", order_id)
        return NotificationResult(
            False, 'Recipient notification not requested. Nothing sent.')

    if not contact_method or not contact_value:
        logger.info(
            "Gift order %s has no recipient contact, skipping", order_id)
        return NotificationResult(
            False,
            'Recipient contact method or value not provided. '
            'Notification not sent.')

    link = tracking_link(order_id) if can_view_and_track else None

    if contact_method == 'phone':
        text = f'Hello {recipient_name}, {sender_name} has sent you a gift!'
        if gift_message:
            text += f' Their message: "{gift_message}"'
        text += (
            f' Track it here: {link}' if link
            else ' Your gift is being processed.')
        # SMS delivery is simulated
        logger.info("SIMULATED SMS to %s: %s", contact_value, text)
        return NotificationResult(
            True,
            f'Simulated phone notification sent to {contact_value}.',
            tracking_link=link)

    if contact_method != 'email':
        return NotificationResult(
            False, f'Unsupported contact method "{contact_method}".')

    body = f'<p>{escape(sender_name)} has sent you a gift!</p>'
    if gift_message:
        body += f'<p>Their message: "{escape(gift_message)}"</p>'
    if show_prices and order is not None:
        rows = ''.join(
            f'<li>{escape(item.name)} x {item.quantity}: '
            f'{format_price(item.line_total)}</li>'
            for item in order.items
        )
        body += f'<ul>{rows}</ul>'
    if link:
        body += (
            f'<p>You can view details and track your gift here: '
            f'<a href="{link}">{link}</a></p>')
    else:
        body += '<p>Your gift is being processed.</p>'

    try:
        _send_mail(
            [(recipient_name, contact_value)],
            'A special gift is on its way!',
            _render('You have a gift!', recipient_name, body))
    except (smtplib.SMTPException, OSError) as e:
        logger.error(
            f"Failed to send gift notification for order {order_id}: {e}",
            exc_info=True)
        return NotificationResult(
            False, f'Failed to send gift notification: {e}.')

    logger.info("Gift notification for order %s sent to %s",
                order_id, contact_value)
    return NotificationResult(
        True, f'Gift notification sent to {contact_value}.',
        tracking_link=link)


def send_gift_notification_for_order(order, sender_name=None):
    gift = order.gift
    if not order.is_gift or gift is None:
        return NotificationResult(False, 'Order is not a gift.')
    return send_gift_notification(
        order_id=order.id,
        recipient_name=gift.recipient_name,
        contact_method=gift.recipient_contact_method,
        contact_value=gift.recipient_contact_value,
        gift_message=gift.gift_message,
        sender_name=sender_name or order.customer_name,
        can_view_and_track=gift.recipient_can_view_and_track,
        show_prices=gift.show_prices_to_recipient,
        notify_recipient=gift.notify_recipient,
        order=order,
    )


def _gift_email_recipient(order):
    gift = order.gift
    if (order.is_gift and gift is not None
            and gift.recipient_contact_method == 'email'
            and gift.recipient_contact_value):
        return gift.recipient_name, gift.recipient_contact_value
    return None


def _recipients(order, include_gift):
    recipients = []
    if order.customer_email:
        recipients.append((order.customer_name, order.customer_email))
    giftee = _gift_email_recipient(order) if include_gift else None
    if giftee and giftee[1] not in [email for _, email in recipients]:
        recipients.append(giftee)
    return recipients


def send_delivery_confirmation(order):
    recipients = _recipients(order, include_gift=True)
    if not recipients:
        return NotificationResult(
            False, 'No valid email recipients found for this order.')

    def body_for(name, email):
        is_gifter = email == order.customer_email
        if is_gifter:
            body = (
                '<p>Your order from Zellow Enterprises has been successfully '
                'delivered!</p><p>We hope you (and your recipient) love it! '
                "We've attached a receipt for your records.</p>")
        else:
            body = (
                '<p>A gift sent to you from Zellow Enterprises has been '
                'successfully delivered!</p><p>We hope you enjoy your '
                'special gift! A receipt is attached for your reference.</p>')
        return _render('Delivery Completed!', name, body)

    subject = f'Your Zellow Order #{short_id(order.id)} Has Been Delivered'
    try:
        pdf = build_receipt_pdf(order)
        _send_mail(recipients, subject, body_for,
                   attachment=(receipt_filename(order), pdf))
    except (smtplib.SMTPException, OSError) as e:
        logger.error(
            f"Failed to send delivery confirmation for order {order.id}: "
            f"{e}", exc_info=True)
        return NotificationResult(
            False, f'Failed to send email notifications: {e}.')

    sent_to = ', '.join(email for _, email in recipients)
    logger.info("Delivery confirmation for order %s sent to %s",
                order.id, sent_to)
    return NotificationResult(
        True, f'Delivery confirmation sent to {sent_to}.')


def receipt_subject_and_body(order, subject=None):
    if subject:
        return subject, (
            '<p>Please find your order receipt attached. If you have any '
            'questions, please contact our support team.</p>')

    ref = short_id(order.id)
    if order.payment_status == PaymentStatus.PAID:
        if order.status == OrderStatus.DELIVERED:
            return (
                f'Your Zellow Order #{ref} Has Been Delivered',
                '<p>Your order from Zellow Enterprises has been successfully '
                "delivered! We've attached a receipt for your records.</p>")
        return (
            f'Receipt for Your Zellow Order #{ref}',
            '<p>Thank you for your order with Zellow Enterprises. Your '
            "payment has been confirmed. We've attached a receipt for your "
            'records.</p>')
    if order.payment_status == PaymentStatus.REFUNDED:
        return (
            f'Refund Confirmation for Zellow Order #{ref}',
            '<p>This is a confirmation that your order has been cancelled '
            'and your payment has been refunded. A receipt is attached for '
            'your records.</p>')
    return (
        f'Update on Your Zellow Order #{ref}',
        '<p>Please find an updated receipt for your order attached. If you '
        'have any questions, please contact our support team.</p>')


def send_receipt(order, subject=None):
    # The gift recipient only hears about it once the gift has arrived
    recipients = _recipients(
        order, include_gift=order.status == OrderStatus.DELIVERED)
    if not recipients:
        return NotificationResult(
            False, 'No valid email recipients found for this order.')

    final_subject, body = receipt_subject_and_body(order, subject)

    def body_for(name, email):
        return _render('Order Update from Zellow!', name, body)

    try:
        pdf = build_receipt_pdf(order)
        _send_mail(recipients, final_subject, body_for,
                   attachment=(receipt_filename(order), pdf))
    except (smtplib.SMTPException, OSError) as e:
        logger.error(
            f"Failed to send receipt for order {order.id}: {e}",
            exc_info=True)
        return NotificationResult(
            False, f'Failed to send email notifications: {e}.')

    sent_to = ', '.join(email for _, email in recipients)
    logger.info("Receipt for order %s sent to %s", order.id, sent_to)
    return NotificationResult(True, f'Receipt sent to {sent_to}.')


def push_enabled():
    config = current_app.config
    return bool(config.get('VAPID_PUBLIC_KEY')
                and config.get('VAPID_PRIVATE_KEY'))


def send_push_notification(user_id, title, body, url=None):
    if not push_enabled():
        logger.info("VAPID keys not configured, push to %s skipped", user_id)
        return NotificationResult(
            False, 'Push notifications are not configured.')

    subscription = db.session.get(PushSubscription, user_id)
    if subscription is None:
        logger.info("No push subscription found for user %s", user_id)
        return NotificationResult(
            False, f'No push subscription for user {user_id}.')

    payload = {
        'title': title,
        'options': {
            'body': body,
            'icon': '/icons/Zellow-icon-192.png',
            'badge': '/icons/Zellow-icon-72.png',
            'data': {'url': url or '/orders'},
        },
    }
    config = current_app.config
    try:
        webpush(
            subscription_info=subscription.subscription_info(),
            data=json.dumps(payload),
            vapid_private_key=config['VAPID_PRIVATE_KEY'],
            vapid_claims={'sub': f"mailto:{config['VAPID_CLAIM_EMAIL']}"},
        )
    except WebPushException as e:
        status = getattr(e.response, 'status_code', None)
        logger.error(
            f"Error sending push notification to user {user_id}: {e}")
        if status in STALE_SUBSCRIPTION_CODES:
            logger.info(
                "Subscription for user %s is invalid. Deleting.", user_id)
            db.session.delete(subscription)
            db.session.commit()
        return NotificationResult(False, f'Push notification failed: {e}')

    logger.info("Push notification sent to user %s", user_id)
    return NotificationResult(True, f'Push notification sent to {user_id}.')


def status_label(status):
    return status.value.replace('_', ' ')


def dispatch_for_transition(order, command):
    """Fire the notifications that follow a lifecycle command."""
    command_name = getattr(command, 'name', command)
    results = []

    def run(label, func, *args, **kwargs):
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            logger.error(
                f"{label} for order {order.id} failed: {e}", exc_info=True)
            result = NotificationResult(False, f'{label} failed: {e}')
        results.append((label, result))

    if order.customer_id is not None:
        run(
            'push',
            send_push_notification,
            order.customer_id,
            'Order Update',
            f'Your order #{short_id(order.id)} is now: '
            f'{status_label(order.status)}',
            f'/orders/{order.id}',
        )
    if order.status == OrderStatus.DELIVERED:
        run('delivery_confirmation', send_delivery_confirmation, order)
    if command_name == 'refund':
        run('receipt', send_receipt, order)

    return results
