from zellow.extensions import db
from zellow.errors import HistoryImmutableError
from zellow.utils import text_value
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from dataclasses import dataclass, asdict
from datetime import datetime
from sqlalchemy import CheckConstraint, UniqueConstraint, event
import enum
import json
import uuid


class UserRole(enum.Enum):
    ADMIN = 'ADMIN'
    CUSTOMER = 'CUSTOMER'
    ENGRAVING = 'ENGRAVING'
    PRINTING = 'PRINTING'
    ASSEMBLY = 'ASSEMBLY'
    QUALITY_CHECK = 'QUALITY_CHECK'
    PACKAGING = 'PACKAGING'
    RIDER = 'RIDER'
    SUPPLIER = 'SUPPLIER'
    FINANCE_MANAGER = 'FINANCE_MANAGER'
    SERVICE_MANAGER = 'SERVICE_MANAGER'
    INVENTORY_MANAGER = 'INVENTORY_MANAGER'
    DISPATCH_MANAGER = 'DISPATCH_MANAGER'


class UserStatus(enum.Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class OrderStatus(enum.Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    IN_PRODUCTION = 'in_production'
    AWAITING_QUALITY_CHECK = 'awaiting_quality_check'
    AWAITING_ASSIGNMENT = 'awaiting_assignment'
    ASSIGNED = 'assigned'
    OUT_FOR_DELIVERY = 'out_for_delivery'
    DELIVERY_ATTEMPTED = 'delivery_attempted'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


class PaymentStatus(enum.Enum):
    PENDING = 'pending'
    PAID = 'paid'
    FAILED = 'failed'
    REFUNDED = 'refunded'


class PaymentMethod(enum.Enum):
    MPESA = 'MPESA'
    CARD = 'CARD'
    PAY_ON_DELIVERY = 'PAY_ON_DELIVERY'


class ApprovalRequestType(enum.Enum):
    USER_REGISTRATION = 'USER_REGISTRATION'
    OTHER = 'OTHER'


class ApprovalStatus(enum.Enum):
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'


class BulkOrderStatus(enum.Enum):
    PENDING_REVIEW = 'pending_review'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    FULFILLED = 'fulfilled'


class StockRequestStatus(enum.Enum):
    PENDING_FINANCE_APPROVAL = 'pending_finance_approval'
    PENDING_SUPPLIER_FULFILLMENT = 'pending_supplier_fulfillment'
    AWAITING_RECEIPT = 'awaiting_receipt'
    RECEIVED = 'received'
    REJECTED_FINANCE = 'rejected_finance'
    REJECTED_SUPPLIER = 'rejected_supplier'
    CANCELLED = 'cancelled'


class InvoiceStatus(enum.Enum):
    PENDING_APPROVAL = 'pending_approval'
    APPROVED_FOR_PAYMENT = 'approved_for_payment'
    REJECTED = 'rejected'
    PAID = 'paid'


class FeedbackStatus(enum.Enum):
    OPEN = 'open'
    REPLIED = 'replied'
    CLOSED = 'closed'


def _new_order_id():
    return uuid.uuid4().hex


class User(UserMixin, db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(100), nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(
        db.Enum(UserRole),
        nullable=False,
        default=UserRole.CUSTOMER)
    # Staff accounts wait for an admin decision before they can log in.
    status = db.Column(
        db.Enum(UserStatus),
        nullable=False,
        default=UserStatus.APPROVED)
    rejection_reason = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    last_login_at = db.Column(db.DateTime, nullable=True)

    cart = db.relationship(
        'Cart',
        backref='user',
        uselist=False,
        cascade='all, delete-orphan')
    orders = db.relationship(
        'Order',
        foreign_keys='Order.customer_id',
        backref='customer',
        lazy='dynamic')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def name(self):
        return self.display_name or self.email

    def __repr__(self):
        return f'<User {self.email}>'


class Product(db.Model):
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    # Selling price; supplier_price is the cost price.
    price = db.Column(db.Numeric(10, 2), nullable=False)
    supplier_price = db.Column(db.Numeric(10, 2), nullable=True)
    stock = db.Column(db.Integer, nullable=False, default=0)
    published = db.Column(db.Boolean, default=True, nullable=False)
    image_url = db.Column(db.String(255), nullable=True)
    # [{id, label, type, required, choices: [{value, label,
    # price_adjustment}], price_adjustment_if_checked}]
    customization_options = db.Column(db.JSON, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    __table_args__ = (
        CheckConstraint('stock >= 0', name='check_product_stock'),
    )

    def __repr__(self):
        return f'<Product {self.name}>'


class ShippingMethod(db.Model):
    __tablename__ = 'shipping_methods'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=True)
    duration = db.Column(db.String(50), nullable=True)  # e.g. "1-2 days"
    base_price = db.Column(db.Numeric(10, 2), nullable=False)
    active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    def __repr__(self):
        return f'<ShippingMethod {self.name}>'


class ShippingRegion(db.Model):
    """A delivery area: one county and the towns it covers."""
    __tablename__ = 'shipping_regions'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    county = db.Column(db.String(100), nullable=False)
    towns = db.Column(db.JSON, nullable=False, default=list)
    active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    rates = db.relationship(
        'ShippingRate',
        back_populates='region',
        cascade='all, delete-orphan')

    def covers_town(self, town):
        if not self.towns:
            return True
        wanted = text_value(town).lower()
        return any(t.strip().lower() == wanted for t in self.towns)

    def __repr__(self):
        return f'<ShippingRegion {self.name}>'


class ShippingRate(db.Model):
    """Region-specific price for a shipping method."""
    __tablename__ = 'shipping_rates'

    id = db.Column(db.Integer, primary_key=True)
    region_id = db.Column(
        db.Integer,
        db.ForeignKey('shipping_regions.id', ondelete='CASCADE'),
        nullable=False,
        index=True)
    method_id = db.Column(
        db.Integer,
        db.ForeignKey('shipping_methods.id', ondelete='CASCADE'),
        nullable=False)
    custom_price = db.Column(db.Numeric(10, 2), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    region = db.relationship('ShippingRegion', back_populates='rates')
    method = db.relationship('ShippingMethod')

    __table_args__ = (
        UniqueConstraint('region_id', 'method_id',
                         name='uq_shipping_rate_region_method'),
        CheckConstraint('custom_price >= 0',
                        name='ck_shipping_rate_price'),
    )

    def __repr__(self):
        return (f'<ShippingRate region={self.region_id} '
                f'method={self.method_id}>')


class Cart(db.Model):
    __tablename__ = 'carts'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        unique=True,
        nullable=False)

    # Checkout selections, kept until the order is placed.
    shipping_address = db.Column(db.JSON, nullable=True)
    payment_method = db.Column(db.Enum(PaymentMethod), nullable=True)
    shipping_method_id = db.Column(
        db.Integer,
        db.ForeignKey('shipping_methods.id'),
        nullable=True)
    is_gift = db.Column(db.Boolean, default=False, nullable=False)
    gift_details = db.Column(db.JSON, nullable=True)

    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    lines = db.relationship(
        'CartLine',
        backref='cart',
        order_by='CartLine.created_at',
        cascade='all, delete-orphan')
    shipping_method = db.relationship('ShippingMethod')

    def find_line(self, line_key):
        for line in self.lines:
            if line.line_key == line_key:
                return line
        return None

    def __repr__(self):
        return f'<Cart {self.id} for user {self.user_id}>'


class CartLine(db.Model):
    __tablename__ = 'cart_lines'

    cart_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'carts.id',
            ondelete='CASCADE'),
        primary_key=True)
    # product id + normalized customization set
    line_key = db.Column(db.String(500), primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'products.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    name = db.Column(db.String(200), nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    # unit price including customization adjustments
    effective_price = db.Column(db.Numeric(10, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    # stock snapshot at the last mutation
    stock = db.Column(db.Integer, nullable=False)
    customizations = db.Column(db.JSON, nullable=True)
    image_url = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    product = db.relationship('Product')

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_quantity_positive'),
    )

    def __repr__(self):
        return (
            f"<CartLine cart={self.cart_id} key={self.line_key} "
            f"qty={self.quantity}>"
        )


@dataclass
class GiftDetails:
    recipient_name: str
    recipient_contact_method: str = ''  # 'email' | 'phone' | ''
    recipient_contact_value: str = ''
    gift_message: str = ''
    notify_recipient: bool = False
    show_prices_to_recipient: bool = False
    recipient_can_view_and_track: bool = True

    def __post_init__(self):
        # Visibility flags only mean something when the recipient is told.
        if not self.notify_recipient:
            self.show_prices_to_recipient = False
            self.recipient_can_view_and_track = True

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            recipient_name=text_value(data.get('recipient_name')),
            recipient_contact_method=text_value(
                data.get('recipient_contact_method')),
            recipient_contact_value=text_value(
                data.get('recipient_contact_value')),
            gift_message=text_value(data.get('gift_message')),
            notify_recipient=bool(data.get('notify_recipient')),
            show_prices_to_recipient=bool(
                data.get('show_prices_to_recipient')),
            recipient_can_view_and_track=bool(
                data.get('recipient_can_view_and_track', True)),
        )

    def to_dict(self):
        return asdict(self)


class Order(db.Model):
    __tablename__ = 'orders'

    # Random hex id; doubles as the public gift tracking token.
    id = db.Column(db.String(32), primary_key=True, default=_new_order_id)
    customer_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True,
        index=True)
    customer_name = db.Column(db.String(100), nullable=False)
    customer_email = db.Column(db.String(120), nullable=True)
    customer_phone = db.Column(db.String(20), nullable=True)

    sub_total = db.Column(db.Numeric(10, 2), nullable=False)
    shipping_cost = db.Column(db.Numeric(10, 2), nullable=False)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)

    status = db.Column(
        db.Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True)
    payment_status = db.Column(
        db.Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False)
    payment_method = db.Column(db.Enum(PaymentMethod), nullable=False)

    shipping_address = db.Column(db.JSON, nullable=False)
    shipping_method_id = db.Column(db.Integer, nullable=True)
    shipping_method_name = db.Column(db.String(100), nullable=True)

    rider_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True,
        index=True)
    estimated_delivery_time = db.Column(db.DateTime, nullable=True)
    actual_delivery_time = db.Column(db.DateTime, nullable=True)

    is_gift = db.Column(db.Boolean, default=False, nullable=False)
    gift_details = db.Column(db.JSON, nullable=True)

    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    items = db.relationship(
        'OrderItem',
        backref='order',
        order_by='OrderItem.id',
        cascade='all, delete-orphan')
    delivery_history = db.relationship(
        'DeliveryHistoryEntry',
        backref='order',
        order_by='DeliveryHistoryEntry.position',
        cascade='save-update, merge')
    rider = db.relationship('User', foreign_keys=[rider_id])

    __table_args__ = (
        CheckConstraint(
            'ABS(total_amount - (sub_total + shipping_cost)) < 0.005',
            name='check_order_total'),
    )

    @property
    def gift(self):
        return GiftDetails.from_dict(self.gift_details)

    @property
    def has_customized_items(self):
        return any(item.customizations for item in self.items)

    def record_status(self, status, actor_id=None, notes=None, at=None):
        """Append a history entry and move the order to ``status``.

        This is the only place the status column is written, so the
        current status always matches the newest history entry.
        """
        at = at or datetime.utcnow()
        entry = DeliveryHistoryEntry(
            position=len(self.delivery_history),
            status=status,
            timestamp=at,
            notes=notes,
            actor_id=actor_id,
        )
        self.delivery_history.append(entry)
        self.status = status
        self.updated_at = at
        return entry

    def __repr__(self):
        return f'<Order {self.id} status={self.status}>'


class OrderItem(db.Model):
    __tablename__ = 'order_items'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.String(32),
        db.ForeignKey(
            'orders.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'products.id',
            ondelete='SET NULL'),
        nullable=True,
        index=True)
    # Snapshot taken at checkout; later catalogue edits do not apply.
    name = db.Column(db.String(200), nullable=False)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    customizations = db.Column(db.JSON, nullable=True)
    image_url = db.Column(db.String(255), nullable=True)

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_order_quantity_positive'),
    )

    @property
    def line_total(self):
        return self.price * self.quantity

    def __repr__(self):
        return (
            f"<OrderItem {self.id} order={self.order_id} "
            f"product={self.product_id}>"
        )


class DeliveryHistoryEntry(db.Model):
    __tablename__ = 'delivery_history'

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.String(32),
        db.ForeignKey('orders.id'),
        nullable=False,
        index=True)
    position = db.Column(db.Integer, nullable=False)
    status = db.Column(db.Enum(OrderStatus), nullable=False)
    timestamp = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    notes = db.Column(db.Text, nullable=True)
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)

    actor = db.relationship('User', foreign_keys=[actor_id])

    __table_args__ = (
        UniqueConstraint(
            'order_id',
            'position',
            name='uq_delivery_history_position'),
    )

    def __repr__(self):
        return (
            f"<DeliveryHistoryEntry order={self.order_id} "
            f"#{self.position} {self.status}>"
        )


@event.listens_for(DeliveryHistoryEntry, 'before_update')
def _reject_history_update(mapper, connection, target):
    raise HistoryImmutableError(
        f'History entry #{target.position} of order {target.order_id} '
        'cannot be modified')


@event.listens_for(DeliveryHistoryEntry, 'before_delete')
def _reject_history_delete(mapper, connection, target):
    raise HistoryImmutableError(
        f'History entry #{target.position} of order {target.order_id} '
        'cannot be deleted')


class ApprovalRequest(db.Model):
    __tablename__ = 'approval_requests'

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.Enum(ApprovalRequestType), nullable=False)
    status = db.Column(
        db.Enum(ApprovalStatus),
        default=ApprovalStatus.PENDING,
        nullable=False)
    requested_by = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False)
    requested_by_name = db.Column(db.String(100), nullable=True)
    requested_by_email = db.Column(db.String(120), nullable=True)
    # e.g. {"user_id": 3, "role": "RIDER"}
    details = db.Column(db.JSON, nullable=True)
    resolved_by = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    requester = db.relationship('User', foreign_keys=[requested_by])

    def __repr__(self):
        return f'<ApprovalRequest {self.id} status={self.status}>'


class BulkOrderRequest(db.Model):
    __tablename__ = 'bulk_order_requests'

    id = db.Column(db.Integer, primary_key=True)
    requester_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    requester_name = db.Column(db.String(100), nullable=False)
    requester_email = db.Column(db.String(120), nullable=False)
    requester_phone = db.Column(db.String(20), nullable=False)
    company_name = db.Column(db.String(150), nullable=True)
    desired_delivery_date = db.Column(db.Date, nullable=False)
    # [{product_id, name, quantity, notes, customizations}]
    items = db.Column(db.JSON, nullable=False)
    status = db.Column(
        db.Enum(BulkOrderStatus),
        default=BulkOrderStatus.PENDING_REVIEW,
        nullable=False)
    admin_notes = db.Column(db.Text, nullable=True)
    converted_order_id = db.Column(
        db.String(32),
        db.ForeignKey('orders.id'),
        nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    def __repr__(self):
        return f'<BulkOrderRequest {self.id} status={self.status}>'


class StockRequest(db.Model):
    __tablename__ = 'stock_requests'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer,
        db.ForeignKey('products.id'),
        nullable=False,
        index=True)
    product_name = db.Column(db.String(200), nullable=False)
    requested_quantity = db.Column(db.Integer, nullable=False)
    requester_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=False)
    requester_name = db.Column(db.String(100), nullable=False)
    status = db.Column(
        db.Enum(StockRequestStatus),
        default=StockRequestStatus.PENDING_FINANCE_APPROVAL,
        nullable=False,
        index=True)
    notes = db.Column(db.Text, nullable=True)

    # Finance
    finance_manager_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True)
    finance_action_at = db.Column(db.DateTime, nullable=True)
    finance_notes = db.Column(db.Text, nullable=True)

    # Supplier fulfillment
    supplier_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True)
    supplier_name = db.Column(db.String(100), nullable=True)
    supplier_price = db.Column(db.Numeric(10, 2), nullable=True)
    supplier_notes = db.Column(db.Text, nullable=True)
    fulfilled_quantity = db.Column(db.Integer, nullable=True)
    supplier_action_at = db.Column(db.DateTime, nullable=True)

    # Receipt by inventory
    received_quantity = db.Column(db.Integer, nullable=True)
    received_by_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True)
    received_at = db.Column(db.DateTime, nullable=True)
    receipt_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    product = db.relationship('Product')
    invoices = db.relationship(
        'Invoice',
        backref='stock_request',
        lazy='dynamic')

    __table_args__ = (
        CheckConstraint(
            'requested_quantity > 0',
            name='check_stock_request_quantity'),
    )

    def __repr__(self):
        return f'<StockRequest {self.id} status={self.status}>'


class Invoice(db.Model):
    __tablename__ = 'invoices'

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(40), unique=True, nullable=False)
    supplier_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True)
    supplier_name = db.Column(db.String(100), nullable=True)
    client_name = db.Column(db.String(100), nullable=False)
    invoice_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    # [{description, quantity, unit_price, total_price}]
    items = db.Column(db.JSON, nullable=False)
    sub_total = db.Column(db.Numeric(10, 2), nullable=False)
    tax_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(
        db.Enum(InvoiceStatus),
        default=InvoiceStatus.PENDING_APPROVAL,
        nullable=False)
    notes = db.Column(db.Text, nullable=True)
    stock_request_id = db.Column(
        db.Integer,
        db.ForeignKey('stock_requests.id'),
        nullable=True,
        index=True)
    finance_manager_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True)
    payment_reference = db.Column(db.String(100), nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    def __repr__(self):
        return f'<Invoice {self.invoice_number} status={self.status}>'


class FeedbackThread(db.Model):
    __tablename__ = 'feedback_threads'

    id = db.Column(db.Integer, primary_key=True)
    subject = db.Column(db.String(200), nullable=False)
    sender_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    sender_name = db.Column(db.String(100), nullable=False)
    sender_email = db.Column(db.String(120), nullable=True)
    # A UserRole value, or CUSTOMER_BROADCAST for admin announcements
    target_role = db.Column(db.String(30), nullable=False, index=True)
    target_user_id = db.Column(
        db.Integer,
        db.ForeignKey('users.id'),
        nullable=True)
    status = db.Column(
        db.Enum(FeedbackStatus),
        default=FeedbackStatus.OPEN,
        nullable=False)
    last_message_snippet = db.Column(db.String(50), nullable=True)
    last_replier_role = db.Column(db.String(30), nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)
    updated_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False)

    messages = db.relationship(
        'FeedbackMessage',
        backref='thread',
        order_by='FeedbackMessage.id',
        cascade='all, delete-orphan')

    def __repr__(self):
        return f'<FeedbackThread {self.id} status={self.status}>'


class FeedbackMessage(db.Model):
    __tablename__ = 'feedback_messages'

    id = db.Column(db.Integer, primary_key=True)
    thread_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'feedback_threads.id',
            ondelete='CASCADE'),
        nullable=False,
        index=True)
    sender_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    sender_name = db.Column(db.String(100), nullable=False)
    sender_role = db.Column(db.String(30), nullable=False)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)

    def __repr__(self):
        return f'<FeedbackMessage {self.id} thread={self.thread_id}>'


class PushSubscription(db.Model):
    __tablename__ = 'push_subscriptions'

    user_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='CASCADE'),
        primary_key=True)
    endpoint = db.Column(db.Text, nullable=False)
    keys = db.Column(db.JSON, nullable=True)  # {p256dh, auth}
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False)

    def subscription_info(self):
        return {'endpoint': self.endpoint, 'keys': self.keys or {}}

    def __repr__(self):
        return f'<PushSubscription user={self.user_id}>'


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(
        db.Integer,
        db.ForeignKey(
            'users.id',
            ondelete='SET NULL'),
        nullable=True)
    actor_role = db.Column(db.String(30), nullable=False)
    # e.g., ORDER_CREATE, ORDER_MARK_DELIVERED, STOCK_REQUEST_APPROVE
    action = db.Column(db.String(100), nullable=False)
    # ORDER, STOCK_REQUEST, INVOICE, etc.
    target_type = db.Column(db.String(50), nullable=True)
    target_id = db.Column(db.String(64), nullable=True)
    ip = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    # JSON format key field snapshot
    payload_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True)

    actor = db.relationship('User', foreign_keys=[actor_id])

    def set_payload(self, data):
        self.payload_json = json.dumps(data, ensure_ascii=False, default=str)

    def get_payload(self):
        if self.payload_json:
            return json.loads(self.payload_json)
        return {}

    def __repr__(self):
        return f'<AuditLog {self.id} action={self.action}>'
