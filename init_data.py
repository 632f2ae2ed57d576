from zellow import create_app
from zellow.extensions import db
from zellow.models import (
    Cart,
    Product,
    ShippingMethod,
    ShippingRate,
    ShippingRegion,
    User,
    UserRole,
    UserStatus,
)

app = create_app()

with app.app_context():
    # Create admin account (if not exists)
    admin_email = "admin@zellow.co.ke"
    admin = User.query.filter_by(email=admin_email).first()
    if not admin:
        admin = User(
            email=admin_email,
            display_name="Zellow Admin",
            role=UserRole.ADMIN,
            status=UserStatus.APPROVED,
        )
        admin.set_password("admin123")
        db.session.add(admin)
        print(f"Created admin account: {admin_email} / admin123")

    # One approved account per staff role
    for role in UserRole:
        if role in (UserRole.ADMIN, UserRole.CUSTOMER):
            continue
        email = f"{role.value.lower()}@zellow.co.ke"
        if User.query.filter_by(email=email).first():
            continue
        staff = User(
            email=email,
            display_name=role.value.replace("_", " ").title(),
            role=role,
            status=UserStatus.APPROVED,
            phone="0700000000",
        )
        staff.set_password("staff123")
        db.session.add(staff)
        print(f"Created staff account: {email} / staff123")

    customer_email = "customer@example.com"
    if not User.query.filter_by(email=customer_email).first():
        customer = User(
            email=customer_email,
            display_name="Jane Wanjiku",
            phone="0712345678",
            role=UserRole.CUSTOMER,
        )
        customer.set_password("customer123")
        customer.cart = Cart()
        db.session.add(customer)
        print(f"Created customer: {customer_email} / customer123")

    shipping_data = [
        {
            "name": "Standard Delivery",
            "description": "Delivery within Nairobi and environs",
            "duration": "2-3 days",
            "base_price": 200,
        },
        {
            "name": "Express Delivery",
            "description": "Same-day delivery for orders before noon",
            "duration": "Same day",
            "base_price": 500,
        },
        {
            "name": "Upcountry Courier",
            "description": "Courier to major towns outside Nairobi",
            "duration": "3-5 days",
            "base_price": 350,
        },
    ]

    for method_data in shipping_data:
        if ShippingMethod.query.filter_by(name=method_data["name"]).first():
            continue
        db.session.add(ShippingMethod(active=True, **method_data))
        print(f"Created shipping method: {method_data['name']}")

    db.session.flush()

    regions_data = [
        {
            "name": "Nairobi Metro",
            "county": "Nairobi",
            "towns": ["Nairobi", "Westlands", "Karen", "Embakasi"],
        },
        {
            "name": "Coast",
            "county": "Mombasa",
            "towns": ["Mombasa", "Nyali", "Likoni"],
        },
    ]

    for region_data in regions_data:
        if ShippingRegion.query.filter_by(name=region_data["name"]).first():
            continue
        db.session.add(ShippingRegion(active=True, **region_data))
        print(f"Created shipping region: {region_data['name']}")

    db.session.flush()

    # (region, method, price) overrides of the base price
    rates_data = [
        ("Coast", "Standard Delivery", 450),
        ("Coast", "Express Delivery", 1200),
        ("Nairobi Metro", "Upcountry Courier", 250),
    ]

    for region_name, method_name, price in rates_data:
        region = ShippingRegion.query.filter_by(name=region_name).first()
        method = ShippingMethod.query.filter_by(name=method_name).first()
        if region is None or method is None:
            continue
        if ShippingRate.query.filter_by(
                region_id=region.id, method_id=method.id).first():
            continue
        db.session.add(ShippingRate(
            region_id=region.id, method_id=method.id, custom_price=price))
        print(f"Created shipping rate: {region_name} / {method_name}")

    products_data = [
        {
            "name": "Engraved Wooden Photo Frame",
            "description": "Hand-finished mahogany frame with engraving",
            "price": 1500,
            "supplier_price": 800,
            "stock": 40,
            "customization_options": [
                {
                    "id": "engraving_text",
                    "label": "Engraving text",
                    "type": "text",
                    "required": True,
                },
                {
                    "id": "size",
                    "label": "Size",
                    "type": "dropdown",
                    "required": True,
                    "choices": [
                        {"value": "a5", "label": "A5", "price_adjustment": 0},
                        {"value": "a4", "label": "A4",
                         "price_adjustment": 300},
                    ],
                },
            ],
        },
        {
            "name": "Custom Printed Mug",
            "description": "Ceramic mug printed with your photo or message",
            "price": 800,
            "supplier_price": 350,
            "stock": 120,
            "customization_options": [
                {
                    "id": "print_image",
                    "label": "Photo",
                    "type": "image_upload",
                    "required": False,
                },
                {
                    "id": "gift_wrap",
                    "label": "Gift wrap",
                    "type": "checkbox",
                    "required": False,
                    "price_adjustment_if_checked": 150,
                },
            ],
        },
        {
            "name": "Celebration Gift Hamper",
            "description": "Assembled hamper with snacks, wine and a card",
            "price": 6500,
            "supplier_price": 4200,
            "stock": 15,
            "customization_options": [
                {
                    "id": "extras",
                    "label": "Extras",
                    "type": "checkbox_group",
                    "required": False,
                    "choices": [
                        {"value": "flowers", "label": "Flowers",
                         "price_adjustment": 1200},
                        {"value": "chocolate", "label": "Chocolate",
                         "price_adjustment": 600},
                    ],
                },
                {
                    "id": "ribbon_colour",
                    "label": "Ribbon colour",
                    "type": "color_picker",
                    "required": False,
                },
            ],
        },
        {
            "name": "Branded Notebook",
            "description": "A5 hardcover notebook",
            "price": 500,
            "supplier_price": 220,
            "stock": 300,
            "customization_options": [],
        },
    ]

    for product_data in products_data:
        if Product.query.filter_by(name=product_data["name"]).first():
            continue
        db.session.add(Product(published=True, **product_data))
        print(f"  Created product: {product_data['name']}")

    db.session.commit()
    print("Data initialization completed!")
