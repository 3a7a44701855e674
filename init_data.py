from storefront import create_app
from storefront.extensions import db
from storefront.models import Product, User, UserRole
from storefront.services.auth_service import seed_admin_user

app = create_app()

with app.app_context():
    # Create admin account from ADMIN_* environment (if not exists)
    created = seed_admin_user()
    if created:
        print(f"Created admin account: {created.email}")

    admin = User.query.filter_by(role=UserRole.ADMIN).order_by(
        User.id.asc()).first()
    if not admin:
        print("No admin account; set ADMIN_EMAIL, ADMIN_USERNAME and "
              "ADMIN_PASSWORD to seed sample products.")
        raise SystemExit(1)

    products_data = [
        {
            "name": "Mechanical Keyboard",
            "description": "RGB mechanical keyboard with brown switches",
            "price": "349.90",
            "category": "Peripherals",
            "image_url": "https://placehold.co/400x300?text=Keyboard",
        },
        {
            "name": "Gaming Mouse",
            "description": "16000 DPI optical sensor, 8 programmable buttons",
            "price": "199.90",
            "category": "Peripherals",
            "image_url": "https://placehold.co/400x300?text=Mouse",
        },
        {
            "name": "Headset 7.1",
            "description": "Surround headset with detachable microphone",
            "price": "279.00",
            "category": "Audio",
            "image_url": "https://placehold.co/400x300?text=Headset",
        },
        {
            "name": "Mouse Pad XL",
            "description": "900x400mm cloth mouse pad",
            "price": "49.99",
            "category": "Accessories",
            "image_url": "https://placehold.co/400x300?text=Mouse+Pad",
        },
    ]

    for data in products_data:
        if Product.query.filter_by(name=data["name"]).first():
            continue
        db.session.add(Product(seller_id=admin.id, **data))
        print(f"Created product: {data['name']}")

    db.session.commit()
    print("Initial data ready.")
