import bcrypt
import mongomock
import pytest
from flask_jwt_extended import create_access_token

from storefront import create_app
from storefront.extensions import mongo
from storefront.helpers import utcnow

ADMIN_EMAIL = "admin@example.com"
CUSTOMER_EMAIL = "customer@example.com"
WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "JWT_SECRET_KEY": "test-secret-key-with-enough-length-for-hs256",
            "JWT_COOKIE_CSRF_PROTECT": False,
            "DEFAULT_ADMIN_EMAIL": ADMIN_EMAIL,
            "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
            "STRIPE_SECRET_KEY": "",
            "APP_BASE_URL": "https://shop.example.com",
            "RESEND_API_KEY": "",
            "CLOUDINARY_API_KEY": "",
            "CLOUDINARY_API_SECRET": "",
        }
    )
    mongo.db = mongomock.MongoClient()["storefront_test"]
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return mongo.db


def make_user(db, email, name="Test User", password="secret123", **extra):
    document = {
        "email": email,
        "name": name,
        "password": bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=4)),
        "admin": False,
        "role": "user",
        "phone": "",
        "language": "en",
        "is_period_paid_user": False,
        "payment_period": None,
        "payment_history": [],
        "wishlist": [],
        "created_at": utcnow(),
    }
    document.update(extra)
    document["_id"] = db.users.insert_one(document).inserted_id
    return document


def auth_headers(app, email):
    with app.app_context():
        token = create_access_token(identity=email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_user(db):
    return make_user(db, ADMIN_EMAIL, name="Admin", admin=True, role="admin")


@pytest.fixture
def customer(db):
    return make_user(db, CUSTOMER_EMAIL, name="Customer", phone="91234567")


@pytest.fixture
def admin_headers(app, admin_user):
    return auth_headers(app, ADMIN_EMAIL)


@pytest.fixture
def customer_headers(app, customer):
    return auth_headers(app, CUSTOMER_EMAIL)


@pytest.fixture
def product(db):
    brand_id = db.brands.insert_one(
        {"name": "Acme", "slug": "acme", "display_names": {"en": "Acme", "zh-TW": "愛克米"}, "deleted_at": None}
    ).inserted_id
    category_id = db.categories.insert_one(
        {"name": "Tools", "slug": "tools", "display_names": {"en": "Tools", "zh-TW": "工具"}, "is_active": True}
    ).inserted_id
    document = {
        "name": "Hammer",
        "slug": "hammer",
        "display_names": {"en": "Hammer", "zh-TW": "鐵鎚"},
        "descriptions": {"en": "A hammer", "zh-TW": "一把鐵鎚"},
        "price": 40.0,
        "stock": 10,
        "brand": brand_id,
        "category": category_id,
        "draft": False,
        "featured": False,
        "purchased_by": [],
        "average_rating": 0.0,
        "num_reviews": 0,
        "created_at": utcnow(),
        "updated_at": utcnow(),
    }
    document["_id"] = db.products.insert_one(document).inserted_id
    return document


@pytest.fixture
def delivery_settings(db):
    db.delivery_settings.insert_one(
        {
            "delivery_methods": [
                {"cost": 20.0, "name": {"en": "Courier", "zh-TW": "速遞"}},
                {"cost": 0.0, "name": {"en": "Pickup", "zh-TW": "自取"}},
            ],
            "free_delivery_threshold": 100.0,
            "bank_account_details": "HSBC 123-456",
            "created_at": utcnow(),
        }
    )


@pytest.fixture
def checkout_payload(product):
    return {
        "name": "Customer",
        "email": CUSTOMER_EMAIL,
        "phone": "91234567",
        "shipping_address": {"en": "1 Queen's Road", "zh-TW": "皇后大道一號"},
        "cart_items": [{"id": str(product["_id"]), "quantity": 2, "price": 40.0}],
        "delivery_method": 0,
        "payment_method": "online",
    }


@pytest.fixture
def user_factory(db):
    def build(email, **extra):
        return make_user(db, email, **extra)

    return build


@pytest.fixture
def headers_for(app):
    def build(email):
        return auth_headers(app, email)

    return build
