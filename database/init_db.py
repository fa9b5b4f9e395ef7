"""
Database initialization
Creates the tables and seeds a demo merchant with an owner and a cashier.

Run with: flask --app app init-db
"""
import os

from extensions import db
from models import Merchant, User


def seed_merchant():
    """Create the demo merchant"""
    email = os.getenv('SEED_MERCHANT_EMAIL', 'demo@loyalty.local')
    merchant = Merchant.query.filter_by(email=email).first()
    if merchant:
        print(f"  - Merchant '{merchant.business_name}' already exists")
        return merchant

    merchant = Merchant(
        os.getenv('SEED_MERCHANT_NAME', 'Demo Coffee'),
        email=email,
        status='active',
        points_per_euro=1,
        points_for_reward=100,
        reward_description='One free coffee',
    )
    db.session.add(merchant)
    db.session.commit()
    print(f"  ✓ Merchant '{merchant.business_name}' created")
    return merchant


def seed_users(merchant):
    """Create default staff accounts"""
    defaults = [
        ('owner@loyalty.local', os.getenv('SEED_OWNER_PASSWORD', 'owner123'), 'owner', 'Owner'),
        ('cashier@loyalty.local', os.getenv('SEED_CASHIER_PASSWORD', 'cashier123'), 'cashier', 'Cashier'),
    ]
    for email, password, role, name in defaults:
        if User.query.filter_by(email=email).first():
            print(f"  - {role.title()} '{email}' already exists")
            continue
        db.session.add(User(
            email=email,
            password=password,
            merchant_id=merchant.id,
            role=role,
            display_name=name,
        ))
        print(f"  ✓ {role.title()} '{email}' created")

    db.session.commit()


def init_db():
    """Create tables and seed demo data (inside an app context)"""
    print("\n" + "=" * 50)
    print("Loyalty QR - Database Initialization")
    print("=" * 50 + "\n")

    print("Creating database tables...")
    db.create_all()
    print("  ✓ Tables created\n")

    merchant = seed_merchant()
    seed_users(merchant)

    print("\n" + "=" * 50)
    print("Database initialization complete!")
    print("=" * 50)
    print(f"\nMerchant QR token: {merchant.qr_token}")
    print("Default logins:")
    print("  Owner:   owner@loyalty.local")
    print("  Cashier: cashier@loyalty.local")
    print()
    return merchant


def register_commands(app):
    @app.cli.command('init-db')
    def init_db_command():
        """Create tables and seed a demo merchant."""
        init_db()
