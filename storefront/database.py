"""Database connection and session management."""
from decimal import Decimal
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator
import logging

from storefront.config import DATABASE_URL
from storefront.models import Base, Category, Product

logger = logging.getLogger(__name__)

# Create engine with connection pool settings
engine = create_engine(
    DATABASE_URL,
    pool_size=10,
    max_overflow=20,  # Increased overflow for burst traffic
    pool_pre_ping=True,  # Verify connections before use
    pool_recycle=3600,  # Recycle connections after 1 hour
    pool_timeout=30,  # Wait max 30 seconds for a connection
    echo_pool=False  # Set to True for debugging connection pool
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

SEED_CATEGORIES = [
    ("Flours", "Popular African swallows like poundo, garri, amala, fufu"),
    ("Spices", "Aromatic spices for traditional African meals"),
    ("Seasonings", "Cooking cubes, powders, and soup enhancers"),
    ("Grains", "Essential grains like rice, cornmeal, and ogi"),
    ("Cereals", "Pap, oat flour, and breakfast grains"),
    ("Fish", "Smoked fish, dried catfish, and stockfish"),
    ("Seafood", "Prawns, crayfish, and shellfish"),
    ("Drinks", "Supermalt, Red Bull, palmwine, Fayrouz"),
]

SEED_PRODUCTS = [
    ("Yellow garri 4kg", "Flours", "18.99", 50),
    ("Ayoola poundo yam 4.5kg", "Flours", "25.99", 30),
    ("Plantain fufu 1kg", "Flours", "9.99", 50),
    ("Egusi ground 200g", "Spices", "8.99", 60),
    ("Suya kebab powder", "Spices", "4.99", 60),
    ("Maggi liquid seasoning", "Seasonings", "3.99", 80),
    ("Belleville indomie", "Grains", "1.99", 200),
    ("Yellow ogi", "Cereals", "4.99", 80),
    ("Stockfish steak", "Fish", "25.99", 25),
    ("Grounded crayfish", "Seafood", "12.99", 45),
    ("Supermalt can", "Drinks", "2.99", 100),
    ("Fayrouz", "Drinks", "2.49", 150),
]


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for getting database session.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def seed_catalog(db: Session) -> None:
    """Seed categories and products into an empty catalog."""
    if db.query(Product).count() > 0:
        return

    categories = {}
    for name, description in SEED_CATEGORIES:
        category = db.query(Category).filter(Category.name == name).first()
        if category is None:
            category = Category(name=name, description=description)
            db.add(category)
        categories[name] = category
    db.flush()

    db.add_all([
        Product(
            name=name,
            description=name,
            price=Decimal(price),
            stock=stock,
            category_id=categories[category_name].id,
            images=[]
        )
        for name, category_name, price, stock in SEED_PRODUCTS
    ])
    db.commit()
    logger.info("Seeded database with sample catalog", extra={
        "categories": len(SEED_CATEGORIES),
        "products": len(SEED_PRODUCTS)
    })


def init_db() -> None:
    """Initialize database tables and seed data."""
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        seed_catalog(db)
    finally:
        db.close()
