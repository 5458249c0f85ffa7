from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import SQLAlchemyError
from .models import Base, OrderStatusDB

DEFAULT_DB_PATH = "./trading_bot.db"

# Exchange order status vocabulary seeded at startup
DEFAULT_ORDER_STATUSES = [
    ("New", "Order has been placed successfully"),
    ("PartiallyFilled", "Order has been partially filled"),
    ("Filled", "Order has been completely filled"),
    ("Cancelled", "Order has been cancelled"),
    ("Rejected", "Order has been rejected by the exchange"),
    ("Untriggered", "Conditional order waiting for its trigger price"),
    ("Triggered", "Conditional order has been triggered"),
    ("Deactivated", "Conditional order has been deactivated"),
    ("PartiallyFilledCanceled", "Order was partially filled and the remainder cancelled"),
]


class DatabaseManager:
    """Manage the SQLite engine and its thread-scoped sessions."""

    def __init__(self, db_path=DEFAULT_DB_PATH):
        self.db_path = db_path
        self.engine = None
        self.Session = None

    def init_db(self):
        """Initialize database with tables and seeded order statuses"""
        if self.db_path == ":memory:":
            # An in-memory database exists only inside its one connection
            self.engine = create_engine(
                "sqlite://",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            # Pooled connections: each thread's scoped session commits and rolls back on its own connection
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args={"check_same_thread": False},
            )

        Base.metadata.create_all(self.engine)
        self.Session = scoped_session(sessionmaker(bind=self.engine))
        self._init_default_data()

        print(f"✅ Database initialized: {self.db_path}")
        return True

    def _init_default_data(self):
        """Seed order statuses; existing rows are left untouched"""
        session = self.Session()

        try:
            existing = {name for (name,) in session.query(OrderStatusDB.status_name).all()}
            added = 0
            for status_name, description in DEFAULT_ORDER_STATUSES:
                if status_name not in existing:
                    session.add(OrderStatusDB(status_name=status_name, description=description, is_active=True))
                    added += 1

            session.commit()
            if added:
                print(f"✅ Seeded {added} order statuses")

        except SQLAlchemyError:
            session.rollback()
            raise
        finally:
            self.Session.remove()

    def get_session(self):
        """Get the scoped database session"""
        if not self.Session:
            raise RuntimeError("Database not initialized. Call init_db() first.")
        return self.Session()

    def close(self):
        """Close database connections"""
        if self.Session:
            self.Session.remove()
        if self.engine:
            self.engine.dispose()


# Global database instance
db_manager = DatabaseManager()


def init_database(db_path=None):
    """Initialize the database (call this at application start)"""
    if db_path:
        db_manager.db_path = db_path
    return db_manager.init_db()


def get_db_session():
    """Get a database session"""
    return db_manager.get_session()
