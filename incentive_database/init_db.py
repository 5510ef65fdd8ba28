"""
Database initialization/migration script.

Creates all required tables in the database named by DATABASE_URL. Run it as
``incentive-init-db`` once the package is installed, or as
``python -m incentive_database.init_db`` from the repository root.
"""
from .db import get_engine
from .models import Base


# PUBLIC_INTERFACE
def init_db(engine=None):
    """Initializes the database by creating all tables if they do not exist."""
    Base.metadata.create_all(bind=engine or get_engine())


def main():
    init_db()
    print("Database tables created successfully.")


if __name__ == "__main__":
    main()
