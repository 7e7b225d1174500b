"""
Initialize database tables
"""
from update_server.core.config import settings
from update_server.core.database import create_db_engine, init_models


def init_db():
    """Create all tables in database"""
    engine = create_db_engine(settings.DATABASE_URL, echo=True)
    init_models(engine)
    print(f"✅ Database tables created successfully ({engine.url.render_as_string(hide_password=True)})")
    engine.dispose()


if __name__ == "__main__":
    init_db()
