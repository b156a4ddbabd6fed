from sqlalchemy import create_engine, Column, String, DateTime, Text, JSON
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
import logging

logger = logging.getLogger(__name__)

Base = declarative_base()

class JobRecord(Base):
    __tablename__ = 'jobs'

    id = Column(String, primary_key=True, index=True)
    url = Column(Text, nullable=False)
    email = Column(Text, nullable=False)
    status = Column(String, default='submitted', index=True)  # submitted, processing, completed
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    lighthouse_before = Column(JSON, nullable=True)
    lighthouse_after = Column(JSON, nullable=True)
    netlify_url = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    html_content = Column(Text, nullable=True)  # kept for audit and redeploy

def make_engine(database_url: str) -> Engine:
    """Create an engine with connection pooling"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=False,
        connect_args=connect_args,
    )

def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

def create_tables(engine: Engine):
    """Create all tables"""
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Error creating tables: {e}")
        raise
