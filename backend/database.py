from sqlalchemy import create_engine, Column, Integer, String, DateTime, Date, Boolean, Text, Float
from sqlalchemy.orm import sessionmaker, declarative_base
from datetime import datetime

from config import DATABASE_URL

# Handle PostgreSQL URL format differences
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# Create engine with appropriate connection args
connect_args = {"check_same_thread": False} if "sqlite" in DATABASE_URL else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

DEFAULT_PROFILE_PHOTO = "/profiles/default-profile.jpg"


class User(Base):
    __tablename__ = "users"

    uid = Column(String, primary_key=True, index=True)  # Identity provider UID
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, index=True)
    password = Column(String)  # bcrypt hash; null for OAuth-only accounts
    photo_url = Column(String, default=DEFAULT_PROFILE_PHOTO)
    birthdate = Column(Date)
    created_at = Column(DateTime, default=datetime.utcnow)


class Scan(Base):
    __tablename__ = "scans"

    scan_id = Column(String(8), primary_key=True, index=True)
    photo_url = Column(String, nullable=False)  # /scans/scan-<id><ext>

    # Classification results
    scan_result = Column(Boolean, nullable=False)  # True = anemic
    confidence = Column(Float)  # Probability of the anemic class
    result_source = Column(String, default="model")  # "model" or "fallback"

    scan_date = Column(DateTime, default=datetime.utcnow, index=True)


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    session_id = Column(String, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)  # Identity UID, no foreign key
    title = Column(String, default="Anemia Analysis Chat")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, index=True)


class Chat(Base):
    __tablename__ = "chats"

    chat_id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, index=True, nullable=False)
    sender = Column(String, nullable=False)  # "user" or "ai"
    message = Column(Text, nullable=False)
    photo_url = Column(String)
    timestamp = Column(DateTime, default=datetime.utcnow, index=True)
    type = Column(String, default="text")  # "text" or "image"


def create_tables():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
