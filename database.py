import os
from datetime import datetime
from sqlalchemy import create_engine, Column, Integer, String, DateTime, UniqueConstraint
from sqlalchemy.orm import sessionmaker, declarative_base
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Database Setup
# Default to local SQLite, but allow override for a hosted Postgres
DB_URL = os.getenv("DATABASE_URL", "sqlite:///finance_tracker.db")

engine = create_engine(DB_URL, connect_args={"check_same_thread": False} if "sqlite" in DB_URL else {})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

TRANSACTION_TYPES = ("income", "expense")
TRANSACTION_SOURCES = ("chat", "ocr", "voice", "manual")
BUDGET_PERIODS = ("weekly", "monthly", "none")

# --- Models ---

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    type = Column(String, nullable=False)          # 'income' or 'expense'
    category = Column(String, nullable=False)      # canonical key, always lower-case
    amount = Column(Integer, nullable=False)       # smallest currency unit
    description = Column(String, default="")
    date = Column(DateTime, index=True)            # when it happened; drives every aggregate

    # Metadata
    source = Column(String, default="manual")      # 'chat', 'ocr', 'voice', 'manual'
    created_at = Column(DateTime, default=datetime.now)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "category": self.category,
            "amount": self.amount,
            "description": self.description or "",
            "date": self.date.isoformat() if self.date else None,
            "source": self.source,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Budget(Base):
    __tablename__ = "budgets"
    __table_args__ = (UniqueConstraint("user_id", "category", name="uq_budget_user_category"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    category = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    period = Column(String, default="monthly")     # 'weekly', 'monthly', 'none'
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    def to_dict(self):
        return {
            "category": self.category,
            "amount": self.amount,
            "period": self.period,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

# --- Init DB ---
def init_db():
    Base.metadata.create_all(bind=engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
