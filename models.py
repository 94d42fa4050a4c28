from sqlalchemy import Column, Integer, String, Float, DateTime, UniqueConstraint
from db import Base

class UserProfile(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    uid = Column(String, unique=True, nullable=False)
    streak = Column(Integer, default=0)
    level = Column(Integer, default=0)
    last_active_date = Column(String)  # "yyyy-MM-dd"

class DailyStats(Base):
    __tablename__ = "daily_stats"
    id = Column(Integer, primary_key=True)
    uid = Column(String, index=True, nullable=False)
    day = Column(String, nullable=False)  # "yyyy-MM-dd"
    sleep = Column(Float)
    study = Column(Float)
    exercise = Column(Float)  # 0-10 scale
    screen_time = Column(Float)
    idle_time = Column(Float)
    active_focus_time = Column(Float)
    steps = Column(Integer)
    calories = Column(Integer)
    heart_rate = Column(Integer)
    score = Column(Integer)
    burnout_risk = Column(String)
    date = Column(DateTime)  # set by the store on every write

    __table_args__ = (
        UniqueConstraint("uid", "day", name="uniq_user_day"),
    )

class ExamRecord(Base):
    __tablename__ = "exams"
    id = Column(Integer, primary_key=True)
    uid = Column(String, index=True, nullable=False)
    title = Column(String, nullable=False)
    score = Column(Float)  # achieved marks, None until graded
    total_marks = Column(Float, nullable=False)

class TokenStore(Base):
    __tablename__ = "tokens"
    id = Column(Integer, primary_key=True)
    uid = Column(String, index=True, nullable=False)
    provider = Column(String, nullable=False)  # "google_fit"
    access_token = Column(String)
    refresh_token = Column(String)
    expires_at = Column(Integer)  # epoch seconds

    __table_args__ = (
        UniqueConstraint("uid", "provider", name="uniq_user_provider"),
    )
