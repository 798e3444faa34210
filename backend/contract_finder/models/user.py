from sqlalchemy import Column, Text
from sqlalchemy.orm import relationship
from contract_finder.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Text, primary_key=True)
    email = Column(Text, nullable=False, unique=True)
    api_token_hash = Column(Text, nullable=False, unique=True)
    google_credential = Column(Text)
    workspace_email = Column(Text)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    search_jobs = relationship("SearchJob", back_populates="user", cascade="all, delete-orphan")
