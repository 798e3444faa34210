from sqlalchemy import Boolean, Column, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship
from contract_finder.database import Base


class SearchJob(Base):
    __tablename__ = "search_jobs"

    id = Column(Text, primary_key=True)
    user_id = Column(Text, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    description = Column(Text, nullable=False)
    request_json = Column(Text, nullable=False)
    mode = Column(Text, nullable=False, default="DIRECT")
    source = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="CREATED")
    error_message = Column(Text)
    results = Column(Text)
    result_count = Column(Integer, nullable=False, default=0)
    processed = Column(Boolean, nullable=False, default=False)
    matter_id = Column(Text)
    mail_export_id = Column(Text)
    file_export_id = Column(Text)
    poll_failures = Column(Integer, nullable=False, default=0)
    created_at = Column(Text, nullable=False)
    updated_at = Column(Text, nullable=False)

    user = relationship("User", back_populates="search_jobs")
