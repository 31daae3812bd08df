from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey
from db.base import Base
from datetime import datetime

JOB_KIND_DEPLOY = "deploy"
JOB_KIND_VERIFY = "verify"

JOB_QUEUED = "queued"
JOB_RUNNING = "running"
JOB_SUCCEEDED = "succeeded"
JOB_FAILED = "failed"


class Job(Base):
    """A detached unit of work (deployment, verification polling) and its outcome."""

    __tablename__ = "jobs"
    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String, nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    owner = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=JOB_QUEUED)
    attempts = Column(Integer, nullable=False, default=0)
    payload = Column(JSON, default=dict)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
