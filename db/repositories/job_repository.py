from sqlalchemy.orm import Session
from db.models.job import Job


class JobRepository:
    def __init__(self, db: Session):
        self.db = db

    def create(self, job: Job) -> Job:
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        return job

    def get_by_id(self, job_id: int, owner: str | None = None) -> Job | None:
        query = self.db.query(Job).filter(Job.id == job_id)
        if owner is not None:
            query = query.filter(Job.owner.ilike(owner))
        return query.first()

    def list_by_project(self, project_id: int) -> list[Job]:
        return (
            self.db.query(Job)
            .filter(Job.project_id == project_id)
            .order_by(Job.created_at.desc(), Job.id.desc())
            .all()
        )

    def update(self, job: Job, update_data: dict) -> Job:
        for key, value in update_data.items():
            if hasattr(job, key):
                setattr(job, key, value)
        self.db.commit()
        self.db.refresh(job)
        return job

    def delete_by_project(self, project_id: int) -> int:
        deleted = self.db.query(Job).filter(Job.project_id == project_id).delete(synchronize_session=False)
        self.db.commit()
        return deleted

    def refresh(self, job: Job) -> Job:
        self.db.refresh(job)
        return job
