"""Project domain model and the source documents uploaded into it."""

from datetime import datetime, timezone

from certflow.models import db


COMPLIANCE_FRAMEWORKS = {"FTA", "APTA", "EN_50129"}


class Project(db.Model):
    """A certification project: the owner of every hazard, requirement and workflow run."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    industry = db.Column(db.String(80), nullable=True, comment="rail | transit | automotive | ...")
    compliance_framework = db.Column(
        db.String(30), nullable=False, default="FTA",
        comment="FTA | APTA | EN_50129",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    documents = db.relationship(
        "ProjectDocument", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    workflow_runs = db.relationship(
        "WorkflowRun", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "industry": self.industry,
            "compliance_framework": self.compliance_framework,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class ProjectDocument(db.Model):
    """
    Plain-text source document attached to a project.

    Referenced by id from a workflow run's ``source_documents`` config and
    read by the document-processing step.
    """

    __tablename__ = "project_documents"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    filename = db.Column(db.String(255), nullable=False)
    content_text = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self, include_content=False):
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "filename": self.filename,
            "char_count": len(self.content_text or ""),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_content:
            result["content_text"] = self.content_text
        return result

    def __repr__(self):
        return f"<ProjectDocument {self.id}: {self.filename}>"
