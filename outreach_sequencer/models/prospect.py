import uuid
from datetime import datetime

from sqlalchemy import JSON

from outreach_sequencer.extensions import db


class Prospect(db.Model):
    """A target an outreach sequence can be run against."""
    __tablename__ = 'prospects'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = db.Column(db.String(255), nullable=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    company_name = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(50), nullable=False, default='new')
    category = db.Column(db.String(50), nullable=True, default='prospect')
    priority = db.Column(db.String(20), nullable=True, default='medium')
    tags = db.Column(JSON, nullable=False, default=list)
    last_contact_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def full_name(self):
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        elif self.first_name:
            return self.first_name
        elif self.last_name:
            return self.last_name
        return self.name or "Unknown"

    def to_dict(self):
        return {
            'id': str(self.id),
            'name': self.name,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'email': self.email,
            'company_name': self.company_name,
            'status': self.status,
            'category': self.category,
            'priority': self.priority,
            'tags': self.tags or [],
            'last_contact_at': self.last_contact_at.isoformat() if self.last_contact_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }

    def __repr__(self):
        return f'<Prospect {self.full_name} ({self.id})>'
