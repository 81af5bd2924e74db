"""
SQLAlchemy database models for the AgriEcho server.

This module provides:
- Base: DeclarativeBase for all models to inherit from
- db: Flask-SQLAlchemy instance for database operations
- SOSAlert, VoiceQuery, WeatherAlert: the records behind /api/sos,
  /api/voice-query, /api/weather and /api/sync
"""

from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all server models."""
    pass


db = SQLAlchemy(model_class=Base)


VALID_SEVERITIES = ['low', 'medium', 'high', 'critical']


def utcnow():
    """Naive UTC timestamp, as stored in the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value else None


class SOSAlert(db.Model):
    """
    Emergency alert raised by a farmer.

    Attributes:
        id: Primary key
        message: Free-text description of the emergency
        location: Optional location given by the sender
        severity: One of low, medium, high, critical
        contact: Optional contact detail
        resolved: Whether the alert has been handled
        created_at: When the alert was received
    """
    __tablename__ = 'sos_alerts'

    id = db.Column(db.Integer, primary_key=True)
    message = db.Column(db.Text, nullable=False)
    location = db.Column(db.String(255), nullable=True)
    severity = db.Column(db.String(16), default='medium', nullable=False, index=True)
    contact = db.Column(db.String(255), nullable=True)
    resolved = db.Column(db.Boolean, default=False, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'message': self.message,
            'location': self.location,
            'severity': self.severity,
            'contact': self.contact,
            'resolved': self.resolved,
            'created_at': _iso(self.created_at),
        }

    @classmethod
    def get_unresolved(cls):
        """Unresolved alerts, newest first."""
        return cls.query.filter_by(resolved=False).order_by(cls.created_at.desc(), cls.id.desc()).all()

    def __repr__(self):
        return f'<SOSAlert {self.id} severity={self.severity}>'


class VoiceQuery(db.Model):
    """Question asked through the voice assistant, with its answer."""
    __tablename__ = 'voice_queries'

    id = db.Column(db.Integer, primary_key=True)
    query_text = db.Column('query', db.Text, nullable=False)
    response = db.Column(db.Text, nullable=True)
    language = db.Column(db.String(8), default='en', nullable=False)
    processed = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'query': self.query_text,
            'response': self.response,
            'language': self.language,
            'processed': self.processed,
            'created_at': _iso(self.created_at),
        }

    @classmethod
    def get_recent(cls, limit=10):
        return cls.query.order_by(cls.created_at.desc(), cls.id.desc()).limit(limit).all()

    def __repr__(self):
        return f'<VoiceQuery {self.id} processed={self.processed}>'


class WeatherAlert(db.Model):
    """
    Weather warning for a location.

    Alerts are published through /api/sync until valid_until passes.
    """
    __tablename__ = 'weather_alerts'

    id = db.Column(db.Integer, primary_key=True)
    location = db.Column(db.String(255), nullable=True)
    alert = db.Column(db.Text, nullable=True)
    severity = db.Column(db.String(16), nullable=True)
    valid_until = db.Column(db.DateTime, nullable=True, index=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'location': self.location,
            'alert': self.alert,
            'severity': self.severity,
            'valid_until': _iso(self.valid_until),
            'created_at': _iso(self.created_at),
        }

    @classmethod
    def get_active(cls, now=None):
        """Alerts whose valid_until is still in the future."""
        now = now or utcnow()
        return cls.query.filter(cls.valid_until >= now).order_by(cls.valid_until).all()

    def __repr__(self):
        return f'<WeatherAlert {self.id} location={self.location}>'


__all__ = ['db', 'Base', 'SOSAlert', 'VoiceQuery', 'WeatherAlert', 'VALID_SEVERITIES', 'utcnow']
