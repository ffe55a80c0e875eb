from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
import uuid

from utils.obfuscation import reveal, reveal_json

db = SQLAlchemy()

def generate_uuid():
    return str(uuid.uuid4())

def _iso(dt):
    return dt.isoformat() if dt else None


class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.String(50), primary_key=True, default=generate_uuid)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=True)
    name = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(20), nullable=False, default='client', index=True)
    avatar_url = db.Column(db.String(500), nullable=True)
    google_id = db.Column(db.String(255), unique=True, nullable=True)
    # 'email' or 'google'
    account_type = db.Column(db.String(20), nullable=True, default='email')
    company = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    projects = db.relationship('Project', backref='owner', lazy=True)

    def to_dict(self):
        # password_hash never leaves the server
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name,
            'role': self.role,
            'avatarUrl': self.avatar_url,
            'accountType': self.account_type,
            'company': self.company,
            'phone': self.phone,
            'hasPassword': bool(self.password_hash),
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }


class Project(db.Model):
    __tablename__ = 'projects'
    id = db.Column(db.String(50), primary_key=True, default=generate_uuid)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    company = db.Column(db.String(255), nullable=True)
    plan = db.Column(db.String(100), nullable=True)
    # obfuscated at rest
    notes = db.Column(db.Text, nullable=True)
    # pending, approved, in-progress, completed, rejected
    status = db.Column(db.String(50), nullable=False, default='pending', index=True)
    ip = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'name': self.name,
            'email': self.email,
            'company': self.company,
            'plan': self.plan,
            'notes': reveal(self.notes),
            'status': self.status,
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }


class Message(db.Model):
    __tablename__ = 'messages'
    id = db.Column(db.String(50), primary_key=True, default=generate_uuid)
    name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    subject = db.Column(db.String(255), nullable=True)
    content = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='unread', index=True)
    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'subject': self.subject,
            'content': reveal(self.content),
            'status': self.status,
            'ip': self.ip,
            'userAgent': self.user_agent,
            'timestamp': _iso(self.created_at),
        }


class Notification(db.Model):
    __tablename__ = 'notifications'
    id = db.Column(db.String(50), primary_key=True, default=generate_uuid)
    # null for system-wide notifications
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=True)
    message = db.Column(db.Text, nullable=True)
    type = db.Column(db.String(20), nullable=True, default='info')
    read = db.Column(db.Boolean, nullable=False, default=False, index=True)
    # user ids that have read a target='all' row
    read_by = db.Column(db.JSON, nullable=True)
    target = db.Column(db.String(10), nullable=False, default='user')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def is_read_by(self, user_id):
        if self.target == 'all':
            return user_id in (self.read_by or [])
        return bool(self.read)

    def to_dict(self, viewer_id=None):
        result = {
            'id': self.id,
            'userId': self.user_id,
            'title': self.title,
            'message': self.message,
            'type': self.type,
            'target': self.target,
            'createdAt': _iso(self.created_at),
        }
        if viewer_id is None:
            result['read'] = bool(self.read)
            result['readBy'] = list(self.read_by or [])
        else:
            result['read'] = self.is_read_by(viewer_id)
        return result


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'
    id = db.Column(db.String(50), primary_key=True, default=generate_uuid)
    action = db.Column(db.String(100), nullable=False, index=True)
    performed_by = db.Column(db.String(255), nullable=True, index=True)
    details = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'action': self.action,
            'performedBy': self.performed_by,
            'details': self.details,
            'createdAt': _iso(self.created_at),
        }


class SignupProgress(db.Model):
    __tablename__ = 'signup_progress'
    id = db.Column(db.String(50), primary_key=True, default=generate_uuid)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    # obfuscated JSON blob of the wizard state
    data = db.Column(db.Text, nullable=True)
    step = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'email': self.email,
            'step': self.step,
            'data': reveal_json(self.data),
            'updatedAt': _iso(self.updated_at),
        }


class Ticket(db.Model):
    __tablename__ = 'tickets'
    id = db.Column(db.String(50), primary_key=True, default=generate_uuid)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=True, index=True)
    user_email = db.Column(db.String(255), nullable=True, index=True)
    user_name = db.Column(db.String(255), nullable=True)
    subject = db.Column(db.String(255), nullable=True)
    message = db.Column(db.Text, nullable=True)
    # [{id, sender, message (obfuscated), timestamp}]
    responses = db.Column(db.JSON, nullable=False, default=list)
    # open, in-progress, resolved, closed
    status = db.Column(db.String(20), nullable=False, default='open', index=True)
    priority = db.Column(db.String(20), nullable=True, default='medium')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'userEmail': self.user_email,
            'userName': self.user_name,
            'subject': self.subject,
            'message': reveal(self.message),
            'responses': [
                dict(r, message=reveal(r.get('message'))) for r in (self.responses or [])
            ],
            'status': self.status,
            'priority': self.priority,
            'timestamp': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }


class Subscription(db.Model):
    __tablename__ = 'subscriptions'
    id = db.Column(db.String(50), primary_key=True, default=generate_uuid)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=True, index=True)
    user_name = db.Column(db.String(255), nullable=True)
    user_email = db.Column(db.String(255), nullable=True)
    plan = db.Column(db.String(100), nullable=True)
    # pending, active, extended, rejected, cancelled
    status = db.Column(db.String(20), nullable=False, default='pending', index=True)
    duration_months = db.Column(db.Integer, nullable=False, default=12)
    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True)
    details = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('subscriptions', lazy=True))

    def to_dict(self):
        return {
            'id': self.id,
            'userId': self.user_id,
            'userName': self.user_name,
            'userEmail': self.user_email,
            'plan': self.plan,
            'status': self.status,
            'durationMonths': self.duration_months,
            'startDate': _iso(self.start_date),
            'endDate': _iso(self.end_date),
            'details': reveal(self.details),
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }


class Invoice(db.Model):
    __tablename__ = 'invoices'
    id = db.Column(db.String(50), primary_key=True, default=generate_uuid)
    reference_number = db.Column(db.String(50), unique=True, nullable=False)
    user_id = db.Column(db.String(50), db.ForeignKey('users.id'), nullable=True, index=True)
    project_id = db.Column(db.String(50), db.ForeignKey('projects.id'), nullable=True, index=True)
    # kept as text, amounts may carry separators
    amount = db.Column(db.String(50), nullable=True)
    # requested, draft, sent, Paid, overdue, cancelled
    status = db.Column(db.String(20), nullable=False, default='requested', index=True)
    due_date = db.Column(db.DateTime, nullable=True)
    description = db.Column(db.Text, nullable=True)
    items = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('invoices', lazy=True))
    project = db.relationship('Project', backref=db.backref('invoices', lazy=True))

    @property
    def is_paid(self):
        return (self.status or '').lower() == 'paid'

    def to_dict(self):
        return {
            'id': self.id,
            'referenceNumber': self.reference_number,
            'userId': self.user_id,
            'projectId': self.project_id,
            'amount': self.amount,
            'status': self.status,
            'dueDate': _iso(self.due_date),
            'description': reveal(self.description),
            'items': self.items or [],
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
        }


class SystemSetting(db.Model):
    __tablename__ = 'system_settings'
    key = db.Column(db.String(100), primary_key=True)
    value = db.Column(db.JSON, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)