from datetime import datetime
from walg_runner import db


class RunHistory(db.Model):
    """Backup and cleanup run history and logs"""
    __tablename__ = 'run_history'

    id = db.Column(db.Integer, primary_key=True)
    operation = db.Column(db.String(20), nullable=False)  # backup, cleanup
    status = db.Column(db.String(20), nullable=False)  # running, success, failed, skipped
    backup_type = db.Column(db.String(20))  # FULL, DELTA, FULL_RETRY, UNKNOWN (backups only)
    started_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    completed_at = db.Column(db.DateTime)
    duration_seconds = db.Column(db.Integer)
    deleted_count = db.Column(db.Integer)  # cleanups only
    log_path = db.Column(db.String(500))
    error_message = db.Column(db.Text)
    logs = db.Column(db.Text)  # Accumulated executor log lines

    def __repr__(self):
        return f'<RunHistory {self.operation} status={self.status}>'
