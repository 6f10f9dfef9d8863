"""
Workflow X-Ray
Persistent analysis cache (database backend).

Models:
    - AnalysisCacheRecord: one memoized decomposition per request hash
"""

from datetime import datetime, timezone

from workflow_xray.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class AnalysisCacheRecord(db.Model):
    """
    Cached pipeline output keyed by the 16-char analysis hash.
    ``cached_at`` is kept as the ISO string handed to ``set`` so reads
    return it verbatim.
    """

    __tablename__ = "analysis_cache"

    id = db.Column(db.Integer, primary_key=True)
    analysis_hash = db.Column(db.String(16), nullable=False, unique=True, index=True,
                              comment="First 16 hex chars of the request SHA-256")

    decomposition_json = db.Column(db.Text, nullable=False)
    metadata_json = db.Column(db.Text, nullable=False, default="{}")
    cached_at = db.Column(db.String(40), nullable=False)

    hit_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<AnalysisCacheRecord {self.analysis_hash} hits={self.hit_count}>"
