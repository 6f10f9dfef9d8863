"""
Workflow X-Ray
Model package.

``db`` is the shared Flask-SQLAlchemy handle (used by the database-backed
analysis cache). The decomposition value types live in
``workflow_xray.models.decomposition`` and are plain dataclasses.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
