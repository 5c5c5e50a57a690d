"""
Shared Flask-SQLAlchemy handle.

Bound to the app in create_app(); every model imports db from here.
"""
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
