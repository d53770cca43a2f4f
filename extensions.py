# extensions.py

from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager

# Single source of truth for the db object.
# It's initialized here, but not yet connected to a Flask app.
db = SQLAlchemy()

# Identity of the current user is loaded by Flask-Login; sessions are
# issued by the external authentication service.
login_manager = LoginManager()
