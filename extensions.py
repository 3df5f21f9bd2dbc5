# extensions.py

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# Bound to the app in create_app(); models and repositories import db from here.
db = SQLAlchemy()
migrate = Migrate()
