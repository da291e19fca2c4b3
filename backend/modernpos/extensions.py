# Overview: Flask extension instances for the catalog/ledger database and its migrations.

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Service functions hand ORM rows back to routes after committing.
db = SQLAlchemy(session_options={"expire_on_commit": False})
migrate = Migrate()
