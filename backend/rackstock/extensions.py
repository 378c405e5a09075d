# Overview: Shared Flask extensions (SQLAlchemy session, Alembic migrations).

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
# Column type changes (e.g. widening rack names) show up in autogenerate
migrate = Migrate(compare_type=True)
