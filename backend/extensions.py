from flask_migrate import Migrate  # type: ignore[import]
from flask_sqlalchemy import SQLAlchemy  # type: ignore[import]

from infra.config_store import ConfigStore
from infra.db_adapter import ConnectionManager
from infra.setup_gate import SetupGate

db = SQLAlchemy()
migrate = Migrate()

# Audit-layer singletons; bound to the app's configuration path in app.py.
config_store = ConfigStore()
connection_manager = ConnectionManager()
setup_gate = SetupGate(config_store, connection_manager)
