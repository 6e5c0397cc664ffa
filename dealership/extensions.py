from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Global extension instances
db = SQLAlchemy()
migrate = Migrate()

# Keys under app.extensions for the per-process ingestion collaborators
HTTP_SESSION_KEY = "image_http_session"
OBJECT_STORAGE_KEY = "object_storage"
