# Import all models so SQLAlchemy metadata is fully populated on startup.
from formdesk.db.models.user import User
from formdesk.db.models.form import Form
from formdesk.db.models.form_response import FormResponse
from formdesk.db.models.system_settings import SystemSettings
from formdesk.db.models.error_log import ErrorLog


__all__ = [
    "User",
    "Form",
    "FormResponse",
    "SystemSettings",
    "ErrorLog",
]
