from .health import health_bp
from .auth import auth_bp
from .dashboard import dashboard_bp
