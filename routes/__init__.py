from .feedback import feedback_bp
from .auth import auth_bp
from .admin import admin_bp
from .two_factor import two_factor_bp
from .api import api_bp

def register_blueprints(app):
    """Register all blueprints with the Flask app"""
    app.register_blueprint(feedback_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(two_factor_bp)
    app.register_blueprint(api_bp)
