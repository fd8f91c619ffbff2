#!/usr/bin/env python3
"""
Ticket Feedback Portal
A Flask application that issues single-use feedback links for closed support
tickets, records customer ratings and notifies staff.
"""

import os
from datetime import timedelta
from dotenv import load_dotenv
from flask import Flask
from flask_mail import Mail
from flask_migrate import Migrate

# Import our modules
from models import db
from utils.i18n import t
from utils.banner import print_startup_banner
from routes import register_blueprints
from services.attempt_limiter import FailedAttemptLimiter
from services.auth import current_user
from services.session_gate import SessionTwoFactorStore
from cli import register_commands

# Load environment variables from .env file
load_dotenv()


def env_flag(name, default='false'):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def env_list(name, default=''):
    """Comma separated environment variable as a set of stripped items"""
    return {item.strip() for item in os.environ.get(name, default).split(',') if item.strip()}


def create_app(config_overrides=None):
    """Application factory pattern"""
    # Print startup banner (will show in both dev and production)
    print_startup_banner()

    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///feedback.db')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['BASE_URL'] = os.environ.get('BASE_URL')

    # Mail
    app.config['MAIL_SERVER'] = os.environ.get('MAIL_SERVER')
    app.config['MAIL_PORT'] = int(os.environ.get('MAIL_PORT', '587'))
    app.config['MAIL_USE_TLS'] = env_flag('MAIL_USE_TLS', 'true')
    app.config['MAIL_USERNAME'] = os.environ.get('MAIL_USERNAME')
    app.config['MAIL_PASSWORD'] = os.environ.get('MAIL_PASSWORD')
    app.config['MAIL_DEFAULT_SENDER'] = os.environ.get('MAIL_DEFAULT_SENDER')

    # Two-factor authentication
    app.config['TWO_FACTOR_ISSUER'] = os.environ.get('TWO_FACTOR_ISSUER', 'Feedback Portal')
    app.config['TWO_FACTOR_REQUIRED_ROLES'] = env_list('TWO_FACTOR_REQUIRED_ROLES', 'admin')
    app.config['TWO_FACTOR_TRUSTED_IPS'] = env_list('TWO_FACTOR_TRUSTED_IPS')
    app.config['TWO_FACTOR_MAX_FAILURES'] = int(os.environ.get('TWO_FACTOR_MAX_FAILURES', '5'))
    app.config['TWO_FACTOR_FAILURE_WINDOW'] = int(os.environ.get('TWO_FACTOR_FAILURE_WINDOW', '300'))
    app.config['TWO_FACTOR_LOCKOUT_SECONDS'] = int(os.environ.get('TWO_FACTOR_LOCKOUT_SECONDS', '300'))
    # Verified 2FA sessions lapse with the session cookie
    app.config['TWO_FACTOR_SESSION_MAX_AGE'] = int(os.environ.get('TWO_FACTOR_SESSION_MAX_AGE', '43200'))

    # API and webhooks
    app.config['API_TOKEN_MAX_AGE'] = int(os.environ.get('API_TOKEN_MAX_AGE', '86400'))
    app.config['WEBHOOK_SECRET'] = os.environ.get('WEBHOOK_SECRET')
    app.config['WEBHOOK_ALLOW_UNSIGNED'] = env_flag('WEBHOOK_ALLOW_UNSIGNED')

    # Feedback links
    app.config['LINK_DEFAULT_EXPIRES_HOURS'] = int(os.environ.get('LINK_DEFAULT_EXPIRES_HOURS', '72'))
    app.config['LINK_MAX_EXPIRES_HOURS'] = int(os.environ.get('LINK_MAX_EXPIRES_HOURS', '168'))

    if config_overrides:
        app.config.update(config_overrides)
    app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(seconds=app.config['TWO_FACTOR_SESSION_MAX_AGE'])

    # Handle PostgreSQL URL format for SQLAlchemy 2.0+
    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('postgres://'):
        app.config['SQLALCHEMY_DATABASE_URI'] = (
            app.config['SQLALCHEMY_DATABASE_URI'].replace('postgres://', 'postgresql://', 1)
        )

    # Initialize extensions
    db.init_app(app)
    Mail(app)
    Migrate(app, db)

    # Per-process 2FA state: verified sessions, pending enrollments, failed attempts
    app.extensions['two_factor_sessions'] = SessionTwoFactorStore(
        max_age_s=app.config['TWO_FACTOR_SESSION_MAX_AGE'],
    )
    app.extensions['two_factor_limiter'] = FailedAttemptLimiter(
        max_failures=app.config['TWO_FACTOR_MAX_FAILURES'],
        window_s=app.config['TWO_FACTOR_FAILURE_WINDOW'],
        lockout_s=app.config['TWO_FACTOR_LOCKOUT_SECONDS'],
    )

    # Register blueprints
    register_blueprints(app)
    register_commands(app)

    # Context processor for templates
    @app.context_processor
    def inject_template_vars():
        """Make common variables available in all templates"""
        return {
            't': t,
            'current_user': current_user(),
        }

    # Database migrations are handled by Flask-Migrate
    # Run: flask db upgrade (in production)

    return app


# Create the application
app = create_app()

if __name__ == '__main__':
    app.run(debug=True, host='0.0.0.0', port=5000)
