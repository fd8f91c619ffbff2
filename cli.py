"""
Flask CLI commands for the parts of the portal that have no admin screens:
staff accounts, notification recipients and stored settings.
"""
from dataclasses import asdict

import click
from werkzeug.security import generate_password_hash

from models import db, User, NotificationRecipient
from services import two_factor
from services.settings import load_app_settings, load_email_settings, save_setting


def register_commands(app):
    """Attach the management commands to ``app.cli``"""

    @app.cli.command('create-user')
    @click.argument('username')
    @click.option('--name', required=True, help='Display name')
    @click.option('--email', required=True)
    @click.option('--role', type=click.Choice(['admin', 'user']), default='user', show_default=True)
    @click.password_option()
    def create_user(username, name, email, role, password):
        """Create a staff account that can sign in"""
        if User.query.filter((User.username == username) | (User.email == email)).first():
            raise click.ClickException(f'A user with username {username} or email {email} already exists.')

        user = User(
            name=name,
            email=email,
            username=username,
            role=role,
            password_hash=generate_password_hash(password)
        )
        db.session.add(user)
        db.session.commit()
        click.echo(f'✅ Created {role} {username} (id {user.id})')

    @app.cli.command('add-recipient')
    @click.argument('email')
    @click.option('--name', default=None, help='Display name, defaults to the address')
    def add_recipient(email, name):
        """Add (or re-activate) a feedback notification recipient"""
        recipient = NotificationRecipient.query.filter_by(email=email).first()
        if recipient is None:
            recipient = NotificationRecipient(email=email, name=name or email)
            db.session.add(recipient)
        else:
            recipient.is_active = True
            if name:
                recipient.name = name
        db.session.commit()
        click.echo(f'✅ {email} will receive feedback notifications')

    @app.cli.command('set-setting')
    @click.argument('scope', type=click.Choice(['app', 'api', 'template']))
    @click.argument('key')
    @click.argument('value')
    def set_setting(scope, key, value):
        """Store one setting, e.g. `flask set-setting app company_name Acme`"""
        try:
            save_setting(scope, key, value)
        except KeyError:
            raise click.ClickException(f'Unknown setting {scope}.{key}')
        click.echo(f'✅ {scope}.{key} updated')

    @app.cli.command('show-settings')
    def show_settings():
        """Print the effective application and email settings"""
        click.echo('App settings:')
        for key, value in asdict(load_app_settings()).items():
            click.echo(f'  {key} = {value!r}')
        click.echo('Email settings:')
        for key, value in asdict(load_email_settings()).items():
            if key.startswith('notification_') and value and len(value) > 60:
                value = value[:57] + '...'
            click.echo(f'  {key} = {value!r}')

    @app.cli.command('disable-2fa')
    @click.argument('username')
    def disable_two_factor(username):
        """Remove a user's 2FA credential when they lost their authenticator"""
        user = User.query.filter_by(username=username).first()
        if user is None:
            raise click.ClickException(f'No user named {username}')
        if two_factor.disable(user.id):
            click.echo(f'✅ 2FA disabled for {username}')
        else:
            click.echo(f'{username} has no 2FA credential')
