# chainvote/cli.py

import click
from flask import current_app
from flask.cli import with_appcontext

from chainvote.authentication.identity import IdentityService
from chainvote.authentication.rbac import UserRole
from chainvote.encryption.password_hashing import PasswordHashingService
from chainvote.errors import ChainVoteError

# Public registration only creates voters; admins and observers are created here:
#   flask --app chainvote create-user --role Admin --wallet 0x... --national-id ...


@click.command('create-user')
@click.option('--national-id', required=True)
@click.option('--first-name', required=True)
@click.option('--last-name', required=True)
@click.option('--wallet', required=True)
@click.option('--role', type=click.Choice([r.value for r in UserRole]), default=UserRole.ADMIN.value)
@click.option('--password', default=None, help="Generated when omitted.")
@with_appcontext
def create_user_command(national_id, first_name, last_name, wallet, role, password):
    min_length = current_app.config['PASSWORD_MIN_LENGTH']
    if not password:
        password = PasswordHashingService(min_length=min_length).generate_secure_password()
        click.echo(f"Generated password: {password}")

    identity = IdentityService(
        audit_logger=current_app.extensions.get('audit_logger'),
        password_min_length=min_length,
    )
    try:
        voter = identity.register({
            'nationalId': national_id,
            'firstName': first_name,
            'lastName': last_name,
            'wallet': wallet,
            'password': password,
        }, role=UserRole(role))
    except ChainVoteError as e:
        raise click.ClickException(e.title)
    click.echo(f"User {voter.wallet} created with role {voter.role}.")
