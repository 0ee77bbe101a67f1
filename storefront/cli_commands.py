import time

from flask import current_app
from flask.cli import with_appcontext
import click

from .extensions import db
from .models import User
from .models.user import addUser
from .services import get_engine


@click.command('sweep-reservations')
@click.option('--loop', is_flag=True, help='Keep sweeping until interrupted.')
@click.option('--interval', default=60, show_default=True, help='Seconds between sweeps with --loop.')
@click.option('--batch-size', default=None, type=int, help='Reservations released per query.')
@with_appcontext
def sweep_reservations(loop, interval, batch_size):
    """Вернуть на склад просроченные резервы и отменить брошенные заказы"""
    sweeper = get_engine().sweeper
    batch_size = batch_size or current_app.config['SWEEP_BATCH_SIZE']
    while True:
        report = sweeper.sweep(batch_size=batch_size)
        click.echo(f'Released {report.released} reservations, cancelled {report.cancelled} orders.')
        if not loop:
            break
        # Сбрасываем сессию, чтобы следующий проход читал свежие данные
        db.session.remove()
        time.sleep(interval)


@click.command('create-admin')
@click.option('--username', default='admin', show_default=True)
@click.option('--email', default='admin@example.com', show_default=True)
@click.password_option()
@with_appcontext
def create_admin(username, email, password):
    """Создать администратора, если его ещё нет"""
    if User.query.filter_by(username=username).first():
        click.echo(f"User '{username}' уже существует.")
        return
    addUser(username, email, password)
    click.echo(f'Admin user created: username={username}')


def register_commands(app):
    app.cli.add_command(sweep_reservations)
    app.cli.add_command(create_admin)
