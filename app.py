"""
Learnity - Tutoring Platform API

Application factory wiring configuration, extensions, blueprints,
error handlers and CLI commands.
"""
import os
import json
import logging
from datetime import datetime
import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from config import config_dict
from models import db, User, init_badges, init_quests, create_default_admin
from extensions import cors, limiter, login_manager
from notifications import email_service
from errors import LearnityError, CatalogError
from auth import auth_bp, authenticate_request
from api import api_bp
from teachers import teacher_bp
from admin import admin_bp
from messaging import chat_bp
import catalog

# ==================== STRUCTURED LOGGING ====================

def setup_logging(app):
    """Configure structured logging for the application"""
    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format=app.config['LOG_FORMAT'],
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logging.getLogger().setLevel(app.config['LOG_LEVEL'])
    return logging.getLogger('learnity')


logger = logging.getLogger('learnity')


# ==================== APPLICATION FACTORY ====================

def create_app(config_name=None):
    config_name = config_name or os.environ.get('FLASK_ENV', 'development')
    app = Flask(__name__)
    app.config.from_object(config_dict.get(config_name, config_dict['default']))

    setup_logging(app)

    db.init_app(app)
    cors.init_app(app, origins=app.config['CORS_ORIGINS'])
    limiter.init_app(app)
    login_manager.init_app(app)
    email_service.init_app(app)

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(api_bp, url_prefix='/api')
    app.register_blueprint(teacher_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(chat_bp)

    register_error_handlers(app)
    register_commands(app)

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint for Docker/proxy"""
        return jsonify({
            'status': 'healthy',
            'service': 'learnity',
            'timestamp': datetime.utcnow().isoformat()
        }), 200

    logger.info(f"Learnity started with {config_name} configuration")
    return app


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.request_loader
def load_user_from_request(request):
    user, _ = authenticate_request(request)
    return user


# ==================== ERROR HANDLERS ====================

def register_error_handlers(app):

    @app.errorhandler(LearnityError)
    def handle_domain_error(error):
        db.session.rollback()
        logger.info(f"{error.code}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'error': error.description, 'code': error.name.upper().replace(' ', '_')}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        db.session.rollback()
        logger.exception(f"Unhandled error: {error}")
        return jsonify({'error': 'Internal server error', 'code': 'INTERNAL_ERROR'}), 500


# ==================== INITIALIZE DATABASE ====================

def init_database(app):
    db.create_all()
    init_badges(db)
    init_quests(db)
    create_default_admin(db, app.config['DEFAULT_ADMIN_EMAIL'], app.config['DEFAULT_ADMIN_PASSWORD'])


def register_commands(app):

    @app.cli.command('init-db')
    def init_db_command():
        """Create tables, badge and quest definitions and the default admin."""
        init_database(app)
        click.echo('Database initialized')

    @app.cli.command('create-admin')
    @click.option('--email', required=True)
    @click.option('--password', required=True)
    @click.option('--name', default='Administrator')
    def create_admin_command(email, password, name):
        """Create an admin account or promote an existing one."""
        email = email.strip().lower()
        user = User.query.filter_by(email=email).first()
        if not user:
            user = User(email=email, name=name)
            db.session.add(user)
        user.role = 'admin'
        user.is_active = True
        user.set_password(password)
        db.session.commit()
        click.echo(f'Admin ready: {email}')

    @app.cli.command('import-course')
    @click.argument('outline', type=click.File('r'))
    @click.option('--teacher-email', required=True, help='Approved teacher who owns the course')
    def import_course_command(outline, teacher_email):
        """Create a course from a JSON outline file."""
        teacher = User.query.filter_by(email=teacher_email.strip().lower()).first()
        if not teacher:
            raise click.ClickException(f'No user with email {teacher_email}')
        try:
            course = catalog.import_course_outline(json.load(outline), teacher)
        except (CatalogError, ValueError) as e:
            db.session.rollback()
            raise click.ClickException(str(e))
        db.session.commit()
        click.echo(f'Imported course {course.id} ({course.slug}), status {course.status}')


# ==================== RUN ====================

if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        init_database(app)
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=app.config.get('DEBUG', False))
