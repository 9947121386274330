import os
import logging
import traceback

import click
from flask import Flask, jsonify
from flask_cors import CORS

from outreach_sequencer.config import config
from outreach_sequencer.extensions import db, jwt


def _register_blueprints(app):
    """Register blueprints, logging (not raising) registration failures."""
    try:
        from outreach_sequencer.routes.sequence import sequence_bp
        app.register_blueprint(sequence_bp, url_prefix='/api/v1')
        app.logger.info("Registered sequence blueprint")
    except Exception as e:
        app.logger.error(f"Failed to register sequence blueprint: {str(e)}")
        app.logger.error(f"Sequence blueprint error traceback: {traceback.format_exc()}")

    try:
        from outreach_sequencer.routes.execution import execution_bp
        app.register_blueprint(execution_bp, url_prefix='/api/v1')
        app.logger.info("Registered execution blueprint")
    except Exception as e:
        app.logger.error(f"Failed to register execution blueprint: {str(e)}")

    try:
        from outreach_sequencer.routes.engagement import engagement_bp
        app.register_blueprint(engagement_bp, url_prefix='/api/v1')
        app.logger.info("Registered engagement blueprint")
    except Exception as e:
        app.logger.error(f"Failed to register engagement blueprint: {str(e)}")

    try:
        from outreach_sequencer.routes.target import target_bp
        app.register_blueprint(target_bp, url_prefix='/api/v1')
        app.logger.info("Registered target blueprint")
    except Exception as e:
        app.logger.error(f"Failed to register target blueprint: {str(e)}")

    try:
        from outreach_sequencer.routes.automation import automation_bp
        app.register_blueprint(automation_bp, url_prefix='/api/v1/automation')
        app.logger.info("Registered automation blueprint")
    except Exception as e:
        app.logger.error(f"Failed to register automation blueprint: {str(e)}")


def _register_commands(app):
    @app.cli.command('process-due')
    @click.option('--now', default=None, help='Evaluate due times at this ISO 8601 instant.')
    def process_due(now):
        """Run one scheduler tick over all due executions (for cron)."""
        from outreach_sequencer.services.container import get_services
        from outreach_sequencer.utils.time_utils import parse_timestamp

        summary = get_services().scheduler.tick(parse_timestamp(now))
        click.echo(f"Processed {summary['due']} due execution(s): {summary['outcomes']}")


def create_app(config_name=None, test_config=None, generator=None, channel=None):
    """Application factory pattern.

    ``generator`` and ``channel`` replace the configured message generator
    and send channel.
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'development')

    app.config.from_object(config[config_name])
    if test_config:
        app.config.update(test_config)

    # Validate production configuration if needed
    if config_name == 'production':
        config[config_name].validate_config()

    # Configure CORS
    CORS(app, origins=app.config['CORS_ORIGINS'], supports_credentials=True)

    # Initialize extensions
    db.init_app(app)
    jwt.init_app(app)

    # Configure logging first so we can see route registration errors
    logging.getLogger('outreach_sequencer').setLevel(app.config.get('LOG_LEVEL', 'INFO'))
    if not app.debug and not app.testing:
        if not os.path.exists('logs'):
            os.mkdir('logs')
        file_handler = logging.FileHandler('logs/outreach_sequencer.log')
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
        logging.getLogger('outreach_sequencer').addHandler(file_handler)
        app.logger.setLevel(logging.INFO)
        app.logger.info('Outreach Sequencer startup')

    _register_blueprints(app)
    _register_commands(app)

    # Collaborators are built once and shared through app.extensions
    from outreach_sequencer.services.container import build_services
    services = build_services(app, generator=generator, channel=channel)

    # Create database tables (avoid fatal boot failures in production)
    try:
        with app.app_context():
            # In production, only run if explicitly enabled
            if config_name != 'production' or os.environ.get('STARTUP_DB_CREATE_ALL', 'false').lower() == 'true':
                db.create_all()
                app.logger.info("Database tables created/verified")
            else:
                app.logger.info("Skipping db.create_all() on startup in production")
    except Exception as e:
        app.logger.error(f"Failed to create/verify database tables on startup: {str(e)}")

    # Start the background loop only when explicitly requested
    if app.config.get('START_SCHEDULER', False):
        try:
            services.scheduler.start()
            app.logger.info("Sequence scheduler started automatically")
        except Exception as e:
            app.logger.error(f"Failed to start scheduler: {str(e)}")

    from outreach_sequencer.utils.error_handlers import register_error_handlers
    register_error_handlers(app)

    # Simple health check endpoint
    @app.route('/')
    def index():
        return jsonify({'status': 'ok', 'message': 'Outreach Sequencer API is running'})

    return app
