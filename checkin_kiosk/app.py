"""
Main Application Module for the Check-in Kiosk

This module contains the Flask application class that wires the API
client, repositories, services and scanner together and exposes the
kiosk screen. One process serves one check-in station.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

from flask import Flask, flash, jsonify, redirect, render_template, request, url_for

from .api_client import ApiClient
from .cli import register_commands
from .config import config_by_name
from .exceptions import DataValidationException, KioskException
from .renderer import render_feedback
from .repositories import RepositoryFactory
from .scanner import DecodeDebouncer, Scanner, create_scanner
from .services import BARCODE_TAB, CAMERA_TAB, CheckInService, EventService, KioskSession

EXTENSION_KEY = 'checkin_kiosk'


def setup_logging(app: Flask) -> None:
    """
    Configure logging for the application

    Always logs to the console; also to a rotating file when LOG_DIR is
    set.

    Args:
        app: Flask application instance
    """
    log_format = logging.Formatter(
        '%(asctime)s %(levelname)s %(name)s %(threadName)s : %(message)s'
    )
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)

    handlers = []
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(log_format)
    handlers.append(console_handler)

    log_dir = app.config.get('LOG_DIR')
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'kiosk.log'),
            maxBytes=1024 * 1024 * 10,  # 10MB
            backupCount=5
        )
        file_handler.setFormatter(log_format)
        handlers.append(file_handler)

    app.logger.setLevel(level)
    for name in ('api_client', 'event_service', 'checkin_service', 'kiosk_session', 'scanner'):
        module_logger = logging.getLogger(name)
        module_logger.setLevel(level)
        if not app.testing and not module_logger.handlers:
            for handler in handlers:
                module_logger.addHandler(handler)
    if not app.testing:
        for handler in handlers:
            app.logger.addHandler(handler)

    logging.getLogger('httpx').setLevel(logging.WARNING)


class CheckInKioskApp:
    """
    Flask application class for the check-in kiosk

    Builds the services from configuration and registers the routes of
    the kiosk screen.
    """

    def __init__(self, config: Optional[dict] = None, config_name: Optional[str] = None,
                 repositories=None, scanner: Optional[Scanner] = None):
        """
        Initialize the kiosk application

        Args:
            config: Optional configuration overrides
            config_name: 'development', 'production' or 'testing'
            repositories: Optional prebuilt Repositories bundle
            scanner: Optional scanner, built from config when omitted
        """
        self.app = Flask(__name__)
        self._configure_app(config, config_name)
        setup_logging(self.app)

        cfg = self.app.config
        if repositories is None:
            repositories = self._create_repositories()
        self.repositories = repositories

        self.event_service = EventService(repositories.events, limit=cfg['EVENTS_LIMIT'])
        self.checkin_service = CheckInService(
            repositories.registrations,
            repositories.attendance,
            match_policy=cfg['MATCH_POLICY'],
            match_limit=cfg['MATCH_LIMIT']
        )
        self.session = KioskSession(
            self.event_service,
            self.checkin_service,
            scanner=scanner or create_scanner(cfg),
            error_display=cfg['ERROR_DISPLAY'],
            scan_debouncer=DecodeDebouncer(cfg['SCANNER_DEBOUNCE_SECONDS'])
        )

        self.app.extensions[EXTENSION_KEY] = self
        self._register_routes()
        self._register_error_handlers()
        register_commands(self.app)

    def _configure_app(self, config: Optional[dict], config_name: Optional[str]) -> None:
        """
        Configure Flask application settings

        Args:
            config: Optional configuration overrides
            config_name: Name of the base configuration class
        """
        name = config_name or os.environ.get('FLASK_CONFIG', 'default')
        if name not in config_by_name:
            raise ValueError(f"Unknown configuration: {name}")
        self.app.config.from_object(config_by_name[name])
        if config:
            self.app.config.update(config)

        if self.app.config['ERROR_DISPLAY'] not in ('inline', 'toast'):
            raise DataValidationException('ERROR_DISPLAY', "must be 'inline' or 'toast'")

    def _create_repositories(self):
        cfg = self.app.config
        if cfg['REPOSITORY_TYPE'] == 'memory':
            return RepositoryFactory.create_repositories(
                'memory', fixture_path=cfg.get('FIXTURE_PATH')
            )
        return RepositoryFactory.create_repositories('api', client=ApiClient.from_config(cfg))

    def _register_routes(self) -> None:
        """Register all Flask routes"""
        self.app.add_url_rule("/", "home", self.home)
        self.app.add_url_rule("/event", "select_event", self.select_event, methods=["POST"])
        self.app.add_url_rule("/check-in", "check_in", self.check_in, methods=["POST"])
        self.app.add_url_rule("/check-in/resolve", "resolve", self.resolve, methods=["POST"])
        self.app.add_url_rule("/scan", "scan", self.scan, methods=["POST"])
        self.app.add_url_rule("/tab", "switch_tab", self.switch_tab, methods=["POST"])
        self.app.add_url_rule("/camera/start", "camera_start", self.camera_start, methods=["POST"])
        self.app.add_url_rule("/camera/stop", "camera_stop", self.camera_stop, methods=["POST"])
        self.app.add_url_rule("/kiosk/enter", "kiosk_enter", self.kiosk_enter, methods=["POST"])
        self.app.add_url_rule("/kiosk/exit", "kiosk_exit", self.kiosk_exit, methods=["POST"])
        self.app.add_url_rule("/state", "state", self.state)
        self.app.add_url_rule("/health", "health", self.health)

    def _register_error_handlers(self) -> None:
        """Register error handlers for custom exceptions"""

        @self.app.errorhandler(KioskException)
        def handle_kiosk_exception(e):
            self.app.logger.error(f"Unhandled kiosk error: {e}")
            if request.is_json:
                return jsonify({"error": e.message, "code": e.error_code}), 500
            return render_template('error.html',
                                   error_title="Kiosk Error",
                                   error_message=e.message), 500

    # Helpers

    def _flash_notifications(self) -> None:
        for level, message in self.session.drain_notifications():
            flash(message, level)

    def _state_payload(self) -> dict:
        state = self.session.state
        return {
            "eventId": state.event_id,
            "phase": state.phase.value,
            "inputBuffer": state.input_buffer,
            "acceptsInput": state.accepts_input,
            "kioskMode": state.kiosk_mode,
            "cameraActive": state.camera_active,
            "activeTab": self.session.active_tab,
            "result": state.result.to_dict() if state.result else None,
            "feedback": render_feedback(state).to_dict(),
            "notifications": [
                {"level": level, "message": message}
                for level, message in self.session.drain_notifications()
            ],
        }

    def _respond(self):
        if request.is_json or request.accept_mimetypes.best == 'application/json':
            return jsonify(self._state_payload())
        self._flash_notifications()
        return redirect(url_for("home"))

    # Routes

    def home(self):
        """
        Kiosk screen

        Events are refetched on every load of the page.
        """
        self.session.load_events()
        self._flash_notifications()
        state = self.session.state
        return render_template(
            "kiosk.html",
            events=self.session.events,
            state=state,
            feedback=render_feedback(state),
            active_tab=self.session.active_tab,
            scanner_enabled=self.app.config['SCANNER_ENABLED']
        )

    def select_event(self):
        self.session.select_event(request.form.get("event_id", "").strip())
        return self._respond()

    def check_in(self):
        """Manual or barcode submission; the input is cleared whatever happens"""
        data = request.get_json(silent=True) or request.form
        self.session.submit_manual(data.get("code", ""), notes=data.get("notes"))
        return self._respond()

    def resolve(self):
        data = request.get_json(silent=True) or request.form
        self.session.choose_candidate(data.get("registration_id", ""))
        return self._respond()

    def scan(self):
        """Code decoded by the browser camera; repeated reads of one badge are dropped"""
        data = request.get_json(silent=True) or {}
        code = str(data.get("code", "")).strip()
        if not code:
            return jsonify({"error": "code is required"}), 400
        accepted = self.session.submit_scan(code) is not None
        payload = self._state_payload()
        payload["accepted"] = accepted
        return jsonify(payload)

    def switch_tab(self):
        tab = (request.get_json(silent=True) or request.form).get("tab", BARCODE_TAB)
        if tab not in (BARCODE_TAB, CAMERA_TAB):
            return jsonify({"error": f"unknown tab {tab!r}"}), 400
        self.session.switch_tab(tab)
        return self._respond()

    def camera_start(self):
        self.session.start_camera()
        return self._respond()

    def camera_stop(self):
        self.session.stop_camera()
        return self._respond()

    def kiosk_enter(self):
        self.session.set_kiosk_mode(True)
        return self._respond()

    def kiosk_exit(self):
        self.session.set_kiosk_mode(False)
        return self._respond()

    def state(self):
        return jsonify(self._state_payload())

    def health(self):
        return jsonify({"status": "ok", "version": self.app.config.get('VERSION', '1.0.0')})

    def shutdown(self) -> None:
        """Release the camera and close the API client"""
        self.session.close()
        self.repositories.close()


def get_kiosk(app: Flask) -> CheckInKioskApp:
    return app.extensions[EXTENSION_KEY]


def create_app(config: Optional[Union[dict, str]] = None, **kwargs) -> Flask:
    """
    Factory function to create and configure the application

    Args:
        config: Configuration name, dict of overrides, or None for
            FLASK_CONFIG / development
        **kwargs: ``repositories`` and ``scanner`` overrides

    Returns:
        Configured Flask application
    """
    if isinstance(config, str):
        return CheckInKioskApp(config_name=config, **kwargs).app
    return CheckInKioskApp(config=config, **kwargs).app


def create_development_app() -> Flask:
    return create_app('development')


def create_production_app() -> Flask:
    return create_app('production')


if __name__ == "__main__":
    create_development_app().run(debug=True)
