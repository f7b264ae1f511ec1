#!/usr/bin/env python3
# -*- coding: utf-8 -*-

import os
import json
import logging
from logging.handlers import TimedRotatingFileHandler

from flask import Flask

from preview_service import api as preview_api
from preview_service.config import PreviewConfig
from preview_service.manager import PreviewManager

# Configuration file path
CONFIG_FILE = os.environ.get("PREVIEW_CONFIG_FILE", "config/config.json")


def setup_logging(level=None, log_dir=None):
    """Configure root logging once

    Args:
        level: log level name, defaults to LOG_LEVEL or INFO
        log_dir: directory for the daily rotating log file, None disables it
    """
    level_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
    )

    # Quieter third-party modules
    for module in ['urllib3', 'requests', 'werkzeug', 'botocore', 'boto3', 's3transfer']:
        logging.getLogger(module).setLevel(logging.WARNING)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        root = logging.getLogger()
        log_path = os.path.join(log_dir, 'preview.log')
        if not any(isinstance(h, TimedRotatingFileHandler) and h.baseFilename == os.path.abspath(log_path)
                   for h in root.handlers):
            file_handler = TimedRotatingFileHandler(
                log_path,
                when='midnight',
                interval=1,
                backupCount=3  # keep three days of logs
            )
            file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
            root.addHandler(file_handler)


def load_config(path=CONFIG_FILE):
    """Load the JSON config file, returning {} when it is absent"""
    if not os.path.exists(path):
        logging.info(f"Configuration file not found, using defaults: {path}")
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            config = json.load(f) or {}
        logging.info(f"Loaded configuration file: {path}")
        return config
    except (OSError, ValueError) as e:
        logging.error(f"Failed to load configuration file {path}: {str(e)}")
        return {}


def create_app(preview_config=None, manager=None):
    """Create the Flask application

    Args:
        preview_config: PreviewConfig, loaded from CONFIG_FILE and env when omitted
        manager: PreviewManager, built from preview_config when omitted

    Returns:
        Flask application
    """
    if preview_config is None:
        preview_config = PreviewConfig.from_app_config(load_config())
    setup_logging(log_dir=preview_config.log_dir)

    if manager is None:
        manager = PreviewManager(preview_config)

    app = Flask(__name__)
    app.config['PREVIEW_CONFIG'] = preview_config
    preview_api.init_preview_manager(manager)
    preview_api.register_routes(app)
    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 10000))
    application = create_app()
    logging.info(f"Preview server running on port {port}")
    application.run(host='0.0.0.0', port=port, threaded=True)
