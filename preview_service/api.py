"""
Preview API endpoints

Accepts preview batches and answers immediately; results are delivered
later through the outbound callback.
"""

from flask import jsonify, request
import logging

from .errors import ValidationError
from .manager import validate_request

logger = logging.getLogger(__name__)

# Global preview manager instance (initialised in webserver.py)
PREVIEW_MANAGER = None


def init_preview_manager(manager):
    """Initialise the preview manager

    Args:
        manager: PreviewManager instance
    """
    global PREVIEW_MANAGER
    PREVIEW_MANAGER = manager
    logger.info("Preview manager initialized")


def register_routes(app):
    """Register preview API routes

    Args:
        app: Flask application
    """

    @app.route('/create-preview', methods=['POST'])
    def create_preview():
        """Queue a preview batch

        Body: {internalTaskId, customerId, sunoVariants: [...]}

        Returns:
            202 once the batch is queued, 400 for malformed requests
        """
        if PREVIEW_MANAGER is None:
            return jsonify({"error": "Preview manager not initialized"}), 500

        payload = request.get_json(silent=True)
        try:
            batch = validate_request(payload)
        except ValidationError as e:
            logger.warning(f"Rejected preview request: {e}")
            return jsonify({"error": str(e)}), 400

        PREVIEW_MANAGER.submit_batch(batch)
        return jsonify({"message": "Accepted", "taskId": batch.task_id}), 202

    @app.route('/health', methods=['GET'])
    def health():
        """Liveness probe with limiter configuration"""
        response = {"status": "ok"}
        if PREVIEW_MANAGER is not None:
            response.update(PREVIEW_MANAGER.get_status_summary())
        return jsonify(response)
