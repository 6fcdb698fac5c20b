"""
Cloud Run Service for Alliance DAO NFT Transaction Ingestion

Flask application that provides HTTP endpoints for:
- Loading specific blocks or scanning recent blocks into BigQuery
- Pipeline status monitoring

Triggered by Cloud Scheduler.
"""

import logging
import os

from flask import Flask, jsonify, request

from alliance_explorer.config import PipelineConfig
from alliance_explorer.ingestion_pipeline import IngestionPipeline, parse_block_heights

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)


def _requested_heights(request_json):
    """Block heights from the request body, as a list or a separated string."""
    heights = request_json.get('heights')
    if heights is None:
        return None
    if isinstance(heights, list):
        return parse_block_heights(','.join(str(h) for h in heights))
    return parse_block_heights(str(heights))


@app.route('/', methods=['GET'])
def health():
    """Health check endpoint."""
    return jsonify({'status': 'healthy', 'service': 'alliance-dao-tx-ingestion'}), 200


@app.route('/ingest', methods=['POST', 'GET'])
def ingest_data():
    """
    Main ingestion endpoint.

    Request body (optional JSON):
    {
        "heights": [12345678, 12345690],
        "batch": 1,
        "max_transactions": 100
    }

    Without ``heights`` the newest ``batch`` of blocks is scanned.
    """
    logger.info("Ingestion triggered")

    try:
        request_json = request.get_json(silent=True) or {}

        config = PipelineConfig.from_env()

        # Override config from request if provided
        if 'max_transactions' in request_json:
            config.max_transactions = int(request_json['max_transactions'])
        if 'blocks_per_batch' in request_json:
            config.blocks_per_batch = int(request_json['blocks_per_batch'])

        heights = _requested_heights(request_json)
        batch_number = int(request_json.get('batch', 1))

        with IngestionPipeline(config) as pipeline:
            stats = pipeline.run(heights=heights, batch_number=batch_number)

        response_data = {
            'status': 'success' if stats.success else 'error',
            'statistics': stats.to_dict()
        }

        logger.info(f"Pipeline completed: {stats.transactions_found} transactions found, "
                    f"{stats.transactions_inserted} inserted")

        return jsonify(response_data), 200 if stats.success else 500

    except Exception as e:
        logger.error(f"Pipeline failed: {str(e)}", exc_info=True)
        return jsonify({
            'status': 'error',
            'message': str(e)
        }), 500


@app.route('/status', methods=['GET'])
def get_status():
    """Get pipeline status."""
    logger.info("Status check triggered")

    try:
        config = PipelineConfig.from_env()

        with IngestionPipeline(config) as pipeline:
            status = pipeline.get_status()

        return jsonify({
            'status': 'success',
            'pipeline_status': status
        }), 200

    except Exception as e:
        logger.error(f"Status check failed: {str(e)}", exc_info=True)
        return jsonify({
            'status': 'error',
            'message': str(e)
        }), 500


if __name__ == '__main__':
    # Run locally for testing
    port = int(os.environ.get('PORT', 8080))
    app.run(host='0.0.0.0', port=port, debug=True)
