from flask import Blueprint, current_app, jsonify, request
from storefront.services.webhook_service import extract_txids
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('webhooks', __name__)


@bp.route('/api/webhooks/efi', methods=['POST'])
# Efí appends /pix to the registered URL unless told otherwise.
@bp.route('/api/webhooks/efi/pix', methods=['POST'])
def efi_webhook():
    """Efí calls this when a PIX charge is paid.

    Always answers 200 right away; confirmation runs afterwards so the
    provider is never asked to retry for problems on our side.
    """
    payload = request.get_json(silent=True)
    txids = extract_txids(payload)
    if not txids:
        logger.warning("Efí webhook received without txid: %s", payload)
        return jsonify({'ok': True})

    try:
        current_app.extensions['webhook_dispatcher'].submit(txids)
    except RuntimeError:
        logger.exception("Could not queue PIX confirmations %s", txids)
    return jsonify({'ok': True})
