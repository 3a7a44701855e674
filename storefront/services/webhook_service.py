"""PIX payment notifications.

Handling is split in two steps: the view validates the payload shape and
acknowledges at once, then the confirmations run on a worker pool with
their own error boundary. The acknowledgement never depends on them.
"""
from concurrent.futures import ThreadPoolExecutor, wait
import logging
import threading

from storefront.services.order_service import confirm_payment

logger = logging.getLogger(__name__)


def extract_txids(payload):
    """Return the txids in an Efí ``{"pix": [{"txid": ...}]}`` payload.

    Anything malformed yields an empty list.
    """
    if not isinstance(payload, dict):
        return []
    entries = payload.get('pix')
    if not isinstance(entries, list):
        return []

    txids = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        txid = entry.get('txid')
        if isinstance(txid, str) and txid.strip():
            txids.append(txid.strip())
    return txids


class WebhookDispatcher:

    def __init__(self, app, max_workers=2):
        self.app = app
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix='pix-webhook')
        self._pending = set()
        self._lock = threading.Lock()

    def _process(self, txid):
        with self.app.app_context():
            try:
                confirm_payment(txid)
            except Exception:
                # Retrying would not help the provider; log and move on.
                logger.exception(
                    "Error processing PIX webhook for txid %s", txid)

    def _done(self, future):
        with self._lock:
            self._pending.discard(future)

    def submit(self, txids):
        futures = []
        for txid in txids:
            future = self._executor.submit(self._process, txid)
            with self._lock:
                self._pending.add(future)
            future.add_done_callback(self._done)
            futures.append(future)
        return futures

    def join(self, timeout=None):
        """Block until every submitted confirmation has finished."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self):
        self._executor.shutdown(wait=True)


def init_webhook_dispatcher(app):
    dispatcher = WebhookDispatcher(
        app, max_workers=app.config.get('WEBHOOK_WORKERS', 2))
    app.extensions['webhook_dispatcher'] = dispatcher
    return dispatcher
