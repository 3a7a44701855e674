"""PIX charge issuance.

The order flow only depends on ``create_charge(amount, expiration_seconds)``
returning a :class:`Charge` or raising ``PaymentGatewayError``.
"""
from dataclasses import dataclass
from decimal import Decimal
import base64
import secrets
import string
import threading
import time
import logging

import requests

from storefront.errors import PaymentGatewayError

logger = logging.getLogger(__name__)

EFI_SANDBOX_URL = 'https://pix-h.api.efipay.com.br'
EFI_PRODUCTION_URL = 'https://pix.api.efipay.com.br'

# PIX txids are 26-35 alphanumeric characters.
TXID_ALPHABET = string.ascii_letters + string.digits


@dataclass(frozen=True)
class Charge:
    txid: str
    # "copia e cola" code the payer pastes into a banking app
    payment_code: str
    # data URI of the QR code image
    payment_image: str


def _format_amount(amount) -> str:
    return str(Decimal(amount).quantize(Decimal('0.01')))


def _provider_error_message(response):
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    erros = body.get('erros')
    return (
        body.get('error_description')
        or (erros[0].get('mensagem') if isinstance(erros, list) and erros
            and isinstance(erros[0], dict) else None)
        or body.get('mensagem')
        or f'Payment provider returned HTTP {response.status_code}'
    )


class EfiPixGateway:
    """Immediate PIX charges through the Efí API (mutual TLS + OAuth2)."""

    def __init__(self, client_id, client_secret, certificate_path, pix_key,
                 sandbox=True, timeout=15, store_name='Store',
                 session=None):
        if not client_id or not client_secret:
            raise PaymentGatewayError('Efí client credentials are not set')
        if not pix_key:
            raise PaymentGatewayError('EFI_PIX_KEY is not set')
        if not certificate_path:
            raise PaymentGatewayError('EFI_CERTIFICATE_PATH is not set')

        self.client_id = client_id
        self.client_secret = client_secret
        self.pix_key = pix_key
        self.base_url = EFI_SANDBOX_URL if sandbox else EFI_PRODUCTION_URL
        self.timeout = timeout
        self.store_name = store_name
        self.session = session or requests.Session()
        self.session.cert = certificate_path

        self._token = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

        logger.info(
            "Efí gateway initialized in %s mode",
            'sandbox' if sandbox else 'production')

    def _access_token(self):
        with self._token_lock:
            # Renew a minute early.
            if self._token and time.monotonic() < self._token_expires_at - 60:
                return self._token

            try:
                response = self.session.post(
                    f'{self.base_url}/oauth/token',
                    json={'grant_type': 'client_credentials'},
                    auth=(self.client_id, self.client_secret),
                    timeout=self.timeout)
            except requests.RequestException as e:
                raise PaymentGatewayError(
                    f'Payment provider unreachable: {e}') from e
            if not response.ok:
                raise PaymentGatewayError(_provider_error_message(response))

            body = response.json()
            self._token = body['access_token']
            self._token_expires_at = (
                time.monotonic() + int(body.get('expires_in', 3600)))
            return self._token

    def _request(self, method, path, **kwargs):
        headers = {'Authorization': f'Bearer {self._access_token()}'}
        try:
            response = self.session.request(
                method,
                f'{self.base_url}{path}',
                headers=headers,
                timeout=self.timeout,
                **kwargs)
        except requests.RequestException as e:
            raise PaymentGatewayError(
                f'Payment provider unreachable: {e}') from e
        if not response.ok:
            message = _provider_error_message(response)
            logger.error(
                "Efí %s %s failed: %s", method, path, message)
            raise PaymentGatewayError(message)
        try:
            return response.json()
        except ValueError as e:
            raise PaymentGatewayError(
                'Payment provider returned an invalid response') from e

    def create_charge(self, amount, expiration_seconds) -> Charge:
        value = _format_amount(amount)
        body = {
            'calendario': {'expiracao': int(expiration_seconds)},
            'valor': {'original': value},
            'chave': self.pix_key,
            'solicitacaoPagador': f'Pedido {self.store_name} R${value}',
        }
        logger.info("Requesting PIX charge of %s", value)
        charge = self._request('POST', '/v2/cob', json=body)

        txid = charge.get('txid')
        loc_id = (charge.get('loc') or {}).get('id')
        if not txid or loc_id is None:
            raise PaymentGatewayError(
                'Payment provider response is missing txid or location')

        qrcode = self._request('GET', f'/v2/loc/{loc_id}/qrcode')
        logger.info("PIX charge %s issued", txid)
        return Charge(
            txid=txid,
            payment_code=qrcode.get('qrcode', ''),
            payment_image=qrcode.get('imagemQrcode', ''))


class MockPixGateway:
    """Local gateway for development; charges are never paid by itself."""

    def __init__(self, store_name='Store'):
        self.store_name = store_name

    def create_charge(self, amount, expiration_seconds) -> Charge:
        txid = ''.join(secrets.choice(TXID_ALPHABET) for _ in range(32))
        value = _format_amount(amount)
        code = f'00020101MOCKPIX|{txid}|{value}|{int(expiration_seconds)}'
        svg = (
            '<svg xmlns="http://www.w3.org/2000/svg" width="240" '
            'height="240"><rect width="240" height="240" fill="#fff"/>'
            f'<text x="10" y="120" font-size="10">{txid}</text></svg>'
        )
        image = 'data:image/svg+xml;base64,' + base64.b64encode(
            svg.encode()).decode()
        logger.info(f"PIX charge (Mock): txid={txid} amount={value}")
        return Charge(txid=txid, payment_code=code, payment_image=image)


def init_payment_gateway(app):
    cfg = app.config
    kind = cfg.get('PIX_GATEWAY', 'mock')
    if kind == 'efi':
        gateway = EfiPixGateway(
            client_id=cfg['EFI_CLIENT_ID'],
            client_secret=cfg['EFI_CLIENT_SECRET'],
            certificate_path=cfg['EFI_CERTIFICATE_PATH'],
            pix_key=cfg['EFI_PIX_KEY'],
            sandbox=cfg['EFI_SANDBOX'],
            timeout=cfg['EFI_TIMEOUT_SECONDS'],
            store_name=cfg['STORE_NAME'])
    elif kind == 'mock':
        gateway = MockPixGateway(store_name=cfg['STORE_NAME'])
    else:
        raise ValueError(f'Unknown PIX_GATEWAY: {kind}')
    app.extensions['payment_gateway'] = gateway
    return gateway
