import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or (
        'dev-secret-key-change-in-production'
    )
    # Falls back to SECRET_KEY when empty.
    JWT_SECRET = os.environ.get('JWT_SECRET') or SECRET_KEY
    JWT_ALGORITHM = 'HS256'
    TOKEN_EXPIRE_HOURS = int(os.environ.get('TOKEN_EXPIRE_HOURS', '8'))

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or (
        'sqlite:///storefront.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # PIX gateway: "efi" talks to the Efí API, "mock" issues local charges.
    PIX_GATEWAY = os.environ.get('PIX_GATEWAY', 'mock').lower()
    # Charge lifetime (seconds)
    PIX_EXPIRATION_SECONDS = 240

    EFI_SANDBOX = os.environ.get('APP_ENV', 'development') != 'production'
    EFI_CLIENT_ID = (
        os.environ.get('EFI_HOMOLOG_CLIENT_ID', '') if EFI_SANDBOX
        else os.environ.get('EFI_PROD_CLIENT_ID', '')
    )
    EFI_CLIENT_SECRET = (
        os.environ.get('EFI_HOMOLOG_CLIENT_SECRET', '') if EFI_SANDBOX
        else os.environ.get('EFI_PROD_CLIENT_SECRET', '')
    )
    # PEM bundle holding the client certificate and key.
    EFI_CERTIFICATE_PATH = os.environ.get('EFI_CERTIFICATE_PATH', '')
    EFI_PIX_KEY = os.environ.get('EFI_PIX_KEY', '')
    EFI_TIMEOUT_SECONDS = 15

    # Webhook confirmations are processed off the request thread.
    WEBHOOK_WORKERS = int(os.environ.get('WEBHOOK_WORKERS', '2'))

    # Guards /api/internal/create-super-user. Unset means always refused.
    INTERNAL_API_SECRET = os.environ.get('INTERNAL_API_SECRET', '')

    # Initial admin account, created by init_data.py
    ADMIN_EMAIL = os.environ.get('ADMIN_EMAIL', '')
    ADMIN_USERNAME = os.environ.get('ADMIN_USERNAME', '')
    ADMIN_PASSWORD = os.environ.get('ADMIN_PASSWORD', '')

    STORE_NAME = os.environ.get('STORE_NAME', 'Gamer Store')
