"""
exchange_accounts — сервис учётных записей биржи.

Регистрация, вход, 2FA, подтверждение email, сброс пароля и KYC-уровни.
"""

__version__ = "1.0.0"
