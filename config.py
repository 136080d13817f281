import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Application configuration"""

    # Flask settings
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('DEBUG', 'True').lower() == 'true'
    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = int(os.getenv('PORT', '5000'))

    # Database settings
    DATABASE_PATH = os.getenv('DATABASE_PATH', 'ledger.db')

    # Expense settings
    DEFAULT_CATEGORY = os.getenv('DEFAULT_CATEGORY', 'General')
    MAX_AMOUNT = Decimal('99999999.99')
    MAX_TITLE_LENGTH = 100
    MAX_DESCRIPTION_LENGTH = 255
    MAX_CATEGORY_LENGTH = 50
    MAX_NAME_LENGTH = 100
