"""
Root pytest configuration for the Django project.

Sets environment defaults so the settings module imports without a
.env file. App-specific fixtures are defined in each app's tests/conftest.py.
"""

import os

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite://:memory:")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_settlement")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_settlement")

# Test client requests are plain HTTP
os.environ.setdefault("SECURE_SSL_REDIRECT", "False")
