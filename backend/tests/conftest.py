import os
import tempfile

os.environ["FEIRA_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["PAYMENTS_PROVIDER"] = "mock"
os.environ.setdefault("USER_JWT_SECRET", "test-user-secret-0123456789")
os.environ.setdefault("ADMIN_JWT_SECRET", "test-admin-secret-0123456789")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-0123456789")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="feira-uploads-"))
os.environ.pop("MERCADOPAGO_WEBHOOK_SECRET", None)
os.environ.pop("BOOST_WEBHOOK_QUEUE", None)
os.environ.pop("SENTRY_DSN", None)
