# ===============================================================
# logging_setup.py
# ===============================================================
import logging
import os
import sys
import re
import sentry_sdk

# ------------------------------------------------
# Environment & log level
# ------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
numeric_level = getattr(logging, LOG_LEVEL, logging.INFO)
SENTRY_DSN = os.getenv("SENTRY_DSN")  # optional
ENVIRONMENT = os.getenv("ENVIRONMENT", "production")


# ------------------------------------------------
# 🔒 Secret Filter to hide Stripe / Brevo keys and bearer tokens
# ------------------------------------------------
class SecretFilter(logging.Filter):
    STRIPE_PATTERN = re.compile(r"\b(?:sk|rk)_(?:live|test)_[A-Za-z0-9]+\b|\bwhsec_[A-Za-z0-9]+\b")
    BREVO_PATTERN = re.compile(r"\bxkeysib-[A-Za-z0-9-]+\b")
    BEARER_PATTERN = re.compile(r"Bearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE)
    JWT_PATTERN = re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\b")
    KEY_PATTERN = re.compile(
        r"(?:secret|token|key|password|api)[^\s=:'\"]*['\"]?[:=]\s*['\"]?([\w-]+)['\"]?",
        re.IGNORECASE
    )

    def scrub(self, value: str) -> str:
        value = self.STRIPE_PATTERN.sub("[SECRET]", value)
        value = self.BREVO_PATTERN.sub("[SECRET]", value)
        value = self.BEARER_PATTERN.sub("Bearer [SECRET]", value)
        value = self.JWT_PATTERN.sub("[SECRET]", value)
        return self.KEY_PATTERN.sub("[REDACTED]", value)

    def _scrub_arg(self, value):
        # numbers must stay numbers for %d / %f placeholders
        return self.scrub(value) if isinstance(value, str) else value

    def filter(self, record):
        record.msg = self.scrub(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._scrub_arg(v) for k, v in record.args.items()}
            else:
                record.args = tuple(self._scrub_arg(a) for a in record.args)
        return True


# ------------------------------------------------
# Configure application logger
# ------------------------------------------------
formatter = logging.Formatter(
    "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    "%Y-%m-%d %H:%M:%S",
)
handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(formatter)
handler.addFilter(SecretFilter())

logger = logging.getLogger("PBEJourney")
logger.setLevel(numeric_level)
logger.addHandler(handler)
logger.propagate = False

# Module loggers (handlers.*, services.*, tasks.*) log through the root
root = logging.getLogger()
if handler not in root.handlers:
    root.addHandler(handler)
root.setLevel(numeric_level)

# ------------------------------------------------
# Ensure uvicorn/gunicorn logs flow through this formatter
# ------------------------------------------------
for noisy in ("uvicorn", "uvicorn.error", "uvicorn.access",
              "gunicorn", "gunicorn.error", "gunicorn.access"):
    logging.getLogger(noisy).handlers = []
    logging.getLogger(noisy).propagate = True

# httpx logs every request URL at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)

# ------------------------------------------------
# Optional: Initialize Sentry
# ------------------------------------------------
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        traces_sample_rate=0.2,
        environment=ENVIRONMENT,
        send_default_pii=False,
    )

logger.info("✅ Secure logger initialized (keys and tokens masked from output).")
