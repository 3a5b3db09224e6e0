# ==================================================
# handlers/__init__.py
# ==================================================
"""
HTTP route handlers.

Each module exposes a FastAPI `router` mounted in app.py:

- quiz.py:     quiz sessions, timer and answer flow, approval
- progress.py: question catalogue, study item counts, XP / streak summary
- billing.py:  Stripe webhook, invoices, subscription cancellation
- email.py:    transactional email relay (Brevo)
- auth.py:     login / signup rate limiting and form checks
- teams.py:    team roster, invitations, member moderation
"""
