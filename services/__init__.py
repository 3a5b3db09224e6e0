# ========================================================
# services/__init__.py
# ========================================================
"""
Business Logic Services.

Contains reusable service modules decoupled from handlers:

- quiz_runner.py:   per-session state machine (timer, answers, results)
- quiz_sessions.py: persistence + completion follow-ups for quiz sessions
- questions.py:     tier access, study item filtering, quiz metadata
- gamification.py:  XP, levels, streaks, achievements
- assignments.py:   study assignment completion
- payments.py:      Stripe webhook verification and subscription sync
- stripe_client.py: thin Stripe REST client
- email.py:         Brevo transactional email
- rate_limit.py:    sliding-window limiter backed by Postgres
"""
