"""Security components: audit trail, rate limiting, lockout, activity, retention, self-tests."""
