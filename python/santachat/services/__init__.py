"""Server-side services: idempotent writes, sending, listing, read state, notifications."""
