"""Test fixtures for mailview.

This package provides reusable test fixtures:
- threads: Thread summary and page factories
- mailbox: Settings, sessions, transports and mailbox views
- api: TestClient with an injected MailboxView
"""
