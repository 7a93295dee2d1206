"""Transactional email rendering."""

from checkout_service.emails.welcome import WELCOME_SUBJECT, build_access_link, render_welcome_email

__all__ = ["WELCOME_SUBJECT", "build_access_link", "render_welcome_email"]
