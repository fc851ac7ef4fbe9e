# =============================================================================
# Django Project Configuration Package
# =============================================================================
# This package contains all Django configuration for the refund service:
# settings, URLs and the ASGI/WSGI applications.
# =============================================================================
