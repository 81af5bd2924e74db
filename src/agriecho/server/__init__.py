"""
AgriEcho server: the remote API that offline clients sync with.
"""

from agriecho.server.app import create_app

__all__ = ['create_app']
