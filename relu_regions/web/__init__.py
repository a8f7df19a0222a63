"""
Web Module
==========

Flask-based dashboard exposing a training session over HTTP and SocketIO.

Components:
    server.py    - Flask + SocketIO server
"""

from .server import WebDashboard

__all__ = ['WebDashboard']
