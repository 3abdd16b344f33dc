"""Portcullis — session authentication for web applications.

Establishes a logged-in session from local username/password credentials
or a federated identity provider, and gates the rest of the application
on the presence of that session.
"""

__version__ = "0.1.0"
