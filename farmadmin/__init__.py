"""
Farm Admin Service

Internal administration web app for the farm management business: Entra ID
sign-in, farm and board CRUD over PostgreSQL, and start/stop of the Azure
database server.
"""

__version__ = "1.0.0"
