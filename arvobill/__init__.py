"""Interactive installer and updater for ArvoBill on Ubuntu servers."""

APP_NAME: str = "ArvoBill Setup"
VERSION: str = "1.0.0"
