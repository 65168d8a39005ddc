"""Local redirect receiver for the authorization-code flow"""
from .server import CallbackServer, parse_form_fields

__all__ = ['CallbackServer', 'parse_form_fields']
