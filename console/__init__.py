"""Console front end for the login flows"""
from .progress import ConsoleProgress, STAGE_MESSAGES

__all__ = ['ConsoleProgress', 'STAGE_MESSAGES']
