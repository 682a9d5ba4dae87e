from .bot import GenericHookBot

__all__ = ["GenericHookBot"]
