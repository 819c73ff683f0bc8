"""cimiento: motor declarativo de aprovisionamiento de infraestructura."""

__version__ = "0.1.0"
