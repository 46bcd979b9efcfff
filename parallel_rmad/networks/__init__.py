# networks/__init__.py
# Example networks built on the engine

from .feedforward import FeedForwardNetwork
from .recurrent import RecurrentNetwork

__all__ = ["FeedForwardNetwork", "RecurrentNetwork"]
