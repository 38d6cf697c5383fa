"""
Quarry Shared Module
====================

Configuration, logging, console and HTTP plumbing shared by the Quarry
command-line tools.
"""

from shared.config import QuarryConfig
from shared.console import QuarryConsole
from shared.logger import QuarryLogger

__all__ = ["QuarryConfig", "QuarryConsole", "QuarryLogger"]
