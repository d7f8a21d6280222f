"""
============================================================
 FLOWSTATE — Focus Coaching Core
============================================================
"""

import config

__version__ = config.VERSION
